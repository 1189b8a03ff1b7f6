"""Administrative API: schedule configuration, question catalog, users, manual triggers."""

import logging
import secrets
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_checkin.api.schemas import (
    QuestionCreate,
    QuestionOut,
    QuestionUpdate,
    ReorderRequest,
    RoleChange,
    TriggerRequest,
    TriggerResponse,
    UserCreate,
    UserOut,
    WorkspaceConfigOut,
    WorkspaceConfigUpdate,
)
from pulse_checkin.config import settings
from pulse_checkin.db.database import get_session
from pulse_checkin.exceptions import NotFoundError
from pulse_checkin.questions.catalog import (
    change_question_role,
    create_question,
    get_question,
    list_questions,
    reorder_rotation_queue,
    set_question_active,
    update_question_text,
)
from pulse_checkin.users import create_user, deactivate_user, get_user_by_handle
from pulse_checkin.workspace import get_workspace_config, update_workspace_config

logger = logging.getLogger(__name__)


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    """Check the ``Authorization: Bearer <ADMIN_API_TOKEN>`` header.

    With no token configured the API is open in DEBUG and closed otherwise.
    """
    token = settings.ADMIN_API_TOKEN
    if not token:
        if settings.DEBUG:
            return
        raise HTTPException(status_code=503, detail="Admin API disabled: ADMIN_API_TOKEN is not set")

    expected = f"Bearer {token}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        logger.warning("Rejected admin request with missing or invalid token")
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/config", response_model=WorkspaceConfigOut)
async def read_config(
    workspace_id: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> WorkspaceConfigOut:
    config = await get_workspace_config(session, workspace_id)
    return WorkspaceConfigOut.model_validate(config)


@router.put("/config", response_model=WorkspaceConfigOut)
async def write_config(
    request: WorkspaceConfigUpdate,
    workspace_id: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> WorkspaceConfigOut:
    """Update check-in day, time and reminder times. Takes effect on the next tick."""
    config = await update_workspace_config(
        session,
        workspace_id,
        check_in_day=request.check_in_day,
        check_in_time=request.check_in_time,
        reminder_times=request.reminder_times,
    )
    return WorkspaceConfigOut.model_validate(config)


@router.get("/questions", response_model=list[QuestionOut])
async def read_questions(
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_session),
) -> list[QuestionOut]:
    questions = await list_questions(session, active_only=not include_inactive)
    return [QuestionOut.model_validate(q) for q in questions]


@router.post("/questions", response_model=QuestionOut, status_code=201)
async def add_question(
    request: QuestionCreate,
    session: AsyncSession = Depends(get_session),
) -> QuestionOut:
    question = await create_question(
        session, request.text, role=request.role, is_active=request.is_active
    )
    return QuestionOut.model_validate(question)


@router.patch("/questions/{question_id}/role", response_model=QuestionOut)
async def set_question_role(
    question_id: int,
    request: RoleChange,
    session: AsyncSession = Depends(get_session),
) -> QuestionOut:
    """Move a question between a core role and the rotating queue."""
    question = await change_question_role(session, question_id, request.role)
    return QuestionOut.model_validate(question)


@router.patch("/questions/{question_id}", response_model=QuestionOut)
async def edit_question(
    question_id: int,
    request: QuestionUpdate,
    session: AsyncSession = Depends(get_session),
) -> QuestionOut:
    """Change a question's text and/or activation."""
    question = await get_question(session, question_id)
    if request.text is not None:
        question = await update_question_text(session, question_id, request.text)
    if request.is_active is not None:
        question = await set_question_active(session, question_id, request.is_active)
    return QuestionOut.model_validate(question)


@router.post("/questions/reorder", response_model=list[QuestionOut])
async def reorder_questions(
    request: ReorderRequest,
    session: AsyncSession = Depends(get_session),
) -> list[QuestionOut]:
    questions = await reorder_rotation_queue(session, request.question_ids)
    return [QuestionOut.model_validate(q) for q in questions]


@router.post("/users", response_model=UserOut, status_code=201)
async def add_user(
    request: UserCreate,
    session: AsyncSession = Depends(get_session),
) -> UserOut:
    """Register a user; check-ins otherwise create users from their Slack profile."""
    manager_id = None
    if request.manager_id:
        manager = await get_user_by_handle(session, request.manager_id)
        if manager is None:
            raise NotFoundError(f"Manager {request.manager_id} not found")
        manager_id = manager.id

    user = await create_user(
        session,
        request.user_id,
        display_name=request.display_name,
        email=request.email,
        timezone=request.timezone,
        manager_id=manager_id,
    )
    return UserOut.model_validate(user)


@router.post("/users/{user_id}/deactivate", response_model=UserOut)
async def remove_user(
    user_id: str,
    session: AsyncSession = Depends(get_session),
) -> UserOut:
    """Stop scheduling check-ins for a user; their history is kept."""
    user = await deactivate_user(session, user_id)
    logger.info(f"Deactivated user {user_id}")
    return UserOut.model_validate(user)


@router.post("/trigger-checkin", response_model=TriggerResponse)
async def trigger_checkin(request: TriggerRequest, http_request: Request) -> TriggerResponse:
    """Send this week's check-in to one user now, replacing any live session."""
    engine = getattr(http_request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Slack bot is not running in this process")

    result = await engine.launch(request.user_id, request.workspace_id)
    logger.info(f"Admin triggered check-in for {request.user_id}: {result.status}")
    return TriggerResponse(status=result.status, check_in_id=result.check_in_id)


@router.post("/tick")
async def run_tick(http_request: Request) -> dict[str, Any]:
    """Run one scheduler tick now and report what it did."""
    scheduler = getattr(http_request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler is not running in this process")

    report = await scheduler.tick()
    return asdict(report)
