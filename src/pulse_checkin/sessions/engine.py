"""Session engine: turns a sequence of DM answers into a completed check-in.

Flow per user:
    launch -> rating (button) -> went_well -> didnt_go_well -> rotating -> write-through

Nothing reaches the database until the last answer arrives; the write-through
stores the core answers, completion timestamp and rotating response together
and then drops the session.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_checkin.checkins.store import (
    complete_check_in,
    find_check_in,
    upsert_check_in,
    validate_rating,
)
from pulse_checkin.config import settings
from pulse_checkin.db.database import async_session_maker
from pulse_checkin.db.models import CORE_ROLES, QuestionRole
from pulse_checkin.exceptions import CheckinConfigurationError, DeliveryError, ValidationError
from pulse_checkin.questions.catalog import (
    get_core_question_by_role,
    get_rotating_question_at_offset,
)
from pulse_checkin.sessions.session import (
    CheckinSession,
    QuestionRef,
    SessionQuestions,
    SessionStore,
    Step,
)
from pulse_checkin.slack.messages import FALLBACK_ROTATING_QUESTION, RATING_CHOICES, quote_answer
from pulse_checkin.slack.messenger import Messenger
from pulse_checkin.timeutils import get_week_start, local_now, utcnow
from pulse_checkin.users import UserDirectory
from pulse_checkin.workspace import get_workspace_config, rotation_offset_for_week

logger = logging.getLogger(__name__)

COMPLETION_MESSAGE = (
    "*All done! Thanks for completing your weekly check-in.*\n\nHave a great rest of your week!"
)
SAVE_FAILED_MESSAGE = (
    "Sorry, there was an error saving your responses. Please send your last answer again."
)


@dataclass(frozen=True)
class LaunchResult:
    STARTED = "started"
    ALREADY_COMPLETED = "already_completed"
    IN_PROGRESS = "in_progress"

    status: str
    check_in_id: int

    @property
    def success(self) -> bool:
        return self.status == self.STARTED


class SessionEngine:
    """Owns the per-user survey state machine."""

    def __init__(
        self,
        messenger: Messenger,
        directory: UserDirectory,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        store: SessionStore | None = None,
        session_expiry_hours: int | None = None,
    ):
        self.messenger = messenger
        self.directory = directory
        self.session_factory = session_factory
        self.store = store if store is not None else SessionStore()
        self.session_expiry = timedelta(
            hours=session_expiry_hours or settings.SESSION_EXPIRY_HOURS
        )

    def has_session(self, user_handle: str, check_in_id: int | None = None) -> bool:
        session = self.store.get(user_handle)
        if session is None:
            return False
        return check_in_id is None or session.check_in_id == check_in_id

    async def _resolve_questions(
        self, db: AsyncSession, workspace_id: str, week_start: date
    ) -> SessionQuestions:
        core = {role: await get_core_question_by_role(db, role) for role in CORE_ROLES}
        missing = [role.value for role, question in core.items() if question is None]
        if missing:
            raise CheckinConfigurationError(
                "System is missing required core questions "
                f"({', '.join(missing)}). Please contact administrator.",
                missing_roles=missing,
            )

        # Read fresh each launch; the scheduler may have rotated since the last one
        config = await get_workspace_config(db, workspace_id)
        offset = rotation_offset_for_week(config, week_start)
        rotating = await get_rotating_question_at_offset(db, offset)
        return SessionQuestions(
            rating=QuestionRef.from_model(core[QuestionRole.RATING]),
            went_well=QuestionRef.from_model(core[QuestionRole.WENT_WELL]),
            didnt_go_well=QuestionRef.from_model(core[QuestionRole.DIDNT_GO_WELL]),
            rotating=QuestionRef.from_model(rotating) if rotating else None,
        )

    async def launch(
        self,
        user_handle: str,
        workspace_id: str | None = None,
        now: datetime | None = None,
        replace: bool = True,
    ) -> LaunchResult:
        """Start this week's check-in for a user.

        Args:
            user_handle: Slack user ID
            workspace_id: Workspace whose rotation offset picks the rotating question
            now: Evaluation instant (defaults to current UTC time)
            replace: Replace a live session for the same check-in. When False,
                an existing session is left alone and IN_PROGRESS is returned.

        Raises:
            CheckinConfigurationError: a core question is missing; nothing is sent
        """
        now = now or utcnow()
        workspace_id = workspace_id or settings.SLACK_WORKSPACE_ID

        async with self.session_factory() as db:
            user = await self.directory.resolve(db, user_handle)
            week_start = get_week_start(local_now(user.timezone, now))

            existing = await find_check_in(db, user.id, week_start)
            if existing is not None and existing.is_completed:
                logger.info(f"User {user_handle} already completed check-in for week {week_start}")
                return LaunchResult(LaunchResult.ALREADY_COMPLETED, existing.id)

            try:
                questions = await self._resolve_questions(db, workspace_id, week_start)
            except CheckinConfigurationError as e:
                logger.error(f"Cannot send check-in to {user_handle}: {e}")
                raise

            check_in = await upsert_check_in(db, user.id, week_start)

        if not replace and self.has_session(user_handle, check_in.id):
            logger.debug(f"Check-in already in progress for {user_handle}")
            return LaunchResult(LaunchResult.IN_PROGRESS, check_in.id)

        session = CheckinSession(
            user_handle=user_handle,
            check_in_id=check_in.id,
            user_id=user.id,
            questions=questions,
            started_at=now,
            last_activity_at=now,
        )
        previous = self.store.put(session)
        if previous is not None:
            logger.warning(
                f"Replaced active session for {user_handle} "
                f"(was at step {previous.step.value}, check-in {previous.check_in_id})"
            )

        await self._send_prompt(session)
        logger.info(f"Check-in {check_in.id} sent to {user_handle}")
        return LaunchResult(LaunchResult.STARTED, check_in.id)

    async def submit_rating(self, user_handle: str, value: int | str) -> bool:
        """Handle a rating button click.

        Returns:
            True if the rating was accepted and the session advanced
        """
        session = self.store.get(user_handle)
        if session is None:
            logger.debug(f"Rating from {user_handle} with no active check-in")
            return False

        async with session.lock:
            if self.store.get(user_handle) is not session:
                return False
            if session.step is not Step.RATING:
                logger.info(f"Ignoring rating from {user_handle} at step {session.step.value}")
                return False
            try:
                rating = validate_rating(value)
            except ValidationError as e:
                logger.warning(f"Rejected rating from {user_handle}: {e}")
                return False

            session.record(rating)
            await self._send_prompt(session, preface=f"You rated your week a *{rating}/5*")
        return True

    async def submit_text(self, user_handle: str, text: str) -> bool:
        """Handle a free-text DM.

        Messages from users without an active check-in are ordinary chat and
        are ignored.

        Returns:
            True if the text was taken as an answer
        """
        session = self.store.get(user_handle)
        if session is None:
            return False
        text = (text or "").strip()
        if not text:
            return False

        async with session.lock:
            if self.store.get(user_handle) is not session:
                return False

            step = session.step
            if step is Step.RATING:
                logger.debug(f"Ignoring text from {user_handle}; waiting for a rating click")
                return False
            if step is Step.WENT_WELL:
                session.record(text)
                await self._send_prompt(session, preface=quote_answer(text))
                return True
            if step is Step.DIDNT_GO_WELL:
                session.record(text)
                await self._send_prompt(session, preface="Thanks for sharing.")
                return True
            if step is Step.ROTATING:
                session.record(text)
                return await self._complete(session)
            raise ValueError(f"Unhandled step: {step}")

    async def _complete(self, session: CheckinSession) -> bool:
        rotating = session.questions.rotating
        try:
            async with self.session_factory() as db:
                await complete_check_in(
                    db,
                    session.check_in_id,
                    rating=session.answers[Step.RATING],
                    went_well=session.answers[Step.WENT_WELL],
                    didnt_go_well=session.answers[Step.DIDNT_GO_WELL],
                    rotating_question_id=rotating.id if rotating else None,
                    rotating_answer=session.answers[Step.ROTATING],
                )
        except SQLAlchemyError as e:
            # Session stays at the last step so the user can resend
            logger.error(f"Error saving check-in {session.check_in_id}: {e}")
            await self._send_safely(session.user_handle, SAVE_FAILED_MESSAGE)
            return False

        self.store.remove(session.user_handle, session)
        logger.info(f"Check-in completed for user {session.user_handle}")
        await self._send_safely(session.user_handle, COMPLETION_MESSAGE)
        return True

    async def _send_prompt(self, session: CheckinSession, preface: str | None = None) -> None:
        step = session.step
        question = session.questions.for_step(step)
        text = question.text if question else FALLBACK_ROTATING_QUESTION
        try:
            await self.messenger.send_question_prompt(
                session.user_handle,
                QuestionRole(step.value),
                text,
                choices=RATING_CHOICES if step is Step.RATING else None,
                number=step.number,
                preface=preface,
            )
        except DeliveryError as e:
            logger.error(f"Failed to send {step.value} question to {session.user_handle}: {e}")

    async def _send_safely(self, user_handle: str, text: str) -> None:
        try:
            await self.messenger.send_plain_message(user_handle, text)
        except DeliveryError as e:
            logger.error(f"Failed to message {user_handle}: {e}")

    def expire_idle_sessions(self, now: datetime | None = None) -> list[CheckinSession]:
        """Remove sessions idle longer than the configured expiry."""
        expired = self.store.expire_idle(self.session_expiry, now)
        for session in expired:
            logger.info(
                f"Expired idle check-in session for {session.user_handle} "
                f"at step {session.step.value}"
            )
        return expired
