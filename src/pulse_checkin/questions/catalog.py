"""Question catalog: core-role lookups and the rotating question queue.

Invariants maintained here:
- exactly one active question per core role (rating, went_well, didnt_go_well)
- active rotating questions have queue positions 0..n-1 with no gaps
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_checkin.db.models import CORE_ROLES, Question, QuestionRole
from pulse_checkin.exceptions import NotFoundError, QuestionRoleError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CORE_QUESTIONS = {
    QuestionRole.RATING: "How would you rate your week?",
    QuestionRole.WENT_WELL: "What went well this week?",
    QuestionRole.DIDNT_GO_WELL: "What didn't go so well this week?",
}

DEFAULT_ROTATING_QUESTIONS = [
    "What can we do to support you better?",
    "Is anything blocking you right now?",
    "Who on the team deserves a shout-out this week?",
    "What are you looking forward to next week?",
    "Did you learn anything new this week?",
]


def parse_role(value: str | QuestionRole) -> QuestionRole:
    """Convert a role name to QuestionRole."""
    try:
        return QuestionRole(value)
    except ValueError:
        valid = ", ".join(r.value for r in QuestionRole)
        raise ValidationError(f"Invalid question type {value!r}. Must be one of: {valid}") from None


async def get_question(session: AsyncSession, question_id: int) -> Question:
    question = await session.get(Question, question_id)
    if question is None:
        raise NotFoundError(f"Question {question_id} not found")
    return question


async def list_questions(session: AsyncSession, active_only: bool = True) -> list[Question]:
    """List questions, core roles first, then the rotating queue in order."""
    stmt = select(Question)
    if active_only:
        stmt = stmt.where(Question.is_active.is_(True))
    result = await session.execute(stmt.order_by(Question.queue_position, Question.id))
    questions = list(result.scalars().all())
    return sorted(questions, key=lambda q: (not q.is_core, q.queue_position is None))


async def get_core_question_by_role(
    session: AsyncSession, role: str | QuestionRole
) -> Question | None:
    """Get the active question for a core role."""
    role = parse_role(role)
    if not role.is_core:
        raise ValidationError(f"{role.value} is not a core question type")
    result = await session.execute(
        select(Question)
        .where(Question.role == role, Question.is_active.is_(True))
        .order_by(Question.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_rotating_questions(session: AsyncSession) -> list[Question]:
    """Active rotating questions in queue order."""
    result = await session.execute(
        select(Question)
        .where(Question.role == QuestionRole.ROTATING, Question.is_active.is_(True))
        .order_by(Question.queue_position, Question.id)
    )
    return list(result.scalars().all())


async def get_rotating_question_at_offset(session: AsyncSession, offset: int) -> Question | None:
    """Get the rotating question for a rotation offset.

    The offset grows without bound; it wraps against the number of active
    rotating questions at lookup time.
    """
    queue = await list_rotating_questions(session)
    if not queue:
        return None
    return queue[offset % len(queue)]


async def _count_active_in_role(
    session: AsyncSession, role: QuestionRole, exclude_id: int | None = None
) -> int:
    stmt = select(func.count(Question.id)).where(
        Question.role == role, Question.is_active.is_(True)
    )
    if exclude_id is not None:
        stmt = stmt.where(Question.id != exclude_id)
    return (await session.execute(stmt)).scalar_one()


def _occupied_error(role: QuestionRole) -> QuestionRoleError:
    return QuestionRoleError(
        f"A question of type '{role.value}' already exists. "
        "Only one active question per core type is allowed.",
        role=role.value,
        reason=QuestionRoleError.OCCUPIED,
    )


def _empty_error(role: QuestionRole) -> QuestionRoleError:
    return QuestionRoleError(
        f"At least one active question of type '{role.value}' must exist.",
        role=role.value,
        reason=QuestionRoleError.EMPTY,
    )


async def _compact_queue(session: AsyncSession) -> None:
    """Renumber active rotating questions 0..n-1, keeping their order."""
    for position, question in enumerate(await list_rotating_questions(session)):
        question.queue_position = position


async def _next_queue_position(session: AsyncSession) -> int:
    return await _count_active_in_role(session, QuestionRole.ROTATING)


async def validate_role_change(
    session: AsyncSession, question_id: int, new_role: str | QuestionRole
) -> Question:
    """Check that moving a question to ``new_role`` keeps the core roles intact.

    Raises:
        QuestionRoleError: target core role is already held, or the move would
            leave the question's current core role without an active question.
    """
    question = await get_question(session, question_id)
    new_role = parse_role(new_role)
    if new_role == question.role:
        return question

    if new_role.is_core and await _count_active_in_role(session, new_role, exclude_id=question.id):
        raise _occupied_error(new_role)

    if question.is_core and question.is_active:
        if not await _count_active_in_role(session, question.role, exclude_id=question.id):
            raise _empty_error(question.role)

    return question


async def change_question_role(
    session: AsyncSession, question_id: int, new_role: str | QuestionRole
) -> Question:
    """Move a question between core roles and the rotating queue."""
    new_role = parse_role(new_role)
    question = await validate_role_change(session, question_id, new_role)
    if question.role == new_role:
        return question

    old_role = question.role
    position = None
    if new_role == QuestionRole.ROTATING and question.is_active:
        position = await _next_queue_position(session)
    question.role = new_role
    question.queue_position = position
    await session.flush()
    if old_role == QuestionRole.ROTATING:
        await _compact_queue(session)

    await session.commit()
    await session.refresh(question)
    logger.info(f"Question {question.id} changed from {old_role.value} to {new_role.value}")
    return question


async def create_question(
    session: AsyncSession,
    text: str,
    role: str | QuestionRole = QuestionRole.ROTATING,
    is_active: bool = True,
) -> Question:
    """Create a question. Rotating questions are appended to the queue."""
    role = parse_role(role)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Question text must not be empty")
    if role.is_core and is_active and await _count_active_in_role(session, role):
        raise _occupied_error(role)

    question = Question(text=text, role=role, is_active=is_active)
    if role == QuestionRole.ROTATING and is_active:
        question.queue_position = await _next_queue_position(session)
    session.add(question)
    await session.commit()
    await session.refresh(question)
    logger.info(f"Created {role.value} question {question.id}")
    return question


async def update_question_text(session: AsyncSession, question_id: int, text: str) -> Question:
    question = await get_question(session, question_id)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Question text must not be empty")
    question.text = text
    await session.commit()
    await session.refresh(question)
    return question


async def set_question_active(session: AsyncSession, question_id: int, active: bool) -> Question:
    """Activate or deactivate a question without breaking catalog invariants."""
    question = await get_question(session, question_id)
    if question.is_active == active:
        return question

    if question.is_core:
        if active and await _count_active_in_role(session, question.role, exclude_id=question.id):
            raise _occupied_error(question.role)
        if not active and not await _count_active_in_role(
            session, question.role, exclude_id=question.id
        ):
            raise _empty_error(question.role)

    if question.role == QuestionRole.ROTATING and active:
        question.queue_position = await _next_queue_position(session)
    question.is_active = active
    if question.role == QuestionRole.ROTATING and not active:
        question.queue_position = None
        await session.flush()
        await _compact_queue(session)

    await session.commit()
    await session.refresh(question)
    return question


async def reorder_rotation_queue(session: AsyncSession, question_ids: list[int]) -> list[Question]:
    """Rewrite the rotating queue order in a single transaction.

    ``question_ids`` must list every active rotating question exactly once.
    """
    if len(set(question_ids)) != len(question_ids):
        raise ValidationError("questionIds must not contain duplicates")

    queue = await list_rotating_questions(session)
    by_id = {q.id: q for q in queue}
    if set(question_ids) != set(by_id):
        raise ValidationError(
            "questionIds must contain exactly the active rotating questions "
            f"(expected {sorted(by_id)}, got {sorted(question_ids)})"
        )

    try:
        for position, question_id in enumerate(question_ids):
            by_id[question_id].queue_position = position
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Rotation queue reordered: {question_ids}")
    return await list_rotating_questions(session)


async def seed_default_questions(session: AsyncSession) -> int:
    """Insert the default catalog into an empty questions table.

    Returns:
        Number of questions created (0 if any question already exists)
    """
    existing = (await session.execute(select(func.count(Question.id)))).scalar_one()
    if existing:
        return 0

    for role in CORE_ROLES:
        session.add(Question(text=DEFAULT_CORE_QUESTIONS[role], role=role, is_active=True))
    for position, text in enumerate(DEFAULT_ROTATING_QUESTIONS):
        session.add(
            Question(
                text=text,
                role=QuestionRole.ROTATING,
                is_active=True,
                queue_position=position,
            )
        )
    await session.commit()
    created = len(CORE_ROLES) + len(DEFAULT_ROTATING_QUESTIONS)
    logger.info(f"Seeded {created} default questions")
    return created
