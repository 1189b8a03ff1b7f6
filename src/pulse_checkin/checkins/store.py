"""Check-in record store.

One CheckIn row per (user, week start date). Writes commit immediately; the
completion write (core answers + rotating response) is a single transaction.
"""

import logging
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_checkin.db.models import CheckIn, Response, User
from pulse_checkin.exceptions import NotFoundError, ValidationError
from pulse_checkin.timeutils import utcnow

logger = logging.getLogger(__name__)

RATING_MIN = 1
RATING_MAX = 5


def validate_rating(value: int | str) -> int:
    """Parse a rating and check it is within 1-5."""
    try:
        rating = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Rating must be a number, got {value!r}") from None
    if not RATING_MIN <= rating <= RATING_MAX:
        raise ValidationError(f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {rating}")
    return rating


async def find_check_in(session: AsyncSession, user_id: int, week_start: date) -> CheckIn | None:
    result = await session.execute(
        select(CheckIn).where(CheckIn.user_id == user_id, CheckIn.week_start_date == week_start)
    )
    return result.scalar_one_or_none()


async def get_check_in(session: AsyncSession, check_in_id: int) -> CheckIn:
    check_in = await session.get(CheckIn, check_in_id)
    if check_in is None:
        raise NotFoundError(f"Check-in {check_in_id} not found")
    return check_in


async def upsert_check_in(session: AsyncSession, user_id: int, week_start: date) -> CheckIn:
    """Get or create the check-in for a user's week.

    Calling this twice for the same week returns the same row with a fresh
    ``updated_at``. A concurrent insert losing the unique-key race falls back
    to the row that won.
    """
    existing = await find_check_in(session, user_id, week_start)
    if existing is None:
        check_in = CheckIn(user_id=user_id, week_start_date=week_start, reminder_count=0)
        session.add(check_in)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.debug(f"Check-in for user {user_id} week {week_start} created concurrently")
        else:
            await session.refresh(check_in)
            return check_in
        existing = await find_check_in(session, user_id, week_start)

    await session.execute(
        update(CheckIn).where(CheckIn.id == existing.id).values(updated_at=func.now())
    )
    await session.commit()
    await session.refresh(existing)
    return existing


async def complete_check_in(
    session: AsyncSession,
    check_in_id: int,
    rating: int,
    went_well: str,
    didnt_go_well: str,
    rotating_question_id: int | None = None,
    rotating_answer: str | None = None,
) -> CheckIn:
    """Record all answers and mark the check-in complete.

    The core answers, completion timestamp and the rotating-question response
    are committed together; on failure nothing is written.
    """
    rating = validate_rating(rating)
    try:
        check_in = await get_check_in(session, check_in_id)
        check_in.rating = rating
        check_in.went_well = went_well
        check_in.didnt_go_well = didnt_go_well
        check_in.completed_at = utcnow()

        if rotating_question_id is not None:
            result = await session.execute(
                select(Response).where(
                    Response.check_in_id == check_in_id,
                    Response.question_id == rotating_question_id,
                )
            )
            response = result.scalar_one_or_none()
            if response is None:
                session.add(
                    Response(
                        check_in_id=check_in_id,
                        question_id=rotating_question_id,
                        response_text=rotating_answer or "",
                    )
                )
            else:
                response.response_text = rotating_answer or ""

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await session.refresh(check_in)
    logger.info(f"Check-in {check_in_id} completed (rating={rating})")
    return check_in


async def insert_response(
    session: AsyncSession, check_in_id: int, question_id: int, text: str
) -> Response:
    response = Response(check_in_id=check_in_id, question_id=question_id, response_text=text)
    session.add(response)
    await session.commit()
    await session.refresh(response)
    return response


async def get_responses_for_check_in(session: AsyncSession, check_in_id: int) -> list[Response]:
    result = await session.execute(
        select(Response).where(Response.check_in_id == check_in_id).order_by(Response.id)
    )
    return list(result.scalars().all())


async def increment_reminder_count(session: AsyncSession, check_in_id: int) -> int:
    """Atomically add one to the reminder counter and return the new value."""
    result = await session.execute(
        update(CheckIn)
        .where(CheckIn.id == check_in_id)
        .values(reminder_count=CheckIn.reminder_count + 1, updated_at=func.now())
        .returning(CheckIn.reminder_count)
    )
    new_count = result.scalar_one_or_none()
    await session.commit()
    if new_count is None:
        raise NotFoundError(f"Check-in {check_in_id} not found")
    return new_count


async def claim_reminder_slot(session: AsyncSession, check_in_id: int, slot_index: int) -> bool:
    """Claim reminder slot ``slot_index`` for an incomplete check-in.

    The guard is evaluated against the stored row, not a cached count: the
    update only applies while ``reminder_count <= slot_index`` and the check-in
    is still incomplete, and it leaves the counter at ``slot_index + 1``. Two
    ticks racing for the same slot cannot both win.

    Returns:
        True if this caller owns the slot and should send the reminder
    """
    result = await session.execute(
        update(CheckIn)
        .where(
            CheckIn.id == check_in_id,
            CheckIn.reminder_count <= slot_index,
            CheckIn.completed_at.is_(None),
        )
        .values(reminder_count=slot_index + 1, updated_at=func.now())
    )
    await session.commit()
    return result.rowcount == 1


async def list_active_users(session: AsyncSession) -> list[User]:
    result = await session.execute(
        select(User).where(User.is_active.is_(True)).order_by(User.display_name, User.id)
    )
    return list(result.scalars().all())
