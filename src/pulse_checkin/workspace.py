"""Per-workspace schedule configuration and the rotating-question offset."""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_checkin.config import settings
from pulse_checkin.db.models import WorkspaceConfig
from pulse_checkin.exceptions import NotFoundError, ValidationError
from pulse_checkin.timeutils import normalize_weekday, parse_time_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleConfig:
    """Immutable snapshot of a workspace's schedule, taken once per tick."""

    workspace_id: str
    check_in_day: str
    check_in_time: str
    reminder_times: tuple[str, ...]
    rotation_offset: int

    @classmethod
    def from_model(cls, config: WorkspaceConfig) -> "ScheduleConfig":
        return cls(
            workspace_id=config.slack_workspace_id,
            check_in_day=config.check_in_day,
            check_in_time=config.check_in_time,
            reminder_times=tuple(config.reminder_times or ()),
            rotation_offset=config.rotation_offset,
        )


def validate_reminder_times(reminder_times: list[str]) -> list[str]:
    """Check reminder slots parse and are far enough apart to be told apart.

    A tick matches a slot within the tolerance on either side, so two slots
    closer than twice the tolerance would be claimed by the same tick and the
    later one skipped.
    """
    if not isinstance(reminder_times, (list, tuple)):
        raise ValidationError("reminder_times must be an array")
    minutes = []
    for value in reminder_times:
        parsed = parse_time_of_day(value)
        minutes.append(parsed.hour * 60 + parsed.minute)

    min_gap = 2 * settings.TIME_MATCH_TOLERANCE_MINUTES
    ordered = sorted(minutes)
    for earlier, later in zip(ordered, ordered[1:]):
        if later - earlier <= min_gap:
            raise ValidationError(
                f"Reminder times must be more than {min_gap} minutes apart "
                f"({', '.join(reminder_times)})"
            )
    return [value.strip() for value in reminder_times]


async def get_workspace_config(
    session: AsyncSession, workspace_id: str | None = None, create: bool = True
) -> WorkspaceConfig:
    """Load a workspace's config, creating the default one on first use."""
    workspace_id = workspace_id or settings.SLACK_WORKSPACE_ID
    result = await session.execute(
        select(WorkspaceConfig).where(WorkspaceConfig.slack_workspace_id == workspace_id)
    )
    config = result.scalar_one_or_none()
    if config is not None:
        return config
    if not create:
        raise NotFoundError(f"No configuration for workspace {workspace_id}")

    config = WorkspaceConfig(
        slack_workspace_id=workspace_id,
        check_in_day=normalize_weekday(settings.DEFAULT_CHECK_IN_DAY),
        check_in_time=settings.DEFAULT_CHECK_IN_TIME,
        reminder_times=settings.default_reminder_time_list,
        rotation_offset=0,
    )
    session.add(config)
    await session.commit()
    await session.refresh(config)
    logger.info(f"Created default config for workspace {workspace_id}")
    return config


async def load_schedule_config(
    session: AsyncSession, workspace_id: str | None = None
) -> ScheduleConfig:
    return ScheduleConfig.from_model(await get_workspace_config(session, workspace_id))


async def update_workspace_config(
    session: AsyncSession,
    workspace_id: str | None = None,
    check_in_day: str | None = None,
    check_in_time: str | None = None,
    reminder_times: list[str] | None = None,
) -> WorkspaceConfig:
    """Update schedule fields; all values are validated before anything changes."""
    day = normalize_weekday(check_in_day) if check_in_day else None
    if check_in_time:
        parse_time_of_day(check_in_time)
    times = validate_reminder_times(reminder_times) if reminder_times is not None else None

    config = await get_workspace_config(session, workspace_id)
    if day:
        config.check_in_day = day
    if check_in_time:
        config.check_in_time = check_in_time.strip()
    if times is not None:
        config.reminder_times = times
    await session.commit()
    await session.refresh(config)
    logger.info(f"Updated workspace config: {config!r}")
    return config


async def advance_rotation_offset(session: AsyncSession, workspace_id: str | None = None) -> int:
    """Move the shared rotating-question offset forward by one."""
    config = await get_workspace_config(session, workspace_id)
    result = await session.execute(
        update(WorkspaceConfig)
        .where(WorkspaceConfig.id == config.id)
        .values(rotation_offset=WorkspaceConfig.rotation_offset + 1, updated_at=func.now())
        .returning(WorkspaceConfig.rotation_offset)
    )
    offset = result.scalar_one()
    await session.commit()
    await session.refresh(config)
    logger.info(f"Rotation offset for {config.slack_workspace_id} advanced to {offset}")
    return offset


async def advance_rotation_for_week(
    session: AsyncSession, week_start: date, workspace_id: str | None = None
) -> bool:
    """Advance the rotation offset once for the week starting ``week_start``.

    The first call for a workspace only records the week. Later calls advance
    when a new week has begun; repeated calls within a week are no-ops.

    Returns:
        True if the offset was advanced
    """
    config = await get_workspace_config(session, workspace_id)
    if config.last_rotated_week is None:
        await session.execute(
            update(WorkspaceConfig)
            .where(WorkspaceConfig.id == config.id, WorkspaceConfig.last_rotated_week.is_(None))
            .values(last_rotated_week=week_start)
        )
        await session.commit()
        await session.refresh(config)
        return False

    result = await session.execute(
        update(WorkspaceConfig)
        .where(
            WorkspaceConfig.id == config.id,
            WorkspaceConfig.last_rotated_week < week_start,
        )
        .values(
            rotation_offset=WorkspaceConfig.rotation_offset + 1,
            last_rotated_week=week_start,
            updated_at=func.now(),
        )
    )
    await session.commit()
    await session.refresh(config)
    advanced = result.rowcount == 1
    if advanced:
        logger.info(f"Rotated to next question for week of {week_start}")
    return advanced


def rotation_offset_for_week(config: WorkspaceConfig, week_start: date) -> int:
    """Offset that applies to the local week starting ``week_start``.

    Rotation advances on the UTC Monday, while check-ins are keyed by each
    user's local week. A local week can sit one week either side of the last
    rotated UTC week; shifting by that difference gives every local week a
    single offset.
    """
    if config.last_rotated_week is None:
        return config.rotation_offset
    weeks = (week_start - config.last_rotated_week).days // 7
    return config.rotation_offset + max(-1, min(1, weeks))
