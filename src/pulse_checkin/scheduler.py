"""Periodic scheduler: launches check-ins and sends reminders in each user's timezone.

Each tick:
1. Load the workspace schedule (a failure here aborts the tick).
2. Advance the rotating question once per calendar week.
3. Expire idle sessions.
4. Evaluate every active user concurrently (bounded); one user's failure
   never stops the others.

Ticks run on an APScheduler interval trigger so the cadence stays fixed
whatever a tick costs; a Monday cron job advances the rotation as well.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_checkin.checkins.store import claim_reminder_slot, find_check_in, list_active_users
from pulse_checkin.config import settings
from pulse_checkin.db.database import async_session_maker
from pulse_checkin.exceptions import DeliveryError
from pulse_checkin.sessions.engine import LaunchResult, SessionEngine
from pulse_checkin.slack.messenger import Messenger
from pulse_checkin.timeutils import (
    get_week_start,
    is_day_in_timezone,
    is_time_match,
    local_now,
    next_weekday,
    utcnow,
)
from pulse_checkin.workspace import ScheduleConfig, advance_rotation_for_week, load_schedule_config

logger = logging.getLogger(__name__)

LAUNCHED = "launched"
ALREADY_COMPLETED = "already_completed"
IN_PROGRESS = "in_progress"
REMINDED = "reminded"
SKIPPED = "skipped"
FAILED = "failed"

TICK_JOB_ID = "pulse-checkin-tick"
ROTATION_JOB_ID = "pulse-checkin-rotation"


@dataclass(frozen=True)
class UserSnapshot:
    """The fields a tick needs, detached from the ORM session."""

    id: int
    slack_user_id: str
    display_name: str
    timezone: str
    manager_id: int | None = None


@dataclass
class TickReport:
    """Per-tick outcome counts."""

    launched: int = 0
    already_completed: int = 0
    in_progress: int = 0
    reminded: int = 0
    failed: int = 0
    skipped: int = 0
    rotated: bool = False
    expired_sessions: int = 0

    def record(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)


class Scheduler:
    """Decides, per tick, who gets a check-in or a reminder right now."""

    def __init__(
        self,
        engine: SessionEngine,
        messenger: Messenger,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
        workspace_id: str | None = None,
        tick_minutes: int | None = None,
        concurrency: int | None = None,
        tolerance_minutes: int | None = None,
    ):
        self.engine = engine
        self.messenger = messenger
        self.session_factory = session_factory
        self.workspace_id = workspace_id or settings.SLACK_WORKSPACE_ID
        self.tick_minutes = tick_minutes or settings.SCHEDULER_TICK_MINUTES
        self.concurrency = concurrency or settings.SCHEDULER_CONCURRENCY
        self.tolerance_minutes = (
            tolerance_minutes
            if tolerance_minutes is not None
            else settings.TIME_MATCH_TOLERANCE_MINUTES
        )
        self._scheduler: AsyncIOScheduler | None = None

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run one evaluation pass over all active users."""
        now = now or utcnow()
        report = TickReport()

        async with self.session_factory() as db:
            config = await load_schedule_config(db, self.workspace_id)
            users = [
                UserSnapshot(u.id, u.slack_user_id, u.display_name, u.timezone, u.manager_id)
                for u in await list_active_users(db)
            ]

        report.rotated = await self.maybe_advance_rotation(now)
        report.expired_sessions = len(self.engine.expire_idle_sessions(now))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def process_user(user: UserSnapshot) -> None:
            async with semaphore:
                try:
                    outcome = await self.evaluate_user(user, config, now)
                except Exception as e:
                    logger.error(f"Failed to process {user.display_name} ({user.slack_user_id}): {e}")
                    outcome = FAILED
                report.record(outcome)

        await asyncio.gather(*(process_user(user) for user in users))

        logger.info(
            f"Tick complete: {len(users)} users, launched={report.launched}, "
            f"reminded={report.reminded}, failed={report.failed}, rotated={report.rotated}"
        )
        return report

    async def evaluate_user(self, user: UserSnapshot, config: ScheduleConfig, now: datetime) -> str:
        """Launch or remind a single user if their local time calls for it."""
        tz = user.timezone
        if is_day_in_timezone(config.check_in_day, tz, now):
            if not is_time_match(config.check_in_time, tz, now, self.tolerance_minutes):
                return SKIPPED
            return await self._launch(user, config, now)

        if config.reminder_times and is_day_in_timezone(next_weekday(config.check_in_day), tz, now):
            return await self._remind(user, config, now)

        return SKIPPED

    async def _launch(self, user: UserSnapshot, config: ScheduleConfig, now: datetime) -> str:
        week_start = get_week_start(local_now(user.timezone, now))
        async with self.session_factory() as db:
            check_in = await find_check_in(db, user.id, week_start)
        if check_in is not None and check_in.is_completed:
            return ALREADY_COMPLETED

        result = await self.engine.launch(
            user.slack_user_id, config.workspace_id, now=now, replace=False
        )
        if result.status == LaunchResult.STARTED:
            logger.info(f"Sent check-in to {user.display_name}")
            return LAUNCHED
        if result.status == LaunchResult.IN_PROGRESS:
            return IN_PROGRESS
        return ALREADY_COMPLETED

    async def _remind(self, user: UserSnapshot, config: ScheduleConfig, now: datetime) -> str:
        tz = user.timezone
        slots = [
            index
            for index, reminder_time in enumerate(config.reminder_times)
            if is_time_match(reminder_time, tz, now, self.tolerance_minutes)
        ]
        if not slots:
            return SKIPPED

        # Reminders go out the day after check-in day, so key by yesterday's week
        week_start = get_week_start(local_now(tz, now) - timedelta(days=1))
        async with self.session_factory() as db:
            check_in = await find_check_in(db, user.id, week_start)
            if check_in is None or check_in.is_completed:
                return SKIPPED

            for index in slots:
                if check_in.reminder_count > index:
                    continue
                if not await claim_reminder_slot(db, check_in.id, index):
                    continue

                is_final = index == len(config.reminder_times) - 1 and index > 0
                kind = "final" if is_final else "first"
                try:
                    await self.messenger.send_reminder(user.slack_user_id, kind)
                except DeliveryError as e:
                    logger.error(f"Failed to send {kind} reminder to {user.display_name}: {e}")
                    return FAILED

                if is_final and user.manager_id:
                    logger.warning(
                        f"Alert: {user.display_name} hasn't completed check-in "
                        f"(manager id {user.manager_id})"
                    )
                return REMINDED

        return SKIPPED

    async def maybe_advance_rotation(self, now: datetime | None = None) -> bool:
        """Advance the rotating question if a new calendar week has started."""
        week_start = get_week_start(now or utcnow())
        try:
            async with self.session_factory() as db:
                return await advance_rotation_for_week(db, week_start, self.workspace_id)
        except Exception as e:
            logger.error(f"Error rotating question: {e}")
            return False

    async def run_tick(self) -> None:
        """Job body for the interval trigger; a failed tick is retried on the next one."""
        try:
            await self.tick()
        except Exception as e:
            # Includes config load failures
            logger.error(f"Scheduler tick aborted: {e}", exc_info=True)

    def build_tick_trigger(self, start_date: datetime | None = None) -> IntervalTrigger:
        """Fixed-cadence trigger; fire times don't drift with tick runtime."""
        return IntervalTrigger(
            minutes=self.tick_minutes,
            start_date=start_date or utcnow(),
            timezone=timezone.utc,
        )

    def start(self) -> AsyncIOScheduler:
        """Schedule the tick and weekly rotation jobs on the running event loop."""
        if self.running:
            return self._scheduler

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            self.run_tick,
            self.build_tick_trigger(),
            id=TICK_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.tick_minutes * 60 // 2,
            next_run_time=utcnow(),
        )
        # Ticks also advance rotation, so a process that was down at midnight catches up
        self._scheduler.add_job(
            self.maybe_advance_rotation,
            CronTrigger(day_of_week="mon", hour=0, minute=0, timezone=timezone.utc),
            id=ROTATION_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            f"Scheduler started for workspace {self.workspace_id} "
            f"(tick every {self.tick_minutes} min, window ±{self.tolerance_minutes} min)"
        )
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def stop(self) -> None:
        """Shut down the job scheduler; a tick already in flight is left to finish."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")
