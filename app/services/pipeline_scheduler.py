"""Cron scheduling for recurring pipeline runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from apscheduler.triggers.cron import CronTrigger

from app.repositories.pipeline_run_repository import PipelineRunStore
from app.repositories.pipeline_schedule_repository import PipelineScheduleStore
from app.schemas.pipeline import PipelineScheduleResponse
from app.services.pipeline_task_manager import PipelineTaskManager, create_and_enqueue_run

logger = logging.getLogger(__name__)

# Crontab numbering: 0 and 7 are Sunday. APScheduler numbers Monday as 0, so
# the day-of-week field is always handed over as weekday names.
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _crontab_weekday(token: str) -> int:
    value = token.strip().lower()
    if value in _CRONTAB_WEEKDAYS:
        return _CRONTAB_WEEKDAYS.index(value)
    if value.isdigit() and 0 <= int(value) <= 7:
        return int(value)
    raise ValueError(f"Invalid day of week: {token!r}")


def crontab_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field into APScheduler weekday names."""
    field = field.strip()
    if field in ("*", "?"):
        return "*"

    days: set[int] = set()
    for element in field.split(","):
        base, has_step, step_text = element.partition("/")
        step = 1
        if has_step:
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"Invalid day of week step: {element!r}")
            step = int(step_text)

        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            start, _, end = base.partition("-")
            first, last = _crontab_weekday(start), _crontab_weekday(end)
        else:
            first = _crontab_weekday(base)
            last = 7 if has_step else first
        if first > last:
            raise ValueError(f"Invalid day of week range: {element!r}")

        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(_CRONTAB_WEEKDAYS[day] for day in sorted(days))


def build_trigger(cron: str, tz: str = "UTC") -> CronTrigger:
    """Parse a five-field crontab expression in the given timezone.

    Raises ValueError for an invalid expression or unknown timezone.
    """
    fields = cron.split()
    if len(fields) != 5:
        raise ValueError(f"Wrong number of fields; got {len(fields)}, expected 5")
    minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=crontab_day_of_week(day_of_week),
            timezone=tz,
        )
    except LookupError as e:
        raise ValueError(f"Unknown timezone: {tz}") from e


def next_fire_time(cron: str, tz: str, now: datetime) -> datetime | None:
    return build_trigger(cron, tz).get_next_fire_time(None, now)


class PipelineScheduler:
    """Fires due schedules by creating and enqueueing fresh runs.

    A firing is claimed with a conditional update on next_run_at, so several
    worker processes can poll the same table without double-submitting.
    """

    def __init__(
        self,
        *,
        schedule_store: PipelineScheduleStore,
        run_store: PipelineRunStore,
        manager: PipelineTaskManager,
        poll_seconds: float = 30.0,
    ) -> None:
        self.schedule_store = schedule_store
        self.run_store = run_store
        self.manager = manager
        self.poll_seconds = max(1.0, float(poll_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Fire every due schedule once; returns the created run ids."""
        now = now or datetime.now(timezone.utc)
        created: list[str] = []
        for schedule in await self.schedule_store.due(now):
            run_id = await self._fire(schedule, now)
            if run_id is not None:
                created.append(run_id)
        return created

    async def _fire(self, schedule: PipelineScheduleResponse, now: datetime) -> str | None:
        if schedule.next_run_at is None:
            return None
        try:
            upcoming = next_fire_time(schedule.cron, schedule.timezone, now)
        except ValueError:
            logger.warning(
                "Disabling schedule with invalid cron",
                extra={"schedule_key": schedule.key, "cron": schedule.cron},
            )
            upcoming = None

        claimed = await self.schedule_store.claim_firing(
            schedule.key,
            expected_next_run_at=schedule.next_run_at,
            next_run_at=upcoming,
            fired_at=now,
        )
        if not claimed:
            return None

        run = await create_and_enqueue_run(
            self.run_store,
            self.manager,
            schedule.config,
            schedule_key=schedule.key,
        )
        logger.info(
            "Scheduled pipeline run submitted",
            extra={
                "schedule_key": schedule.key,
                "run_id": run.id,
                "next_run_at": upcoming.isoformat() if upcoming else None,
            },
        )
        return run.id

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name="pipeline-scheduler")
        logger.info("Pipeline scheduler started", extra={"poll_seconds": self.poll_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Pipeline scheduler stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Pipeline scheduler tick failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                continue
