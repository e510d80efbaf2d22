"""Unit tests for cron schedule firing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from app.repositories.memory import InMemoryPipelineRunStore
from app.schemas.pipeline import PipelineJobInput, PipelineScheduleResponse
from app.services.pipeline_scheduler import (
    PipelineScheduler,
    build_trigger,
    crontab_day_of_week,
    next_fire_time,
)
from app.services.pipeline_task_manager import PipelineTaskManager


class _FakeQueueClient:
    def __init__(self) -> None:
        self.items: list[str] = []

    async def llen(self, key: str) -> int:
        return len(self.items)

    async def rpush(self, key: str, payload: str) -> int:
        self.items.append(payload)
        return len(self.items)

    async def blpop(self, key: str, *, timeout: int) -> tuple[str, str] | None:
        return (key, self.items.pop(0)) if self.items else None


class _ScheduleStore:
    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}

    async def upsert(self, *, key: str, cron: str, timezone: str, config: dict[str, Any], next_run_at: datetime | None) -> PipelineScheduleResponse:
        row = self.rows.setdefault(key, {"key": key, "last_run_at": None})
        row.update(cron=cron, timezone=timezone, config=config, next_run_at=next_run_at)
        return PipelineScheduleResponse.model_validate(row)

    async def delete(self, key: str) -> bool:
        return self.rows.pop(key, None) is not None

    async def list_schedules(self) -> list[PipelineScheduleResponse]:
        return [PipelineScheduleResponse.model_validate(row) for _, row in sorted(self.rows.items())]

    async def due(self, now: datetime, *, limit: int = 50) -> list[PipelineScheduleResponse]:
        rows = [row for row in self.rows.values() if row["next_run_at"] is not None and row["next_run_at"] <= now]
        rows.sort(key=lambda row: row["next_run_at"])
        return [PipelineScheduleResponse.model_validate(row) for row in rows[:limit]]

    async def claim_firing(
        self,
        key: str,
        *,
        expected_next_run_at: datetime,
        next_run_at: datetime | None,
        fired_at: datetime,
    ) -> bool:
        row = self.rows.get(key)
        if row is None or row["next_run_at"] != expected_next_run_at:
            return False
        row.update(next_run_at=next_run_at, last_run_at=fired_at)
        return True


CONFIG = PipelineJobInput(
    seed_keywords=["ap automation"],
    target_country="GB",
    competitors=["bill.com", "tipalti.com"],
    cpc_range={"min": 2, "max": 6},
).to_json_dict()

NOW = datetime(2026, 10, 17, 9, 0, 30, tzinfo=timezone.utc)


def _scheduler(store: _ScheduleStore, runs: InMemoryPipelineRunStore) -> tuple[PipelineScheduler, _FakeQueueClient]:
    client = _FakeQueueClient()
    scheduler = PipelineScheduler(
        schedule_store=store,
        run_store=runs,
        manager=PipelineTaskManager(queue_client=client),
        poll_seconds=1,
    )
    return scheduler, client


def test_next_fire_time_respects_timezone() -> None:
    now = datetime(2026, 10, 17, 7, 0, tzinfo=timezone.utc)

    assert next_fire_time("0 9 * * *", "UTC", now) == datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
    # London is on BST (UTC+1) until late October
    assert next_fire_time("0 9 * * *", "Europe/London", now) == datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(("cron", "tz"), [("not a cron", "UTC"), ("61 * * * *", "UTC"), ("0 9 * * *", "Mars/Olympus")])
def test_build_trigger_rejects_invalid_input(cron: str, tz: str) -> None:
    with pytest.raises(ValueError):
        build_trigger(cron, tz)


# Saturday 2026-10-17 07:00 UTC
SATURDAY = datetime(2026, 10, 17, 7, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("day_of_week", "expected_day"),
    [
        ("1", 19),
        ("mon", 19),
        ("0", 18),
        ("7", 18),
        ("sun", 18),
        ("5", 23),
        ("6", 17),
        ("1-5", 19),
        ("mon-fri", 19),
        ("2,4", 20),
        ("0-2", 18),
    ],
)
def test_next_fire_time_uses_crontab_weekday_numbers(day_of_week: str, expected_day: int) -> None:
    fire = next_fire_time(f"0 9 * * {day_of_week}", "UTC", SATURDAY)

    assert fire == datetime(2026, 10, expected_day, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("field", "expected"),
    [
        ("*", "*"),
        ("1", "mon"),
        ("7", "sun"),
        ("0,7", "sun"),
        ("1-5", "mon,tue,wed,thu,fri"),
        ("5-7", "sun,fri,sat"),
        ("*/2", "sun,tue,thu,sat"),
        ("SAT,sun", "sun,sat"),
    ],
)
def test_crontab_day_of_week_translates_to_weekday_names(field: str, expected: str) -> None:
    assert crontab_day_of_week(field) == expected


@pytest.mark.parametrize("field", ["8", "funday", "5-1", "*/0", "1-"])
def test_crontab_day_of_week_rejects_invalid_fields(field: str) -> None:
    with pytest.raises(ValueError):
        crontab_day_of_week(field)


@pytest.mark.asyncio
async def test_tick_fires_due_schedule_once_and_advances() -> None:
    store = _ScheduleStore()
    runs = InMemoryPipelineRunStore()
    await store.upsert(
        key="weekly-gb",
        cron="0 9 * * *",
        timezone="UTC",
        config=CONFIG,
        next_run_at=NOW - timedelta(seconds=30),
    )
    scheduler, client = _scheduler(store, runs)

    created = await scheduler.tick(NOW)

    assert len(created) == 1
    run = await runs.get(created[0])
    assert run is not None
    assert run.status == "queued"
    assert run.schedule_key == "weekly-gb"
    assert run.config.competitors == ["bill.com", "tipalti.com"]
    assert len(client.items) == 1
    assert store.rows["weekly-gb"]["next_run_at"] == datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
    assert store.rows["weekly-gb"]["last_run_at"] == NOW

    assert await scheduler.tick(NOW) == []


@pytest.mark.asyncio
async def test_schedules_not_yet_due_are_left_alone() -> None:
    store = _ScheduleStore()
    runs = InMemoryPipelineRunStore()
    await store.upsert(
        key="later",
        cron="0 9 * * *",
        timezone="UTC",
        config=CONFIG,
        next_run_at=NOW + timedelta(hours=1),
    )
    scheduler, _ = _scheduler(store, runs)

    assert await scheduler.tick(NOW) == []
    assert await runs.list_runs() == []


@pytest.mark.asyncio
async def test_firing_already_claimed_elsewhere_is_skipped() -> None:
    store = _ScheduleStore()
    runs = InMemoryPipelineRunStore()
    fire_at = NOW - timedelta(seconds=30)
    await store.upsert(key="weekly-gb", cron="0 9 * * *", timezone="UTC", config=CONFIG, next_run_at=fire_at)
    first, _ = _scheduler(store, runs)
    second, _ = _scheduler(store, runs)

    [stale_view] = await store.due(NOW)
    assert await first.tick(NOW) != []
    assert await second._fire(stale_view, NOW) is None
    assert len(await runs.list_runs()) == 1


@pytest.mark.asyncio
async def test_start_and_stop_scheduler_loop() -> None:
    scheduler, _ = _scheduler(_ScheduleStore(), InMemoryPipelineRunStore())

    await scheduler.start()
    await scheduler.stop()

    assert scheduler._task is None
