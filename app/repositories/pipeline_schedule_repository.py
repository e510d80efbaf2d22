"""Repository for PipelineSchedule read/write operations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert

from app.core.database import get_session_context
from app.core.db_retry import DBRetryPolicy, run_with_transient_db_retry
from app.core.ids import generate_cuid
from app.models.pipeline import PipelineSchedule
from app.schemas.pipeline import PipelineScheduleResponse

logger = logging.getLogger(__name__)


class PipelineScheduleStore(Protocol):
    async def upsert(
        self,
        *,
        key: str,
        cron: str,
        timezone: str,
        config: dict[str, Any],
        next_run_at: datetime | None,
    ) -> PipelineScheduleResponse: ...

    async def delete(self, key: str) -> bool: ...

    async def list_schedules(self) -> list[PipelineScheduleResponse]: ...

    async def due(self, now: datetime, *, limit: int = 50) -> list[PipelineScheduleResponse]: ...

    async def claim_firing(
        self,
        key: str,
        *,
        expected_next_run_at: datetime,
        next_run_at: datetime | None,
        fired_at: datetime,
    ) -> bool: ...


class PipelineScheduleRepository:
    """Cron schedules keyed by an external identifier."""

    def __init__(self, *, retry_policy: DBRetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or DBRetryPolicy.from_settings()

    async def upsert(
        self,
        *,
        key: str,
        cron: str,
        timezone: str,
        config: dict[str, Any],
        next_run_at: datetime | None,
    ) -> PipelineScheduleResponse:
        """Insert or replace the schedule for key, resetting its next firing."""

        async def _upsert_once() -> PipelineScheduleResponse:
            async with get_session_context() as session:
                stmt = insert(PipelineSchedule).values(
                    id=generate_cuid(),
                    key=key,
                    cron=cron,
                    timezone=timezone,
                    config=config,
                    next_run_at=next_run_at,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[PipelineSchedule.key],
                    set_={
                        "cron": stmt.excluded.cron,
                        "timezone": stmt.excluded.timezone,
                        "config": stmt.excluded.config,
                        "next_run_at": stmt.excluded.next_run_at,
                        "updated_at": func.now(),
                    },
                ).returning(PipelineSchedule)
                row = (await session.execute(stmt)).scalar_one()
                return PipelineScheduleResponse.model_validate(row)

        return await run_with_transient_db_retry(
            _upsert_once,
            operation_name="pipeline_schedule_upsert",
            policy=self.retry_policy,
            log_context={"schedule_key": key},
        )

    async def delete(self, key: str) -> bool:
        async with get_session_context() as session:
            outcome = await session.execute(delete(PipelineSchedule).where(PipelineSchedule.key == key))
            return outcome.rowcount > 0

    async def list_schedules(self) -> list[PipelineScheduleResponse]:
        async with get_session_context(commit_on_exit=False) as session:
            rows = (await session.execute(select(PipelineSchedule).order_by(PipelineSchedule.key))).scalars().all()
            return [PipelineScheduleResponse.model_validate(row) for row in rows]

    async def due(self, now: datetime, *, limit: int = 50) -> list[PipelineScheduleResponse]:
        """Schedules whose next firing is at or before now, oldest first."""
        stmt = (
            select(PipelineSchedule)
            .where(PipelineSchedule.next_run_at.is_not(None), PipelineSchedule.next_run_at <= now)
            .order_by(PipelineSchedule.next_run_at)
            .limit(limit)
        )
        async with get_session_context(commit_on_exit=False) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [PipelineScheduleResponse.model_validate(row) for row in rows]

    async def claim_firing(
        self,
        key: str,
        *,
        expected_next_run_at: datetime,
        next_run_at: datetime | None,
        fired_at: datetime,
    ) -> bool:
        """Advance next_run_at only if no other scheduler fired this slot first."""

        async def _claim_once() -> bool:
            async with get_session_context() as session:
                stmt = (
                    update(PipelineSchedule)
                    .where(
                        PipelineSchedule.key == key,
                        PipelineSchedule.next_run_at == expected_next_run_at,
                    )
                    .values(next_run_at=next_run_at, last_run_at=fired_at)
                )
                outcome = await session.execute(stmt)
                return outcome.rowcount == 1

        return await run_with_transient_db_retry(
            _claim_once,
            operation_name="pipeline_schedule_claim",
            policy=self.retry_policy,
            log_context={"schedule_key": key},
        )
