"""Repository for PipelineRun read/write operations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select, update

from app.core.database import get_session_context
from app.core.db_retry import DBRetryPolicy, run_with_transient_db_retry
from app.models.pipeline import PipelineRun
from app.schemas.pipeline import PipelineJobInput, PipelineRunResponse

logger = logging.getLogger(__name__)


class PipelineRunStore(Protocol):
    """Run persistence used by the service, worker and orchestrator."""

    async def create(
        self,
        job: PipelineJobInput,
        *,
        run_id: str | None = None,
        schedule_key: str | None = None,
    ) -> PipelineRunResponse: ...

    async def get(self, run_id: str) -> PipelineRunResponse | None: ...

    async def list_runs(
        self,
        *,
        product_id: str | None = None,
        limit: int = 20,
    ) -> list[PipelineRunResponse]: ...

    async def claim(self, run_id: str, *, stage_detail: str) -> PipelineRunResponse | None: ...

    async def set_stage_detail(self, run_id: str, *, status: str, stage_detail: str) -> bool: ...

    async def transition(
        self,
        run_id: str,
        *,
        from_status: str,
        to_status: str,
        stage_detail: str | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        completed: bool = False,
    ) -> bool: ...


class PipelineRunRepository:
    """Handles PipelineRun reads and conditional status writes via short-lived sessions."""

    def __init__(self, *, retry_policy: DBRetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or DBRetryPolicy.from_settings()

    async def create(
        self,
        job: PipelineJobInput,
        *,
        run_id: str | None = None,
        schedule_key: str | None = None,
    ) -> PipelineRunResponse:
        """Insert a queued run holding the job input snapshot."""

        async def _create_once() -> PipelineRunResponse:
            async with get_session_context() as session:
                run = PipelineRun(
                    product_id=job.product_id,
                    schedule_key=schedule_key,
                    status="queued",
                    config=job.to_json_dict(),
                )
                if run_id is not None:
                    run.id = run_id
                session.add(run)
                await session.flush()
                await session.refresh(run)
                return PipelineRunResponse.model_validate(run)

        return await run_with_transient_db_retry(
            _create_once,
            operation_name="pipeline_run_create",
            policy=self.retry_policy,
            log_context={"run_id": run_id, "schedule_key": schedule_key},
        )

    async def get(self, run_id: str) -> PipelineRunResponse | None:
        async with get_session_context(commit_on_exit=False) as session:
            run = await session.get(PipelineRun, str(run_id))
            if run is None:
                return None
            return PipelineRunResponse.model_validate(run)

    async def list_runs(
        self,
        *,
        product_id: str | None = None,
        limit: int = 20,
    ) -> list[PipelineRunResponse]:
        """List runs newest first, optionally for one product."""
        stmt = select(PipelineRun).order_by(PipelineRun.created_at.desc()).limit(limit)
        if product_id is not None:
            stmt = stmt.where(PipelineRun.product_id == product_id)
        async with get_session_context(commit_on_exit=False) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [PipelineRunResponse.model_validate(row) for row in rows]

    async def claim(self, run_id: str, *, stage_detail: str) -> PipelineRunResponse | None:
        """Move a queued run to expanding; None when it is no longer queued."""
        claimed = await self._conditional_update(
            run_id,
            expected_status="queued",
            values={
                "status": "expanding",
                "stage_detail": stage_detail,
                "started_at": datetime.now(timezone.utc),
            },
            operation_name="pipeline_run_claim",
        )
        if not claimed:
            return None
        return await self.get(run_id)

    async def set_stage_detail(self, run_id: str, *, status: str, stage_detail: str) -> bool:
        return await self._conditional_update(
            run_id,
            expected_status=status,
            values={"stage_detail": stage_detail},
            operation_name="pipeline_run_stage_detail",
        )

    async def transition(
        self,
        run_id: str,
        *,
        from_status: str,
        to_status: str,
        stage_detail: str | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        completed: bool = False,
    ) -> bool:
        """Apply a status change only if the row is still in from_status."""
        values: dict[str, Any] = {
            "status": to_status,
            "stage_detail": stage_detail,
        }
        if result is not None:
            values["result"] = result
        if error is not None:
            values["error"] = error
        if completed:
            values["completed_at"] = datetime.now(timezone.utc)
        return await self._conditional_update(
            run_id,
            expected_status=from_status,
            values=values,
            operation_name="pipeline_run_transition",
        )

    async def _conditional_update(
        self,
        run_id: str,
        *,
        expected_status: str,
        values: dict[str, Any],
        operation_name: str,
    ) -> bool:
        run_id_str = str(run_id)

        async def _update_once() -> bool:
            async with get_session_context() as session:
                stmt = (
                    update(PipelineRun)
                    .where(PipelineRun.id == run_id_str, PipelineRun.status == expected_status)
                    .values(**values)
                )
                outcome = await session.execute(stmt)
                return outcome.rowcount == 1

        return await run_with_transient_db_retry(
            _update_once,
            operation_name=operation_name,
            policy=self.retry_policy,
            log_context={"run_id": run_id_str, "expected_status": expected_status},
        )
