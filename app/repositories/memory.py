"""In-process run store for single-shot CLI runs and tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from app.core.ids import generate_cuid
from app.schemas.pipeline import PipelineJobInput, PipelineRunResponse


class InMemoryPipelineRunStore:
    """PipelineRunStore backed by a dict; writes are serialized by a lock."""

    def __init__(self) -> None:
        self._runs: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _view(self, row: dict[str, Any]) -> PipelineRunResponse:
        return PipelineRunResponse.model_validate(row)

    async def create(
        self,
        job: PipelineJobInput,
        *,
        run_id: str | None = None,
        schedule_key: str | None = None,
    ) -> PipelineRunResponse:
        async with self._lock:
            row = {
                "id": run_id or generate_cuid(),
                "product_id": job.product_id,
                "status": "queued",
                "stage_detail": None,
                "config": job.to_json_dict(),
                "result": None,
                "error": None,
                "schedule_key": schedule_key,
                "created_at": datetime.now(timezone.utc),
                "started_at": None,
                "completed_at": None,
            }
            self._runs[row["id"]] = row
            return self._view(row)

    async def get(self, run_id: str) -> PipelineRunResponse | None:
        row = self._runs.get(run_id)
        return self._view(row) if row else None

    async def list_runs(
        self,
        *,
        product_id: str | None = None,
        limit: int = 20,
    ) -> list[PipelineRunResponse]:
        rows = [
            row
            for row in self._runs.values()
            if product_id is None or row["product_id"] == product_id
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [self._view(row) for row in rows[:limit]]

    async def claim(self, run_id: str, *, stage_detail: str) -> PipelineRunResponse | None:
        async with self._lock:
            row = self._runs.get(run_id)
            if row is None or row["status"] != "queued":
                return None
            row.update(
                status="expanding",
                stage_detail=stage_detail,
                started_at=datetime.now(timezone.utc),
            )
            return self._view(row)

    async def set_stage_detail(self, run_id: str, *, status: str, stage_detail: str) -> bool:
        async with self._lock:
            row = self._runs.get(run_id)
            if row is None or row["status"] != status:
                return False
            row["stage_detail"] = stage_detail
            return True

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
        async with self._lock:
            row = self._runs.get(run_id)
            if row is None or row["status"] != from_status:
                return False
            row.update(status=to_status, stage_detail=stage_detail)
            if result is not None:
                row["result"] = result
            if error is not None:
                row["error"] = error
            if completed:
                row["completed_at"] = datetime.now(timezone.utc)
            return True
