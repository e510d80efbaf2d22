"""Pipeline service: run submission, lookup and schedule management."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from app.config import Settings, settings as default_settings
from app.core.exceptions import PipelineConfigurationError, PipelineInputValidationError
from app.repositories.pipeline_run_repository import PipelineRunStore
from app.repositories.pipeline_schedule_repository import PipelineScheduleStore
from app.schemas.pipeline import (
    PipelineJobInput,
    PipelineRunResponse,
    PipelineScheduleCreate,
    PipelineScheduleResponse,
    PipelineSubmitResponse,
)
from app.services.pipeline_scheduler import next_fire_time
from app.services.pipeline_task_manager import PipelineTaskManager, create_and_enqueue_run

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def parse_job_input(payload: PipelineJobInput | Mapping[str, Any]) -> PipelineJobInput:
    """Validate a job input, raising PipelineInputValidationError on failure."""
    if isinstance(payload, PipelineJobInput):
        return payload
    try:
        return PipelineJobInput.model_validate(payload)
    except ValidationError as e:
        raise PipelineInputValidationError(
            _format_validation_error(e),
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


class PipelineService:
    """Entry point used by the HTTP API for runs and schedules."""

    def __init__(
        self,
        *,
        run_store: PipelineRunStore,
        task_manager: PipelineTaskManager,
        schedule_store: PipelineScheduleStore | None = None,
        app_settings: Settings | None = None,
    ) -> None:
        self.run_store = run_store
        self.task_manager = task_manager
        self.schedule_store = schedule_store
        self.settings = app_settings or default_settings

    def check_configuration(self) -> None:
        """Fail fast when provider or LLM credentials are missing."""
        missing = self.settings.missing_pipeline_credentials()
        if missing:
            raise PipelineConfigurationError(missing)

    async def submit_run(self, payload: PipelineJobInput | Mapping[str, Any]) -> PipelineSubmitResponse:
        """Validate, persist and enqueue a run."""
        self.check_configuration()
        job = parse_job_input(payload)
        run = await create_and_enqueue_run(self.run_store, self.task_manager, job)
        logger.info(
            "Pipeline run submitted",
            extra={"run_id": run.id, "product_id": job.product_id, "country": job.target_country},
        )
        return PipelineSubmitResponse(job_id=run.id, status="queued")

    async def get_run(self, run_id: str) -> PipelineRunResponse | None:
        return await self.run_store.get(run_id)

    async def list_runs(
        self,
        *,
        product_id: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[PipelineRunResponse]:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        return await self.run_store.list_runs(product_id=product_id, limit=limit)

    async def create_schedule(
        self,
        payload: PipelineScheduleCreate | Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> PipelineScheduleResponse:
        """Upsert a schedule by key and compute its next firing."""
        store = self._require_schedule_store()
        self.check_configuration()
        if isinstance(payload, PipelineScheduleCreate):
            request = payload
        else:
            try:
                request = PipelineScheduleCreate.model_validate(payload)
            except ValidationError as e:
                raise PipelineInputValidationError(_format_validation_error(e)) from e

        try:
            upcoming = next_fire_time(request.cron, request.timezone, now or datetime.now(timezone.utc))
        except ValueError as e:
            raise PipelineInputValidationError(f"Invalid cron expression: {e}") from e

        schedule = await store.upsert(
            key=request.key,
            cron=request.cron,
            timezone=request.timezone,
            config=request.job_input().to_json_dict(),
            next_run_at=upcoming,
        )
        logger.info(
            "Pipeline schedule saved",
            extra={"schedule_key": schedule.key, "cron": schedule.cron, "next_run_at": str(upcoming)},
        )
        return schedule

    async def delete_schedule(self, key: str) -> bool:
        """Remove a schedule; runs already submitted are unaffected."""
        deleted = await self._require_schedule_store().delete(key)
        logger.info("Pipeline schedule deleted", extra={"schedule_key": key, "existed": deleted})
        return True

    async def list_schedules(self) -> list[PipelineScheduleResponse]:
        return await self._require_schedule_store().list_schedules()

    def _require_schedule_store(self) -> PipelineScheduleStore:
        if self.schedule_store is None:
            raise RuntimeError("Schedule store is not configured")
        return self.schedule_store
