"""Pipeline service dependency for v1 routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from app.repositories.pipeline_run_repository import PipelineRunRepository
from app.repositories.pipeline_schedule_repository import PipelineScheduleRepository
from app.services.pipeline_service import PipelineService
from app.services.pipeline_task_manager import get_pipeline_task_manager


def get_pipeline_service() -> PipelineService:
    """Build a service over the database stores and the shared Redis queue."""
    return PipelineService(
        run_store=PipelineRunRepository(),
        task_manager=get_pipeline_task_manager(),
        schedule_store=PipelineScheduleRepository(),
    )


PipelineServiceDep = Annotated[PipelineService, Depends(get_pipeline_service)]
