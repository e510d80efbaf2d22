"""Pipeline API endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from app.api.v1.dependencies import PipelineServiceDep
from app.api.v1.pipeline.constants import (
    DEFAULT_RUN_LIMIT,
    MAX_RUN_LIMIT,
    PIPELINE_QUEUE_FULL_DETAIL,
)
from app.api.v1.pipeline.openapi_docs import PIPELINE_RUN_OPENAPI_EXTRA
from app.core.exceptions import PipelineQueueFullError, PipelineRunNotFoundError
from app.schemas.pipeline import (
    PipelineJobInput,
    PipelineRunListResponse,
    PipelineRunResponse,
    PipelineScheduleCreate,
    PipelineScheduleDeleteResponse,
    PipelineScheduleListResponse,
    PipelineScheduleResponse,
    PipelineSubmitResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/runs",
    response_model=PipelineSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit keyword research run",
    description=(
        "Validate the job input, create a queued run and enqueue it for background "
        "execution. Returns the job id to poll."
    ),
    openapi_extra=PIPELINE_RUN_OPENAPI_EXTRA,
)
async def submit_run(
    request: PipelineJobInput,
    service: PipelineServiceDep,
) -> PipelineSubmitResponse:
    """Submit a new pipeline run."""
    try:
        return await service.submit_run(request)
    except PipelineQueueFullError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=PIPELINE_QUEUE_FULL_DETAIL,
        ) from exc


@router.get(
    "/runs",
    response_model=PipelineRunListResponse,
    summary="List pipeline runs",
    description="Return recent runs newest first, optionally filtered by product.",
)
async def list_runs(
    service: PipelineServiceDep,
    product_id: str | None = Query(None, alias="productId"),
    limit: int = Query(DEFAULT_RUN_LIMIT, ge=1, le=MAX_RUN_LIMIT),
) -> PipelineRunListResponse:
    """List pipeline runs."""
    runs = await service.list_runs(product_id=product_id, limit=limit)
    return PipelineRunListResponse(runs=runs)


@router.get(
    "/runs/{run_id}",
    response_model=PipelineRunResponse,
    summary="Get pipeline run",
    description="Return status, stage detail and, when completed, the full result for a run.",
)
async def get_run(run_id: str, service: PipelineServiceDep) -> PipelineRunResponse:
    """Get a pipeline run by id."""
    run = await service.get_run(run_id)
    if run is None:
        raise PipelineRunNotFoundError(run_id)
    return run


@router.post(
    "/schedules",
    response_model=PipelineScheduleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upsert pipeline schedule",
    description="Create or replace a cron schedule keyed by an external identifier.",
)
async def create_schedule(
    request: PipelineScheduleCreate,
    service: PipelineServiceDep,
) -> PipelineScheduleResponse:
    """Create or replace a schedule."""
    return await service.create_schedule(request)


@router.get(
    "/schedules",
    response_model=PipelineScheduleListResponse,
    summary="List pipeline schedules",
)
async def list_schedules(service: PipelineServiceDep) -> PipelineScheduleListResponse:
    """List all schedules."""
    return PipelineScheduleListResponse(schedules=await service.list_schedules())


@router.delete(
    "/schedules/{key}",
    response_model=PipelineScheduleDeleteResponse,
    summary="Delete pipeline schedule",
    description="Remove a schedule. Runs it already created are not affected.",
)
async def delete_schedule(key: str, service: PipelineServiceDep) -> PipelineScheduleDeleteResponse:
    """Delete a schedule by key."""
    await service.delete_schedule(key)
    return PipelineScheduleDeleteResponse(deleted=True)
