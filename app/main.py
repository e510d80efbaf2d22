"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.api.v1.pipeline.openapi_docs import (
    OPENAPI_PIPELINE_GUIDE_JSON,
    OPENAPI_PIPELINE_GUIDE_MARKDOWN,
    PIPELINE_TAG_DESCRIPTION,
)
from app.api.v1.router import api_router
from app.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import (
    PipelineConfigurationError,
    PipelineInputValidationError,
    PipelineRunNotFoundError,
    PipelineServiceError,
)
from app.core.logging import setup_logging
from app.core.redis import close_redis
from app.services.pipeline_task_manager import PIPELINE_QUEUE, get_pipeline_task_manager

logger = logging.getLogger(__name__)

# Queue fill ratio at which /health/queue reports "degraded".
QUEUE_DEGRADED_RATIO = 0.8

_ERROR_STATUS_CODES: dict[type[PipelineServiceError], int] = {
    PipelineInputValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PipelineConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    PipelineRunNotFoundError: status.HTTP_404_NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info(
        "Starting Orion Keyword Research API",
        extra={
            "environment": settings.environment,
            "version": settings.app_version,
            "model_reasoning": settings.get_model("reasoning"),
            "model_standard": settings.get_model("standard"),
            "missing_credentials": settings.missing_pipeline_credentials(),
        },
    )
    # Other environments create tables out of band.
    if settings.environment == "development":
        await init_db()

    yield

    logger.info("Shutting down Orion Keyword Research API")
    await close_redis()
    await close_db()


async def pipeline_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render service errors as ``{"detail": ..., "errors": ...}``."""
    error = cast(PipelineServiceError, exc)
    status_code = _ERROR_STATUS_CODES.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.warning(
            "Pipeline request rejected",
            extra={"path": request.url.path, "error": error.message, "status_code": status_code},
        )
    content: dict[str, Any] = {"detail": error.message}
    if error.details:
        content["errors"] = error.details
    return JSONResponse(status_code=status_code, content=content)


async def queue_health() -> tuple[int, dict[str, Any]]:
    """Status code and body for the queue health probe."""
    manager = get_pipeline_task_manager()
    try:
        queued = await manager.get_queue_size()
    except RedisError as e:
        logger.warning("Queue health check failed", extra={"error": str(e)})
        return status.HTTP_503_SERVICE_UNAVAILABLE, {
            "status": "unavailable",
            "version": settings.app_version,
            "error": "Redis unreachable",
        }

    limit = manager.queue_size_limit
    return status.HTTP_200_OK, {
        "status": "degraded" if queued >= limit * QUEUE_DEGRADED_RATIO else "healthy",
        "version": settings.app_version,
        "queues": {PIPELINE_QUEUE: {"queued": queued, "limit": limit, "workers": manager.worker_count}},
        "total_queued": queued,
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    description = (
        "Keyword research service: seed expansion, competitor gap analysis, "
        "scoring and PPC strategy reports.\n\n"
        f"{OPENAPI_PIPELINE_GUIDE_MARKDOWN.strip()}\n\n"
        f"```json\n{OPENAPI_PIPELINE_GUIDE_JSON}\n```"
    )
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=description,
        openapi_tags=[{"name": "Pipeline", "description": PIPELINE_TAG_DESCRIPTION.strip()}],
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PipelineServiceError, pipeline_error_handler)
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health", summary="Health check")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    @app.get(
        "/health/queue",
        summary="Queue health check",
        description="Keyword research queue depth; 503 when Redis cannot be reached.",
    )
    async def queue_health_check() -> JSONResponse:
        status_code, body = await queue_health()
        return JSONResponse(status_code=status_code, content=body)

    return app


app = create_app()
