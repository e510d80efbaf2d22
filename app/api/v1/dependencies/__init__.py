"""Reusable API dependencies shared across v1 routes."""

from app.api.v1.dependencies.pipeline_service import PipelineServiceDep, get_pipeline_service

__all__ = ["PipelineServiceDep", "get_pipeline_service"]
