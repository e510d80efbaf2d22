"""SQLAlchemy models for pipeline runs and schedules."""

from app.models.base import Base
from app.models.pipeline import PipelineRun, PipelineSchedule

__all__ = ["Base", "PipelineRun", "PipelineSchedule"]
