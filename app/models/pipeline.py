"""Keyword research run and schedule models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, CuidPrimaryKeyMixin


class PipelineRun(Base, CuidPrimaryKeyMixin, TimestampMixin):
    """One execution of the keyword research pipeline."""

    __tablename__ = "pipeline_runs"

    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    schedule_key: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False, index=True)
    stage_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Input snapshot and outcome
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PipelineRun {self.id} ({self.status})>"


class PipelineSchedule(Base, CuidPrimaryKeyMixin, TimestampMixin):
    """A cron schedule that submits pipeline runs with a stored job input."""

    __tablename__ = "pipeline_schedules"

    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    cron: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PipelineSchedule {self.key} '{self.cron}' {self.timezone}>"
