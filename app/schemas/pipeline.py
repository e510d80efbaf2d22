"""Pipeline run, job input and schedule schemas."""

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.integrations.dataforseo import LOCATION_CODES
from app.schemas.base import CamelModel
from app.schemas.keyword import PipelineResult

PipelineStatus = Literal[
    "queued",
    "expanding",
    "analyzing",
    "scoring",
    "reporting",
    "completed",
    "failed",
]

# Forward order of non-failure states; "failed" is reachable from any non-terminal state.
STATUS_ORDER: tuple[str, ...] = (
    "queued",
    "expanding",
    "analyzing",
    "scoring",
    "reporting",
    "completed",
)
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class CpcRange(CamelModel):
    """Affordable cost-per-click window, in the account currency."""

    model_config = ConfigDict(frozen=True)

    min: float = Field(gt=0)
    max: float = Field(gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "CpcRange":
        if self.max < self.min:
            raise ValueError("cpcRange max must be greater than or equal to min")
        return self

    def contains(self, cpc: float) -> bool:
        return self.min <= cpc <= self.max


class ProductInfo(CamelModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    target: str | None = None
    integrations: str | None = None


class PipelineJobInput(CamelModel):
    """Sole input to a pipeline run. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    seed_keywords: list[str] = Field(min_length=1)
    target_country: str = Field(min_length=2, max_length=2)
    competitors: list[str] = Field(min_length=1)
    cpc_range: CpcRange
    product_id: str | None = None
    product: ProductInfo | None = None

    @field_validator("seed_keywords", mode="before")
    @classmethod
    def _clean_seeds(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        return [str(seed).strip() for seed in value if str(seed).strip()]

    @field_validator("competitors", mode="before")
    @classmethod
    def _clean_competitors(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        cleaned: list[str] = []
        for domain in value:
            normalized = str(domain).strip().lower()
            if normalized and normalized not in cleaned:
                cleaned.append(normalized)
        return cleaned

    @field_validator("target_country", mode="before")
    @classmethod
    def _upper_country(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("target_country")
    @classmethod
    def _supported_country(cls, value: str) -> str:
        if value not in LOCATION_CODES:
            supported = ", ".join(LOCATION_CODES)
            raise ValueError(f"Unsupported country code: {value}; supported: {supported}")
        return value


class PipelineSubmitResponse(CamelModel):
    job_id: str
    status: PipelineStatus = "queued"


class PipelineRunResponse(CamelModel):
    """Full view of a pipeline run row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str | None = None
    status: PipelineStatus
    stage_detail: str | None = None
    config: PipelineJobInput
    result: PipelineResult | None = None
    error: str | None = None
    schedule_key: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class PipelineRunListResponse(CamelModel):
    runs: list[PipelineRunResponse]


class PipelineScheduleCreate(PipelineJobInput):
    """Upsert request for a cron schedule carrying its job input inline."""

    key: str = Field(min_length=1)
    cron: str = Field(min_length=1)
    timezone: str = "UTC"

    def job_input(self) -> PipelineJobInput:
        return PipelineJobInput.model_validate(
            self.model_dump(exclude={"key", "cron", "timezone"})
        )


class PipelineScheduleResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    cron: str
    timezone: str
    config: PipelineJobInput
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None


class PipelineScheduleListResponse(CamelModel):
    schedules: list[PipelineScheduleResponse]


class PipelineScheduleDeleteResponse(CamelModel):
    deleted: bool = True
