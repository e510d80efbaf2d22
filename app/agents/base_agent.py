"""Base class for pipeline stage agents."""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from app.agents.planner import PlanRequest, PydanticAIPlanner, StagePlanner
from app.config import settings
from app.core.exceptions import StageOutputError
from app.integrations.dataforseo import KeywordDataProvider
from app.services.keyword_tools import ToolCache, ToolContext, get_tools

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)


def _summarize_validation_error(error: ValidationError, limit: int = 3) -> str:
    parts = []
    for item in error.errors()[:limit]:
        location = ".".join(str(part) for part in item.get("loc", ())) or "output"
        parts.append(f"{location}: {item.get('msg')}")
    remaining = error.error_count() - limit
    if remaining > 0:
        parts.append(f"... and {remaining} more")
    return "; ".join(parts)


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Abstract base class for stage agents.

    Each stage should:
    1. Define the system_prompt property
    2. Define the output_type property
    3. Implement _build_prompt to construct the user prompt
    4. Declare tool_names, its least-privilege tool subset
    5. Optionally override _prepare / _finalize for deterministic work
       around the planner call
    """

    stage: ClassVar[str]
    tool_names: ClassVar[Sequence[str]] = ()
    # Model tier for environment-aware resolution (reasoning / standard)
    model_tier: str = "standard"
    # Explicit model override at the class level (bypasses tier resolution)
    model: str | None = None
    default_max_turns: int = 10

    def __init__(
        self,
        planner: StagePlanner | None = None,
        model_override: str | None = None,
        max_turns: int | None = None,
    ) -> None:
        """Initialize the stage.

        Model resolution priority:
        1. model_override parameter (explicit runtime override)
        2. model class attribute (if set by subclass)
        3. settings.get_model(self.model_tier) (environment-aware tier fallback)
        """
        if model_override:
            self._model = model_override
        elif self.model:
            self._model = self.model
        else:
            self._model = settings.get_model(self.model_tier)
        self.planner = planner or PydanticAIPlanner()
        self.max_turns = max_turns or self.default_max_turns

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """System prompt for the stage."""
        pass

    @property
    @abstractmethod
    def output_type(self) -> type[OutputT]:
        """Pydantic model type for structured output."""
        pass

    @abstractmethod
    def _build_prompt(self, input_data: InputT) -> str:
        """Build the user prompt from input data."""
        pass

    def tool_context(
        self,
        provider: KeywordDataProvider,
        country_code: str,
        *,
        cache: ToolCache | None = None,
        run_id: str | None = None,
    ) -> ToolContext:
        """Create a context that only grants this stage's tools."""
        return ToolContext(
            provider=provider,
            country_code=country_code,
            tools=get_tools(self.tool_names),
            stage=self.stage,
            run_id=run_id,
            cache=cache or ToolCache(),
        )

    async def _prepare(self, input_data: InputT, context: ToolContext) -> InputT:
        return input_data

    async def _finalize(self, input_data: InputT, output: OutputT, context: ToolContext) -> OutputT:
        return output

    def _validate_output(self, raw: Any) -> OutputT:
        if raw is None:
            raise StageOutputError(self.stage, "no output produced")
        payload = raw.model_dump() if isinstance(raw, BaseModel) else raw
        try:
            return self.output_type.model_validate(payload)
        except ValidationError as e:
            raise StageOutputError(self.stage, _summarize_validation_error(e)) from e

    async def run(self, input_data: InputT, context: ToolContext) -> OutputT:
        """Run the stage: prepare, plan with tools, validate, finalize."""
        logger.info(
            "Stage agent started",
            extra={
                "stage": self.stage,
                "run_id": context.run_id,
                "model": self._model,
                "max_turns": self.max_turns,
                "tools": context.tool_names,
            },
        )
        t0 = time.perf_counter()

        prepared = await self._prepare(input_data, context)
        prompt = self._build_prompt(prepared)
        raw = await self.planner.plan(
            PlanRequest(
                stage=self.stage,
                model=self._model,
                system_prompt=self.system_prompt,
                prompt=prompt,
                output_type=self.output_type,
                max_turns=self.max_turns,
                tool_context=context,
            )
        )
        output = self._validate_output(raw)
        output = await self._finalize(prepared, output, context)

        logger.info(
            "Stage agent completed",
            extra={
                "stage": self.stage,
                "run_id": context.run_id,
                "duration_s": round(time.perf_counter() - t0, 2),
                "tool_calls": len(context.calls),
            },
        )
        return output
