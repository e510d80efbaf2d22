"""Planners drive the autonomous, tool-calling part of a stage."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError, UnexpectedModelBehavior, UsageLimitExceeded
from pydantic_ai.usage import UsageLimits

from app.config import settings
from app.core.exceptions import StageModelError, StageOutputError
from app.services.keyword_tools import ToolContext

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)


@dataclass
class PlanRequest(Generic[OutputT]):
    """Everything a planner needs to produce one stage's output."""

    stage: str
    model: str
    system_prompt: str
    prompt: str
    output_type: type[OutputT]
    max_turns: int
    tool_context: ToolContext


class StagePlanner(Protocol):
    async def plan(self, request: PlanRequest[Any]) -> Any:
        """Return the stage output (a model instance or a plain dict)."""
        ...


class PydanticAIPlanner:
    """Run a pydantic-ai Agent bounded by the stage's request limit."""

    def __init__(self, max_retries: int | None = None) -> None:
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries

    def build_agent(self, request: PlanRequest[OutputT]) -> Agent[ToolContext, OutputT]:
        return Agent(
            model=request.model,
            output_type=request.output_type,
            system_prompt=request.system_prompt,
            deps_type=ToolContext,
            tools=request.tool_context.as_pydantic_ai_tools(),
            retries=self.max_retries,
        )

    async def plan(self, request: PlanRequest[OutputT]) -> OutputT:
        agent = self.build_agent(request)

        t0 = time.perf_counter()
        try:
            result = await agent.run(
                request.prompt,
                deps=request.tool_context,
                usage_limits=UsageLimits(request_limit=request.max_turns),
            )
        except (UsageLimitExceeded, UnexpectedModelBehavior) as e:
            logger.warning(
                "Planner run ended without valid output",
                extra={
                    "stage": request.stage,
                    "run_id": request.tool_context.run_id,
                    "max_turns": request.max_turns,
                    "error": str(e),
                },
            )
            raise StageOutputError(request.stage, str(e)) from e
        except AgentRunError as e:
            logger.warning(
                "Planner model call failed",
                extra={"stage": request.stage, "run_id": request.tool_context.run_id, "error": str(e)},
            )
            raise StageModelError(request.stage, str(e)) from e
        elapsed = time.perf_counter() - t0

        usage = result.usage()
        logger.info(
            "Planner run completed",
            extra={
                "stage": request.stage,
                "run_id": request.tool_context.run_id,
                "duration_s": round(elapsed, 2),
                "requests": usage.requests,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "total_tokens": usage.total_tokens,
                "tool_calls": len(request.tool_context.calls),
            },
        )
        return result.output
