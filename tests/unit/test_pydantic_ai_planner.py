"""Unit tests for the pydantic-ai backed stage planner."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import BaseModel
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelMessage, ModelResponse, ToolCallPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from app.agents.planner import PlanRequest, PydanticAIPlanner
from app.core.exceptions import StageModelError, StageOutputError
from app.services.keyword_tools import EXPANDER_TOOL_NAMES, ToolContext, get_tools


class _Summary(BaseModel):
    summary: str


class _Provider:
    def __init__(self) -> None:
        self.related: list[str] = []

    async def related_keywords(
        self, keyword: str, country_code: str, depth: int = 2, limit: int = 500
    ) -> list[dict[str, Any]]:
        self.related.append(keyword)
        return []


def _request(model: FunctionModel, provider: _Provider, *, max_turns: int = 3) -> PlanRequest[_Summary]:
    return PlanRequest(
        stage="keyword_expander",
        model=model,  # type: ignore[arg-type]
        system_prompt="Expand the seeds.",
        prompt="Seeds: ap automation",
        output_type=_Summary,
        max_turns=max_turns,
        tool_context=ToolContext(
            provider=provider,  # type: ignore[arg-type]
            country_code="GB",
            tools=get_tools(EXPANDER_TOOL_NAMES),
            stage="keyword_expander",
        ),
    )


@pytest.mark.asyncio
async def test_plan_returns_structured_output() -> None:
    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[ToolCallPart(tool_name=info.output_tools[0].name, args={"summary": "done"})])

    output = await PydanticAIPlanner(max_retries=1).plan(_request(FunctionModel(respond), _Provider()))

    assert output == _Summary(summary="done")


@pytest.mark.asyncio
async def test_plan_stops_at_request_limit_and_raises_stage_output_error() -> None:
    model_calls: list[int] = []

    def keep_calling_tools(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        model_calls.append(len(messages))
        return ModelResponse(
            parts=[ToolCallPart(tool_name="labs_related_keywords", args={"keyword": f"seed {len(model_calls)}"})]
        )

    provider = _Provider()
    request = _request(FunctionModel(keep_calling_tools), provider, max_turns=3)

    with pytest.raises(StageOutputError, match="keyword_expander output validation failed"):
        await PydanticAIPlanner(max_retries=5).plan(request)

    assert len(model_calls) == 3


@pytest.mark.asyncio
async def test_model_http_error_is_reported_as_model_failure() -> None:
    def unavailable(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise ModelHTTPError(status_code=503, model_name="function", body="upstream unavailable")

    with pytest.raises(StageModelError, match="keyword_expander model call failed") as exc_info:
        await PydanticAIPlanner(max_retries=1).plan(_request(FunctionModel(unavailable), _Provider()))

    assert not isinstance(exc_info.value, StageOutputError)
