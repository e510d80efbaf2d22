"""Custom exception classes for the application."""

from typing import Any


class PipelineServiceError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Submission Errors
class PipelineConfigurationError(PipelineServiceError):
    """Required credentials are not configured."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            f"{', '.join(self.missing)} required for pipeline execution",
            details={"missing": self.missing},
        )


class PipelineInputValidationError(PipelineServiceError):
    """Pipeline job input failed validation."""

    pass


# Pipeline Errors
class PipelineError(PipelineServiceError):
    """Base class for pipeline execution errors."""

    pass


class PipelineRunNotFoundError(PipelineError):
    """Pipeline run not found."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__("Pipeline run not found", details={"run_id": run_id})


class InvalidStatusTransitionError(PipelineError):
    """A run status change would move backwards or leave a terminal state."""

    def __init__(self, run_id: str, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition for run {run_id}: {current} -> {requested}"
        )


class StageOutputError(PipelineError):
    """A stage agent did not produce output matching its schema."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage} output validation failed: {message}")


class StageModelError(PipelineError):
    """The model behind a stage could not be reached or returned an error."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage} model call failed: {message}")


class ToolNotPermittedError(PipelineError):
    """A stage tried to call a tool outside its granted subset."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool not permitted for this stage: {tool_name}")


class PipelineQueueFullError(PipelineError):
    """Raised when the pipeline queue is full."""

    def __init__(self) -> None:
        super().__init__("Pipeline task queue is full")


# External API Errors
class ExternalAPIError(PipelineServiceError):
    """Error calling external API."""

    def __init__(self, api_name: str, message: str) -> None:
        super().__init__(f"{api_name} API error: {message}")


class RateLimitExceededError(ExternalAPIError):
    """Rate limit exceeded for external API."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "Rate limit exceeded")


class APIKeyMissingError(ExternalAPIError):
    """API key not configured."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "API key not configured")
