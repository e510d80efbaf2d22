"""Retry policy for run-store writes that hit a dropped pooled connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from app.config import settings

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")

# asyncpg and SQLAlchemy phrasings seen when the server drops an idle connection
_DROPPED_CONNECTION_PHRASES = (
    "connection is closed",
    "connection was closed",
    "server closed the connection unexpectedly",
    "connection reset by peer",
    "cannot perform operation: another operation is in progress",
)


@dataclass(frozen=True, slots=True)
class DBRetryPolicy:
    """How many times a write is attempted and how long to back off between tries."""

    attempts: int = 3
    base_delay_seconds: float = 0.2

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")

    @classmethod
    def from_settings(cls) -> "DBRetryPolicy":
        return cls(
            attempts=settings.database_retry_attempts,
            base_delay_seconds=settings.database_retry_base_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: the nth failed attempt waits n * base delay."""
        return self.base_delay_seconds * attempt


def is_transient_connection_error(exc: BaseException) -> bool:
    """True when the error came from the connection, not from the statement."""
    if isinstance(exc, (InterfaceError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc).lower()
    return any(phrase in message for phrase in _DROPPED_CONNECTION_PHRASES)


async def run_with_transient_db_retry(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    operation_name: str,
    policy: DBRetryPolicy | None = None,
    log_context: Mapping[str, Any] | None = None,
) -> _ResultT:
    """Run a run-store write, re-running it only after a dropped connection.

    Each attempt must open its own session; integrity and statement errors are
    raised on the first try.
    """
    policy = policy or DBRetryPolicy.from_settings()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.attempts or not is_transient_connection_error(exc):
                raise
            logger.warning(
                "Run store write lost its connection; retrying",
                extra={
                    **dict(log_context or {}),
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": policy.attempts,
                },
            )
            await asyncio.sleep(policy.delay_for(attempt))
            attempt += 1
