"""Tests for transient database retry handling."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, InterfaceError

from app.core.db_retry import DBRetryPolicy, is_transient_connection_error, run_with_transient_db_retry


def test_is_transient_connection_error_classifies_connection_failures() -> None:
    assert is_transient_connection_error(InterfaceError("select 1", {}, Exception("closed")))
    assert is_transient_connection_error(RuntimeError("Server closed the connection unexpectedly"))
    assert not is_transient_connection_error(
        IntegrityError("insert", {}, Exception("duplicate key value"))
    )
    assert not is_transient_connection_error(ValueError("bad status"))


def test_policy_rejects_invalid_values_and_backs_off_linearly() -> None:
    with pytest.raises(ValueError, match="attempts"):
        DBRetryPolicy(attempts=0)
    with pytest.raises(ValueError, match="base_delay_seconds"):
        DBRetryPolicy(base_delay_seconds=-1)

    policy = DBRetryPolicy(attempts=3, base_delay_seconds=0.5)
    assert [policy.delay_for(n) for n in (1, 2)] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_reruns_after_dropped_connection() -> None:
    calls = 0

    async def _write() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise RuntimeError("connection is closed")
        return "ok"

    result = await run_with_transient_db_retry(
        _write,
        operation_name="pipeline_run_transition",
        policy=DBRetryPolicy(attempts=3, base_delay_seconds=0),
    )

    assert result == "ok"
    assert calls == 3


@pytest.mark.asyncio
async def test_retry_gives_up_after_last_attempt() -> None:
    calls = 0

    async def _write() -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("connection reset by peer")

    with pytest.raises(RuntimeError, match="reset by peer"):
        await run_with_transient_db_retry(
            _write,
            operation_name="pipeline_run_create",
            policy=DBRetryPolicy(attempts=2, base_delay_seconds=0),
        )

    assert calls == 2


@pytest.mark.asyncio
async def test_retry_raises_statement_errors_immediately() -> None:
    calls = 0

    async def _write() -> None:
        nonlocal calls
        calls += 1
        raise ValueError("invalid status")

    with pytest.raises(ValueError):
        await run_with_transient_db_retry(
            _write,
            operation_name="pipeline_schedule_upsert",
            policy=DBRetryPolicy(attempts=5, base_delay_seconds=0),
        )

    assert calls == 1
