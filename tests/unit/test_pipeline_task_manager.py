"""Unit tests for the keyword research task queue."""

from __future__ import annotations

import json

import pytest

from app.core.exceptions import PipelineQueueFullError
from app.repositories.memory import InMemoryPipelineRunStore
from app.schemas.pipeline import PipelineJobInput
from app.services.pipeline_task_manager import (
    PipelineTaskJob,
    PipelineTaskManager,
    create_and_enqueue_run,
    get_pipeline_task_manager,
)


class _FakeQueueClient:
    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def rpush(self, key: str, payload: str) -> int:
        self.lists.setdefault(key, []).append(payload)
        return len(self.lists[key])

    async def blpop(self, key: str, *, timeout: int) -> tuple[str, str] | None:
        items = self.lists.get(key)
        if not items:
            return None
        return key, items.pop(0)


JOB = PipelineJobInput(
    seed_keywords=["ap automation"],
    target_country="gb",
    competitors=["Bill.com"],
    cpc_range={"min": 2, "max": 6},
)


def test_get_pipeline_task_manager_is_singleton() -> None:
    assert get_pipeline_task_manager() is get_pipeline_task_manager()


def test_pipeline_task_job_serialize_roundtrip() -> None:
    payload = PipelineTaskManager._serialize_job(
        PipelineTaskJob(run_id="run_1", expire_in_seconds=1800, enqueued_at=1.5)
    )
    decoded = PipelineTaskManager._deserialize_job(payload)

    assert decoded == PipelineTaskJob(run_id="run_1", expire_in_seconds=1800, enqueued_at=1.5)


@pytest.mark.asyncio
async def test_enqueue_and_pop_in_fifo_order() -> None:
    client = _FakeQueueClient()
    manager = PipelineTaskManager(queue_client=client, expire_in_seconds=60)

    await manager.enqueue("run_1")
    await manager.enqueue("run_2")

    assert await manager.get_queue_size() == 2
    first = await manager.pop_next(timeout_seconds=1)
    second = await manager.pop_next(timeout_seconds=1)
    assert first is not None and first.run_id == "run_1"
    assert second is not None and second.run_id == "run_2"
    assert first.expire_in_seconds == 60
    assert await manager.pop_next(timeout_seconds=1) is None


@pytest.mark.asyncio
async def test_enqueue_rejects_when_queue_is_full() -> None:
    manager = PipelineTaskManager(queue_client=_FakeQueueClient(), queue_size=1)
    await manager.enqueue("run_1")

    with pytest.raises(PipelineQueueFullError):
        await manager.enqueue("run_2")

    assert await manager.get_queue_size() == 1


@pytest.mark.asyncio
async def test_malformed_payload_is_dropped() -> None:
    client = _FakeQueueClient()
    manager = PipelineTaskManager(queue_client=client)
    key = "pipeline:queue:keyword-research"
    client.lists[key] = ["not json", json.dumps({"run_id": "", "expire_in_seconds": 5})]

    assert await manager.pop_next() is None
    assert await manager.pop_next() is None


@pytest.mark.asyncio
async def test_create_and_enqueue_run_queues_new_run() -> None:
    store = InMemoryPipelineRunStore()
    manager = PipelineTaskManager(queue_client=_FakeQueueClient())

    run = await create_and_enqueue_run(store, manager, JOB, schedule_key="weekly-gb")

    assert run.status == "queued"
    assert run.schedule_key == "weekly-gb"
    assert run.config.target_country == "GB"
    assert run.config.competitors == ["bill.com"]
    job = await manager.pop_next()
    assert job is not None and job.run_id == run.id


@pytest.mark.asyncio
async def test_create_and_enqueue_run_fails_run_when_queue_is_full() -> None:
    store = InMemoryPipelineRunStore()
    manager = PipelineTaskManager(queue_client=_FakeQueueClient(), queue_size=1)
    await manager.enqueue("someone-else")

    with pytest.raises(PipelineQueueFullError):
        await create_and_enqueue_run(store, manager, JOB)

    [run] = await store.list_runs()
    assert run.status == "failed"
    assert run.error == "Pipeline task queue is full"
    assert run.completed_at is not None
