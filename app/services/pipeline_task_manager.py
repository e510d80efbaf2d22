"""Redis-backed queueing for keyword research pipeline jobs."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from app.config import settings
from app.core.exceptions import PipelineQueueFullError
from app.core.redis import get_redis_queue_client
from app.repositories.pipeline_run_repository import PipelineRunStore
from app.schemas.pipeline import PipelineJobInput, PipelineRunResponse
from app.services.pipeline_orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

PIPELINE_QUEUE = "keyword-research"


class QueueClient(Protocol):
    async def llen(self, key: str) -> int: ...

    async def rpush(self, key: str, payload: str) -> int: ...

    async def blpop(self, key: str, *, timeout: int) -> tuple[str, str] | None: ...


@dataclass(slots=True)
class PipelineTaskJob:
    """Queued pipeline execution job."""

    run_id: str
    expire_in_seconds: int
    enqueued_at: float


class PipelineTaskManager:
    """Redis-backed enqueue/dequeue manager for keyword research runs.

    Jobs are never retried: a run that fails or expires stays failed.
    """

    def __init__(
        self,
        *,
        queue_client: QueueClient | None = None,
        worker_count: int = 1,
        queue_size: int = 100,
        expire_in_seconds: int = 1800,
    ) -> None:
        self._worker_count = max(1, worker_count)
        self._queue_size_limit = max(1, queue_size)
        self.expire_in_seconds = max(1, int(expire_in_seconds))
        self._queue = queue_client or get_redis_queue_client()

    @property
    def worker_count(self) -> int:
        """Configured worker count for this queue."""
        return self._worker_count

    @property
    def queue_size_limit(self) -> int:
        """Configured queue size cap."""
        return self._queue_size_limit

    async def get_queue_size(self) -> int:
        """Get current queue length from Redis."""
        return int(await self._queue.llen(self._queue_key()))

    async def enqueue(self, run_id: str) -> None:
        """Queue a run for execution."""
        pending = int(await self._queue.llen(self._queue_key()))
        if pending >= self._queue_size_limit:
            raise PipelineQueueFullError()
        job = PipelineTaskJob(
            run_id=run_id,
            expire_in_seconds=self.expire_in_seconds,
            enqueued_at=time.time(),
        )
        queue_size = int(await self._queue.rpush(self._queue_key(), self._serialize_job(job)))
        logger.info(
            "Pipeline task queued",
            extra={"queue": PIPELINE_QUEUE, "run_id": run_id, "queue_size": queue_size},
        )

    async def pop_next(self, *, timeout_seconds: int = 5) -> PipelineTaskJob | None:
        """Pop the next queued job."""
        timeout = max(1, int(timeout_seconds))
        popped = await self._queue.blpop(self._queue_key(), timeout=timeout)
        if not popped:
            return None
        _, payload = popped
        try:
            return self._deserialize_job(payload)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning(
                "Dropping malformed pipeline job payload",
                extra={"queue": PIPELINE_QUEUE, "payload": payload},
            )
            return None

    def _queue_key(self) -> str:
        return f"pipeline:queue:{PIPELINE_QUEUE}"

    @staticmethod
    def _serialize_job(job: PipelineTaskJob) -> str:
        return json.dumps(
            {
                "run_id": job.run_id,
                "expire_in_seconds": job.expire_in_seconds,
                "enqueued_at": job.enqueued_at,
            },
            separators=(",", ":"),
        )

    @staticmethod
    def _deserialize_job(payload: str) -> PipelineTaskJob:
        data = json.loads(payload)
        run_id = data["run_id"]
        expire_in_seconds = int(data["expire_in_seconds"])
        if not isinstance(run_id, str) or not run_id:
            raise ValueError("Invalid run_id")
        if expire_in_seconds < 1:
            raise ValueError("Invalid expire_in_seconds")
        return PipelineTaskJob(
            run_id=run_id,
            expire_in_seconds=expire_in_seconds,
            enqueued_at=float(data.get("enqueued_at") or 0.0),
        )


async def create_and_enqueue_run(
    store: PipelineRunStore,
    manager: PipelineTaskManager,
    job: PipelineJobInput,
    *,
    schedule_key: str | None = None,
) -> PipelineRunResponse:
    """Create a queued run row and hand it to the queue.

    If the queue rejects the job the row is failed immediately so it never
    sits queued without a job behind it.
    """
    run = await store.create(job, schedule_key=schedule_key)
    try:
        await manager.enqueue(run.id)
    except Exception as exc:
        await store.transition(
            run.id,
            from_status="queued",
            to_status="failed",
            error=str(exc) or type(exc).__name__,
            completed=True,
        )
        raise
    return run


class PipelineTaskWorker:
    """Async worker pool consuming Redis jobs for keyword research runs."""

    def __init__(
        self,
        *,
        manager: PipelineTaskManager,
        orchestrator_factory: Callable[[], PipelineOrchestrator],
        poll_timeout_seconds: int = 5,
        dequeue_retry_delay_seconds: float = 1.0,
    ) -> None:
        self.manager = manager
        self.orchestrator_factory = orchestrator_factory
        self.poll_timeout_seconds = max(1, int(poll_timeout_seconds))
        self.dequeue_retry_delay_seconds = max(0.0, float(dequeue_retry_delay_seconds))
        self._workers: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start worker tasks if not already running."""
        if self._workers:
            return
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(
                self._worker_loop(index + 1),
                name=f"{PIPELINE_QUEUE}-pipeline-worker-{index + 1}",
            )
            for index in range(self.manager.worker_count)
        ]
        logger.info(
            "Pipeline worker pool started",
            extra={"queue": PIPELINE_QUEUE, "worker_count": self.manager.worker_count},
        )

    async def stop(self) -> None:
        """Stop worker tasks."""
        if not self._workers:
            return
        self._stopping.set()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Pipeline worker pool stopped", extra={"queue": PIPELINE_QUEUE})

    async def _worker_loop(self, worker_index: int) -> None:
        logger.info(
            "Pipeline worker started",
            extra={"queue": PIPELINE_QUEUE, "worker_index": worker_index},
        )
        try:
            while not self._stopping.is_set():
                try:
                    job = await self.manager.pop_next(timeout_seconds=self.poll_timeout_seconds)
                except Exception:
                    logger.exception(
                        "Pipeline worker dequeue failed",
                        extra={"queue": PIPELINE_QUEUE, "worker_index": worker_index},
                    )
                    await asyncio.sleep(self.dequeue_retry_delay_seconds)
                    continue
                if job is None:
                    continue
                try:
                    await self._execute(job)
                except Exception:
                    logger.exception(
                        "Pipeline worker job failed",
                        extra={
                            "queue": PIPELINE_QUEUE,
                            "worker_index": worker_index,
                            "run_id": job.run_id,
                        },
                    )
        except asyncio.CancelledError:
            pass
        finally:
            logger.info(
                "Pipeline worker stopped",
                extra={"queue": PIPELINE_QUEUE, "worker_index": worker_index},
            )

    async def _execute(self, job: PipelineTaskJob) -> None:
        orchestrator = self.orchestrator_factory()
        try:
            await asyncio.wait_for(orchestrator.execute(job.run_id), timeout=job.expire_in_seconds)
        except asyncio.TimeoutError:
            message = f"Pipeline job expired after {job.expire_in_seconds}s"
            logger.warning(
                "Pipeline job expired",
                extra={"run_id": job.run_id, "expire_in_seconds": job.expire_in_seconds},
            )
            await orchestrator.fail_run(job.run_id, message)


_pipeline_task_manager: PipelineTaskManager | None = None


def get_pipeline_task_manager() -> PipelineTaskManager:
    """Get singleton task manager."""
    global _pipeline_task_manager
    if _pipeline_task_manager is None:
        _pipeline_task_manager = PipelineTaskManager(
            worker_count=settings.pipeline_worker_concurrency,
            queue_size=settings.pipeline_queue_size,
            expire_in_seconds=settings.pipeline_job_expiry_seconds,
        )
    return _pipeline_task_manager
