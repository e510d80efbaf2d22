"""Keyword research worker process: queue consumers plus the cron scheduler.

    python -m app.workers.pipeline_worker --concurrency 2
    python -m app.workers.pipeline_worker --no-scheduler
    python -m app.workers.pipeline_worker --scheduler-only
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import suppress
from dataclasses import dataclass

from app.config import settings
from app.core.database import close_db
from app.core.logging import setup_logging
from app.core.redis import close_redis
from app.repositories.pipeline_run_repository import PipelineRunRepository
from app.repositories.pipeline_schedule_repository import PipelineScheduleRepository
from app.services.pipeline_orchestrator import PipelineOrchestrator
from app.services.pipeline_scheduler import PipelineScheduler
from app.services.pipeline_task_manager import (
    PipelineTaskManager,
    PipelineTaskWorker,
    get_pipeline_task_manager,
)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Consume keyword research jobs and fire schedules.")
    parser.add_argument("--poll-timeout", type=int, default=5, help="Redis BLPOP timeout (seconds).")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent runs in this process (default: PIPELINE_WORKER_CONCURRENCY).",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--no-scheduler", action="store_true", help="Only consume queued runs.")
    mode.add_argument("--scheduler-only", action="store_true", help="Only fire cron schedules.")
    return parser.parse_args(argv)


@dataclass
class WorkerProcess:
    """Components started by one worker process; either may be absent."""

    worker: PipelineTaskWorker | None
    scheduler: PipelineScheduler | None

    async def start(self) -> None:
        if self.worker is not None:
            await self.worker.start()
        if self.scheduler is not None:
            await self.scheduler.start()

    async def stop(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.worker is not None:
            await self.worker.stop()


def build_process(args: argparse.Namespace) -> WorkerProcess:
    """Wire stores, queue manager, worker pool and scheduler from CLI flags."""
    run_store = PipelineRunRepository()
    if args.concurrency is None:
        manager = get_pipeline_task_manager()
    else:
        manager = PipelineTaskManager(
            worker_count=args.concurrency,
            queue_size=settings.pipeline_queue_size,
            expire_in_seconds=settings.pipeline_job_expiry_seconds,
        )

    worker = None
    if not args.scheduler_only:
        worker = PipelineTaskWorker(
            manager=manager,
            orchestrator_factory=lambda: PipelineOrchestrator(run_store),
            poll_timeout_seconds=args.poll_timeout,
        )
    scheduler = None
    if not args.no_scheduler:
        scheduler = PipelineScheduler(
            schedule_store=PipelineScheduleRepository(),
            run_store=run_store,
            manager=manager,
            poll_seconds=settings.scheduler_poll_seconds,
        )
    return WorkerProcess(worker=worker, scheduler=scheduler)


async def _wait_for_shutdown() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)
    await stop_event.wait()
    logger.info("Shutdown signal received")


async def run_process(args: argparse.Namespace) -> int:
    setup_logging()
    missing = settings.missing_pipeline_credentials()
    if missing and not args.scheduler_only:
        logger.error("Worker cannot execute runs without credentials", extra={"missing": missing})
        return 1

    process = build_process(args)
    await process.start()
    logger.info(
        "Pipeline worker process started",
        extra={
            "workers": process.worker.manager.worker_count if process.worker else 0,
            "scheduler": process.scheduler is not None,
        },
    )
    try:
        await _wait_for_shutdown()
    finally:
        logger.info("Stopping pipeline worker process")
        await process.stop()
        await close_redis()
        await close_db()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run_process(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
