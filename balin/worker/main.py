"""
Worker process for executing jobs.

The worker claims jobs from the queue, runs the registered handler and
reports the outcome. Each concurrency slot holds at most one job at a time.
"""

import asyncio
import importlib
import logging
import signal
from datetime import timedelta

from balin.bootstrap import start_services
from balin.config import get_settings
from balin.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, JobStatus, failure_outcome
from balin.errors import PayloadDecodeError
from balin.observability.logging import bind_job_context, clear_job_context
from balin.observability.tracing import get_tracer
from balin.queue import Queue
from balin.types.job import ClaimedJob, JobResult
from balin.utils import process_identity, utc_now
from balin.worker.handlers import execute_job

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claims through the queue's backend-specific claim variant
    - Optional task filter so a worker only serves one task name
    - Concurrent slots sharing one queue and connection pool
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        queue: Queue,
        worker_id: str | None = None,
        task_name: str | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        retry_delay: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: The queue to claim from.
            worker_id: Worker identifier. Defaults to hostname + PID.
            task_name: Only claim jobs of this task name.
            concurrency: Number of jobs executed at the same time.
            poll_interval: Seconds between polls when the queue is empty.
            retry_delay: Seconds before a failed job becomes eligible again.

        Raises:
            ValueError: If concurrency is below 1.
        """
        settings = queue.settings

        self.queue = queue
        self.worker_id = worker_id or settings.worker_id or process_identity()
        self.task_name = task_name
        if concurrency is None:
            concurrency = settings.worker_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1.")
        self.concurrency = concurrency
        if poll_interval is None:
            poll_interval = settings.worker_poll_interval_seconds
        self.poll_interval = poll_interval
        if retry_delay is None:
            retry_delay = settings.worker_retry_delay_seconds
        self.retry_delay = retry_delay

        self._running = False

    def slot_worker_id(self, slot: int) -> str:
        """Owner id stamped on jobs claimed by the given slot."""
        if self.concurrency == 1:
            return self.worker_id
        return f"{self.worker_id}-{slot}"

    async def start(self) -> None:
        """Run the polling slots until stop() is called."""
        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "task_name": self.task_name,
                "concurrency": self.concurrency,
            },
        )
        self._running = True

        await asyncio.gather(
            *(self._slot_loop(self.slot_worker_id(slot)) for slot in range(self.concurrency))
        )

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker gracefully. Jobs in flight are finished first."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def _slot_loop(self, worker_id: str) -> None:
        while self._running:
            try:
                processed = await self.run_once(worker_id)
                if not processed:
                    await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.exception(
                    "Error in worker loop",
                    extra={"worker_id": worker_id, "error": str(e)},
                )
                await asyncio.sleep(self.poll_interval)

    async def run_once(self, worker_id: str | None = None) -> bool:
        """
        Claim and process a single job.

        Args:
            worker_id: Owner id for the claim. Defaults to the worker id.

        Returns:
            True if a job was claimed, False if none was eligible.
        """
        worker_id = worker_id or self.worker_id
        tracer = get_tracer()

        with tracer.start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", worker_id)
            try:
                if self.task_name:
                    job = await self.queue.claim_task(self.task_name, worker_id=worker_id)
                else:
                    job = await self.queue.claim(worker_id=worker_id)
            except PayloadDecodeError as e:
                logger.error(
                    "Claimed job has an undecodable payload",
                    extra={"job_id": e.job_id, "task_name": e.task_name},
                )
                await self.queue.report_error(e.job_id, str(e), worker_id=worker_id)
                self.queue.metrics.record_job_completed(e.task_name, JobStatus.ERROR.value, 0.0)
                return True

        if job is None:
            return False

        bind_job_context(job.id, job.task_name, worker_id)
        try:
            with tracer.start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("task_name", job.task_name)
                span.set_attribute("attempt", job.attempt)

                result = await execute_job(job)

            await self._report(job, result)
        finally:
            clear_job_context()

        return True

    async def _report(self, job: ClaimedJob, result: JobResult) -> None:
        """Record the handler result on the job."""
        duration = (result.duration_ms or 0.0) / 1000

        if result.success:
            status = JobStatus.SUCCESS
            changed = await self.queue.report_success(job.id, worker_id=job.worker_id)
        elif result.fatal:
            status = JobStatus.ERROR
            changed = await self.queue.report_error(
                job.id, result.error or "Unknown error", worker_id=job.worker_id
            )
        else:
            status = failure_outcome(job.attempts, job.max_attempts)
            retry_at = result.retry_at
            if retry_at is None and self.retry_delay:
                retry_at = utc_now() + timedelta(seconds=self.retry_delay)
            changed = await self.queue.report_failure(
                job.id, retry_at=retry_at, worker_id=job.worker_id
            )

        if not changed:
            # The lock was released by a reaper and possibly re-claimed
            logger.warning(
                "Outcome not recorded, job no longer owned",
                extra={"job_id": job.id, "status": status.value},
            )
            return

        self.queue.metrics.record_job_completed(job.task_name, status.value, duration)

        if status == JobStatus.SUCCESS:
            logger.info(
                "Job completed successfully",
                extra={"job_id": job.id, "duration": f"{duration:.2f}s"},
            )
        else:
            logger.warning(
                "Job failed",
                extra={
                    "job_id": job.id,
                    "status": status.value,
                    "error": result.error,
                    "attempt": job.attempt,
                },
            )


def import_handler_modules(modules: list[str]) -> None:
    """Import the configured modules so their handlers register themselves."""
    for name in modules:
        importlib.import_module(name)
        logger.info("Loaded handler module", extra={"handler_module": name})


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    queue = await start_services(settings)
    import_handler_modules(settings.worker_imports)

    worker = Worker(queue, task_name=settings.worker_task_name)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await queue.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
