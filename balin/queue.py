"""
Queue handle.

A Queue is built once per process with create_queue() and passed to the
producers, workers and reapers that share it. It owns the database
connection pool and the claim variant picked for the backend.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from balin.claim import ClaimStrategy, claim_strategy_for
from balin.config import Settings, get_settings
from balin.db.connection import Database, parse_database_url
from balin.db.models import Job
from balin.db.repository import JobRepository
from balin.errors import (
    ConfigurationError,
    PayloadDecodeError,
    PayloadEncodeError,
    StoreUnavailableError,
)
from balin.observability.metrics import MetricsCollector, get_metrics
from balin.types.job import ClaimedJob
from balin.utils import as_timedelta, new_worker_id, to_utc_naive, utc_now

logger = logging.getLogger(__name__)


class Queue:
    """
    Durable job queue backed by one SQL database.

    Core operations:
    - enqueue: persist a new pending job
    - claim / claim_task: atomically take ownership of the next eligible job
    - report_success / report_failure / report_error: record the outcome
    - release_stale: recover jobs abandoned by dead workers

    Report operations return the number of rows they changed; 0 means the id
    is unknown, the job is no longer processing, or another worker owns it.
    """

    def __init__(
        self,
        database: Database,
        claim_strategy: ClaimStrategy,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            database: Database the queue lives in.
            claim_strategy: Claim variant matching the database backend.
            settings: Queue settings. Defaults to the process settings.
            metrics: Metrics collector. Defaults to the process collector.
        """
        self.database = database
        self.settings = settings or get_settings()
        self._claim_strategy = claim_strategy
        self.metrics = metrics or get_metrics()

    async def __aenter__(self) -> "Queue":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def create_schema(self) -> None:
        """Create the queue table if it does not exist yet."""
        await self.database.create_schema()

    async def close(self) -> None:
        """Release the connection pool."""
        await self.database.dispose()

    async def enqueue(
        self,
        task_name: str,
        payload: Any,
        priority: int | None = None,
        max_attempts: int | None = None,
        scheduled_at: datetime | None = None,
    ) -> int:
        """
        Add a job to the queue.

        Args:
            task_name: Logical task type, used by task-filtered claims.
            payload: Any JSON-serializable structure.
            priority: Ordering key, lower values are claimed first.
            max_attempts: Attempt ceiling, 0 for unlimited retries.
            scheduled_at: Earliest claim time. Defaults to now.

        Returns:
            The new job id.

        Raises:
            ValueError: If the task name is empty or max_attempts is negative.
            PayloadEncodeError: If the payload cannot be serialized or would
                not decode back to an equal value.
        """
        if not task_name or not task_name.strip():
            raise ValueError("Task name cannot be empty.")

        priority = self.settings.default_priority if priority is None else priority
        if max_attempts is None:
            max_attempts = self.settings.default_max_attempts
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0 (0 means unlimited).")

        try:
            encoded = json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise PayloadEncodeError(task_name) from e

        # Non-string keys and tuples serialize but would come back altered
        if json.loads(encoded) != payload:
            raise PayloadEncodeError(task_name)

        now = utc_now()
        run_at = to_utc_naive(scheduled_at) if scheduled_at is not None else now

        async with self.database.session() as session:
            repo = JobRepository(session)
            job = await repo.create_job(
                task_name=task_name,
                payload=encoded,
                priority=priority,
                max_attempts=max_attempts,
                scheduled_at=run_at,
                now=now,
            )
            job_id = job.id

        self.metrics.record_job_enqueued(task_name)
        return job_id

    async def claim(self, worker_id: str | None = None) -> ClaimedJob | None:
        """
        Claim the next eligible job of any task.

        Args:
            worker_id: Owner to stamp on the job. Generated if omitted.

        Returns:
            The claimed job, or None if nothing is eligible.

        Raises:
            PayloadDecodeError: The job was claimed but its payload is corrupt.
        """
        return await self._claim(task_name=None, worker_id=worker_id)

    async def claim_task(
        self,
        task_name: str,
        worker_id: str | None = None,
    ) -> ClaimedJob | None:
        """
        Claim the next eligible job of one task.

        Args:
            task_name: Only jobs with this task name are considered.
            worker_id: Owner to stamp on the job. Generated if omitted.

        Returns:
            The claimed job, or None if nothing is eligible.

        Raises:
            PayloadDecodeError: The job was claimed but its payload is corrupt.
        """
        return await self._claim(task_name=task_name, worker_id=worker_id)

    async def _claim(
        self,
        task_name: str | None,
        worker_id: str | None,
    ) -> ClaimedJob | None:
        worker_id = worker_id or new_worker_id()

        job = await self._claim_strategy.claim(
            self.database,
            worker_id=worker_id,
            now=utc_now(),
            task_name=task_name,
        )
        if job is None:
            return None

        self.metrics.record_job_claimed(job.task_name)
        logger.info(
            "Claimed job",
            extra={"job_id": job.id, "task_name": job.task_name, "worker_id": worker_id},
        )

        # Decoded after commit; a corrupt payload leaves the job claimed
        try:
            payload = json.loads(job.payload)
        except (TypeError, ValueError) as e:
            raise PayloadDecodeError(job.id, job.task_name) from e

        return ClaimedJob.from_model(job, payload)

    async def report_success(self, job_id: int, worker_id: str | None = None) -> int:
        """
        Mark a claimed job as done. It is never claimed again.

        Args:
            job_id: The job id.
            worker_id: If given, only succeeds while this worker owns the job.

        Returns:
            Number of rows changed (0 or 1).
        """
        async with self.database.session() as session:
            return await JobRepository(session).mark_success(
                job_id, now=utc_now(), worker_id=worker_id
            )

    async def report_failure(
        self,
        job_id: int,
        retry_at: datetime | None = None,
        worker_id: str | None = None,
    ) -> int:
        """
        Record a failed attempt.

        The job returns to PENDING while attempts remain (or max_attempts is
        0), otherwise it becomes FAILED.

        Args:
            job_id: The job id.
            retry_at: Earliest retry time. Defaults to now.
            worker_id: If given, only succeeds while this worker owns the job.

        Returns:
            Number of rows changed (0 or 1).
        """
        now = utc_now()
        retry_at = to_utc_naive(retry_at) if retry_at is not None else now

        async with self.database.session() as session:
            return await JobRepository(session).mark_failure(
                job_id, now=now, retry_at=retry_at, worker_id=worker_id
            )

    async def report_error(
        self,
        job_id: int,
        message: str,
        worker_id: str | None = None,
    ) -> int:
        """
        Record a fatal, non-retryable error. Attempts are not incremented.

        Args:
            job_id: The job id.
            message: Error text stored on the job.
            worker_id: If given, only succeeds while this worker owns the job.

        Returns:
            Number of rows changed (0 or 1).
        """
        async with self.database.session() as session:
            return await JobRepository(session).mark_error(
                job_id, message, now=utc_now(), worker_id=worker_id
            )

    async def release_stale(
        self,
        max_lock_age: timedelta | int | float | None = None,
    ) -> int:
        """
        Return jobs locked for at least ``max_lock_age`` to PENDING.

        A slow worker cannot be told apart from a dead one, so the threshold
        must exceed the longest expected job run time.

        Args:
            max_lock_age: Timedelta or seconds. Defaults to the configured
                lock lifetime.

        Returns:
            Number of released jobs.

        Raises:
            ValueError: If max_lock_age is negative.
        """
        if max_lock_age is None:
            max_lock_age = self.settings.lock_max_age_seconds

        age = as_timedelta(max_lock_age)
        if age < timedelta(0):
            raise ValueError("max_lock_age must be >= 0.")

        now = utc_now()
        cutoff = now - age

        async with self.database.session() as session:
            count = await JobRepository(session).release_stale(cutoff, now)

        if count:
            self.metrics.record_stale_released(count)
        return count

    async def get_job(self, job_id: int) -> Job | None:
        """Fetch a stored job row by id."""
        async with self.database.session() as session:
            return await JobRepository(session).get_job(job_id)

    async def count_by_status(self) -> dict[str, int]:
        """Number of stored jobs per status."""
        async with self.database.session() as session:
            return await JobRepository(session).count_by_status()

    async def queue_depth(self, task_name: str | None = None) -> int:
        """Number of jobs a claim issued now could select."""
        async with self.database.session() as session:
            return await JobRepository(session).count_eligible(utc_now(), task_name)


async def create_queue(
    settings: Settings | None = None,
    *,
    database_url: str | None = None,
    metrics: MetricsCollector | None = None,
) -> Queue:
    """
    Build a queue for the configured store and make sure its schema exists.

    Args:
        settings: Queue settings. Defaults to the process settings.
        database_url: Overrides ``settings.database_url``.
        metrics: Metrics collector. Defaults to the process collector.

    Returns:
        A ready Queue. Close it with ``await queue.close()`` or ``async with``.

    Raises:
        ConfigurationError: If the URL is malformed or the backend unsupported.
        StoreUnavailableError: If the store cannot be reached.
    """
    settings = settings or get_settings()
    url = parse_database_url(database_url or settings.database_url)

    # Unsupported backends fail before any connection is attempted
    strategy = claim_strategy_for(url.get_backend_name(), settings.claim_max_retries)

    try:
        database = Database(
            url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level.upper() == "DEBUG",
            sqlite_busy_timeout_seconds=settings.sqlite_busy_timeout_seconds,
        )
    except (SQLAlchemyError, ImportError) as e:
        raise ConfigurationError(f"Cannot create database engine: {e}") from e
    except OSError as e:
        raise StoreUnavailableError(f"Cannot prepare database location: {e}") from e

    queue = Queue(database, strategy, settings=settings, metrics=metrics)
    try:
        await queue.create_schema()
    except (SQLAlchemyError, OSError) as e:
        await database.dispose()
        raise StoreUnavailableError(f"Cannot initialize queue store: {e}") from e

    logger.info("Queue ready", extra={"dialect": database.dialect})
    return queue
