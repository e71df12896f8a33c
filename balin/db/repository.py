"""
Job repository for database operations.
Implements the data access primitives behind the queue state machine.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, case, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from balin.constants import UNLIMITED_ATTEMPTS, JobStatus
from balin.db.models import Job

logger = logging.getLogger(__name__)


def eligibility_filters(
    now: datetime,
    task_name: str | None = None,
    job: type[Job] = Job,
) -> list[ColumnElement]:
    """
    Predicates a job must satisfy to be claimed at ``now``.

    Args:
        now: Claim time (naive UTC).
        task_name: Optional task filter.
        job: Job entity or alias the predicates refer to.

    Returns:
        List of SQL expressions to AND together.
    """
    filters = [
        job.status == JobStatus.PENDING,
        job.locked.is_(False),
        job.is_active.is_(True),
        or_(job.scheduled_at.is_(None), job.scheduled_at <= now),
        or_(
            job.attempts < job.max_attempts,
            job.max_attempts == UNLIMITED_ATTEMPTS,
        ),
    ]
    if task_name is not None:
        filters.append(job.task_name == task_name)
    return filters


def claim_order(job: type[Job] = Job) -> tuple:
    """Lower priority value first, then earliest schedule, then oldest."""
    return (
        job.priority.asc(),
        job.scheduled_at.asc(),
        job.created_at.asc(),
        job.id.asc(),
    )


class JobRepository:
    """
    Repository for queue database operations.

    Every method is a single parameterized statement against the session it
    was built with; transaction boundaries belong to the caller.

    Implements:
    - Job insertion
    - Eligible job selection (optionally with row lock skipping)
    - Guarded status transitions
    - Stale lock release
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        task_name: str,
        payload: str,
        priority: int,
        max_attempts: int,
        scheduled_at: datetime,
        now: datetime,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            task_name: Logical task type.
            payload: Serialized payload text.
            priority: Ordering key, lower first.
            max_attempts: Attempt ceiling, 0 for unlimited.
            scheduled_at: Earliest claim time.
            now: Creation time.

        Returns:
            The inserted Job with its id assigned.
        """
        job = Job(
            task_name=task_name,
            payload=payload,
            status=JobStatus.PENDING,
            priority=priority,
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
            scheduled_at=scheduled_at,
            worker_id=None,
            error_message=None,
            locked=False,
            is_active=True,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Enqueued job",
            extra={"job_id": job.id, "task_name": task_name, "priority": priority},
        )
        return job

    async def get_job(self, job_id: int) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        # Bulk updates skip the identity map, so reload any cached instance
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def select_next_eligible_id(
        self,
        now: datetime,
        task_name: str | None = None,
        skip_locked: bool = False,
    ) -> int | None:
        """
        Find the id of the first eligible job in claim order.

        Args:
            now: Claim time.
            task_name: Optional task filter.
            skip_locked: Lock the selected row with FOR UPDATE SKIP LOCKED.

        Returns:
            The job id, or None if nothing is eligible.
        """
        stmt = (
            select(Job.id)
            .where(and_(*eligibility_filters(now, task_name)))
            .order_by(*claim_order())
            .limit(1)
        )
        if skip_locked:
            stmt = stmt.with_for_update(skip_locked=True)

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_processing(
        self,
        job_id: int,
        worker_id: str,
        now: datetime,
    ) -> int:
        """
        Transition a pending job to PROCESSING owned by ``worker_id``.

        The update re-checks that the row is still pending and unlocked, so a
        concurrent winner makes this affect zero rows.

        Args:
            job_id: The job id.
            worker_id: Claim owner.
            now: Claim time.

        Returns:
            Number of rows updated (0 or 1).
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PENDING,
                    Job.locked.is_(False),
                )
            )
            .values(
                status=JobStatus.PROCESSING,
                locked=True,
                worker_id=worker_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def claim_next_eligible(
        self,
        worker_id: str,
        now: datetime,
        task_name: str | None = None,
    ) -> int | None:
        """
        Select and lock the first eligible job in one UPDATE ... RETURNING.

        The candidate subquery runs inside the writing statement, so on a
        single-writer engine no other claim can take the row in between.

        Args:
            worker_id: Claim owner.
            now: Claim time.
            task_name: Optional task filter.

        Returns:
            The claimed job id, or None if nothing is eligible.
        """
        candidate = aliased(Job)
        next_id = (
            select(candidate.id)
            .where(and_(*eligibility_filters(now, task_name, job=candidate)))
            .order_by(*claim_order(candidate))
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == next_id,
                    Job.status == JobStatus.PENDING,
                    Job.locked.is_(False),
                )
            )
            .values(
                status=JobStatus.PROCESSING,
                locked=True,
                worker_id=worker_id,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def _owned(self, job_id: int, worker_id: str | None) -> ColumnElement:
        """Guard shared by all outcome reports: the job is still processing."""
        guard = [Job.id == job_id, Job.status == JobStatus.PROCESSING]
        if worker_id is not None:
            guard.append(Job.worker_id == worker_id)
        return and_(*guard)

    async def mark_success(
        self,
        job_id: int,
        now: datetime,
        worker_id: str | None = None,
    ) -> int:
        """
        Mark a processing job as successfully completed.

        Args:
            job_id: The job id.
            now: Report time.
            worker_id: If given, only the owning worker may report.

        Returns:
            Number of rows updated (0 or 1).
        """
        stmt = (
            update(Job)
            .where(self._owned(job_id, worker_id))
            .values(
                status=JobStatus.SUCCESS,
                locked=False,
                worker_id=None,
                is_active=False,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count:
            logger.info("Job completed successfully", extra={"job_id": job_id})
        return count

    async def mark_failure(
        self,
        job_id: int,
        now: datetime,
        retry_at: datetime,
        worker_id: str | None = None,
    ) -> int:
        """
        Record a failed attempt. Either requeue the job or mark it FAILED.

        Args:
            job_id: The job id.
            now: Report time.
            retry_at: Earliest time the job may be claimed again if requeued.
            worker_id: If given, only the owning worker may report.

        Returns:
            Number of rows updated (0 or 1).
        """
        exhausted = and_(
            Job.max_attempts != UNLIMITED_ATTEMPTS,
            Job.attempts + 1 >= Job.max_attempts,
        )

        # MySQL evaluates SET assignments left to right, so attempts goes last
        stmt = (
            update(Job)
            .where(self._owned(job_id, worker_id))
            .ordered_values(
                (
                    Job.status,
                    case(
                        (exhausted, JobStatus.FAILED.value),
                        else_=JobStatus.PENDING.value,
                    ),
                ),
                (
                    Job.scheduled_at,
                    case(
                        (exhausted, Job.scheduled_at),
                        else_=literal(retry_at, Job.scheduled_at.type),
                    ),
                ),
                (Job.locked, False),
                (Job.worker_id, None),
                (Job.updated_at, now),
                (Job.attempts, Job.attempts + 1),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count:
            logger.info("Job failure recorded", extra={"job_id": job_id})
        return count

    async def mark_error(
        self,
        job_id: int,
        message: str,
        now: datetime,
        worker_id: str | None = None,
    ) -> int:
        """
        Mark a processing job as fatally errored. Attempts are left unchanged.

        Args:
            job_id: The job id.
            message: Error text to record.
            now: Report time.
            worker_id: If given, only the owning worker may report.

        Returns:
            Number of rows updated (0 or 1).
        """
        stmt = (
            update(Job)
            .where(self._owned(job_id, worker_id))
            .values(
                status=JobStatus.ERROR,
                locked=False,
                worker_id=None,
                error_message=message,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count:
            logger.warning(
                "Job errored",
                extra={"job_id": job_id, "error": message},
            )
        return count

    async def release_stale(self, cutoff: datetime, now: datetime) -> int:
        """
        Return processing jobs not updated since ``cutoff`` to PENDING.

        This is the only recovery path for workers that die mid-job.

        Args:
            cutoff: Jobs updated at or before this time are considered stale.
            now: Sweep time.

        Returns:
            Number of released jobs.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.status == JobStatus.PROCESSING,
                    Job.updated_at <= cutoff,
                )
            )
            .values(
                status=JobStatus.PENDING,
                locked=False,
                worker_id=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(f"Released {count} jobs with stale locks")

        return count

    async def count_eligible(self, now: datetime, task_name: str | None = None) -> int:
        """
        Count jobs a claim issued at ``now`` could select.

        Args:
            now: Reference time.
            task_name: Optional task filter.

        Returns:
            Number of eligible jobs.
        """
        stmt = (
            select(func.count())
            .select_from(Job)
            .where(and_(*eligibility_filters(now, task_name)))
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def count_by_status(self) -> dict[str, int]:
        """
        Get job counts by status.

        Returns:
            Dictionary of status -> count, including zero counts.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)

        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[JobStatus(status).value] = count
        return counts
