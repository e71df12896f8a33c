"""
Claim protocol variants.

A claim selects the first eligible job and moves it to PROCESSING so that no
two callers ever receive the same job. Each backend gets the variant its
engine can support:

- SkipLockedClaim: PostgreSQL and MySQL. Row locks taken with
  ``FOR UPDATE SKIP LOCKED`` let concurrent claimers pass over each other's
  candidates inside one transaction.
- CompareAndSwapClaim: SQLite. The engine has a single writer and no row
  locks, so selection and update happen in one statement under the write
  lock, guarded on the row still being pending.
"""

import asyncio
import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import OperationalError

from balin.db.connection import Database
from balin.db.models import Job
from balin.db.repository import JobRepository
from balin.errors import ClaimContentionError, UnsupportedBackendError

logger = logging.getLogger(__name__)


class ClaimStrategy(Protocol):
    """Atomically select and lock the next eligible job."""

    async def claim(
        self,
        database: Database,
        worker_id: str,
        now: datetime,
        task_name: str | None = None,
    ) -> Job | None:
        """
        Claim one job for ``worker_id``.

        Returns:
            The claimed row as stored after the transition, or None.
        """
        ...


class SkipLockedClaim:
    """Claim inside one transaction using row-level lock skipping."""

    async def claim(
        self,
        database: Database,
        worker_id: str,
        now: datetime,
        task_name: str | None = None,
    ) -> Job | None:
        async with database.session() as session:
            repo = JobRepository(session)

            job_id = await repo.select_next_eligible_id(
                now, task_name=task_name, skip_locked=True
            )
            if job_id is None:
                return None

            # The row lock is held until commit, so this cannot lose the race
            await repo.mark_processing(job_id, worker_id, now)
            return await repo.get_job(job_id)


class CompareAndSwapClaim:
    """
    Claim with a single guarded UPDATE ... RETURNING.

    The candidate is chosen by a subquery inside the update, which SQLite runs
    under the database write lock, so claimers on other connections or
    processes queue on the lock instead of racing for the same row. Claims
    made through the same instance are also serialized by an asyncio lock.
    """

    def __init__(self, max_retries: int = 5):
        """
        Args:
            max_retries: Attempts against a locked database file before
                giving up with ClaimContentionError.
        """
        self.max_retries = max_retries
        self._lock = asyncio.Lock()

    async def claim(
        self,
        database: Database,
        worker_id: str,
        now: datetime,
        task_name: str | None = None,
    ) -> Job | None:
        async with self._lock:
            for attempt in range(1, self.max_retries + 1):
                try:
                    async with database.session() as session:
                        repo = JobRepository(session)

                        job_id = await repo.claim_next_eligible(
                            worker_id, now, task_name=task_name
                        )
                        if job_id is None:
                            return None
                        return await repo.get_job(job_id)
                except OperationalError as e:
                    # Busy timeout ran out while another writer held the file
                    if "locked" not in str(e.orig):
                        raise
                    logger.warning(
                        "Database locked during claim, retrying",
                        extra={"worker_id": worker_id, "attempt": attempt},
                    )

        raise ClaimContentionError(self.max_retries)


def claim_strategy_for(dialect: str, max_retries: int = 5) -> ClaimStrategy:
    """
    Pick the claim variant for a database dialect.

    Args:
        dialect: SQLAlchemy backend name, e.g. ``postgresql``.
        max_retries: Retry budget for compare-and-swap claims.

    Returns:
        A claim strategy for the dialect.

    Raises:
        UnsupportedBackendError: If the dialect has no claim variant.
    """
    if dialect in ("postgresql", "mysql"):
        return SkipLockedClaim()
    if dialect == "sqlite":
        return CompareAndSwapClaim(max_retries=max_retries)
    raise UnsupportedBackendError(dialect)
