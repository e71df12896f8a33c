"""
Job-related type definitions handed to producers and workers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from balin.constants import UNLIMITED_ATTEMPTS, JobStatus
from balin.db.models import Job


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by task handlers after processing.
    """

    success: bool
    output: Any = None
    error: str | None = None
    # Fatal errors skip retries and end in the ERROR state
    fatal: bool = False
    retry_at: datetime | None = None
    duration_ms: float | None = None


@dataclass
class ClaimedJob:
    """
    Snapshot of a job as handed to the worker that claimed it.

    The payload is already decoded back into its original structure.
    """

    id: int
    task_name: str
    payload: Any
    status: JobStatus
    priority: int
    attempts: int
    max_attempts: int
    worker_id: str
    created_at: datetime
    updated_at: datetime
    scheduled_at: datetime | None

    @classmethod
    def from_model(cls, job: Job, payload: Any) -> "ClaimedJob":
        """Build a snapshot from a freshly claimed row."""
        return cls(
            id=job.id,
            task_name=job.task_name,
            payload=payload,
            status=JobStatus(job.status),
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            worker_id=job.worker_id,
            created_at=job.created_at,
            updated_at=job.updated_at,
            scheduled_at=job.scheduled_at,
        )

    @property
    def attempt(self) -> int:
        """The 1-based number of the attempt this claim represents."""
        return self.attempts + 1

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure on this attempt will be final."""
        if self.max_attempts == UNLIMITED_ATTEMPTS:
            return False
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int | None:
        """Attempts left after this one, or None if unlimited."""
        if self.max_attempts == UNLIMITED_ATTEMPTS:
            return None
        return max(0, self.max_attempts - self.attempt)
