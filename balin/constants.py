"""
Queue constants.
Job states, defaults, and the names used for metrics and trace spans.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> SUCCESS (success reported)
    - PROCESSING -> PENDING (failure reported, retries left)
    - PROCESSING -> FAILED (failure reported, retries exhausted)
    - PROCESSING -> ERROR (fatal error reported)
    - PROCESSING -> PENDING (stale lock released - crash recovery)

    SUCCESS, FAILED and ERROR are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.ERROR}
)

# max_attempts sentinel meaning "retry forever"
UNLIMITED_ATTEMPTS = 0


def failure_outcome(attempts: int, max_attempts: int) -> JobStatus:
    """
    Status a processing job moves to when a failure is reported.

    Args:
        attempts: Attempts recorded before this failure.
        max_attempts: Attempt ceiling, 0 for unlimited.

    Returns:
        PENDING if the job will be retried, FAILED otherwise.
    """
    if max_attempts == UNLIMITED_ATTEMPTS:
        return JobStatus.PENDING
    if attempts + 1 >= max_attempts:
        return JobStatus.FAILED
    return JobStatus.PENDING


# Default values
DEFAULT_PRIORITY = 99  # lower value is claimed first
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LOCK_MAX_AGE_SECONDS = 3600

TABLE_NAME = "balin_queue"

# Metrics names
METRIC_JOBS_ENQUEUED = "balin_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "balin_jobs_claimed_total"
METRIC_JOBS_COMPLETED = "balin_jobs_completed_total"
METRIC_JOB_DURATION = "balin_job_duration_seconds"
METRIC_STALE_RELEASED = "balin_stale_locks_released_total"
METRIC_QUEUE_JOBS = "balin_queue_jobs"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RELEASE_STALE = "release_stale"
