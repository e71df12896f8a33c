"""
Balin

A durable job queue stored in a SQL database (SQLite, PostgreSQL or MySQL)
with atomic claims, bounded retries, delayed scheduling and stale-lock
recovery.
"""

__version__ = "1.0.0"

from balin.constants import JobStatus
from balin.errors import (
    BalinError,
    ClaimContentionError,
    ConfigurationError,
    PayloadDecodeError,
    PayloadEncodeError,
    StoreUnavailableError,
    UnsupportedBackendError,
)
from balin.queue import Queue, create_queue
from balin.types.job import ClaimedJob, JobResult

__all__ = [
    "__version__",
    "Queue",
    "create_queue",
    "ClaimedJob",
    "JobResult",
    "JobStatus",
    "BalinError",
    "ConfigurationError",
    "UnsupportedBackendError",
    "StoreUnavailableError",
    "PayloadEncodeError",
    "PayloadDecodeError",
    "ClaimContentionError",
]
