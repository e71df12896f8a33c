"""
Type definitions for the queue.
Contains the job snapshot and execution result handed between queue and workers.
"""

from balin.types.job import ClaimedJob, JobResult

__all__ = [
    "ClaimedJob",
    "JobResult",
]
