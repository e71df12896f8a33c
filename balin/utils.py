"""
Clock and identity helpers.
"""

import os
import socket
from datetime import datetime, timedelta, timezone
from uuid import uuid4


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the queue."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """
    Normalize a datetime to naive UTC.

    Aware datetimes are converted to UTC; naive ones are assumed to be UTC.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_timedelta(value: timedelta | int | float) -> timedelta:
    """Accept a timedelta or a number of seconds."""
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


def process_identity() -> str:
    """Hostname and PID of the current process."""
    return f"{socket.gethostname()}-{os.getpid()}"


def new_worker_id(prefix: str | None = None) -> str:
    """Generate a worker id unique to this process and call."""
    return f"{prefix or process_identity()}-{uuid4().hex[:12]}"
