"""
SQLAlchemy database models.
Defines the queue table shared by every supported backend.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from balin.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITY,
    TABLE_NAME,
    TERMINAL_STATUSES,
    UNLIMITED_ATTEMPTS,
    JobStatus,
)

# SQLite only autoincrements INTEGER PRIMARY KEY columns
JobId = BigInteger().with_variant(Integer, "sqlite")

# MySQL DATETIME drops fractional seconds unless asked, which breaks ordering
Timestamp = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state. Rows are only
    mutated through JobRepository, which keeps the lock columns consistent:
    locked is true exactly when worker_id is set and status is PROCESSING.

    The payload column holds the JSON text produced at enqueue time; it is
    decoded only when the job is handed to a claimant.
    """

    __tablename__ = TABLE_NAME

    id: Mapped[int] = mapped_column(
        JobId,
        primary_key=True,
        autoincrement=True,
    )

    task_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="balin_job_status",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.PENDING,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False)
    scheduled_at: Mapped[datetime | None] = mapped_column(Timestamp, nullable=True)

    # Ownership
    worker_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    __table_args__ = (
        Index("ix_balin_queue_task_name", "task_name"),
        # Eligibility filtering for claims
        Index("ix_balin_queue_eligibility", "status", "locked", "is_active"),
        # Claim ordering
        Index("ix_balin_queue_ordering", "priority", "scheduled_at", "created_at"),
        # Stale lock sweeps
        Index("ix_balin_queue_stale", "status", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the job has reached a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_retryable(self) -> bool:
        """Check if another attempt is allowed."""
        return (
            self.max_attempts == UNLIMITED_ATTEMPTS
            or self.attempts < self.max_attempts
        )

    def is_claimable(self, now: datetime) -> bool:
        """Check whether a claim issued at ``now`` may select this job."""
        return (
            self.status == JobStatus.PENDING
            and not self.locked
            and self.is_active
            and (self.scheduled_at is None or self.scheduled_at <= now)
            and self.is_retryable
        )

    def lock_age_seconds(self, now: datetime) -> float | None:
        """Seconds since the job was claimed, or None if it is not locked."""
        if not self.locked:
            return None
        return (now - self.updated_at).total_seconds()

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, task={self.task_name}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )
