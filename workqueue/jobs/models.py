"""
Job model for the database-backed queue.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Integer, Text, TypeDecorator, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from workqueue.infra.database import Base


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.

    PostgreSQL keeps the offset in ``timestamptz``; SQLite has no native type,
    so values are stored as naive UTC and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Job(Base):
    """
    A persisted unit of work plus its scheduling and lock metadata.

    - ``handler`` holds the payload as written by ``workqueue.jobs.codec``
    - ``locked_at``/``locked_by`` are set together by a reserving worker
    - ``failed_at`` marks a job that will never be reserved again
    - ``unique_key`` is unique across all rows when present
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    handler: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Serialized payload"
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Lower is served first"
    )
    run_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Earliest time to run job"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Failed invocations so far"
    )

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When job was locked by worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker name that locked the job"
    )

    # Failure tracking
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message and traceback"
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Set when the job failed permanently"
    )

    # Deduplication and routing
    unique_key: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Deduplication key"
    )
    server: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Host affinity; any host when null"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_jobs_unique_key", "unique_key", unique=True),
        Index("ix_jobs_priority_run_at", "priority", "run_at"),
        Index("ix_jobs_locked_by", "locked_by"),
    )

    @property
    def failed(self) -> bool:
        return self.failed_at is not None

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def unlock(self) -> None:
        """Clear the lock fields in memory; the caller persists them."""
        self.locked_at = None
        self.locked_by = None

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} priority={self.priority} attempts={self.attempts}"
            f" locked_by={self.locked_by!r} failed={self.failed}>"
        )
