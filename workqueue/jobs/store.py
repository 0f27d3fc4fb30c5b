"""
Store adapter for the job queue.

Every SQL statement the queue issues lives here. Each call runs in its own
short session so that workers never hold a transaction open across a job.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workqueue.config.logging import get_logger
from workqueue.core.exceptions import ConstraintViolation
from workqueue.jobs.models import Job

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobStore:
    """SQLAlchemy implementation of the queue's storage contract."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self._clock = clock

    def db_time_now(self) -> datetime:
        """Clock shared by every worker comparing run_at and locked_at."""
        return self._clock()

    # Process management hooks -------------------------------------------

    def before_fork(self) -> None:
        """Called by a process-pool manager before forking a worker."""

    def after_fork(self) -> None:
        """Called in the child after a fork; reset unshareable resources here."""

    # Writes ---------------------------------------------------------------

    async def insert(self, job: Job) -> Job:
        """
        Insert a new job row.

        Raises ``ConstraintViolation(field="unique_key")`` when another row
        already holds the job's unique key. Any other integrity error is
        re-raised untouched.
        """
        unique_key = job.unique_key
        async with self.session_factory() as session:
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # Classified by looking the key up, not by parsing driver text
                if unique_key and await self._holder_of(unique_key) is not None:
                    raise ConstraintViolation(
                        "unique_key", f"A job with unique_key {unique_key!r} exists"
                    ) from None
                raise
        return job

    @staticmethod
    def _lockable(worker_name: str, max_run_time: float, now: datetime):
        stale_before = now - timedelta(seconds=max_run_time)
        return and_(
            Job.failed_at.is_(None),
            Job.run_at <= now,
            or_(
                Job.locked_at.is_(None),
                Job.locked_at < stale_before,
                Job.locked_by == worker_name,
            ),
        )

    async def lock_exclusively(
        self, job_id: UUID, worker_name: str, max_run_time: float, now: datetime
    ) -> bool:
        """
        Atomically take the lock on ``job_id`` for ``worker_name``.

        One conditional UPDATE; it only matches while the row is unlocked,
        stale or already ours, so of two racing workers at most one sees a
        matched row.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    self._lockable(worker_name, max_run_time, now),
                )
                .values(locked_at=now, locked_by=worker_name, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def update_fields(self, job_id: UUID, **values: Any) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(updated_at=self.db_time_now(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def requeue_failed(self, job_id: UUID) -> bool:
        """Put a permanently failed job back in line with a fresh attempt count."""
        now = self.db_time_now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.failed_at.is_not(None))
                .values(
                    failed_at=None,
                    locked_at=None,
                    locked_by=None,
                    attempts=0,
                    last_error=None,
                    run_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete(self, job_id: UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(Job).where(Job.id == job_id))
            await session.commit()
            return result.rowcount > 0

    # Reads ----------------------------------------------------------------

    async def find_available(
        self,
        worker_name: str,
        host: str | None,
        limit: int,
        max_run_time: float,
        now: datetime,
    ) -> list[Job]:
        """Up to ``limit`` jobs this worker may try to lock, best first."""
        query = (
            select(Job)
            .where(
                self._lockable(worker_name, max_run_time, now),
                or_(Job.server.is_(None), Job.server == host),
            )
            .order_by(Job.priority, Job.run_at)
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def _holder_of(self, unique_key: str) -> UUID | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.id).where(Job.unique_key == unique_key).limit(1)
            )
            return result.scalar_one_or_none()

    async def unique_key_exists(self, unique_key: str) -> bool:
        return await self._holder_of(unique_key) is not None

    async def list_failed(self, limit: int = 50) -> list[Job]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(Job.failed_at.is_not(None))
                .order_by(Job.failed_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def stats(self) -> dict[str, int]:
        """Row counts by queue state."""
        async with self.session_factory() as session:
            total = (await session.execute(select(func.count(Job.id)))).scalar() or 0
            failed = (
                await session.execute(
                    select(func.count(Job.id)).where(Job.failed_at.is_not(None))
                )
            ).scalar() or 0
            locked = (
                await session.execute(
                    select(func.count(Job.id)).where(
                        Job.failed_at.is_(None), Job.locked_at.is_not(None)
                    )
                )
            ).scalar() or 0

        return {
            "total": total,
            "pending": total - failed - locked,
            "locked": locked,
            "failed": failed,
        }
