"""
Job service for enqueueing and managing background jobs.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from workqueue.config.logging import get_logger
from workqueue.config.settings import Settings
from workqueue.core.exceptions import ConstraintViolation, InvalidPayloadError
from workqueue.jobs import codec
from workqueue.jobs.capabilities import ClearsTransientState, UniqueKeyed, is_performable
from workqueue.jobs.execution import hook, invoke_job
from workqueue.jobs.models import Job
from workqueue.jobs.store import JobStore

logger = get_logger(__name__)


class JobService:
    """Service for enqueueing and inspecting jobs."""

    def __init__(self, settings: Settings, store: JobStore):
        self.settings = settings
        self.store = store

    async def enqueue(
        self,
        payload: Any,
        priority: int | None = None,
        run_at: datetime | None = None,
        server: str | None = None,
    ) -> Job | None:
        """
        Enqueue a payload as a new job with deduplication support.

        Args:
            payload: Object with a ``perform()`` method
            priority: Lower runs first; defaults to ``job_default_priority``
            run_at: Earliest run time; defaults to the store's "now"
            server: Host affinity tag; any worker may run the job when unset

        Returns:
            The stored job, or ``None`` when a job with the same unique key
            already exists
        """
        if not is_performable(payload):
            raise InvalidPayloadError(
                "Cannot enqueue items which do not respond to perform",
                {"type": type(payload).__name__},
            )

        # Many payloads do the same work under different field values;
        # they opt into dedup by supplying a key
        unique_key = payload.unique_key() if isinstance(payload, UniqueKeyed) else None
        unique_key = unique_key or None

        if isinstance(payload, ClearsTransientState):
            payload.clear_transient_state()

        if unique_key and await self.store.unique_key_exists(unique_key):
            logger.info("Job deduplicated", unique_key=unique_key)
            return None

        job = Job(
            priority=self.settings.job_default_priority if priority is None else priority,
            run_at=run_at or self.store.db_time_now(),
            attempts=0,
            unique_key=unique_key,
            server=server,
        )

        if not self.settings.job_delay_jobs:
            job.handler = codec.encode(payload)
            await invoke_job(job, payload)
            return job

        await hook(job, "enqueue", payload=payload)
        job.handler = codec.encode(payload)

        try:
            await self.store.insert(job)
        except ConstraintViolation as e:
            if e.field != "unique_key":
                raise
            # Another process inserted the same key between our check and insert
            logger.info("Job deduplicated on insert", unique_key=unique_key)
            return None

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            name=codec.type_id_from_blob(job.handler),
            priority=job.priority,
            run_at=job.run_at.isoformat(),
            unique_key=unique_key,
            server=server,
        )
        return job

    async def get_job(self, job_id: UUID) -> Job | None:
        return await self.store.get(job_id)

    async def get_stats(self) -> dict[str, int]:
        return await self.store.stats()

    async def list_failed(self, limit: int = 50) -> list[Job]:
        return await self.store.list_failed(limit)

    async def retry_failed(self, job_id: UUID) -> bool:
        """Requeue a permanently failed job."""
        success = await self.store.requeue_failed(job_id)
        if success:
            logger.info("Job retried", job_id=str(job_id))
        return success
