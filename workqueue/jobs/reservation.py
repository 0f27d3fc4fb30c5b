"""
Reservation engine: claims one job for a worker per poll cycle.
"""

from typing import Protocol

from workqueue.config.logging import get_logger
from workqueue.config.settings import Settings, settings as default_settings
from workqueue.jobs.models import Job
from workqueue.jobs.store import JobStore

logger = get_logger(__name__)


class WorkerIdentity(Protocol):
    name: str
    host: str | None


async def reserve(
    store: JobStore,
    worker: WorkerIdentity,
    max_run_time: float | None = None,
    settings: Settings = default_settings,
) -> Job | None:
    """
    Lock and return the best job available to ``worker``, or ``None``.

    Several candidates are read so that a worker losing the race for the top
    job moves on to the next one instead of coming back empty-handed; this
    also spreads a burst of work over the whole pool.
    """
    if max_run_time is None:
        max_run_time = settings.job_max_run_time_s

    now = store.db_time_now()
    candidates = await store.find_available(
        worker.name,
        worker.host,
        limit=settings.job_read_ahead,
        max_run_time=max_run_time,
        now=now,
    )

    for job in candidates:
        if await store.lock_exclusively(job.id, worker.name, max_run_time, now):
            job.locked_at = now
            job.locked_by = worker.name
            logger.debug("Job reserved", job_id=str(job.id), worker=worker.name)
            return job
        logger.debug("Lost race for job", job_id=str(job.id), worker=worker.name)

    return None
