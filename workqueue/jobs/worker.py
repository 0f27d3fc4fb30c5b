"""
Polling job worker.

Each worker handles one job at a time and shares nothing with other
workers except the jobs table. Crash recovery is lock expiry: a job held by
a worker that died is picked up again once its lock is older than
``max_run_time``.
"""

import asyncio
import os
import socket
import warnings

from workqueue.config.logging import bind_worker_context, get_logger
from workqueue.config.settings import Settings, settings as default_settings
from workqueue.core.exceptions import DeserializationError, InvocationError
from workqueue.infra.database import Database
from workqueue.jobs import codec
from workqueue.jobs.execution import FATAL_ERRORS, invoke_job
from workqueue.jobs.models import Job
from workqueue.jobs.policy import fail_permanently, handle_failure
from workqueue.jobs.reservation import reserve
from workqueue.jobs.store import JobStore

logger = get_logger(__name__)


class JobWorker:
    """A single poll-reserve-invoke loop."""

    def __init__(
        self,
        store: JobStore,
        settings: Settings = default_settings,
        name: str | None = None,
        max_run_time: float | None = None,
        host: str | None = None,
    ):
        self.store = store
        self.settings = settings
        self.name = name or f"host:{socket.gethostname()} pid:{os.getpid()}"
        self.host = host or settings.worker_host
        self.max_run_time = (
            settings.job_max_run_time_s if max_run_time is None else max_run_time
        )
        self.running = False
        self._stop_requested = False

    async def run(self, job: Job) -> bool:
        """Invoke a reserved job and record the outcome. True on success."""
        try:
            payload = codec.decode(job.handler)
        except DeserializationError as e:
            logger.error(
                "Job payload could not be loaded",
                job_id=str(job.id),
                reason=e.reason,
            )
            await fail_permanently(self.store, job, e)
            return False

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            name = codec.job_name(job, payload)
            await invoke_job(job, payload)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            # Payload code outside invoke_job (display_name) fails the job too
            error = e if isinstance(e, InvocationError) else InvocationError(job.id, e)
            outcome = await handle_failure(self.store, job, error, payload)
            logger.warning(
                "Job failed",
                job_id=str(job.id),
                name=codec.type_id_from_blob(job.handler),
                attempts=job.attempts,
                outcome=outcome.value,
                error=error.message,
            )
            return False

        await self.store.delete(job.id)
        logger.info(
            "Job completed",
            job_id=str(job.id),
            name=name,
            runtime_s=round(loop.time() - started, 4),
        )
        return True

    async def reserve_and_run_one_job(self) -> bool | None:
        """Run one job. None when nothing was available."""
        job = await reserve(self.store, self, self.max_run_time, self.settings)
        if job is None:
            return None
        return await self.run(job)

    async def work_off(self, num: int = 100) -> tuple[int, int]:
        """Run up to ``num`` jobs; returns (successes, failures)."""
        success = failure = 0
        for _ in range(num):
            if self._stop_requested:
                break
            result = await self.reserve_and_run_one_job()
            if result is None:
                break
            if result:
                success += 1
            else:
                failure += 1
        return success, failure

    async def start(self, exit_when_empty: bool = False) -> None:
        """Poll until ``stop()`` is called (or the queue drains, if asked)."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_requested = False
        bind_worker_context(self.name)
        logger.info(
            "Starting job worker",
            host=self.host,
            max_run_time_s=self.max_run_time,
            sleep_delay_s=self.settings.job_sleep_delay_s,
        )

        try:
            while self.running:
                try:
                    success, failure = await self.work_off()
                except FATAL_ERRORS:
                    raise
                except Exception:
                    # Store hiccups should not kill the loop; jobs stay locked
                    # until max_run_time and are then picked up again
                    logger.exception("Error in worker loop")
                    await asyncio.sleep(self.settings.job_sleep_delay_s)
                    continue

                count = success + failure
                if count:
                    logger.info(
                        "Worked off jobs", succeeded=success, failed=failure
                    )
                elif exit_when_empty:
                    break
                else:
                    await asyncio.sleep(self.settings.job_sleep_delay_s)
        finally:
            self.running = False
            logger.info("Job worker exiting")

    def stop(self) -> None:
        logger.info("Stopping job worker", worker=self.name)
        self._stop_requested = True
        self.running = False


def work_off(num: int = 100, settings: Settings = default_settings) -> tuple[int, int]:
    """Deprecated: use ``JobWorker(store).work_off(num)``."""
    warnings.warn(
        "workqueue.jobs.worker.work_off is deprecated; use JobWorker(store).work_off()",
        DeprecationWarning,
        stacklevel=2,
    )
    return asyncio.run(_work_off(num, settings))


async def _work_off(num: int, settings: Settings) -> tuple[int, int]:
    database = Database(settings)
    try:
        store = JobStore(database.SessionLocal)
        return await JobWorker(store, settings).work_off(num)
    finally:
        await database.close()
