"""
Retry and permanent-failure policy.
"""

import traceback
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from workqueue.config.logging import get_logger
from workqueue.core.exceptions import InvocationError
from workqueue.jobs.capabilities import HasMaxAttempts, Reschedulable
from workqueue.jobs.execution import FATAL_ERRORS, hook
from workqueue.jobs.models import Job
from workqueue.jobs.store import JobStore

logger = get_logger(__name__)


class FailureOutcome(str, Enum):
    RESCHEDULED = "rescheduled"
    FAILED = "failed"


def default_backoff(attempts: int) -> timedelta:
    """attempts**4 + 5 seconds: 5s, 6s, 21s, 86s, 261s, ..."""
    return timedelta(seconds=attempts**4 + 5)


def reschedule_at(job: Job, payload: Any, now: datetime) -> datetime:
    """Payload-chosen retry time; the default backoff when it has none or raises."""
    if isinstance(payload, Reschedulable):
        try:
            return payload.reschedule_at(now, job.attempts)
        except FATAL_ERRORS:
            raise
        except Exception:
            logger.exception("reschedule_at raised; using default backoff", job_id=str(job.id))
    return now + default_backoff(job.attempts)


def max_attempts(payload: Any) -> int | None:
    """Payload retry limit; None (unbounded) when it has none or raises."""
    if isinstance(payload, HasMaxAttempts):
        try:
            return payload.max_attempts()
        except FATAL_ERRORS:
            raise
        except Exception:
            logger.exception(
                "max_attempts raised; retrying without a limit",
                payload=type(payload).__qualname__,
            )
    return None


def format_error(error: BaseException) -> str:
    original = error.original if isinstance(error, InvocationError) else error
    return "".join(
        traceback.format_exception(type(original), original, original.__traceback__)
    ).rstrip()


async def handle_failure(
    store: JobStore, job: Job, error: BaseException, payload: Any = None
) -> FailureOutcome:
    """
    Record a failed invocation and either reschedule the job or fail it for good.

    The backoff is computed from the attempt count before this failure is
    counted. A job fails permanently once its attempts reach the payload's
    ``max_attempts()``; without that capability it is retried indefinitely.
    """
    now = store.db_time_now()
    next_run_at = reschedule_at(job, payload, now)

    job.attempts += 1
    job.last_error = format_error(error)
    job.unlock()

    limit = max_attempts(payload)
    if limit is not None and job.attempts >= limit:
        try:
            await hook(job, "on_permanent_failure", payload=payload)
        except Exception:
            # The job is marked failed regardless of what the hook does
            logger.exception("on_permanent_failure hook raised", job_id=str(job.id))
        job.failed_at = now
        await store.update_fields(
            job.id,
            attempts=job.attempts,
            last_error=job.last_error,
            locked_at=None,
            locked_by=None,
            failed_at=now,
        )
        logger.error(
            "Job failed permanently",
            job_id=str(job.id),
            attempts=job.attempts,
            max_attempts=limit,
        )
        return FailureOutcome.FAILED

    job.run_at = next_run_at
    await store.update_fields(
        job.id,
        attempts=job.attempts,
        last_error=job.last_error,
        locked_at=None,
        locked_by=None,
        run_at=next_run_at,
    )
    logger.warning(
        "Job rescheduled",
        job_id=str(job.id),
        attempts=job.attempts,
        next_run_at=next_run_at.isoformat(),
    )
    return FailureOutcome.RESCHEDULED


async def fail_permanently(store: JobStore, job: Job, error: BaseException) -> None:
    """Fail a job outright, e.g. when its payload can no longer be loaded."""
    now = store.db_time_now()
    job.attempts += 1
    job.last_error = format_error(error)
    job.failed_at = now
    job.unlock()
    await store.update_fields(
        job.id,
        attempts=job.attempts,
        last_error=job.last_error,
        locked_at=None,
        locked_by=None,
        failed_at=now,
    )
    logger.error("Job failed permanently", job_id=str(job.id), error=str(error))
