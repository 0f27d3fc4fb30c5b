from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from workqueue.config.settings import Settings, SettingsDep
from workqueue.core.exceptions import create_success_response
from workqueue.infra.database import get_session
from workqueue.jobs.models import Job

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue status derived from job locks."""

    active_workers: int
    stale_locks: int = 0
    queue_depth: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check with database and queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        queue_health = await _check_queue_health(session, settings)

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Count workers holding live locks, stale locks and pending jobs."""
    stale_cutoff = datetime.fromtimestamp(
        datetime.now(UTC).timestamp() - settings.job_max_run_time_s, UTC
    )

    active_workers = (
        await session.execute(
            select(func.count(func.distinct(Job.locked_by))).where(
                Job.locked_at >= stale_cutoff
            )
        )
    ).scalar() or 0

    stale_locks = (
        await session.execute(
            select(func.count(Job.id)).where(
                Job.failed_at.is_(None), Job.locked_at < stale_cutoff
            )
        )
    ).scalar() or 0

    queue_depth = (
        await session.execute(
            select(func.count(Job.id)).where(Job.failed_at.is_(None))
        )
    ).scalar() or 0

    return QueueHealth(
        active_workers=active_workers,
        stale_locks=stale_locks,
        queue_depth=queue_depth,
    )
