"""
Job inspection API endpoints.

Read-mostly admin surface: queue stats, job lookup, permanently failed jobs
and requeueing them.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from workqueue.config.logging import get_logger
from workqueue.config.settings import Settings, SettingsDep
from workqueue.core.exceptions import NotFoundError, create_success_response
from workqueue.infra.database import Database, get_database
from workqueue.jobs.codec import type_id_from_blob
from workqueue.jobs.models import Job
from workqueue.jobs.schemas import JobListResponse, JobResponse, JobStatsResponse
from workqueue.jobs.service import JobService
from workqueue.jobs.store import JobStore

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(
    settings: Settings = SettingsDep, database: Database = Depends(get_database)
) -> JobService:
    return JobService(settings, JobStore(database.SessionLocal))


JobServiceDep = Depends(get_job_service)


def _to_response(job: Job) -> JobResponse:
    response = JobResponse.model_validate(job)
    # Never decode payloads here; the API process may not import them
    response.name = type_id_from_blob(job.handler)
    return response


@router.get("/stats", response_model=dict)
async def get_job_stats(service: JobService = JobServiceDep) -> dict[str, Any]:
    """Get queue statistics."""
    stats = JobStatsResponse(**await service.get_stats())
    return create_success_response(data=stats.model_dump())


@router.get("/failed", response_model=dict)
async def list_failed_jobs(
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """List permanently failed jobs, most recent first."""
    jobs = await service.list_failed(limit)
    response = JobListResponse(
        jobs=[_to_response(job) for job in jobs], total=len(jobs), limit=limit
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(job_id: UUID, service: JobService = JobServiceDep) -> dict[str, Any]:
    """Get a job by id."""
    job = await service.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", {"job_id": str(job_id)})
    return create_success_response(data=_to_response(job).model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(job_id: UUID, service: JobService = JobServiceDep) -> dict[str, Any]:
    """Requeue a permanently failed job."""
    if not await service.retry_failed(job_id):
        raise NotFoundError(
            f"No failed job with id {job_id}", {"job_id": str(job_id)}
        )

    logger.info("Job requeued via API", job_id=str(job_id))
    return create_success_response(
        data={"job_id": str(job_id)}, message="Job requeued"
    )
