"""Failed job administration."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.api.deps import get_db, get_job_queue, require_service_role
from resilience.core.errors import conflict, not_found
from resilience.core.exceptions import InvalidJobStateError
from resilience.models.failed_job import JobStatus, JobType
from resilience.schemas.jobs import (
    FailedJobCreate,
    FailedJobListResponse,
    FailedJobResponse,
    JobStatsResponse,
)
from resilience.services.job_queue import JobQueue

router = APIRouter(prefix="/admin/jobs", tags=["jobs"], dependencies=[Depends(require_service_role)])


@router.post("", response_model=FailedJobResponse, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    data: FailedJobCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
):
    """Record a failed operation for retry."""
    job = await queue.enqueue(
        db,
        job_type=data.job_type,
        job_name=data.job_name,
        payload=data.payload,
        max_attempts=data.max_attempts,
        metadata=data.metadata,
    )
    await db.commit()
    return job


@router.get("", response_model=FailedJobListResponse)
async def list_jobs(
    db: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
    status_filter: Annotated[JobStatus | None, Query(alias="status")] = None,
    job_type: Annotated[JobType | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    jobs, total = await queue.list_jobs(
        db,
        status=status_filter.value if status_filter else None,
        job_type=job_type.value if job_type else None,
        limit=limit,
        offset=offset,
    )
    return FailedJobListResponse(
        items=[FailedJobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=JobStatsResponse)
async def job_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
):
    return await queue.stats(db)


@router.get("/{job_id}", response_model=FailedJobResponse)
async def get_job(
    job_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
):
    job = await queue.get(db, job_id)
    if job is None:
        raise not_found("Job", {"job_id": str(job_id)})
    return job


@router.post("/{job_id}/requeue", response_model=FailedJobResponse, status_code=status.HTTP_201_CREATED)
async def requeue_job(
    job_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
):
    """Create a fresh pending job from a permanently failed one."""
    try:
        job = await queue.requeue(db, job_id)
    except LookupError:
        raise not_found("Job", {"job_id": str(job_id)})
    except InvalidJobStateError as e:
        raise conflict(str(e), {"job_id": str(job_id), "status": e.status})
    await db.commit()
    return job
