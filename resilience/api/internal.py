"""Trusted triggers for the retry scheduler and the retention sweep."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resilience.api.deps import get_db, get_retention_sweeper, get_retry_scheduler, require_service_role
from resilience.schemas.jobs import RetryRunResponse
from resilience.schemas.security import RetentionRunResponse
from resilience.services.retention import RetentionSweeper
from resilience.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_service_role)])


@router.post("/jobs/run", response_model=RetryRunResponse)
async def run_failed_jobs(
    db: Annotated[AsyncSession, Depends(get_db)],
    retry_scheduler: Annotated[RetryScheduler, Depends(get_retry_scheduler)],
):
    """Process one batch of due failed jobs."""
    result = await retry_scheduler.run(db)
    return result.to_dict()


@router.post("/retention/run", response_model=RetentionRunResponse)
async def run_retention(
    db: Annotated[AsyncSession, Depends(get_db)],
    sweeper: Annotated[RetentionSweeper, Depends(get_retention_sweeper)],
):
    """Delete aged rows and report per-table counts."""
    result = await sweeper.run(db)
    return result.to_dict()
