"""API routes for background job tracking."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_current_user, get_db_session
from ledgerly.models.schemas import JobResponse
from ledgerly.models.tables import BackgroundJob, User

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> JobResponse:
    """Get status and progress of a background job.

    The row is written by the worker when it picks the message up, so a
    freshly queued job answers 404 for a short while.
    """
    stmt = select(BackgroundJob).where(and_(BackgroundJob.id == job_id, BackgroundJob.user_id == user.id))
    job = (await db.execute(stmt)).scalar_one_or_none()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job, from_attributes=True)


@router.get("", response_model=List[JobResponse])
async def list_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> List[JobResponse]:
    """List the most recent background jobs for the current user."""
    stmt = select(BackgroundJob).where(BackgroundJob.user_id == user.id)
    if status:
        stmt = stmt.where(BackgroundJob.status == status)
    if job_type:
        stmt = stmt.where(BackgroundJob.job_type == job_type)
    stmt = stmt.order_by(BackgroundJob.created_at.desc()).limit(limit)
    jobs = (await db.execute(stmt)).scalars().all()
    return [JobResponse.model_validate(job, from_attributes=True) for job in jobs]
