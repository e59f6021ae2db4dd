"""Indexing jobs API router: CRUD, status changes, logs."""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from indexer.api.deps import get_dispatch_queue, get_provisioner
from indexer.db.session import get_db
from indexer.schemas.schemas import JobCreate, JobOut, JobStatusUpdate, JobLogOut, MessageResponse
from indexer.services.job_service import job_service
from indexer.services.job_log_service import job_log_service
from indexer.core.security import get_current_user_id

router = APIRouter(prefix="/indexing-jobs", tags=["indexing-jobs"])


@router.get("/", response_model=List[JobOut])
async def list_jobs(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return job_service.list_by_owner(db, user_id)


@router.post("/", response_model=JobOut, status_code=status.HTTP_201_CREATED)
def create_job(
    body: JobCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    dispatch=Depends(get_dispatch_queue),
):
    """Create a job in ``pending`` and queue its webhook setup."""
    return job_service.create(db, user_id, body, dispatch)


@router.get("/{job_id}", response_model=JobOut)
async def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return job_service.get(db, job_id, user_id)


@router.patch("/{job_id}", response_model=JobOut)
async def update_job_status(
    job_id: int,
    body: JobStatusUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Pause, resume or complete a job."""
    return job_service.update_status(db, job_id, user_id, body.status)


@router.delete("/{job_id}", response_model=MessageResponse)
def delete_job(
    job_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    provisioner=Depends(get_provisioner),
):
    """Remove the provider webhook (best effort) and delete the job."""
    job_service.delete(db, job_id, user_id, provisioner)
    return MessageResponse(message="Indexing job deleted successfully")


@router.get("/{job_id}/logs", response_model=List[JobLogOut])
async def list_job_logs(
    job_id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Most recent log entries first."""
    job = job_service.get(db, job_id, user_id)
    return job_log_service.list_for_job(db, job.id, limit)
