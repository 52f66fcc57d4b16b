"""Bulk comparison job API routes.

Jobs are created synchronously and processed in the background; clients
poll ``GET /bulk-comparison/{job_id}`` for progress.
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session, sessionmaker

from sportsrecon.core.config import settings
from sportsrecon.core.database import get_db, get_session_factory
from sportsrecon.core.rate_limit import limiter
from sportsrecon.schemas.comparison import BulkComparisonRequest
from sportsrecon.services.jobs.bulk_comparison import BulkComparisonService, job_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bulk-comparison", tags=["bulk-comparison"])


def get_bulk_service(
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> BulkComparisonService:
    """Dependency to get bulk comparison service instance."""
    return BulkComparisonService(db, session_factory=session_factory)


@router.post("/", status_code=201)
@limiter.limit(settings.BULK_RATE_LIMIT)
async def create_bulk_job(
    request: Request,
    body: BulkComparisonRequest,
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """
    Create a pending bulk job.

    Returns:
        job_id, total_operations, teams and estimated_seconds (plus the
        effective concurrency and batch delay after clamping)
    """
    return service.create_job(body)


@router.post("/run", status_code=202)
@limiter.limit(settings.BULK_RATE_LIMIT)
async def run_bulk_job(
    request: Request,
    body: BulkComparisonRequest,
    background_tasks: BackgroundTasks,
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """Create a job and start processing it in the background."""
    created = service.run_job(body)
    background_tasks.add_task(service.process_job, created["job_id"])
    return created


@router.get("/jobs")
async def list_jobs(
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """Most recent jobs first, without per-unit results."""
    jobs = service.list_recent_jobs(limit)
    return {"count": len(jobs), "jobs": [job_to_dict(job, include_results=False) for job in jobs]}


@router.post("/{job_id}/start", status_code=202)
async def start_bulk_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """Move a pending job to running and process it in the background."""
    service.start_job(job_id)
    background_tasks.add_task(service.process_job, job_id)
    return {"job_id": job_id, "status": "running"}


@router.get("/{job_id}")
async def get_bulk_job(
    job_id: str,
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """Job status, progress, per-unit results and overall summary."""
    return job_to_dict(service.get_job(job_id))


@router.post("/{job_id}/cancel")
async def cancel_bulk_job(
    job_id: str,
    service: BulkComparisonService = Depends(get_bulk_service),
) -> Dict:
    """Request cancellation. Units already running finish; no new batch starts."""
    return service.cancel_job(job_id)
