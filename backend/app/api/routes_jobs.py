"""Job status polling and cancellation."""

from fastapi import APIRouter, Depends

from app.api.deps import get_job_store
from app.core.logging import get_logger
from app.schemas.responses import JobRecord
from app.services.job_store import JobStore

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=JobRecord)
async def get_job(job_id: str, jobs: JobStore = Depends(get_job_store)) -> JobRecord:
    return jobs.require(job_id)


@router.post("/{job_id}/cancel", response_model=JobRecord)
async def cancel_job(job_id: str, jobs: JobStore = Depends(get_job_store)) -> JobRecord:
    """Ask a job to stop at its next batch boundary or row checkpoint."""
    job = jobs.request_cancel(job_id)
    logger.info("job_cancel_requested", job_id=job_id, status=job.status)
    return job
