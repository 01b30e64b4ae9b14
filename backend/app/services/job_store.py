"""Job records: status, progress and message for polling clients."""

import threading
from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.schemas.responses import JobRecord, JobStatus
from app.services.storage import RecordStore

logger = get_logger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStore:
    """Thread-safe job persistence on top of a :class:`RecordStore`.

    Terminal jobs never change again and progress never goes down.
    """

    def __init__(self, records: RecordStore) -> None:
        self.records = records
        self._lock = threading.Lock()

    def _save(self, job: JobRecord) -> None:
        self.records.write("jobs", job.id, job.model_dump(by_alias=True))

    def create(self, job_id: str, message: str = "Job added to queue...") -> JobRecord:
        job = JobRecord(id=job_id, status="queued", progress=0, message=message, updated_at=utc_now())
        with self._lock:
            self._save(job)
        return job

    def get(self, job_id: str) -> Optional[JobRecord]:
        data = self.records.read("jobs", job_id)
        return JobRecord.model_validate(data) if data is not None else None

    def require(self, job_id: str) -> JobRecord:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def update(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        message: Optional[str] = None,
        result_id: Optional[str] = None,
    ) -> JobRecord:
        with self._lock:
            job = self.require(job_id)
            if job.is_terminal:
                logger.warning("job_update_ignored", job_id=job_id, status=job.status, attempted=status)
                return job
            if status is not None:
                job.status = status
            if progress is not None:
                job.progress = max(job.progress, min(100, int(progress)))
            if message is not None:
                job.message = message
            if result_id is not None:
                job.result_id = result_id
            job.updated_at = utc_now()
            self._save(job)
            return job

    def request_cancel(self, job_id: str) -> JobRecord:
        """Flag a job for cooperative cancellation; queued jobs stop at once."""
        with self._lock:
            job = self.require(job_id)
            if job.is_terminal:
                return job
            job.cancel_requested = True
            if job.status == "queued":
                job.status = "cancelled"
                job.message = "Job cancelled before it started"
            job.updated_at = utc_now()
            self._save(job)
            return job

    def is_cancel_requested(self, job_id: str) -> bool:
        job = self.get(job_id)
        return job is None or job.cancel_requested
