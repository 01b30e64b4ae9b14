"""Phase-based job progress reporting."""

from typing import Dict, Optional, Tuple

from app.core.exceptions import JobCancelledError
from app.core.logging import get_logger
from app.services.job_store import JobStore

logger = get_logger(__name__)

# phase -> (start percent, end percent)
PHASE_RANGES: Dict[str, Tuple[int, int]] = {
    "initializing": (0, 10),
    "batch_mapping": (10, 55),
    "assigning": (55, 95),
    "finalizing": (95, 100),
}


def progress_for(phase: str, fraction: float) -> int:
    """Map a fraction of work done inside ``phase`` to an overall percent."""
    start, end = PHASE_RANGES[phase]
    fraction = min(1.0, max(0.0, fraction))
    return int(start + (end - start) * fraction)


class JobProgressTracker:
    """Single owner of one job's progress; pushes updates to the job store.

    Reported progress is clamped so it never decreases, whatever order the
    phases report in.
    """

    def __init__(self, job_id: str, job_store: Optional[JobStore] = None) -> None:
        self.job_id = job_id
        self.job_store = job_store
        self.percent = 0
        self.phase = "initializing"
        self.message = ""

    def start(self, message: str = "Starting analysis...") -> None:
        self.message = message
        if self.job_store is not None:
            self.job_store.update(self.job_id, status="processing", progress=0, message=message)

    def report(self, phase: str, fraction: float, message: str) -> int:
        self.percent = max(self.percent, progress_for(phase, fraction))
        self.phase = phase
        self.message = message
        if self.job_store is not None:
            self.job_store.update(self.job_id, progress=self.percent, message=message)
        logger.debug("job_progress", job_id=self.job_id, phase=phase, progress=self.percent, message=message)
        return self.percent

    def check_cancelled(self) -> None:
        """Raise :class:`JobCancelledError` if the job was asked to stop."""
        if self.job_store is not None and self.job_store.is_cancel_requested(self.job_id):
            raise JobCancelledError(self.job_id)

    def complete(self, result_id: str, message: str = "Analysis finished!") -> None:
        self.percent = 100
        if self.job_store is not None:
            self.job_store.update(
                self.job_id, status="completed", progress=100, message=message, result_id=result_id
            )

    def fail(self, message: str) -> None:
        if self.job_store is not None:
            self.job_store.update(self.job_id, status="failed", message=message)

    def cancelled(self) -> None:
        if self.job_store is not None:
            self.job_store.update(self.job_id, status="cancelled", message="Job cancelled")
