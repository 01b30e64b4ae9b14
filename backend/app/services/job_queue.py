"""In-process queue running analysis jobs as asyncio tasks."""

import asyncio
from typing import Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.services.analysis_pipeline import AnalysisJob, AnalysisPipeline

logger = get_logger(__name__)


class AnalysisQueue:
    """Schedules jobs on the running loop, at most ``max_concurrent`` at a time."""

    def __init__(self, pipeline: AnalysisPipeline, max_concurrent: Optional[int] = None) -> None:
        self.pipeline = pipeline
        self.max_concurrent = max(1, max_concurrent or settings.max_concurrent_jobs)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Dict[str, asyncio.Task] = {}

    def enqueue(self, job: AnalysisJob) -> asyncio.Task:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        task = asyncio.get_running_loop().create_task(self._run(job), name=f"analysis-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        logger.info("job_enqueued", job_id=job.job_id, workbook_id=job.workbook_id, pending=len(self._tasks))
        return task

    async def _run(self, job: AnalysisJob) -> None:
        assert self._semaphore is not None
        async with self._semaphore:
            await self.pipeline.run(job)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel outstanding jobs and wait for them to settle."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("job_queue_stopped", cancelled=len(tasks))
