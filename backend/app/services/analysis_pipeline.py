"""End-to-end classification job: build, map, stream, persist."""

import asyncio
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import BaseServiceException, JobCancelledError, ValidationError
from app.core.logging import get_logger
from app.schemas.responses import AnalysisResult, WorkbookRecord
from app.services import csv_reader
from app.services.batch_mapper import BatchMapper, BatchMappingStats
from app.services.bucket_tree import BucketTree
from app.services.job_store import JobStore
from app.services.llm import LLMClient
from app.services.progress import JobProgressTracker
from app.services.storage import RecordStore, resolve_upload
from app.services.stream_assigner import AssignmentStats, StreamAssigner
from app.services.taxonomy_builder import (
    build_bucket_tree,
    deterministic_taxonomy,
    seed_name_matches,
    sorted_by_count,
)
from app.services.value_classifier import ValueClassifier

logger = get_logger(__name__)


@dataclass
class AnalysisJob:
    """Everything a worker needs to run one classification job."""

    job_id: str
    workbook_id: str
    selected_column: str
    taxonomy: List[Dict[str, Any]] = field(default_factory=list)
    unique_values: Optional[Dict[str, int]] = None
    provider: str = "llm"


class AnalysisPipeline:
    """Runs jobs against the given stores; one instance may serve many jobs.

    All per-job state (tree, exact map, classifier connection) lives inside
    :meth:`run`.
    """

    def __init__(
        self,
        records: RecordStore,
        job_store: JobStore,
        llm_factory: Callable[[], LLMClient] = LLMClient,
        data_dir: Optional[str] = None,
    ) -> None:
        self.records = records
        self.job_store = job_store
        self.llm_factory = llm_factory
        self.data_dir = data_dir

    def _load_source(self, job: AnalysisJob) -> Tuple[WorkbookRecord, str]:
        workbook = WorkbookRecord.model_validate(self.records.require("workbooks", job.workbook_id, "Workbook"))
        path = resolve_upload(workbook.storage_path, self.data_dir)
        columns = csv_reader.read_header(path)
        if job.selected_column not in columns:
            raise ValidationError(f"Column '{job.selected_column}' not found in workbook", field="selected_column")
        return workbook, path

    async def run(self, job: AnalysisJob) -> Optional[AnalysisResult]:
        tracker = JobProgressTracker(job.job_id, self.job_store)
        log = logger.bind(job_id=job.job_id, workbook_id=job.workbook_id, column=job.selected_column)
        try:
            tracker.check_cancelled()
            tracker.start()
            log.info("analysis_started", provider=job.provider)
            result = await self._run(job, tracker)
        except JobCancelledError:
            log.info("analysis_cancelled")
            tracker.cancelled()
            return None
        except BaseServiceException as exc:
            log.warning("analysis_failed", error=exc.message, error_code=exc.error_code)
            tracker.fail(exc.message)
            return None
        except asyncio.CancelledError:
            tracker.fail("Job interrupted by shutdown")
            raise
        except Exception as exc:
            log.exception("analysis_crashed")
            tracker.fail(str(exc) or exc.__class__.__name__)
            return None

        tracker.complete(result.id)
        log.info("analysis_completed", analysis_id=result.id, total_rows=result.stats.total_rows)
        return result

    async def _run(self, job: AnalysisJob, tracker: JobProgressTracker) -> AnalysisResult:
        workbook, path = self._load_source(job)
        tracker.report("initializing", 0.2, "Reading distinct values...")

        unique_values = job.unique_values
        if unique_values is None:
            unique_values, _, _ = await asyncio.to_thread(
                csv_reader.count_unique_values, path, job.selected_column, settings.unique_scan_limit
            )

        taxonomy = job.taxonomy
        if not taxonomy and job.provider == "none":
            taxonomy = deterministic_taxonomy(unique_values, settings.deterministic_bucket_limit)
        if not taxonomy:
            raise ValidationError("Taxonomy is empty", field="confirmed_buckets")

        tree, exact_map = build_bucket_tree(taxonomy)
        ordered_values = [value for value, _ in sorted_by_count(unique_values)]
        seeded = seed_name_matches(tree, exact_map, ordered_values)
        tracker.report("initializing", 1.0, f"Built {len(tree)} buckets, {seeded} direct matches")

        mapping_stats = BatchMappingStats()
        if job.provider != "none":
            pending = [v for v in ordered_values if v not in exact_map]
            async with self.llm_factory() as llm:
                mapper = BatchMapper(tree, exact_map, llm.map_batch, job.selected_column, tracker=tracker)
                mapping_stats = await mapper.run(pending)
        tracker.report("batch_mapping", 1.0, "Assigning rows to buckets...")

        classifier = ValueClassifier(tree, exact_map, cache_size=settings.fuzzy_cache_size)
        assigner = StreamAssigner(
            tree, classifier, job.selected_column, tracker=tracker, expected_rows=workbook.row_count
        )
        with closing(csv_reader.iter_records(path)) as records:
            assignment = await asyncio.to_thread(assigner.run, records)

        tracker.report("finalizing", 0.0, "Saving analysis...")
        result = self._build_result(job, tree, unique_values, mapping_stats, assignment)
        self.records.write("analyses", result.id, result.model_dump(by_alias=True))
        return result

    def _build_result(
        self,
        job: AnalysisJob,
        tree: BucketTree,
        unique_values: Dict[str, int],
        mapping_stats: BatchMappingStats,
        assignment: AssignmentStats,
    ) -> AnalysisResult:
        problems = tree.check_invariants(check_rows=False)
        if problems:
            logger.error("bucket_tree_inconsistent", job_id=job.job_id, problems=problems[:20])
        if tree.total_rows() != assignment.total_rows:
            logger.error(
                "row_total_mismatch", job_id=job.job_id, roots=tree.total_rows(), rows=assignment.total_rows
            )

        return AnalysisResult.model_validate(
            {
                "id": str(uuid.uuid4()),
                "workbookId": job.workbook_id,
                "selectedColumn": job.selected_column,
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "rootBuckets": tree.to_dict(),
                "stats": {
                    "distinctValues": len(unique_values),
                    "emptyCount": tree.catch_all.row_count,
                    "totalRows": assignment.total_rows,
                    "exactMatches": assignment.exact_matches,
                    "fuzzyMatches": assignment.fuzzy_matches,
                    "failedBatches": mapping_stats.failed_batches,
                },
            }
        )
