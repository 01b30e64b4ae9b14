"""Workbook upload, column sampling and analysis endpoints."""

import asyncio
import os
import uuid
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from app.api.deps import get_job_store, get_queue, get_record_store
from app.api.routes_analyses import load_analysis
from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.schemas.requests import AnalyzeRequest, FinalizeRequest
from app.schemas.responses import (
    BucketRowsResponse,
    JobAccepted,
    SampleResponse,
    SampleValue,
    TaxonomyProposal,
    WorkbookRecord,
)
from app.services import csv_reader
from app.services.analysis_pipeline import AnalysisJob
from app.services.job_queue import AnalysisQueue
from app.services.job_store import JobStore, utc_now
from app.services.storage import RecordStore, resolve_upload, store_upload
from app.services.taxonomy_builder import sorted_by_count, strip_catch_all
from app.utils.table import collect_row_indices, find_bucket

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/workbooks", tags=["workbooks"])


def _load_workbook(workbook_id: str, records: RecordStore) -> WorkbookRecord:
    return WorkbookRecord.model_validate(records.require("workbooks", workbook_id, "Workbook"))


def _require_column(workbook: WorkbookRecord, column: str) -> None:
    if column not in workbook.columns:
        raise ValidationError(f"Column '{column}' not found in workbook", field="column")


def _enqueue(
    queue: AnalysisQueue,
    jobs: JobStore,
    workbook_id: str,
    column: str,
    provider: str,
    taxonomy: Optional[list] = None,
    unique_values: Optional[dict] = None,
) -> JobAccepted:
    job_id = str(uuid.uuid4())
    jobs.create(job_id)
    queue.enqueue(
        AnalysisJob(
            job_id=job_id,
            workbook_id=workbook_id,
            selected_column=column,
            taxonomy=taxonomy or [],
            unique_values=unique_values,
            provider=provider,
        )
    )
    return JobAccepted(job_id=job_id)


@router.post("/upload", response_model=WorkbookRecord)
async def upload_workbook(
    request: Request,
    file: UploadFile = File(...),
    records: RecordStore = Depends(get_record_store),
) -> WorkbookRecord:
    data_dir = request.app.state.data_dir
    storage_path = await store_upload(file, data_dir)
    columns, row_count = await asyncio.to_thread(csv_reader.read_metadata, storage_path)
    if not columns:
        os.remove(storage_path)
        raise ValidationError("Uploaded file has no header row", field="file")

    workbook = WorkbookRecord(
        id=str(uuid.uuid4()),
        filename=file.filename or "upload.csv",
        uploaded_at=utc_now(),
        columns=columns,
        row_count=row_count,
        storage_path=storage_path,
    )
    records.write("workbooks", workbook.id, workbook.model_dump(by_alias=True))
    logger.info("workbook_uploaded", workbook_id=workbook.id, columns=len(columns), rows=row_count)
    return workbook


@router.get("/{workbook_id}", response_model=WorkbookRecord)
async def get_workbook(workbook_id: str, records: RecordStore = Depends(get_record_store)) -> WorkbookRecord:
    return _load_workbook(workbook_id, records)


@router.get("/{workbook_id}/sample", response_model=SampleResponse)
async def sample_column(
    request: Request,
    workbook_id: str,
    column: str = Query(..., min_length=1),
    records: RecordStore = Depends(get_record_store),
) -> SampleResponse:
    """Most frequent values of ``column`` among the first rows of the file."""
    workbook = _load_workbook(workbook_id, records)
    _require_column(workbook, column)
    path = resolve_upload(workbook.storage_path, request.app.state.data_dir)
    unique_values, _, _ = await asyncio.to_thread(
        csv_reader.count_unique_values, path, column, settings.sample_scan_limit
    )
    samples = [
        SampleValue(value=value, count=count)
        for value, count in sorted_by_count(unique_values)[: settings.sample_size]
    ]
    return SampleResponse(samples=samples)


@router.post("/{workbook_id}/analyze", response_model=Union[TaxonomyProposal, JobAccepted])
async def analyze_workbook(
    request: Request,
    workbook_id: str,
    req: AnalyzeRequest,
    records: RecordStore = Depends(get_record_store),
    jobs: JobStore = Depends(get_job_store),
    queue: AnalysisQueue = Depends(get_queue),
) -> Union[TaxonomyProposal, JobAccepted]:
    """Propose a taxonomy for confirmation, or run straight away without a classifier."""
    workbook = _load_workbook(workbook_id, records)
    _require_column(workbook, req.selected_column)
    path = resolve_upload(workbook.storage_path, request.app.state.data_dir)

    unique_values, total_rows, empty_count = await asyncio.to_thread(
        csv_reader.count_unique_values, path, req.selected_column, settings.unique_scan_limit
    )

    if req.provider == "none":
        logger.info("deterministic_analysis_requested", workbook_id=workbook_id, column=req.selected_column)
        return _enqueue(queue, jobs, workbook_id, req.selected_column, "none", unique_values=unique_values)

    sample_values = [
        {"value": value, "count": count}
        for value, count in sorted_by_count(unique_values)[: settings.propose_sample_limit]
    ]
    async with request.app.state.llm_factory() as llm:
        proposed = await llm.propose_taxonomy(req.selected_column, sample_values, req.guide)

    logger.info(
        "taxonomy_proposed",
        workbook_id=workbook_id,
        column=req.selected_column,
        roots=len(proposed),
        distinct_values=len(unique_values),
    )
    return TaxonomyProposal(
        proposed_buckets=strip_catch_all(proposed),
        stats={"uniqueValues": len(unique_values), "totalRows": total_rows, "emptyCount": empty_count},
        unique_values=unique_values,
    )


@router.post("/{workbook_id}/analyze/finalize", response_model=JobAccepted)
async def finalize_analysis(
    workbook_id: str,
    req: FinalizeRequest,
    records: RecordStore = Depends(get_record_store),
    jobs: JobStore = Depends(get_job_store),
    queue: AnalysisQueue = Depends(get_queue),
) -> JobAccepted:
    """Queue classification of the whole file against a confirmed taxonomy."""
    workbook = _load_workbook(workbook_id, records)
    _require_column(workbook, req.selected_column)
    if not req.confirmed_buckets and req.provider != "none":
        raise ValidationError("Taxonomy is empty", field="confirmed_buckets")

    accepted = _enqueue(
        queue,
        jobs,
        workbook_id,
        req.selected_column,
        req.provider,
        taxonomy=[node.model_dump() for node in req.confirmed_buckets],
        unique_values=req.unique_values,
    )
    logger.info("analysis_queued", workbook_id=workbook_id, job_id=accepted.job_id)
    return accepted


@router.get("/{workbook_id}/bucket-rows", response_model=BucketRowsResponse)
async def bucket_rows(
    request: Request,
    workbook_id: str,
    analysis_id: str = Query(..., alias="analysisId"),
    bucket_id: str = Query(..., alias="bucketId"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    records: RecordStore = Depends(get_record_store),
) -> BucketRowsResponse:
    """Rows assigned to a bucket or any bucket beneath it."""
    workbook = _load_workbook(workbook_id, records)
    analysis = load_analysis(analysis_id, records)
    bucket = find_bucket(analysis.get("rootBuckets", []), bucket_id)
    if bucket is None:
        raise NotFoundError("Bucket", bucket_id)

    path = resolve_upload(workbook.storage_path, request.app.state.data_dir)
    rows = await asyncio.to_thread(
        csv_reader.read_rows_at, path, collect_row_indices(bucket), limit or settings.bucket_rows_limit
    )
    return BucketRowsResponse(
        bucket_name=bucket.get("name", ""),
        row_count=int(bucket.get("rowCount", 0)),
        rows=rows,
        columns=workbook.columns,
    )
