"""Finished analysis results and their CSV export."""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.deps import get_record_store
from app.schemas.responses import AnalysisResult
from app.services.storage import RecordStore, rows_to_csv
from app.utils.table import EXPORT_HEADER, flatten
from app.utils.text import slugify

router = APIRouter(prefix="/v1/analyses", tags=["analyses"])


def load_analysis(analysis_id: str, records: RecordStore) -> Dict[str, Any]:
    return records.require("analyses", analysis_id, "Analysis")


@router.get("/{analysis_id}", response_model=AnalysisResult)
async def get_analysis(analysis_id: str, records: RecordStore = Depends(get_record_store)) -> Dict[str, Any]:
    return load_analysis(analysis_id, records)


@router.get("/{analysis_id}/export")
async def export_analysis(analysis_id: str, records: RecordStore = Depends(get_record_store)) -> Response:
    """Every bucket as one CSV row of L1..L5 path labels and counts."""
    analysis = load_analysis(analysis_id, records)
    body = rows_to_csv(flatten(analysis.get("rootBuckets", [])), EXPORT_HEADER)
    filename = f"{slugify(analysis.get('selectedColumn', 'analysis'))}-{analysis_id}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
