"""Response schemas and persisted record shapes."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


JobStatus = Literal["queued", "processing", "completed", "failed", "cancelled"]
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class CamelModel(BaseModel):
    """Accepts and emits camelCase on the wire; snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkbookRecord(CamelModel):
    """Uploaded delimited file and its header metadata."""

    id: str
    filename: str
    uploaded_at: str
    columns: List[str] = Field(default_factory=list)
    row_count: int = 0
    storage_path: str


class JobRecord(CamelModel):
    """External-facing state of one classification job."""

    id: str
    status: JobStatus = "queued"
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    result_id: Optional[str] = None
    cancel_requested: bool = False
    updated_at: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BucketNodeOut(CamelModel):
    """Serialized bucket tree node."""

    id: str
    name: str
    depth: int
    row_count: int = 0
    row_indices: List[int] = Field(default_factory=list)
    children: List["BucketNodeOut"] = Field(default_factory=list)
    children_count: int = 0


class AnalysisStats(CamelModel):
    distinct_values: int = 0
    empty_count: int = 0
    total_rows: int = 0
    exact_matches: int = 0
    fuzzy_matches: int = 0
    failed_batches: int = 0


class AnalysisResult(CamelModel):
    """Finished run: the bucket forest plus summary statistics."""

    id: str
    workbook_id: str
    selected_column: str
    created_at: str
    root_buckets: List[BucketNodeOut] = Field(default_factory=list)
    stats: AnalysisStats = Field(default_factory=AnalysisStats)


class SampleValue(CamelModel):
    value: str
    count: int


class SampleResponse(CamelModel):
    samples: List[SampleValue] = Field(default_factory=list)


class JobAccepted(CamelModel):
    job_id: str
    message: str = "Analysis started in background"


class TaxonomyProposal(CamelModel):
    """Proposed taxonomy awaiting user confirmation."""

    needs_taxonomy_confirmation: bool = True
    proposed_buckets: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, int] = Field(default_factory=dict)
    unique_values: Dict[str, int] = Field(default_factory=dict)


class BucketRowsResponse(CamelModel):
    bucket_name: str
    row_count: int
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)


BucketNodeOut.model_rebuild()
