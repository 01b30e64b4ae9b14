"""Request schemas for the bucketing service."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from app.schemas.responses import CamelModel


Provider = Literal["none", "llm"]


class TaxonomyNodeIn(CamelModel):
    """One node of a confirmed/edited taxonomy."""

    name: Optional[str] = Field(default=None, description="Display label")
    description: Optional[str] = Field(default=None)
    children: List["TaxonomyNodeIn"] = Field(default_factory=list)
    is_ai_suggested: bool = Field(default=False)
    match: List[str] = Field(default_factory=list, description="Column values mapped to this node verbatim")


class AnalyzeRequest(CamelModel):
    """Start an analysis: propose a taxonomy, or run deterministically."""

    selected_column: str = Field(..., min_length=1)
    provider: Provider = Field(default="none")
    guide: Optional[List[Dict[str, Any]]] = Field(default=None, description="Taxonomy the proposal must build on")


class FinalizeRequest(CamelModel):
    """Confirmed taxonomy plus the column to classify."""

    selected_column: str = Field(..., min_length=1)
    confirmed_buckets: List[TaxonomyNodeIn] = Field(default_factory=list)
    unique_values: Optional[Dict[str, int]] = Field(default=None, description="Distinct value -> occurrence count")
    provider: Provider = Field(default="llm")

    @field_validator("unique_values")
    @classmethod
    def strip_blank_values(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        if v is None:
            return v
        cleaned: Dict[str, int] = {}
        for value, count in v.items():
            key = str(value).strip()
            if key:
                cleaned[key] = cleaned.get(key, 0) + int(count or 0)
        return cleaned


TaxonomyNodeIn.model_rebuild()
