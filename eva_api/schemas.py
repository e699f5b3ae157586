from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class EvaFiltersModel(BaseModel):
    base_period: Optional[int] = None
    comparison_period: Optional[int] = None
    dimension: Optional[str] = None
    filter_dimension: Optional[str] = None
    store: str = "TOTAL"
    report: Literal["YTD", "MTD"] = "YTD"
    month: Optional[int] = Field(default=None, ge=1, le=12)
    included_dimension_values: List[str] = Field(default_factory=list)
    excluded_dimension_values: List[str] = Field(default_factory=list)
    top_n: int = 15
    summary_mode: Literal["groups", "total"] = "groups"


class MetaPeriodsResponse(BaseModel):
    periods: List[int]


class MetaListResponse(BaseModel):
    values: List[str]
