from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from eva.config import ALL_STORES, DEFAULT_DIMENSION, DEFAULT_TOP_N
from eva.rows import TransactionRow, clean_key


REPORTS = ("YTD", "MTD")


@dataclass(frozen=True)
class EvaFilters:
    base_period: Optional[int] = None
    comparison_period: Optional[int] = None
    dimension: Optional[str] = DEFAULT_DIMENSION
    filter_dimension: Optional[str] = None
    store: str = ALL_STORES
    report: str = "YTD"
    month: Optional[int] = None
    included_dimension_values: List[str] = field(default_factory=list)
    excluded_dimension_values: List[str] = field(default_factory=list)
    top_n: int = DEFAULT_TOP_N
    summary_mode: str = "groups"


def _as_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except Exception:
        return None


def _as_str_list(values: Optional[Iterable[object]]) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    out = [clean_key(v) for v in values]
    return [v for v in out if v is not None]


def normalize_filters(
    raw: dict,
    *,
    available_periods: Optional[List[int]] = None,
    default_dimension: str = DEFAULT_DIMENSION,
) -> EvaFilters:
    available_periods = sorted(available_periods or [])

    base_period = _as_int(raw.get("base_period"))
    comparison_period = _as_int(raw.get("comparison_period"))
    if comparison_period is None and available_periods:
        comparison_period = available_periods[-1]
    if base_period is None and available_periods:
        earlier = [p for p in available_periods if comparison_period is None or p < comparison_period]
        base_period = earlier[-1] if earlier else available_periods[0]

    # An explicit null means "ungrouped"; a missing key means the default dimension.
    if "dimension" in raw:
        dimension = clean_key(raw.get("dimension"))
    else:
        dimension = default_dimension
    filter_dimension = clean_key(raw.get("filter_dimension")) or dimension or default_dimension

    store = clean_key(raw.get("store")) or ALL_STORES

    report = (clean_key(raw.get("report")) or "YTD").upper()
    if report not in REPORTS:
        report = "YTD"

    month = _as_int(raw.get("month"))
    if month is not None and not 1 <= month <= 12:
        month = None

    top_n = _as_int(raw.get("top_n"))
    top_n = DEFAULT_TOP_N if top_n is None else max(1, min(200, top_n))

    summary_mode = clean_key(raw.get("summary_mode")) or "groups"
    if summary_mode not in ("groups", "total"):
        summary_mode = "groups"

    return EvaFilters(
        base_period=base_period,
        comparison_period=comparison_period,
        dimension=dimension,
        filter_dimension=filter_dimension,
        store=store,
        report=report,
        month=month,
        included_dimension_values=_as_str_list(raw.get("included_dimension_values")),
        excluded_dimension_values=_as_str_list(raw.get("excluded_dimension_values")),
        top_n=top_n,
        summary_mode=summary_mode,
    )


def build_predicate(filters: EvaFilters) -> Optional[Callable[[TransactionRow], bool]]:
    """Row filter applied identically to both periods; None when nothing filters."""
    store = None if filters.store in ("", ALL_STORES) else filters.store
    month = filters.month
    report = filters.report
    included = set(filters.included_dimension_values)
    excluded = set(filters.excluded_dimension_values)
    dim = filters.filter_dimension or filters.dimension

    if store is None and month is None and not included and not excluded:
        return None

    def predicate(row: TransactionRow) -> bool:
        if store is not None and clean_key(row.store) != store:
            return False
        if month is not None:
            if row.month is None:
                return False
            if report == "MTD" and row.month != month:
                return False
            if report == "YTD" and row.month > month:
                return False
        if included or excluded:
            value = row.dimension(dim)
            if included and value not in included:
                return False
            if value is not None and value in excluded:
                return False
        return True

    return predicate
