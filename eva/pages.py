from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Iterable

from eva.bridge import dimension_bridge, margin_bridge
from eva.charts import waterfall_chart
from eva.config import DEFAULT_TOLERANCE
from eva.engine import compute_eva, reconciliation
from eva.export import detail_records, summary_record
from eva.filters import EvaFilters, build_predicate
from eva.rows import TransactionRow


def compute_eva_page(
    filters: EvaFilters,
    rows: Iterable[TransactionRow],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> Dict[str, Any]:
    if filters.base_period is None or filters.comparison_period is None:
        return {
            "filters": asdict(filters),
            "summary": {},
            "details": [],
            "detail_count": 0,
            "unassigned": None,
            "margin_bridge": [],
            "volume_bridge": [],
            "revenue_bridge": [],
            "charts": {},
            "reconciliation": {},
        }

    result = compute_eva(
        rows,
        filters.base_period,
        filters.comparison_period,
        dimension=filters.dimension,
        predicate=build_predicate(filters),
        summary_mode=filters.summary_mode,
        tolerance=tolerance,
    )

    bridge = margin_bridge(result, include_residual=True)
    volume_bridge = dimension_bridge(result, "volume") if result.dimension else []
    revenue_bridge = dimension_bridge(result, "revenue") if result.dimension else []

    charts = {"margin_bridge": waterfall_chart(bridge, title="EVA Margin")}
    if volume_bridge:
        charts["volume_bridge"] = waterfall_chart(volume_bridge, title="EVA Volume (kg)")
    if revenue_bridge:
        charts["revenue_bridge"] = waterfall_chart(revenue_bridge, title="EVA Revenue")

    return {
        "filters": asdict(filters),
        "summary": summary_record(result),
        "details": detail_records(result)[: filters.top_n],
        "detail_count": len(result.details),
        "unassigned": result.unassigned.to_dict() if result.unassigned is not None else None,
        "margin_bridge": bridge,
        "volume_bridge": volume_bridge,
        "revenue_bridge": revenue_bridge,
        "charts": charts,
        "reconciliation": reconciliation(result, tolerance),
    }
