from __future__ import annotations

from typing import Any, Dict, List, Optional

from eva.engine import EvaResult


Step = Dict[str, Any]

MARGIN_STEPS = (
    ("Volume", "volume_effect"),
    ("Mix", "mix_effect"),
    ("Revenue", "revenue_effect"),
    ("Cost", "cost_effect"),
)
BRIDGE_METRICS = ("volume", "revenue", "margin")
UNASSIGNED_LABEL = "Unassigned"


def _label(label: Optional[str], period: Optional[int], fallback: str) -> str:
    if label:
        return label
    return str(period) if period is not None else fallback


def _step(name: str, kind: str, start: float, end: float, value: float) -> Step:
    return {
        "name": name,
        "kind": kind,
        "value": value,
        "start": start,
        "end": end,
        "bar_base": min(start, end),
        "bar_height": abs(end - start),
        "is_positive": value >= 0,
    }


def _endpoint(name: str, value: float) -> Step:
    return _step(name, "endpoint", 0.0, value, value)


def margin_bridge(
    result: EvaResult,
    *,
    base_label: Optional[str] = None,
    comparison_label: Optional[str] = None,
    include_residual: bool = False,
    scale: float = 1.0,
) -> List[Step]:
    """Waterfall steps: base margin, the four effects, comparison margin.

    Without the residual step the last floating bar does not land on the
    comparison total whenever the effects leave a gap.
    """
    scale = scale or 1.0
    summary = result.summary
    base_total = result.totals.margin_base / scale

    steps = [_endpoint(_label(base_label, result.base_period, "Base"), base_total)]
    cumulative = base_total
    deltas = [(name, getattr(summary, attr) / scale) for name, attr in MARGIN_STEPS]
    if include_residual:
        deltas.append(("Residual", summary.residual / scale))
    for name, delta in deltas:
        steps.append(_step(name, "delta", cumulative, cumulative + delta, delta))
        cumulative += delta

    steps.append(_endpoint(_label(comparison_label, result.comparison_period, "Comparison"), result.totals.margin_comparison / scale))
    return steps


def dimension_bridge(
    result: EvaResult,
    metric: str,
    *,
    base_label: Optional[str] = None,
    comparison_label: Optional[str] = None,
    scale: float = 1.0,
) -> List[Step]:
    """Waterfall of one metric's change split by dimension value, largest swing first."""
    if metric not in BRIDGE_METRICS:
        raise ValueError(f"metric must be one of {BRIDGE_METRICS}, got {metric!r}")
    scale = scale or 1.0

    def side(agg, name):
        return getattr(agg, f"{metric}_{name}") / scale

    changes = []
    for d in result.details:
        change = side(d.aggregate, "comparison") - side(d.aggregate, "base")
        if change != 0:
            changes.append((d.key, change))
    # total-mode endpoints include rows without a key
    if result.summary_mode == "total" and result.unassigned is not None:
        change = side(result.unassigned, "comparison") - side(result.unassigned, "base")
        if change != 0:
            changes.append((UNASSIGNED_LABEL, change))
    changes.sort(key=lambda kv: (-abs(kv[1]), kv[0]))

    base_total = side(result.totals, "base")
    steps = [_endpoint(_label(base_label, result.base_period, "Base"), base_total)]
    cumulative = base_total
    for key, change in changes:
        steps.append(_step(key, "delta", cumulative, cumulative + change, change))
        cumulative += change
    steps.append(_endpoint(_label(comparison_label, result.comparison_period, "Comparison"), side(result.totals, "comparison")))
    return steps
