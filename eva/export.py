from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd

from eva.bridge import dimension_bridge, margin_bridge
from eva.config import TOTAL_KEY
from eva.engine import EvaEffect, EvaResult, GroupAggregate


def _record(key: str, aggregate: GroupAggregate, effect: EvaEffect) -> Dict[str, Any]:
    rec: Dict[str, Any] = {"key": key}
    agg = aggregate.to_dict()
    agg.pop("key", None)
    rec.update(agg)
    rec.update(aggregate.rates())
    rec.update(effect.to_dict())
    return rec


def detail_records(result: EvaResult) -> List[Dict[str, Any]]:
    return [_record(d.key, d.aggregate, d.effect) for d in result.details]


def summary_record(result: EvaResult) -> Dict[str, Any]:
    return _record(TOTAL_KEY, result.totals, result.summary)


def to_frame(result: EvaResult) -> pd.DataFrame:
    """Summary row first, then details in bridge order."""
    df = pd.DataFrame([summary_record(result), *detail_records(result)])
    df.insert(0, "dimension", result.dimension or "")
    return df


def to_csv_bytes(result: EvaResult) -> bytes:
    return to_frame(result).to_csv(index=False).encode("utf-8")


def bridge_records(result: EvaResult, *, margin_scale: float = 1.0) -> List[Dict[str, Any]]:
    """Flat rows for the three bridges, as they are laid out in the report export."""
    out: List[Dict[str, Any]] = []
    sections = [("EVA Margin", margin_bridge(result, scale=margin_scale))]
    if result.dimension:
        sections.append(("EVA Volume", dimension_bridge(result, "volume")))
        sections.append(("EVA Revenue", dimension_bridge(result, "revenue")))
    for chart, steps in sections:
        out.extend({"chart": chart, "category": s["name"], "value": s["value"]} for s in steps)
    return out


def bridge_frame(result: EvaResult, *, margin_scale: float = 1.0) -> pd.DataFrame:
    return pd.DataFrame(bridge_records(result, margin_scale=margin_scale), columns=["chart", "category", "value"])


def llm_payload(result: EvaResult, top_n: Optional[int] = 10) -> Dict[str, Any]:
    """Plain numeric payload for the summarization collaborator; no rounding."""
    details = detail_records(result)
    if top_n is not None:
        details = details[: max(0, int(top_n))]
    return {
        "base_period": result.base_period,
        "comparison_period": result.comparison_period,
        "dimension": result.dimension,
        "summary": summary_record(result),
        "details": details,
        "detail_count": len(result.details),
    }
