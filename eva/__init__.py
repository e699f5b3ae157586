"""Core (UI-agnostic) margin bridge logic.

This package contains:
- the transaction row record and the frame -> rows boundary
- filter normalization
- the four-factor EVA decomposition (volume, mix, revenue, cost)
- waterfall step builders and chart helpers (Altair -> Vega-Lite spec dict)
- export and summarization payloads (JSON-serializable)
"""

from eva.engine import (
    EvaDetail,
    EvaEffect,
    EvaResult,
    GroupAggregate,
    assemble,
    compute_eva,
    decompose,
    filter_and_group,
)
from eva.rows import TransactionRow

__all__ = [
    "EvaDetail",
    "EvaEffect",
    "EvaResult",
    "GroupAggregate",
    "TransactionRow",
    "assemble",
    "compute_eva",
    "decompose",
    "filter_and_group",
]
