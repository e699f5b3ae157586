from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from eva.config import DEFAULT_DIMENSION


logger = logging.getLogger(__name__)

# Source column -> canonical field. Extra columns survive as row attributes.
COLUMN_ALIASES = {
    "calendarYear": "period",
    "calendar_year": "period",
    "Calendar Year": "period",
    "Year": "period",
    "year": "period",
    "month": "month",
    "Month": "month",
    "nom": "store",
    "Nom": "store",
    "Store": "store",
    "store": "store",
    "macroFamilyName": "family",
    "macro_family_name": "family",
    "Macro Family": "family",
    "family": "family",
    "familyName": "sub_family",
    "clientMacroCategory": "category",
    "nameSalesReport": "product",
    "frItemCode": "item_code",
    "volumeKg": "volume",
    "volume_kg": "volume",
    "Volume Kg": "volume",
    "volume": "volume",
    "netSales": "revenue",
    "net_sales": "revenue",
    "Net Sales": "revenue",
    "revenue": "revenue",
    "cogs": "cost",
    "COGS": "cost",
    "cost": "cost",
    "margin": "margin",
    "Margin": "margin",
}

AMOUNT_COLUMNS = ["volume", "revenue", "cost", "margin"]
RESERVED_COLUMNS = {"period", "month", "store", "dimension_key", *AMOUNT_COLUMNS}
# Aliased categorical columns stay attributes even when a reader types them as numbers.
CATEGORICAL_COLUMNS = {c for c in COLUMN_ALIASES.values() if c not in RESERVED_COLUMNS}
NA_TOKENS = {"nan", "none", "null", "<na>", "na", "n/a", ""}


def clean_key(value: object) -> Optional[str]:
    """Normalize a categorical value; blanks and NA tokens become None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    s = str(value).strip()
    if s.lower() in NA_TOKENS:
        return None
    return s


@dataclass(frozen=True)
class TransactionRow:
    """One normalized sales line as handed over by ingestion.

    ``margin`` is authoritative input; it is never recomputed from
    revenue and cost here, so upstream business-rule adjustments survive.
    """

    period: int
    dimension_key: Optional[str] = None
    volume: float = 0.0
    revenue: float = 0.0
    cost: float = 0.0
    margin: float = 0.0
    month: Optional[int] = None
    store: Optional[str] = None
    attributes: Mapping[str, Optional[str]] = field(default_factory=dict)

    def dimension(self, name: Optional[str] = None) -> Optional[str]:
        if name is None or name == "dimension_key":
            return clean_key(self.dimension_key)
        if name == "store":
            return clean_key(self.store)
        if not self.attributes:
            # bare records carry only the grouping key
            return clean_key(self.dimension_key)
        return clean_key(self.attributes.get(name))


def find_invalid_rows(rows: Iterable[TransactionRow]) -> List[int]:
    """Indices of rows with non-finite amounts or negative volume."""
    bad: List[int] = []
    for i, row in enumerate(rows):
        amounts = (row.volume, row.revenue, row.cost, row.margin)
        try:
            finite = all(math.isfinite(float(v)) for v in amounts)
        except (TypeError, ValueError):
            finite = False
        if not finite or float(row.volume) < 0:
            bad.append(i)
    return bad


def _as_month(value: object) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    try:
        month = int(value)
    except (TypeError, ValueError):
        return None
    return month if 1 <= month <= 12 else None


def rows_from_frame(
    df: pd.DataFrame,
    *,
    dimension: str = DEFAULT_DIMENSION,
    column_map: Optional[Dict[str, str]] = None,
) -> List[TransactionRow]:
    """Build rows from an already-normalized frame.

    ``dimension`` names the column copied into ``dimension_key``. Missing
    amounts become 0.0; ``margin`` is derived as revenue - cost only when
    the frame has no margin column at all.
    """
    if df is None or df.empty:
        return []

    mapping = dict(COLUMN_ALIASES)
    if column_map:
        mapping.update(column_map)
    df = df.rename(columns={c: mapping[c] for c in df.columns if c in mapping})
    df = df.loc[:, ~df.columns.duplicated()].copy()

    if "period" not in df.columns:
        logger.warning("rows_from_frame: no period column among %s", list(df.columns))
        return []

    df["period"] = pd.to_numeric(df["period"], errors="coerce")
    dropped = int(df["period"].isna().sum())
    if dropped:
        logger.warning("rows_from_frame: dropped %d rows without a period", dropped)
    df = df.dropna(subset=["period"])

    has_margin = "margin" in df.columns
    for col in AMOUNT_COLUMNS:
        if col not in df.columns:
            df[col] = 0.0
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0).astype(float)
    if not has_margin:
        df["margin"] = df["revenue"] - df["cost"]

    attr_cols = [
        c
        for c in df.columns
        if c not in RESERVED_COLUMNS and (c in CATEGORICAL_COLUMNS or not pd.api.types.is_numeric_dtype(df[c]))
    ]
    rows: List[TransactionRow] = []
    for rec in df.to_dict(orient="records"):
        attributes = {str(c): clean_key(rec.get(c)) for c in attr_cols}
        key = clean_key(rec.get("store")) if dimension == "store" else attributes.get(dimension)
        rows.append(
            TransactionRow(
                period=int(rec["period"]),
                dimension_key=key,
                volume=float(rec["volume"]),
                revenue=float(rec["revenue"]),
                cost=float(rec["cost"]),
                margin=float(rec["margin"]),
                month=_as_month(rec.get("month")),
                store=clean_key(rec.get("store")),
                attributes=attributes,
            )
        )
    logger.debug("rows_from_frame: built %d rows keyed by %s", len(rows), dimension)
    return rows


def load_rows(path: Path | str, *, dimension: str = DEFAULT_DIMENSION) -> List[TransactionRow]:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix in {".xlsx", ".xlsm", ".xls"}:
        df = pd.read_excel(path)
    else:
        raise ValueError(f"Unsupported data file type: {path.name}")
    return rows_from_frame(df, dimension=dimension)


def available_periods(rows: Iterable[TransactionRow]) -> List[int]:
    return sorted({int(r.period) for r in rows})


def dimension_names(rows: Iterable[TransactionRow]) -> List[str]:
    names = set()
    for r in rows:
        if clean_key(r.store) is not None:
            names.add("store")
        names.update(k for k, v in r.attributes.items() if v is not None)
    return sorted(names)


def dimension_values(rows: Iterable[TransactionRow], name: Optional[str]) -> List[str]:
    return sorted({v for v in (r.dimension(name) for r in rows) if v is not None})
