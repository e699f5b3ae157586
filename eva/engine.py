"""Four-factor margin bridge (volume, mix, revenue, cost).

The margin change between a base and a comparison period is split into:

- volume effect: volume change valued at the base margin per kg
- mix effect: volume change times the change in margin per kg
- revenue effect: comparison volume times the change in revenue per kg
- cost effect: comparison volume times the change in cost per kg, sign-flipped

Every per-kg rate with a zero volume resolves to 0. The four effects are a
linearization, so under simultaneous price, cost and volume change they do
not add up to the observed margin change; ``EvaEffect.residual`` carries the
gap and the effects are never adjusted to hide it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from eva.config import DEFAULT_TOLERANCE, TOTAL_KEY
from eva.rows import TransactionRow, clean_key, find_invalid_rows


logger = logging.getLogger(__name__)

RowPredicate = Callable[[TransactionRow], bool]
RowSelector = Callable[[TransactionRow], Optional[str]]
DimensionArg = Union[str, RowSelector, None]

SUMMARY_MODES = ("groups", "total")
EFFECT_FIELDS = ("volume_effect", "mix_effect", "revenue_effect", "cost_effect")


def per_kg(amount: float, volume: float) -> float:
    if volume == 0:
        return 0.0
    return amount / volume


def is_close(a: float, b: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    return abs(a - b) <= tolerance * max(1.0, abs(a), abs(b))


@dataclass(frozen=True)
class GroupAggregate:
    key: str = TOTAL_KEY
    volume_base: float = 0.0
    volume_comparison: float = 0.0
    revenue_base: float = 0.0
    revenue_comparison: float = 0.0
    cost_base: float = 0.0
    cost_comparison: float = 0.0
    margin_base: float = 0.0
    margin_comparison: float = 0.0

    def __add__(self, other: "GroupAggregate") -> "GroupAggregate":
        return GroupAggregate(
            key=self.key,
            volume_base=self.volume_base + other.volume_base,
            volume_comparison=self.volume_comparison + other.volume_comparison,
            revenue_base=self.revenue_base + other.revenue_base,
            revenue_comparison=self.revenue_comparison + other.revenue_comparison,
            cost_base=self.cost_base + other.cost_base,
            cost_comparison=self.cost_comparison + other.cost_comparison,
            margin_base=self.margin_base + other.margin_base,
            margin_comparison=self.margin_comparison + other.margin_comparison,
        )

    def with_key(self, key: str) -> "GroupAggregate":
        return replace(self, key=key)

    def rates(self) -> Dict[str, float]:
        return {
            "margin_per_kg_base": per_kg(self.margin_base, self.volume_base),
            "margin_per_kg_comparison": per_kg(self.margin_comparison, self.volume_comparison),
            "revenue_per_kg_base": per_kg(self.revenue_base, self.volume_base),
            "revenue_per_kg_comparison": per_kg(self.revenue_comparison, self.volume_comparison),
            "cost_per_kg_base": per_kg(self.cost_base, self.volume_base),
            "cost_per_kg_comparison": per_kg(self.cost_comparison, self.volume_comparison),
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EvaEffect:
    volume_effect: float = 0.0
    mix_effect: float = 0.0
    revenue_effect: float = 0.0
    cost_effect: float = 0.0
    total_delta: float = 0.0

    @property
    def explained(self) -> float:
        return self.volume_effect + self.mix_effect + self.revenue_effect + self.cost_effect

    @property
    def residual(self) -> float:
        return self.total_delta - self.explained

    def reconciles(self, tolerance: float = DEFAULT_TOLERANCE) -> bool:
        return is_close(self.explained, self.total_delta, tolerance)

    def __add__(self, other: "EvaEffect") -> "EvaEffect":
        return EvaEffect(
            volume_effect=self.volume_effect + other.volume_effect,
            mix_effect=self.mix_effect + other.mix_effect,
            revenue_effect=self.revenue_effect + other.revenue_effect,
            cost_effect=self.cost_effect + other.cost_effect,
            total_delta=self.total_delta + other.total_delta,
        )

    def to_dict(self) -> Dict[str, float]:
        out = asdict(self)
        out["residual"] = self.residual
        return out


@dataclass(frozen=True)
class EvaDetail:
    aggregate: GroupAggregate
    effect: EvaEffect

    @property
    def key(self) -> str:
        return self.aggregate.key

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "aggregate": self.aggregate.to_dict(), "effect": self.effect.to_dict()}


@dataclass(frozen=True)
class EvaResult:
    summary: EvaEffect
    totals: GroupAggregate
    details: Tuple[EvaDetail, ...] = ()
    base_period: Optional[int] = None
    comparison_period: Optional[int] = None
    dimension: Optional[str] = None
    summary_mode: str = "groups"
    unassigned: Optional[GroupAggregate] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_period": self.base_period,
            "comparison_period": self.comparison_period,
            "dimension": self.dimension,
            "summary_mode": self.summary_mode,
            "summary": self.summary.to_dict(),
            "totals": self.totals.to_dict(),
            "details": [d.to_dict() for d in self.details],
            "unassigned": self.unassigned.to_dict() if self.unassigned is not None else None,
        }


def _selector(dimension: DimensionArg) -> Optional[RowSelector]:
    if dimension is None:
        return None
    if isinstance(dimension, str):
        return lambda row: row.dimension(dimension)
    return dimension


def _dimension_name(dimension: DimensionArg) -> Optional[str]:
    if dimension is None or isinstance(dimension, str):
        return dimension
    return getattr(dimension, "__name__", "custom")


def _empty_sums() -> Dict[str, float]:
    return {f"{f}_{side}": 0.0 for f in ("volume", "revenue", "cost", "margin") for side in ("base", "comparison")}


def _add_row(sums: Dict[str, float], row: TransactionRow, side: str) -> None:
    sums[f"volume_{side}"] += row.volume
    sums[f"revenue_{side}"] += row.revenue
    sums[f"cost_{side}"] += row.cost
    sums[f"margin_{side}"] += row.margin


def _accumulate(
    rows: Iterable[TransactionRow],
    base_period: int,
    comparison_period: int,
    selector: Optional[RowSelector],
    predicate: Optional[RowPredicate],
) -> Tuple[Dict[str, GroupAggregate], GroupAggregate, Optional[GroupAggregate]]:
    groups: Dict[str, Dict[str, float]] = {}
    total = _empty_sums()
    unassigned: Optional[Dict[str, float]] = None

    for row in rows:
        sides = [side for side, period in (("base", base_period), ("comparison", comparison_period)) if row.period == period]
        if not sides:
            continue
        if predicate is not None and not predicate(row):
            continue
        key = TOTAL_KEY if selector is None else clean_key(selector(row))
        if key is None:
            if unassigned is None:
                unassigned = _empty_sums()
            target = unassigned
        else:
            target = groups.setdefault(key, _empty_sums())
        for side in sides:
            _add_row(total, row, side)
            _add_row(target, row, side)

    aggregates = {key: GroupAggregate(key=key, **sums) for key, sums in groups.items()}
    unassigned_agg = GroupAggregate(key="", **unassigned) if unassigned is not None else None
    return aggregates, GroupAggregate(key=TOTAL_KEY, **total), unassigned_agg


def filter_and_group(
    rows: Iterable[TransactionRow],
    base_period: int,
    comparison_period: int,
    dimension: DimensionArg = None,
    predicate: Optional[RowPredicate] = None,
) -> Dict[str, GroupAggregate]:
    """Sum both periods per group.

    Every key seen in either period appears once, with zeros on the side it
    is absent from. Without a dimension all rows land in one ``TOTAL`` group.
    Rows whose key is missing are left out of the groups.
    """
    groups, _, _ = _accumulate(rows, base_period, comparison_period, _selector(dimension), predicate)
    return groups


def decompose(aggregate: GroupAggregate) -> EvaEffect:
    margin_per_kg_base = per_kg(aggregate.margin_base, aggregate.volume_base)
    margin_per_kg_comparison = per_kg(aggregate.margin_comparison, aggregate.volume_comparison)
    volume_delta = aggregate.volume_comparison - aggregate.volume_base

    revenue_per_kg_base = per_kg(aggregate.revenue_base, aggregate.volume_base)
    revenue_per_kg_comparison = per_kg(aggregate.revenue_comparison, aggregate.volume_comparison)

    cost_per_kg_base = per_kg(aggregate.cost_base, aggregate.volume_base)
    cost_per_kg_comparison = per_kg(aggregate.cost_comparison, aggregate.volume_comparison)

    return EvaEffect(
        volume_effect=volume_delta * margin_per_kg_base,
        mix_effect=volume_delta * (margin_per_kg_comparison - margin_per_kg_base),
        revenue_effect=aggregate.volume_comparison * (revenue_per_kg_comparison - revenue_per_kg_base),
        cost_effect=-1 * aggregate.volume_comparison * (cost_per_kg_comparison - cost_per_kg_base),
        total_delta=aggregate.margin_comparison - aggregate.margin_base,
    )


def _sort_details(details: List[EvaDetail]) -> Tuple[EvaDetail, ...]:
    return tuple(sorted(details, key=lambda d: (-abs(d.effect.total_delta), d.key)))


def assemble(
    groups: Union[Mapping[str, GroupAggregate], Sequence[GroupAggregate]],
    total: Optional[GroupAggregate] = None,
    *,
    summary_mode: str = "groups",
    base_period: Optional[int] = None,
    comparison_period: Optional[int] = None,
    dimension: Optional[str] = None,
    unassigned: Optional[GroupAggregate] = None,
) -> EvaResult:
    """Decompose each group and build the summary.

    ``summary_mode="groups"`` sums the per-group effects, so the details add
    up to the summary exactly. ``"total"`` decomposes ``total`` directly,
    which is what the headline bridge over all rows shows; the two differ
    whenever groups have different unit economics.
    """
    if summary_mode not in SUMMARY_MODES:
        raise ValueError(f"summary_mode must be one of {SUMMARY_MODES}, got {summary_mode!r}")

    aggregates = list(groups.values()) if isinstance(groups, Mapping) else list(groups)
    details = _sort_details([EvaDetail(aggregate=agg, effect=decompose(agg)) for agg in aggregates])

    if summary_mode == "total" and total is not None:
        totals = total.with_key(TOTAL_KEY)
        summary = decompose(totals)
    else:
        totals = GroupAggregate(key=TOTAL_KEY)
        effects = EvaEffect()
        for d in details:
            totals = totals + d.aggregate
            effects = effects + d.effect
        summary = replace(effects, total_delta=totals.margin_comparison - totals.margin_base)

    return EvaResult(
        summary=summary,
        totals=totals,
        details=details,
        base_period=base_period,
        comparison_period=comparison_period,
        dimension=dimension,
        summary_mode=summary_mode,
        unassigned=unassigned,
    )


def details_effect_sum(result: EvaResult) -> EvaEffect:
    out = EvaEffect()
    for d in result.details:
        out = out + d.effect
    return out


def reconciliation(result: EvaResult, tolerance: float = DEFAULT_TOLERANCE) -> Dict[str, Any]:
    summary = result.summary
    group_sum = details_effect_sum(result)
    groups_match = all(
        is_close(getattr(group_sum, f), getattr(summary, f), tolerance) for f in (*EFFECT_FIELDS, "total_delta")
    )
    return {
        "explained": summary.explained,
        "total_delta": summary.total_delta,
        "residual": summary.residual,
        "within_tolerance": summary.reconciles(tolerance),
        "groups_match_summary": groups_match,
        "tolerance": tolerance,
    }


def compute_eva(
    rows: Iterable[TransactionRow],
    base_period: int,
    comparison_period: int,
    dimension: DimensionArg = None,
    predicate: Optional[RowPredicate] = None,
    *,
    summary_mode: str = "groups",
    tolerance: float = DEFAULT_TOLERANCE,
) -> EvaResult:
    rows = list(rows)
    invalid = find_invalid_rows(rows)
    if invalid:
        logger.warning(
            "compute_eva: %d of %d rows have non-finite amounts or negative volume (first index %d)",
            len(invalid),
            len(rows),
            invalid[0],
        )

    groups, total, unassigned = _accumulate(rows, base_period, comparison_period, _selector(dimension), predicate)
    if unassigned is not None:
        if not groups:
            logger.warning("compute_eva: no row carries a %s key, every matched row is unassigned", _dimension_name(dimension))
        else:
            logger.debug("compute_eva: rows without a %s key kept in the total only", _dimension_name(dimension))

    result = assemble(
        groups,
        total,
        summary_mode=summary_mode,
        base_period=base_period,
        comparison_period=comparison_period,
        dimension=_dimension_name(dimension),
        unassigned=unassigned,
    )

    check = reconciliation(result, tolerance)
    if summary_mode == "groups" and not check["groups_match_summary"]:
        logger.warning("compute_eva: group effects do not add up to the summary")
    logger.debug(
        "compute_eva %s->%s: %d groups, delta=%.2f, residual=%.2f",
        base_period,
        comparison_period,
        len(result.details),
        result.summary.total_delta,
        result.summary.residual,
    )
    return result
