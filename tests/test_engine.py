"""Tests for the four-factor margin decomposition.

Covers:
- the worked 1000kg -> 1200kg example, reproduced to the cent
- residual reporting when all drivers move at once
- zero-volume guards, identity, sign convention
- grouping: missing groups, unassigned rows, period pairs in any order
- summary modes and detail ordering
"""

import logging
import math

import pytest

from eva.config import TOTAL_KEY
from eva.engine import (
    EvaEffect,
    GroupAggregate,
    assemble,
    compute_eva,
    decompose,
    details_effect_sum,
    filter_and_group,
    reconciliation,
)
from eva.rows import TransactionRow

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _agg(vb, rb, cb, mb, vc, rc, cc, mc, key="X") -> GroupAggregate:
    return GroupAggregate(
        key=key,
        volume_base=vb,
        revenue_base=rb,
        cost_base=cb,
        margin_base=mb,
        volume_comparison=vc,
        revenue_comparison=rc,
        cost_comparison=cc,
        margin_comparison=mc,
    )


WORKED = _agg(1000, 5000, 3000, 2000, 1200, 6600, 3960, 2640)


def _effects(effect: EvaEffect):
    return (effect.volume_effect, effect.mix_effect, effect.revenue_effect, effect.cost_effect)


# ---------------------------------------------------------------------------
# decompose
# ---------------------------------------------------------------------------


class TestDecompose:
    def test_worked_example(self):
        effect = decompose(WORKED)
        assert effect.volume_effect == pytest.approx(400)
        assert effect.mix_effect == pytest.approx(40)
        assert effect.revenue_effect == pytest.approx(600)
        assert effect.cost_effect == pytest.approx(-360)
        assert effect.total_delta == pytest.approx(640)

    def test_worked_example_leaves_residual(self):
        effect = decompose(WORKED)
        assert effect.explained == pytest.approx(680)
        assert effect.residual == pytest.approx(-40)
        assert not effect.reconciles()

    def test_residual_closes_the_bridge(self):
        effect = decompose(WORKED)
        assert effect.explained + effect.residual == pytest.approx(effect.total_delta)

    def test_pure_volume_change_reconciles(self):
        effect = decompose(_agg(1000, 5000, 3000, 2000, 1500, 7500, 4500, 3000))
        assert _effects(effect) == pytest.approx((1000, 0, 0, 0))
        assert effect.reconciles()

    def test_pure_price_change_reconciles(self):
        effect = decompose(_agg(1000, 5000, 3000, 2000, 1000, 5500, 3000, 2500))
        assert _effects(effect) == pytest.approx((0, 0, 500, 0))
        assert effect.total_delta == pytest.approx(500)
        assert effect.reconciles()

    def test_identical_periods_give_zero(self):
        effect = decompose(_agg(800, 4000, 2500, 1500, 800, 4000, 2500, 1500))
        assert _effects(effect) == (0, 0, 0, 0)
        assert effect.total_delta == 0

    def test_zero_volume_both_periods(self):
        effect = decompose(_agg(0, 500, 300, 200, 0, 900, 100, 800))
        assert _effects(effect) == (0, 0, 0, 0)
        assert effect.total_delta == pytest.approx(600)

    def test_unit_cost_increase_is_negative(self):
        effect = decompose(_agg(1000, 5000, 3000, 2000, 1000, 5000, 3300, 1700))
        assert effect.cost_effect < 0
        assert effect.cost_effect == pytest.approx(-300)

    def test_new_group_has_no_volume_effect(self):
        effect = decompose(_agg(0, 0, 0, 0, 50, 1000, 400, 600))
        assert effect.volume_effect == 0
        assert effect.mix_effect == pytest.approx(600)
        assert effect.revenue_effect == pytest.approx(1000)
        assert effect.cost_effect == pytest.approx(-400)

    def test_nan_propagates_without_raising(self):
        effect = decompose(_agg(float("nan"), 1, 1, 0, 1, 1, 1, 0))
        assert math.isnan(effect.volume_effect)

    def test_to_dict_includes_residual(self):
        out = decompose(WORKED).to_dict()
        assert set(out) == {"volume_effect", "mix_effect", "revenue_effect", "cost_effect", "total_delta", "residual"}


# ---------------------------------------------------------------------------
# filter_and_group
# ---------------------------------------------------------------------------


class TestFilterAndGroup:
    def test_groups_from_either_period(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension="family")
        assert set(groups) == {"Tablets", "Pralines", "Barista", "Gifts"}

    def test_absent_side_is_zero(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension="family")
        gifts = groups["Gifts"]
        assert (gifts.volume_base, gifts.revenue_base, gifts.cost_base, gifts.margin_base) == (0, 0, 0, 0)
        assert gifts.volume_comparison == 50
        barista = groups["Barista"]
        assert barista.volume_comparison == 0
        assert barista.margin_base == pytest.approx(60)

    def test_sums_per_period(self, rows):
        tablets = filter_and_group(rows, 2024, 2025, dimension="family")["Tablets"]
        assert tablets == _agg(1000, 5000, 3000, 2000, 1200, 6600, 3960, 2640, key="Tablets")

    def test_ungrouped_collapses_to_total(self, rows):
        groups = filter_and_group(rows, 2024, 2025)
        assert list(groups) == [TOTAL_KEY]
        total = groups[TOTAL_KEY]
        assert total.volume_base == 1300
        assert total.volume_comparison == 1410

    def test_other_periods_ignored(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension="family")
        assert groups["Tablets"].volume_base == 1000

    def test_predicate_applies_to_both_periods(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension="family", predicate=lambda r: r.store == "Paris")
        tablets = groups["Tablets"]
        assert tablets.volume_base == 600
        assert tablets.volume_comparison == 700
        assert "Barista" not in groups

    def test_unkeyed_rows_left_out_of_groups(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension="family")
        assert None not in groups
        assert "" not in groups

    def test_callable_selector(self, rows):
        groups = filter_and_group(rows, 2024, 2025, dimension=lambda r: r.store)
        assert set(groups) == {"Paris", "Lyon"}

    def test_input_rows_not_mutated(self, rows):
        before = list(rows)
        filter_and_group(rows, 2024, 2025, dimension="family")
        assert rows == before


# ---------------------------------------------------------------------------
# assemble / compute_eva
# ---------------------------------------------------------------------------


class TestComputeEva:
    def test_ungrouped_matches_worked_example(self, make_row):
        data = [
            make_row(2024, None, 1000, 5000, 3000, 2000),
            make_row(2025, None, 1200, 6600, 3960, 2640),
        ]
        result = compute_eva(data, 2024, 2025)
        assert _effects(result.summary) == pytest.approx((400, 40, 600, -360))
        assert result.summary.total_delta == pytest.approx(640)
        assert [d.key for d in result.details] == [TOTAL_KEY]

    def test_details_sum_to_summary(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family")
        group_sum = details_effect_sum(result)
        assert _effects(group_sum) == pytest.approx(_effects(result.summary))
        assert group_sum.total_delta == pytest.approx(result.summary.total_delta)

    def test_details_sorted_by_abs_delta(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family")
        deltas = [abs(d.effect.total_delta) for d in result.details]
        assert deltas == sorted(deltas, reverse=True)
        assert [d.key for d in result.details] == ["Tablets", "Gifts", "Pralines", "Barista"]

    def test_new_and_discontinued_groups_present(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family")
        by_key = {d.key: d for d in result.details}
        assert by_key["Gifts"].effect.total_delta == pytest.approx(600)
        assert by_key["Barista"].effect.total_delta == pytest.approx(-60)
        assert by_key["Barista"].effect.volume_effect == pytest.approx(-60)

    def test_groups_mode_excludes_unassigned(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family")
        assert result.unassigned is not None
        assert result.unassigned.volume_comparison == 10
        assert result.totals.margin_base == pytest.approx(3260)
        assert result.totals.margin_comparison == pytest.approx(4215)
        assert result.summary.total_delta == pytest.approx(955)

    def test_total_mode_covers_every_row(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family", summary_mode="total")
        assert result.totals.margin_comparison == pytest.approx(4265)
        assert result.summary.total_delta == pytest.approx(1005)
        assert result.summary == decompose(result.totals)

    def test_modes_agree_when_ungrouped(self, rows):
        groups = compute_eva(rows, 2024, 2025)
        total = compute_eva(rows, 2024, 2025, summary_mode="total")
        assert _effects(groups.summary) == pytest.approx(_effects(total.summary))

    def test_reversed_periods(self, rows):
        result = compute_eva(rows, 2025, 2024, dimension="family")
        tablets = next(d for d in result.details if d.key == "Tablets")
        assert tablets.effect.total_delta == pytest.approx(-640)
        assert tablets.aggregate.volume_base == 1200

    def test_same_period_twice_is_zero(self, rows):
        result = compute_eva(rows, 2024, 2024, dimension="family")
        assert _effects(result.summary) == pytest.approx((0, 0, 0, 0))
        assert result.summary.total_delta == 0

    def test_nothing_matches(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family", predicate=lambda r: False)
        assert result.details == ()
        assert _effects(result.summary) == (0, 0, 0, 0)

    def test_no_rows(self):
        result = compute_eva([], 2024, 2025, dimension="family")
        assert result.details == ()
        assert result.summary.total_delta == 0

    def test_accepts_generator(self, rows):
        result = compute_eva((r for r in rows), 2024, 2025, dimension="family")
        assert len(result.details) == 4

    def test_result_metadata(self, rows):
        result = compute_eva(rows, 2024, 2025, dimension="family")
        assert (result.base_period, result.comparison_period, result.dimension) == (2024, 2025, "family")
        payload = result.to_dict()
        assert payload["details"][0]["key"] == "Tablets"

    def test_invalid_rows_logged_not_raised(self, make_row, caplog):
        data = [make_row(2024, "A", float("nan"), 10, 5), make_row(2025, "A", 10, 10, 5)]
        with caplog.at_level(logging.WARNING, logger="eva.engine"):
            compute_eva(data, 2024, 2025, dimension="family")
        assert "non-finite" in caplog.text

    def test_bare_records_group_by_key(self):
        data = [
            TransactionRow(period=2024, dimension_key="A", volume=10, revenue=100, cost=60, margin=40),
            TransactionRow(period=2025, dimension_key="A", volume=12, revenue=120, cost=72, margin=48),
        ]
        result = compute_eva(data, 2024, 2025, dimension="family")
        assert [d.key for d in result.details] == ["A"]
        assert result.unassigned is None
        assert result.summary.total_delta == pytest.approx(8)

    def test_warns_when_nothing_is_keyed(self, make_row, caplog):
        data = [make_row(2024, None, 10, 100, 60), make_row(2025, None, 12, 120, 72)]
        with caplog.at_level(logging.WARNING, logger="eva.engine"):
            result = compute_eva(data, 2024, 2025, dimension="family")
        assert result.details == ()
        assert "every matched row is unassigned" in caplog.text

    def test_unknown_summary_mode(self):
        with pytest.raises(ValueError):
            assemble({}, summary_mode="average")


class TestReconciliation:
    def test_groups_mode(self, rows):
        check = reconciliation(compute_eva(rows, 2024, 2025, dimension="family"))
        assert check["groups_match_summary"] is True
        assert check["residual"] == pytest.approx(check["total_delta"] - check["explained"])

    def test_total_mode_can_diverge_from_groups(self, rows):
        check = reconciliation(compute_eva(rows, 2024, 2025, dimension="family", summary_mode="total"))
        assert check["groups_match_summary"] is False

    def test_within_tolerance_for_single_driver(self, make_row):
        data = [make_row(2024, "A", 1000, 5000, 3000), make_row(2025, "A", 1500, 7500, 4500)]
        check = reconciliation(compute_eva(data, 2024, 2025, dimension="family"))
        assert check["within_tolerance"] is True
