"""
Tests for services/payout.py: the payout calculation engine.

Test categories:
  1. PREMIUM DEDUCTION (exact examples, floors, properties)
  2. UNIT CONVERSION (EUR scaling, bad factors, token rounding)
  3. PLATFORM LINES (weekly aggregation, configured weeks, totals)
  4. FULL BREAKDOWN (end-to-end scenario, discounts, hourly average)
  5. GOAL GAP (sign convention, rounding direction, zero percent / rate)
  6. PROPERTIES (idempotence, order independence, rate monotonicity)
  7. EDGE CASES (garbage numbers, negative production, empty inputs)
"""

import sys
import os
import math
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import (
    NOT_AVAILABLE,
    DiscountEntry,
    DiscountSource,
    Period,
    Platform,
    PlatformLink,
    ProductionEntry,
)
from services.payout import (
    PREMIUM_FLOORS,
    USD_PER_TOKEN,
    apply_premium,
    compute_payout,
    compute_platform,
    effective_unit_to_usd,
    shortfall_to_tokens,
    units_to_tokens,
)


# ===========================================================================
# Test helpers
# ===========================================================================

def make_period(**overrides) -> Period:
    fields = dict(
        id="p1", talent_id="t1", name="March",
        percent=60, usd_to_local_rate=4000, eur_to_usd_rate=1.1,
        goal=2_000_000, weeks_count=3, hours_worked=None,
    )
    fields.update(overrides)
    return Period(**fields)


def make_platform(pid="tokens", currency="tokens", factor=0.05, weekly=False, **kw) -> Platform:
    return Platform(id=pid, name=pid.title(), currency=currency, unit_to_usd=factor, weekly=weekly, **kw)


def make_link(platform: Platform, premium="none", **flags) -> PlatformLink:
    return PlatformLink(period_id="p1", platform=platform, premium=premium, **flags)


def make_entry(platform_id="tokens", **values) -> ProductionEntry:
    return ProductionEntry(period_id="p1", platform_id=platform_id, **values)


def discount(key: str, amount: float, source=DiscountSource.MANUAL) -> DiscountEntry:
    return DiscountEntry(key=key, name=key, amount=amount, source=source)


# ===========================================================================
# 1. PREMIUM DEDUCTION
# ===========================================================================

class TestApplyPremium:

    @pytest.mark.parametrize("units,pct,deduction,net", [
        (1_000, 25, 2_000, 0),       # floor exceeds production → net clamped to 0
        (10_000, 25, 2_500, 7_500),
        (5_000, 15, 1_000, 4_000),   # 750 < floor 1000
        (100, 0, 0, 100),
        (20_000, 15, 3_000, 17_000),
        (8_000, 25, 2_000, 6_000),   # exactly at the floor
        (0, 0, 0, 0),
    ])
    def test_examples(self, units, pct, deduction, net):
        result = apply_premium(units, pct)
        assert result.deduction == deduction
        assert result.net == net

    def test_fractional_percentage_rounds_up(self):
        # 10_001 * 0.25 = 2500.25 → 2501
        assert apply_premium(10_001, 25).deduction == 2_501

    def test_zero_units_with_premium_still_charges_floor(self):
        result = apply_premium(0, 25)
        assert result.deduction == 2_000
        assert result.net == 0

    def test_unknown_percentage_has_no_floor(self):
        result = apply_premium(100, 10)
        assert result.deduction == 10
        assert result.net == 90

    @pytest.mark.parametrize("pct", [0, 15, 25])
    @pytest.mark.parametrize("units", [0, 1, 999, 4_000, 6_667, 8_000, 123_457])
    def test_properties(self, units, pct):
        result = apply_premium(units, pct)
        assert result.deduction >= 0
        assert result.net >= 0
        assert result.net == max(units - result.deduction, 0)
        if pct:
            assert result.deduction >= PREMIUM_FLOORS[pct]

    def test_negative_units_treated_as_zero(self):
        assert apply_premium(-500, 0).net == 0


# ===========================================================================
# 2. UNIT CONVERSION
# ===========================================================================

class TestUnitConversion:

    def test_token_factor_used_as_is(self):
        assert effective_unit_to_usd(make_platform(factor=0.05), 1.1) == 0.05

    def test_eur_scaled_by_period_rate(self):
        eur = make_platform(pid="xlove", currency="eur", factor=1.0)
        assert effective_unit_to_usd(eur, 1.1) == pytest.approx(1.1)

    def test_eur_rate_only_applies_to_eur(self):
        usd = make_platform(pid="usd", currency="usd", factor=1.0)
        assert effective_unit_to_usd(usd, 1.5) == 1.0

    @pytest.mark.parametrize("bad", [0, -1, None, float("nan"), float("inf"), "abc"])
    def test_bad_factor_treated_as_one(self, bad):
        platform = make_platform(factor=bad)
        assert effective_unit_to_usd(platform, 1.0) == 1.0

    def test_tokens_round_half_up(self):
        assert units_to_tokens(0.025) == 1       # 0.5 token → 1
        assert units_to_tokens(0.0249) == 0
        assert units_to_tokens(500) == 10_000

    def test_usd_per_token_constant(self):
        assert USD_PER_TOKEN == 0.05


# ===========================================================================
# 3. PLATFORM LINES
# ===========================================================================

class TestComputePlatform:

    def test_weekly_aggregation_with_premium(self):
        platform = make_platform(pid="cb", weekly=True)
        line = compute_platform(
            make_link(platform, premium="premium_15"),
            make_entry("cb", w1=1000, w2=2000, w3=0),
            make_period(weeks_count=3),
        )
        assert line.gross_units == 3000
        assert line.premium_deduction == 1000
        assert line.net_units == 2000
        assert line.usd == pytest.approx(100.0)
        assert line.tokens == 2000

    def test_weekly_lines_carry_their_own_premium(self):
        platform = make_platform(pid="cb", weekly=True)
        line = compute_platform(
            make_link(platform, premium="premium_15"),
            make_entry("cb", w1=10_000, w2=2_000, w3=0),
            make_period(weeks_count=3),
        )
        assert [w.week for w in line.weeks] == [1, 2, 3]
        assert [w.premium_deduction for w in line.weeks] == [1500, 1000, 1000]
        assert [w.net_units for w in line.weeks] == [8500, 1000, 0]
        # Summed total is computed on the sum, not the sum of week nets
        assert line.premium_deduction == 1800
        assert line.net_units == 10_200

    def test_only_configured_weeks_count(self):
        platform = make_platform(pid="cb", weekly=True)
        line = compute_platform(
            make_link(platform),
            make_entry("cb", w1=100, w2=200, w3=300),
            make_period(weeks_count=2),
        )
        assert line.gross_units == 300
        assert len(line.weeks) == 2

    def test_zero_configured_weeks_contributes_nothing(self):
        platform = make_platform(pid="cb", weekly=True)
        line = compute_platform(
            make_link(platform, premium="premium_25"),
            make_entry("cb", w1=5000),
            make_period(weeks_count=0),
        )
        assert line.gross_units == 0
        assert line.premium_deduction == 0
        assert line.tokens == 0
        assert line.weeks == []

    def test_missing_weeks_count_as_zero(self):
        platform = make_platform(pid="cb", weekly=True)
        line = compute_platform(make_link(platform), make_entry("cb", w1=700), make_period(weeks_count=3))
        assert line.gross_units == 700
        assert [w.gross_units for w in line.weeks] == [700, 0, 0]

    def test_non_weekly_uses_total(self):
        line = compute_platform(make_link(make_platform()), make_entry(total=10_000), make_period())
        assert line.gross_units == 10_000
        assert line.weeks == []
        assert line.usd == pytest.approx(500.0)
        assert line.tokens == 10_000

    def test_non_weekly_ignores_weekly_values(self):
        line = compute_platform(make_link(make_platform()), make_entry(w1=999, total=100), make_period())
        assert line.gross_units == 100

    def test_no_production_entry(self):
        line = compute_platform(make_link(make_platform()), None, make_period())
        assert line.gross_units == 0
        assert line.tokens == 0

    def test_eur_platform_converts_through_usd(self):
        eur = make_platform(pid="xlove", currency="eur", factor=1.0)
        line = compute_platform(make_link(eur), make_entry("xlove", total=100), make_period(eur_to_usd_rate=1.1))
        assert line.usd == pytest.approx(110.0)
        assert line.tokens == 2_200


# ===========================================================================
# 4. FULL BREAKDOWN
# ===========================================================================

class TestComputePayout:

    def test_end_to_end_scenario(self):
        platform = make_platform()
        result = compute_payout(
            make_period(),
            [make_link(platform)],
            [make_entry(total=10_000)],
            [discount("manual:1", 100_000)],
        )
        assert result.platforms[0].net_units == 10_000
        assert result.grand_usd == pytest.approx(500.0)
        assert result.grand_tokens == 10_000
        assert result.gross_local == pytest.approx(1_200_000)
        assert result.total_discounts == pytest.approx(100_000)
        assert result.net_payout == pytest.approx(1_100_000)
        assert result.shortfall_local == pytest.approx(900_000)
        assert result.shortfall_tokens == 7_500

    def test_grand_totals_sum_every_link(self):
        a = make_platform(pid="a")
        b = make_platform(pid="b", currency="usd", factor=1.0)
        result = compute_payout(
            make_period(),
            [make_link(a), make_link(b)],
            [make_entry("a", total=2_000), make_entry("b", total=50)],
        )
        assert result.grand_usd == pytest.approx(150.0)
        assert result.grand_tokens == 3_000

    def test_duplicate_discount_key_counted_once(self):
        traffic = discount("traffic:cb:bots", 75_000, DiscountSource.TRAFFIC)
        result = compute_payout(make_period(), [], [], [traffic, traffic])
        assert result.total_discounts == 75_000
        assert len(result.discounts) == 1

    def test_later_discount_with_same_key_wins(self):
        stale = discount("traffic:cb:bots", 75_000, DiscountSource.TRAFFIC)
        fresh = discount("traffic:cb:bots", 150_000, DiscountSource.TRAFFIC)
        result = compute_payout(make_period(), [], [], [stale, fresh])
        assert result.total_discounts == 150_000

    def test_average_tokens_per_hour(self):
        result = compute_payout(
            make_period(hours_worked=40),
            [make_link(make_platform())],
            [make_entry(total=10_000)],
        )
        assert result.avg_tokens_per_hour == pytest.approx(250.0)

    @pytest.mark.parametrize("hours", [None, 0, -5])
    def test_average_not_available_without_hours(self, hours):
        result = compute_payout(make_period(hours_worked=hours), [], [])
        assert result.avg_tokens_per_hour == NOT_AVAILABLE

    def test_production_for_unlinked_platform_is_ignored(self):
        result = compute_payout(
            make_period(),
            [make_link(make_platform(pid="a"))],
            [make_entry("a", total=100), make_entry("zzz", total=1_000_000)],
        )
        assert result.grand_tokens == 100


# ===========================================================================
# 5. GOAL GAP
# ===========================================================================

class TestGoalGap:

    def test_positive_shortfall_rounds_up(self):
        # 1000 / (0.6 * 4000 * 0.05) = 8.33 → 9
        assert shortfall_to_tokens(1_000, 60, 4000) == 9

    def test_surplus_rounds_down(self):
        # -1000 / 120 = -8.33 → -9
        assert shortfall_to_tokens(-1_000, 60, 4000) == -9

    def test_exact_division_not_bumped_by_float_noise(self):
        assert shortfall_to_tokens(900_000, 60, 4000) == 7_500
        assert shortfall_to_tokens(-900_000, 60, 4000) == -7_500

    @pytest.mark.parametrize("percent,rate", [(0, 4000), (60, 0), (0, 0)])
    def test_zero_percent_or_rate_gives_zero_tokens(self, percent, rate):
        assert shortfall_to_tokens(500_000, percent, rate) == 0

    def test_goal_met_sign_convention(self):
        platform = make_platform()
        result = compute_payout(
            make_period(goal=1_000_000),
            [make_link(platform)],
            [make_entry(total=10_000)],
        )
        assert result.shortfall_local < 0
        assert result.shortfall_tokens < 0

    def test_zero_percent_period(self):
        result = compute_payout(
            make_period(percent=0),
            [make_link(make_platform())],
            [make_entry(total=10_000)],
        )
        assert result.gross_local == 0
        assert result.shortfall_local == 2_000_000
        assert result.shortfall_tokens == 0


# ===========================================================================
# 6. PROPERTIES
# ===========================================================================

class TestProperties:

    def _inputs(self):
        cb = make_platform(pid="cb", weekly=True)
        usd = make_platform(pid="usd", currency="usd", factor=1.0)
        links = [make_link(cb, premium="premium_25", traffic_bots=True), make_link(usd, premium="premium_15")]
        production = [make_entry("cb", w1=4_000, w2=5_500, w3=12), make_entry("usd", total=321.5)]
        discounts = [discount("manual:1", 40_000), discount("ledger:p1", 12_345, DiscountSource.LEDGER)]
        return links, production, discounts

    def test_idempotent(self):
        links, production, discounts = self._inputs()
        first = compute_payout(make_period(hours_worked=12), links, production, discounts)
        second = compute_payout(make_period(hours_worked=12), links, production, discounts)
        assert first.model_dump_json() == second.model_dump_json()

    def test_link_order_does_not_change_totals(self):
        links, production, discounts = self._inputs()
        forward = compute_payout(make_period(), links, production, discounts)
        backward = compute_payout(make_period(), list(reversed(links)), production, discounts)
        assert forward.grand_tokens == backward.grand_tokens
        assert forward.grand_usd == pytest.approx(backward.grand_usd)

    @pytest.mark.parametrize("low,high", [(0, 1), (1, 3900), (3900, 4000), (4000, 4500.5)])
    def test_rate_monotonicity(self, low, high):
        links, production, discounts = self._inputs()
        a = compute_payout(make_period(usd_to_local_rate=low), links, production, discounts)
        b = compute_payout(make_period(usd_to_local_rate=high), links, production, discounts)
        assert b.gross_local >= a.gross_local
        assert b.net_payout >= a.net_payout


# ===========================================================================
# 7. EDGE CASES
# ===========================================================================

class TestEdgeCases:

    def test_empty_inputs(self):
        result = compute_payout(make_period(goal=0), [], [])
        assert result.grand_tokens == 0
        assert result.net_payout == 0
        assert result.shortfall_local == 0
        assert result.shortfall_tokens == 0

    def test_negative_production_clamped(self):
        result = compute_payout(
            make_period(),
            [make_link(make_platform())],
            [make_entry(total=-5_000)],
        )
        assert result.grand_tokens == 0

    def test_garbage_period_numbers_use_defaults(self):
        period = make_period(percent=float("nan"), usd_to_local_rate=None, goal="oops")
        assert period.percent == 0
        assert period.usd_to_local_rate == 1
        assert period.goal == 0
        result = compute_payout(period, [make_link(make_platform())], [make_entry(total=100)])
        assert math.isfinite(result.net_payout)

    def test_percent_clamped_to_hundred(self):
        assert make_period(percent=250).percent == 100
        assert make_period(percent=-3).percent == 0

    def test_negative_rate_becomes_zero(self):
        result = compute_payout(
            make_period(usd_to_local_rate=-10),
            [make_link(make_platform())],
            [make_entry(total=10_000)],
        )
        assert result.gross_local == 0

    def test_non_finite_discount_amount_counts_as_zero(self):
        result = compute_payout(make_period(), [], [], [discount("manual:x", float("inf"))])
        assert result.total_discounts == 0
