"""
Payout calculation engine.

Pure functions: no I/O, no shared state. The same inputs always produce the
same PayoutBreakdown, so the admin discount view and the talent dashboard can
both call compute_payout() on every read.

Pipeline:
  1. effective_unit_to_usd(platform, eur_to_usd) → USD per native unit
  2. apply_premium(units, pct) → (deduction, net) with a minimum-fee floor
  3. compute_platform(link, entry, period) → per-platform + per-week lines
  4. compute_payout(period, links, production, discounts) → PayoutBreakdown

Unit normalization:
  1 token-equivalent = 0.05 USD (USD_PER_TOKEN), so tokens, credits, USD and
  EUR platforms can be summed on one scale.

Premium tiers (applied to native units):
  none → 0%
  15%  → max(ceil(units * 0.15), 1,000)
  25%  → max(ceil(units * 0.25), 2,000)
  net  = max(units - deduction, 0)

Money:
  gross_local     = grand_usd * usd_to_local_rate * percent / 100
  net_payout      = gross_local - total_discounts
  shortfall_local = goal - net_payout
  shortfall_tokens = shortfall_local / (percent/100 * rate * 0.05),
                     ceil when still owed, floor when in surplus,
                     0 when percent or rate is 0
"""

import logging
import math
from typing import Iterable, NamedTuple, Optional

from models.schemas import (
    NOT_AVAILABLE,
    DiscountEntry,
    NativeCurrency,
    PayoutBreakdown,
    Period,
    Platform,
    PlatformBreakdown,
    PlatformLink,
    ProductionEntry,
    WeekBreakdown,
    coerce_number,
)
from services.discounts import dedupe_discounts

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USD_PER_TOKEN = 0.05   # fixed business constant, not configurable
MAX_WEEKS = 3          # weekly platforms report at most three weeks

# Minimum deduction per premium percentage
PREMIUM_FLOORS = {
    25: 2_000,
    15: 1_000,
}

# Decimal places kept before rounding the goal gap to whole tokens
SHORTFALL_PRECISION = 6


class PremiumResult(NamedTuple):
    deduction: float
    net: float


# ===========================================================================
# Step 1: Native unit → USD
# ===========================================================================

def effective_unit_to_usd(platform: Platform, eur_to_usd: float) -> float:
    """
    USD value of one native unit of the platform.

    EUR platforms are converted with the period's EUR→USD rate; every other
    currency class uses its catalog factor as-is.
    """
    factor = coerce_number(platform.unit_to_usd, 1.0)
    if factor <= 0:
        factor = 1.0
    if platform.currency == NativeCurrency.EUR:
        return factor * max(coerce_number(eur_to_usd, 1.0), 0.0)
    return factor


def units_to_tokens(usd: float) -> int:
    """Token-equivalent of a USD amount, rounded half up."""
    return _round_half_up(coerce_number(usd) / USD_PER_TOKEN)


# ===========================================================================
# Step 2: Premium deduction
# ===========================================================================

def apply_premium(units: float, pct: float) -> PremiumResult:
    """
    Apply a premium percentage cut with its minimum-fee floor.

    apply_premium(1000, 25)  → deduction 2000, net 0
    apply_premium(10000, 25) → deduction 2500, net 7500
    apply_premium(5000, 15)  → deduction 1000, net 4000
    apply_premium(100, 0)    → deduction 0,    net 100
    """
    units = max(coerce_number(units), 0.0)
    pct = coerce_number(pct)
    floor = PREMIUM_FLOORS.get(pct, 0)

    deduction = max(math.ceil(units * pct / 100), floor)
    net = max(units - deduction, 0)
    return PremiumResult(deduction=deduction, net=net)


# ===========================================================================
# Step 3: One platform line
# ===========================================================================

def compute_platform(
    link: PlatformLink,
    entry: Optional[ProductionEntry],
    period: Period,
) -> PlatformBreakdown:
    """
    Compute gross/premium/net/USD/tokens for one platform of the period.

    Weekly platforms sum the configured weeks (at most three, missing weeks
    count as 0). Premium is computed per week for the detail rows AND on the
    summed total; the summed net is what feeds the USD and token figures.
    Non-weekly platforms use the single period total.
    """
    platform = link.platform
    pct = link.premium.pct
    unit_to_usd = effective_unit_to_usd(platform, period.eur_to_usd_rate)

    line = PlatformBreakdown(
        platform_id=platform.id,
        platform_name=platform.name,
        currency=platform.currency,
        weekly=platform.weekly,
        premium_pct=pct,
        unit_to_usd=unit_to_usd,
    )

    if platform.weekly:
        weeks_configured = int(min(max(period.weeks_count, 0), MAX_WEEKS))
        if weeks_configured == 0:
            return line

        values = entry.weeks if entry else [0.0] * MAX_WEEKS
        for week_no, raw in enumerate(values[:weeks_configured], start=1):
            gross = max(coerce_number(raw), 0.0)
            week_premium = apply_premium(gross, pct)
            week_usd = week_premium.net * unit_to_usd
            line.weeks.append(WeekBreakdown(
                week=week_no,
                gross_units=gross,
                premium_deduction=week_premium.deduction,
                net_units=week_premium.net,
                usd=week_usd,
                tokens=units_to_tokens(week_usd),
            ))
        gross_units = sum(w.gross_units for w in line.weeks)
    else:
        gross_units = max(coerce_number(entry.total if entry else 0.0), 0.0)

    premium = apply_premium(gross_units, pct)
    line.gross_units = gross_units
    line.premium_deduction = premium.deduction
    line.net_units = premium.net
    line.usd = premium.net * unit_to_usd
    line.tokens = units_to_tokens(line.usd)
    return line


# ===========================================================================
# Step 4: Full breakdown
# ===========================================================================

def compute_payout(
    period: Period,
    links: Iterable[PlatformLink],
    production: Iterable[ProductionEntry],
    discounts: Iterable[DiscountEntry] = (),
) -> PayoutBreakdown:
    """
    Transform a period snapshot into a PayoutBreakdown.

    Args:
        period:     The billing cycle (rates, percent, goal, weeks, hours)
        links:      Platforms attached to the period
        production: Reported production, matched to links by platform_id
        discounts:  Manual + auto-derived + ledger entries (may repeat keys)

    Returns:
        PayoutBreakdown; never raises for malformed numbers; degrades to 0.
    """
    by_platform = {entry.platform_id: entry for entry in production}

    # ------------------------------------------------------------------
    # Per-platform lines + grand totals
    # ------------------------------------------------------------------
    lines: list[PlatformBreakdown] = []
    grand_tokens = 0
    grand_usd = 0.0

    for link in links:
        line = compute_platform(link, by_platform.get(link.platform_id), period)
        lines.append(line)
        grand_tokens += line.tokens
        grand_usd += line.usd

        logger.debug(
            f"  [{line.platform_name}] gross={line.gross_units:,.0f} "
            f"premium={line.premium_deduction:,.0f} net={line.net_units:,.0f} "
            f"usd={line.usd:,.2f} tokens={line.tokens:,}"
        )

    # ------------------------------------------------------------------
    # Currency conversion + revenue share
    # ------------------------------------------------------------------
    percent = coerce_number(period.percent, 0.0)
    rate = coerce_number(period.usd_to_local_rate, 1.0)
    gross_local = grand_usd * rate * (percent / 100)

    # ------------------------------------------------------------------
    # Discounts (de-duplicated by stable key)
    # ------------------------------------------------------------------
    unique_discounts = dedupe_discounts(discounts)
    total_discounts = sum(coerce_number(d.amount) for d in unique_discounts)
    net_payout = gross_local - total_discounts

    # ------------------------------------------------------------------
    # Goal gap + hourly average
    # ------------------------------------------------------------------
    shortfall_local = coerce_number(period.goal) - net_payout
    shortfall_tokens = shortfall_to_tokens(shortfall_local, percent, rate)

    hours = coerce_number(period.hours_worked, 0.0)
    avg_tokens_per_hour = grand_tokens / hours if hours > 0 else NOT_AVAILABLE

    breakdown = PayoutBreakdown(
        grand_tokens=grand_tokens,
        grand_usd=grand_usd,
        gross_local=gross_local,
        total_discounts=total_discounts,
        net_payout=net_payout,
        shortfall_local=shortfall_local,
        shortfall_tokens=shortfall_tokens,
        avg_tokens_per_hour=avg_tokens_per_hour,
        platforms=lines,
        discounts=unique_discounts,
    )

    logger.info(
        f"Payout computed for period {period.id}: "
        f"{len(lines)} platforms, tokens={grand_tokens:,}, usd={grand_usd:,.2f}, "
        f"gross={gross_local:,.0f}, discounts={total_discounts:,.0f}, "
        f"net={net_payout:,.0f}, shortfall={shortfall_local:,.0f}"
    )
    return breakdown


def shortfall_to_tokens(shortfall_local: float, percent: float, rate: float) -> int:
    """
    Token-equivalents still needed (positive) or in surplus (negative).

    Inverts the convert/split chain. Rounds up while the goal is unmet and
    down once it is exceeded. A zero percent or zero rate makes the inversion
    meaningless, so the result is 0.
    """
    if percent <= 0 or rate <= 0:
        return 0
    denominator = (percent / 100) * rate * USD_PER_TOKEN
    raw = round(coerce_number(shortfall_local) / denominator, SHORTFALL_PRECISION)
    if raw > 0:
        return math.ceil(raw)
    return math.floor(raw)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
