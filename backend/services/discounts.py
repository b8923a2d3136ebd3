"""
Discount aggregation for a period.

Three sources end up in one list handed to the payout engine:
  1. Manual entries saved by an administrator     key "manual:<id>"
  2. Traffic surcharges derived from link flags    key "traffic:<platform_id>:<flag>"
  3. The grocery ledger total for the period        key "ledger:<period_id>"

Every entry carries a stable key. dedupe_discounts() keeps one entry per key,
so an auto-derived surcharge that was also persisted on save is only counted
once, and recomputing never double-counts.

Traffic tiers (local currency, keyed on the link's gross units):
  bots         ≤ 3,000 → 0 | ≤ 6,000 → 75,000 | above → 150,000
  massive      ≤ 3,000 → 0 | ≤ 6,000 → 50,000 | above → 100,000
  positioning  fixed 60,000
"""

import logging
from typing import Iterable, Optional

import config
from models.schemas import (
    DiscountEntry,
    DiscountLine,
    DiscountSource,
    DiscountView,
    Period,
    PlatformLink,
    PremiumTier,
    ProductionEntry,
    TrafficFlag,
    coerce_number,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Traffic tier table: (max_units_inclusive, amount); None = no upper bound
# ---------------------------------------------------------------------------
TRAFFIC_TIERS: dict[TrafficFlag, list[tuple[Optional[float], float]]] = {
    TrafficFlag.BOTS: [
        (3_000, 0.0),
        (6_000, 75_000.0),
        (None, 150_000.0),
    ],
    TrafficFlag.MASSIVE: [
        (3_000, 0.0),
        (6_000, 50_000.0),
        (None, 100_000.0),
    ],
    TrafficFlag.POSITIONING: [
        (None, 60_000.0),
    ],
}

TRAFFIC_LABELS = {
    TrafficFlag.BOTS: "Traffic bots",
    TrafficFlag.MASSIVE: "Massive traffic",
    TrafficFlag.POSITIONING: "Traffic positioning",
}

LEDGER_DISCOUNT_NAME = "Groceries"


# ===========================================================================
# Stable keys
# ===========================================================================

def manual_key(discount_id: str) -> str:
    return f"manual:{discount_id}"


def traffic_key(platform_id: str, flag: TrafficFlag) -> str:
    return f"traffic:{platform_id}:{flag.value}"


def ledger_key(period_id: str) -> str:
    return f"ledger:{period_id}"


# ===========================================================================
# Traffic surcharges
# ===========================================================================

def traffic_amount(flag: TrafficFlag, units: float) -> float:
    """Look up the surcharge for a flag given the link's gross units."""
    units = max(coerce_number(units), 0.0)
    for max_units, amount in TRAFFIC_TIERS[flag]:
        if max_units is None or units <= max_units:
            return amount
    return 0.0


def derive_traffic_discounts(
    period: Period,
    links: Iterable[PlatformLink],
    production: Iterable[ProductionEntry],
) -> list[DiscountEntry]:
    """
    Build one DiscountEntry per enabled traffic flag of every link.

    Entries are emitted even when the tier amount is 0, so the admin view can
    show that the flag is active.
    """
    by_platform = {entry.platform_id: entry for entry in production}
    derived: list[DiscountEntry] = []

    for link in links:
        units = gross_units(link, by_platform.get(link.platform_id), period)
        for flag in TrafficFlag:
            if not link.flag_enabled(flag):
                continue
            amount = traffic_amount(flag, units)
            derived.append(DiscountEntry(
                key=traffic_key(link.platform_id, flag),
                name=f"{TRAFFIC_LABELS[flag]} · {link.platform.name}",
                amount=amount,
                currency=config.LOCAL_CURRENCY,
                source=DiscountSource.TRAFFIC,
                period_id=period.id,
            ))
            logger.debug(
                f"  Traffic {flag.value} on {link.platform.name}: "
                f"units={units:,.0f} → {amount:,.0f}"
            )

    return derived


def gross_units(
    link: PlatformLink,
    entry: Optional[ProductionEntry],
    period: Period,
) -> float:
    """Raw production of a link before premium (configured weeks or total)."""
    if entry is None:
        return 0.0
    if link.platform.weekly:
        weeks = int(min(max(period.weeks_count, 0), 3))
        return sum(entry.weeks[:weeks])
    return entry.total or 0.0


# ===========================================================================
# Ledger
# ===========================================================================

def ledger_discount(period_id: str, total: float) -> DiscountEntry:
    return DiscountEntry(
        key=ledger_key(period_id),
        name=LEDGER_DISCOUNT_NAME,
        amount=coerce_number(total),
        currency=config.LOCAL_CURRENCY,
        source=DiscountSource.LEDGER,
        period_id=period_id,
    )


# ===========================================================================
# De-duplication
# ===========================================================================

def dedupe_discounts(entries: Iterable[DiscountEntry]) -> list[DiscountEntry]:
    """
    Keep one entry per key. A later entry replaces an earlier one with the
    same key but keeps the earlier position in the list.
    """
    unique: dict[str, DiscountEntry] = {}
    for entry in entries:
        if entry.key in unique:
            logger.debug(f"Duplicate discount key '{entry.key}', keeping latest")
        unique[entry.key] = entry
    return list(unique.values())


# ===========================================================================
# Admin discount view
# ===========================================================================

def build_discount_view(
    discounts: Iterable[DiscountEntry],
    links: Iterable[PlatformLink],
) -> DiscountView:
    """
    Lines for the admin discount screen.

    Saved manual discounts are editable; derived traffic and ledger lines are
    read-only. Premium tiers are listed as informational lines that are not
    part of the total (the premium is already taken out of production).
    """
    lines: list[DiscountLine] = []
    total = 0.0

    for d in dedupe_discounts(discounts):
        lines.append(DiscountLine(
            key=d.key,
            name=d.name,
            source=d.source,
            currency=d.currency,
            amount=d.amount,
            editable=d.source == DiscountSource.MANUAL and d.id is not None,
            id=d.id,
        ))
        total += d.amount

    for link in links:
        if link.premium == PremiumTier.NONE:
            continue
        lines.append(DiscountLine(
            key=f"premium:{link.platform_id}",
            name=f"Premium {link.premium.pct}% · {link.platform.name}",
            currency="tokens",
            amount=0.0,
            counted=False,
        ))

    return DiscountView(lines=lines, total=total)
