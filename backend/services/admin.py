"""
Roster, period, platform-link, discount and production administration.

Every operation goes through the PayoutRepository it is handed; nothing here
keeps state between calls. Request bodies arrive already validated by their
pydantic models; rules that need stored state (e.g. ledger dates after a
partial edit) raise AdminValidationError.
"""

import logging
from typing import Any, Optional

import config
from models.schemas import (
    DiscountAmountUpdate,
    DiscountCreate,
    DiscountEntry,
    DiscountSource,
    DiscountView,
    LinkConfig,
    Period,
    PeriodCreate,
    PeriodDuplicate,
    PeriodSettingsUpdate,
    PeriodUpdate,
    PlatformOption,
    ProductionEntry,
    ProductionSave,
    Talent,
    TalentCreate,
    TalentUpdate,
    check_ledger_dates,
)
from services.discounts import (
    build_discount_view,
    dedupe_discounts,
    derive_traffic_discounts,
    manual_key,
)
from services.ledger import LedgerClient
from services.period_payout import build_period_payout
from services.repository import PayoutRepository, RecordNotFound

logger = logging.getLogger(__name__)


class AdminValidationError(ValueError):
    """A write was rejected because of the stored state it would produce."""


# Period fields carried over by duplicate_period()
DUPLICATED_FIELDS = (
    "percent", "usd_to_local_rate", "eur_to_usd_rate", "goal",
    "weeks_count", "ledger_enabled", "start_date", "end_date",
)


# ===========================================================================
# Talents
# ===========================================================================

def list_talents(repo: PayoutRepository, include_inactive: bool = False) -> list[Talent]:
    talents = repo.list_talents()
    if include_inactive:
        return talents
    return [t for t in talents if t.active]


def create_talent(repo: PayoutRepository, body: TalentCreate) -> Talent:
    percent = body.percent_default if body.percent_default is not None else config.DEFAULT_PERCENT
    talent = repo.create_talent(body.display_name, percent)
    logger.info(f"Created talent '{talent.display_name}' ({talent.id}) at {percent:g}%")
    return talent


def update_talent(repo: PayoutRepository, talent_id: str, body: TalentUpdate) -> Talent:
    fields = body.model_dump(exclude_none=True)
    if not fields:
        return repo.get_talent(talent_id)
    talent = repo.update_talent(talent_id, fields)
    logger.info(f"Updated talent {talent_id}: {fields}")
    return talent


def delete_talent(repo: PayoutRepository, talent_id: str) -> None:
    repo.get_talent(talent_id)
    repo.delete_talent(talent_id)
    logger.info(f"Deleted talent {talent_id}")


# ===========================================================================
# Periods
# ===========================================================================

def list_periods(repo: PayoutRepository, talent_id: str) -> list[Period]:
    repo.get_talent(talent_id)
    return repo.list_periods(talent_id)


def create_period(repo: PayoutRepository, talent_id: str, body: PeriodCreate) -> Period:
    """Create a period; a missing percent falls back to the talent's default."""
    talent = repo.get_talent(talent_id)
    fields = body.model_dump()
    if fields["percent"] is None:
        fields["percent"] = talent.percent_default
    fields["name"] = fields["name"].strip()

    period = repo.create_period(talent_id, fields)
    logger.info(
        f"Created period '{period.name}' ({period.id}) for {talent.display_name}: "
        f"{period.weeks_count} weeks, {period.percent:g}%"
    )
    return period


def update_period(repo: PayoutRepository, period_id: str, body: PeriodUpdate) -> Period:
    current = repo.get_period(period_id)
    fields = body.model_dump(exclude_unset=True)
    # percent=None in a PATCH means "leave as is"
    fields = {k: v for k, v in fields.items() if v is not None or k == "hours_worked"}
    _validate_merged_period(current, fields)
    return repo.update_period(period_id, fields)


def update_settings(repo: PayoutRepository, period_id: str, body: PeriodSettingsUpdate) -> Period:
    """Talent-editable subset: percent, rates, goal and hours worked."""
    repo.get_period(period_id)
    fields = body.model_dump(exclude_unset=True)
    fields = {k: v for k, v in fields.items() if v is not None or k == "hours_worked"}
    if not fields:
        return repo.get_period(period_id)
    logger.info(f"Talent settings update on period {period_id}: {sorted(fields)}")
    return repo.update_period(period_id, fields)


def duplicate_period(repo: PayoutRepository, period_id: str, body: PeriodDuplicate) -> Period:
    """
    Deep-copy a period: settings, platform links (configuration only, no
    production) and saved discounts. Discounts that share a key collapse to
    the newest one.
    """
    source = repo.get_period(period_id)

    fields: dict[str, Any] = {name: getattr(source, name) for name in DUPLICATED_FIELDS}
    fields["name"] = (body.name or f"{source.name} (copy)").strip()
    overrides = body.model_dump(exclude_none=True, exclude={"name"})
    fields.update(overrides)
    if fields["weeks_count"] < 1:
        fields["weeks_count"] = 1
    _validate_merged_period(source, fields)

    copy = repo.create_period(source.talent_id, fields)

    links = repo.list_links(period_id)
    for link in links:
        repo.upsert_link(copy.id, link.platform_id, LinkConfig(
            premium=link.premium,
            traffic_bots=link.traffic_bots,
            traffic_massive=link.traffic_massive,
            traffic_positioning=link.traffic_positioning,
        ))

    # Listing is newest first; dedupe keeps the last one seen per key
    saved = dedupe_discounts(reversed(repo.list_discounts(period_id)))
    for discount in saved:
        if discount.id is not None and discount.key == manual_key(discount.id):
            repo.create_discount(copy.id, discount.name, discount.amount, discount.currency)
        else:
            repo.upsert_discount(discount.model_copy(update={"id": None, "period_id": copy.id}))

    logger.info(
        f"Duplicated period {period_id} → {copy.id} ('{copy.name}'): "
        f"{len(links)} links, {len(saved)} discounts"
    )
    return copy


def _validate_merged_period(current: Period, fields: dict[str, Any]) -> None:
    merged = {**current.model_dump(), **fields}
    if not str(merged.get("name") or "").strip():
        raise AdminValidationError("Period name must not be blank")
    try:
        check_ledger_dates(merged["ledger_enabled"], merged["start_date"], merged["end_date"])
    except ValueError as e:
        raise AdminValidationError(str(e)) from e


# ===========================================================================
# Platform links
# ===========================================================================

def platform_options(repo: PayoutRepository, period_id: str) -> list[PlatformOption]:
    """Catalog with the period's selection and per-link configuration."""
    repo.get_period(period_id)
    linked = {link.platform_id: link for link in repo.list_links(period_id)}

    options = []
    for platform in repo.list_platforms():
        link = linked.get(platform.id)
        if link is None:
            options.append(PlatformOption(platform=platform))
            continue
        options.append(PlatformOption(
            platform=platform,
            selected=True,
            premium=link.premium,
            traffic_bots=link.traffic_bots,
            traffic_massive=link.traffic_massive,
            traffic_positioning=link.traffic_positioning,
        ))
    return options


def configure_link(
    repo: PayoutRepository,
    period_id: str,
    platform_id: str,
    link_config: LinkConfig,
) -> list[PlatformOption]:
    """Attach a platform to the period (or update its premium / traffic flags)."""
    repo.get_period(period_id)
    platform = _catalog_platform(repo, platform_id)

    traffic_requested = (
        link_config.traffic_bots or link_config.traffic_massive or link_config.traffic_positioning
    )
    if traffic_requested and not platform.has_traffic:
        raise AdminValidationError(f"Platform '{platform.name}' does not support traffic options")

    repo.upsert_link(period_id, platform_id, link_config)
    logger.info(
        f"Link {platform.name} on period {period_id}: premium={link_config.premium.value}, "
        f"bots={link_config.traffic_bots}, massive={link_config.traffic_massive}, "
        f"positioning={link_config.traffic_positioning}"
    )
    return platform_options(repo, period_id)


def disable_link(repo: PayoutRepository, period_id: str, platform_id: str) -> list[PlatformOption]:
    repo.get_period(period_id)
    repo.delete_link(period_id, platform_id)
    logger.info(f"Removed platform {platform_id} from period {period_id}")
    return platform_options(repo, period_id)


def _catalog_platform(repo: PayoutRepository, platform_id: str):
    for platform in repo.list_platforms():
        if platform.id == platform_id:
            return platform
    raise RecordNotFound(f"Platform {platform_id} not found")


# ===========================================================================
# Discounts
# ===========================================================================

def discount_view(
    repo: PayoutRepository,
    ledger: Optional[LedgerClient],
    period_id: str,
) -> DiscountView:
    """Engine-computed discount lines plus informational premium lines."""
    payout = build_period_payout(repo, ledger, period_id)
    return build_discount_view(payout.breakdown.discounts, repo.list_links(period_id))


def create_discount(repo: PayoutRepository, period_id: str, body: DiscountCreate) -> DiscountEntry:
    repo.get_period(period_id)
    entry = repo.create_discount(period_id, body.name.strip(), body.amount, body.currency)
    logger.info(f"Manual discount '{entry.name}' {entry.amount:,.0f} {entry.currency} on period {period_id}")
    return entry


def update_discount_amount(
    repo: PayoutRepository,
    period_id: str,
    discount_id: str,
    body: DiscountAmountUpdate,
) -> None:
    """Edit a manual discount. Traffic rows are recomputed from the links and stay read-only."""
    current = next((d for d in repo.list_discounts(period_id) if d.id == discount_id), None)
    if current is None:
        raise RecordNotFound(f"Discount {discount_id} not found")
    if current.source != DiscountSource.MANUAL:
        raise AdminValidationError(f"Discount '{current.name}' is computed automatically and cannot be edited")

    repo.update_discount_amount(period_id, discount_id, body.amount)
    logger.info(f"Discount {discount_id} on period {period_id} set to {body.amount}")


# ===========================================================================
# Production
# ===========================================================================

def save_production(repo: PayoutRepository, period_id: str, body: ProductionSave) -> list[ProductionEntry]:
    """
    Persist the talent's production and the traffic surcharges it implies.

    Weekly platforms store w1..w3 with an empty total; other platforms store
    only the total. Entries for platforms not linked to the period are
    rejected before anything is written.
    """
    period = repo.get_period(period_id)
    links = repo.list_links(period_id)
    linked = {link.platform_id: link for link in links}

    unknown = [e.platform_id for e in body.entries if e.platform_id not in linked]
    if unknown:
        raise AdminValidationError(f"Platforms not linked to this period: {', '.join(unknown)}")

    # ------------------------------------------------------------------
    # Production rows
    # ------------------------------------------------------------------
    saved: list[ProductionEntry] = []
    for item in body.entries:
        if linked[item.platform_id].platform.weekly:
            entry = ProductionEntry(
                period_id=period_id, platform_id=item.platform_id,
                w1=item.w1, w2=item.w2, w3=item.w3, total=None,
            )
        else:
            entry = ProductionEntry(
                period_id=period_id, platform_id=item.platform_id, total=item.total,
            )
        repo.upsert_production(entry)
        saved.append(entry)

    # ------------------------------------------------------------------
    # Traffic surcharges (stable keys, so re-saving overwrites)
    # ------------------------------------------------------------------
    production = repo.list_production(period_id)
    derived = derive_traffic_discounts(period, links, production)
    for discount in derived:
        repo.upsert_discount(discount)

    logger.info(
        f"Saved production for period {period_id}: {len(saved)} platforms, "
        f"{len(derived)} traffic discounts persisted"
    )
    return saved
