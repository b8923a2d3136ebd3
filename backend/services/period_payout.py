"""
Assemble a period snapshot and run the payout engine on it.

Shared by the admin discount view, the talent dashboard and the statement
export, so all three always show the same numbers.

Pipeline:
  Step 1: Load period, talent, links, production and saved discounts
  Step 2: Derive traffic surcharges from the link flags
  Step 3: Fetch the grocery ledger total (ledger-enabled periods only)
  Step 4: compute_payout() over saved + derived + ledger discounts
"""

import logging
from typing import Optional

import config
from models.schemas import DiscountEntry, DiscountSource, Period, PeriodPayout, Talent
from services.discounts import derive_traffic_discounts, ledger_discount
from services.ledger import LedgerClient
from services.payout import compute_payout
from services.repository import PayoutRepository

logger = logging.getLogger(__name__)


def build_period_payout(
    repo: PayoutRepository,
    ledger: Optional[LedgerClient],
    period_id: str,
) -> PeriodPayout:
    """
    Load everything a period's payout depends on and compute it.

    Traffic surcharges always come from the current link flags and
    production. Persisted traffic rows are ignored here, so clearing a flag
    or removing a link drops its surcharge even if an old copy is still
    stored.

    Raises:
        RecordNotFound:  period or talent missing
        RepositoryError: storage unavailable
    """
    # ------------------------------------------------------------------
    # Step 1: Load the snapshot
    # ------------------------------------------------------------------
    period = repo.get_period(period_id)
    talent = repo.get_talent(period.talent_id)
    links = repo.list_links(period_id)
    production = repo.list_production(period_id)
    saved = [d for d in repo.list_discounts(period_id) if d.source != DiscountSource.TRAFFIC]

    logger.info(
        f"Loaded period '{period.name}' ({period_id}) for {talent.display_name}: "
        f"{len(links)} links, {len(production)} production rows, {len(saved)} saved manual discounts"
    )

    # ------------------------------------------------------------------
    # Step 2: Traffic surcharges
    # ------------------------------------------------------------------
    derived = derive_traffic_discounts(period, links, production)

    # ------------------------------------------------------------------
    # Step 3: Grocery ledger
    # ------------------------------------------------------------------
    ledger_entries = _ledger_entries(ledger, period, talent)

    # ------------------------------------------------------------------
    # Step 4: Engine
    # ------------------------------------------------------------------
    breakdown = compute_payout(period, links, production, [*saved, *derived, *ledger_entries])

    return PeriodPayout(
        period=period,
        talent_name=talent.display_name,
        currency=config.LOCAL_CURRENCY,
        breakdown=breakdown,
    )


def _ledger_entries(
    ledger: Optional[LedgerClient],
    period: Period,
    talent: Talent,
) -> list[DiscountEntry]:
    if ledger is None or not period.ledger_enabled:
        return []
    if period.start_date is None or period.end_date is None or not talent.display_name:
        logger.warning(
            f"Period {period.id} has the ledger enabled but no date range or talent name; "
            f"skipping grocery deduction"
        )
        return []

    total = ledger.fetch_total(talent.display_name, period.start_date, period.end_date)
    return [ledger_discount(period.id, total)]
