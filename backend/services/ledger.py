"""
Grocery ledger client.

The ledger lives in a separate hosted project and exposes two RPC functions:
  POST {LEDGER_URL}/rest/v1/rpc/{LEDGER_TOTAL_FN}   → numeric total
  POST {LEDGER_URL}/rest/v1/rpc/{LEDGER_DETAIL_FN}  → itemized rows

Both take:
  p_customer_name  exact talent display name
  p_start_date     "YYYY-MM-DD" (inclusive)
  p_end_date       "YYYY-MM-DD" (inclusive)

Reads are best-effort: a network error, a non-2xx status or an unparseable
body yields a total of 0 / an empty list and a warning in the log. The
payout still renders, just without the grocery deduction.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

import httpx

import config
from models.schemas import LedgerDetail, LedgerItem, coerce_number

logger = logging.getLogger(__name__)


class LedgerClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else config.LEDGER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.LEDGER_ANON_KEY
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def fetch_total(self, customer_name: str, start_date: date, end_date: date) -> float:
        """Total grocery spend of a talent in [start_date, end_date], 0 on failure."""
        data = self._call(config.LEDGER_TOTAL_FN, customer_name, start_date, end_date)
        if data is None:
            return 0.0

        # PostgREST returns a scalar for NUMERIC functions; tolerate a row too
        if isinstance(data, list):
            data = data[0] if data else 0
        if isinstance(data, dict):
            data = next(iter(data.values()), 0)

        total = coerce_number(data, 0.0)
        logger.info(
            f"Ledger total for '{customer_name}' {start_date}..{end_date}: {total:,.0f}"
        )
        return total

    def fetch_detail(self, customer_name: str, start_date: date, end_date: date) -> list[LedgerItem]:
        """Itemized grocery rows, empty on failure."""
        data = self._call(config.LEDGER_DETAIL_FN, customer_name, start_date, end_date)
        if not isinstance(data, list):
            if data is not None:
                logger.warning(f"Ledger detail returned {type(data).__name__}, expected a list")
            return []

        items = [_parse_item(row) for row in data if isinstance(row, dict)]
        logger.info(f"Ledger detail for '{customer_name}': {len(items)} items")
        return items

    def fetch_statement(self, customer_name: str, start_date: date, end_date: date) -> LedgerDetail:
        return LedgerDetail(
            total=self.fetch_total(customer_name, start_date, end_date),
            items=self.fetch_detail(customer_name, start_date, end_date),
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    def _call(self, function: str, customer_name: str, start_date: date, end_date: date) -> Any:
        """POST one RPC. Returns the decoded body, or None on any failure."""
        if not self.configured:
            logger.warning("Ledger URL is not configured; skipping ledger lookup")
            return None

        url = f"{self.base_url}/rest/v1/rpc/{function}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {
            "p_customer_name": customer_name,
            "p_start_date": start_date.isoformat(),
            "p_end_date": end_date.isoformat(),
        }

        try:
            with httpx.Client(timeout=config.REQUEST_TIMEOUT, transport=self._transport) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.warning(f"Ledger {function} unreachable: {e}")
            return None

        if response.status_code >= 400:
            logger.warning(
                f"Ledger {function} returned {response.status_code}: {response.text[:200]}"
            )
            return None

        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"Ledger {function} returned invalid JSON: {e}")
            return None


def _parse_item(row: dict) -> LedgerItem:
    return LedgerItem(
        date=_parse_timestamp(row.get("item_date")),
        seller=row.get("seller_name"),
        product=str(row.get("product_name") or ""),
        quantity=row.get("qty"),
        price=row.get("price"),
        subtotal=row.get("subtotal"),
    )


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Could not parse ledger timestamp: {repr(value)}")
        return None
