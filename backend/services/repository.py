"""
Persistence layer for talents, periods, platform links, production and discounts.

PayoutRepository is the typed interface the API and the admin services depend
on. It is injected per request (see main.get_repository), never reached as a
global.

Implementations:
  - SupabaseRepository: hosted Postgres tables through the PostgREST API
  - InMemoryRepository: process-local dicts (local development + tests)

Hosted tables (column names are the hosted schema's, mapped to our records
at this boundary):
  models                  id, display_name, user_id, percent_default, active, created_at
  app_users               user_id, role ('admin' | 'model')
  model_periods           id, model_id, period_name, state, period_percent,
                          tc_usd_cop, tc_eur_usd, meta_cop, weeks_count,
                          hours_worked, groceries_enabled, start_date, end_date
  platforms               id, name, unit_type, default_unit_to_usd,
                          supports_weeks, has_traffic
  model_period_platforms  model_period_id, platform_id, premium_state,
                          traffic_enabled, traffic_massive_enabled,
                          traffic_positioning_enabled, w1, w2, w3, total_tokens
  period_discounts        id, model_period_id, name, amount, currency,
                          source, source_key, created_at

Writes are independent calls: no transaction spans two of them, and
concurrent edits resolve as last-write-wins.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx

import config
from models.schemas import (
    DiscountEntry,
    DiscountSource,
    LinkConfig,
    Period,
    Platform,
    PlatformLink,
    ProductionEntry,
    Role,
    Talent,
)
from services.discounts import manual_key

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """The backing store could not be reached or rejected the request."""


class RecordNotFound(LookupError):
    """A record addressed by id does not exist."""


# ===========================================================================
# Interface
# ===========================================================================

class PayoutRepository(ABC):

    # --- talents ---
    @abstractmethod
    def list_talents(self) -> list[Talent]: ...

    @abstractmethod
    def get_talent(self, talent_id: str) -> Talent: ...

    @abstractmethod
    def find_talent_by_user(self, user_id: str) -> Optional[Talent]: ...

    @abstractmethod
    def create_talent(self, display_name: str, percent_default: float) -> Talent: ...

    @abstractmethod
    def update_talent(self, talent_id: str, fields: dict[str, Any]) -> Talent: ...

    @abstractmethod
    def delete_talent(self, talent_id: str) -> None: ...

    @abstractmethod
    def get_role(self, user_id: str) -> Optional[Role]: ...

    # --- periods ---
    @abstractmethod
    def list_periods(self, talent_id: str) -> list[Period]: ...

    @abstractmethod
    def get_period(self, period_id: str) -> Period: ...

    @abstractmethod
    def create_period(self, talent_id: str, fields: dict[str, Any]) -> Period: ...

    @abstractmethod
    def update_period(self, period_id: str, fields: dict[str, Any]) -> Period: ...

    # --- catalog + links ---
    @abstractmethod
    def list_platforms(self) -> list[Platform]: ...

    @abstractmethod
    def list_links(self, period_id: str) -> list[PlatformLink]: ...

    @abstractmethod
    def upsert_link(self, period_id: str, platform_id: str, link_config: LinkConfig) -> None: ...

    @abstractmethod
    def delete_link(self, period_id: str, platform_id: str) -> None: ...

    # --- production ---
    @abstractmethod
    def list_production(self, period_id: str) -> list[ProductionEntry]: ...

    @abstractmethod
    def upsert_production(self, entry: ProductionEntry) -> None: ...

    # --- discounts ---
    @abstractmethod
    def list_discounts(self, period_id: str) -> list[DiscountEntry]: ...

    @abstractmethod
    def create_discount(self, period_id: str, name: str, amount: float, currency: str) -> DiscountEntry: ...

    @abstractmethod
    def update_discount_amount(self, period_id: str, discount_id: str, amount: Optional[float]) -> None: ...

    @abstractmethod
    def upsert_discount(self, entry: DiscountEntry) -> None: ...


# ===========================================================================
# Row ↔ record mapping (hosted column names)
# ===========================================================================

PERIOD_COLUMNS = {
    "name": "period_name",
    "state": "state",
    "percent": "period_percent",
    "usd_to_local_rate": "tc_usd_cop",
    "eur_to_usd_rate": "tc_eur_usd",
    "goal": "meta_cop",
    "weeks_count": "weeks_count",
    "hours_worked": "hours_worked",
    "ledger_enabled": "groceries_enabled",
    "start_date": "start_date",
    "end_date": "end_date",
}


def _talent_from_row(row: dict) -> Talent:
    return Talent(
        id=str(row["id"]),
        display_name=str(row.get("display_name") or ""),
        user_id=row.get("user_id"),
        percent_default=row.get("percent_default"),
        active=bool(row.get("active", True)),
        created_at=row.get("created_at"),
    )


def _period_from_row(row: dict) -> Period:
    goal = row.get("meta_cop")
    if goal is None:
        goal = row.get("goal_cop")
    return Period(
        id=str(row["id"]),
        talent_id=str(row.get("model_id") or ""),
        name=str(row.get("period_name") or ""),
        state=row.get("state"),
        percent=row.get("period_percent"),
        usd_to_local_rate=row.get("tc_usd_cop"),
        eur_to_usd_rate=row.get("tc_eur_usd"),
        goal=goal,
        weeks_count=row.get("weeks_count"),
        hours_worked=row.get("hours_worked"),
        ledger_enabled=row.get("groceries_enabled"),
        start_date=_to_date(row.get("start_date")),
        end_date=_to_date(row.get("end_date")),
        created_at=row.get("created_at"),
    )


def _period_to_row(fields: dict[str, Any]) -> dict[str, Any]:
    row = {}
    for field, value in fields.items():
        column = PERIOD_COLUMNS.get(field)
        if column is None:
            continue
        if isinstance(value, date):
            value = value.isoformat()
        row[column] = value
    return row


def _platform_from_row(row: dict) -> Platform:
    return Platform(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        currency=row.get("unit_type"),
        unit_to_usd=row.get("default_unit_to_usd"),
        weekly=row.get("supports_weeks"),
        has_traffic=row.get("has_traffic"),
    )


def _link_from_row(row: dict) -> PlatformLink:
    platform_row = row.get("platforms") or {}
    if isinstance(platform_row, list):
        platform_row = platform_row[0] if platform_row else {}
    platform_row = {"id": row.get("platform_id"), **platform_row}
    return PlatformLink(
        period_id=str(row.get("model_period_id") or ""),
        platform=_platform_from_row(platform_row),
        premium=row.get("premium_state") or "none",
        traffic_bots=row.get("traffic_enabled"),
        traffic_massive=row.get("traffic_massive_enabled"),
        traffic_positioning=row.get("traffic_positioning_enabled"),
    )


def _production_from_row(row: dict) -> ProductionEntry:
    return ProductionEntry(
        period_id=str(row.get("model_period_id") or ""),
        platform_id=str(row.get("platform_id") or ""),
        w1=row.get("w1"),
        w2=row.get("w2"),
        w3=row.get("w3"),
        total=row.get("total_tokens"),
    )


def _discount_from_row(row: dict) -> DiscountEntry:
    # Catalog discounts come joined as `discount`, object or one-element list
    catalog = row.get("discount") or {}
    if isinstance(catalog, list):
        catalog = catalog[0] if catalog else {}
    discount_id = str(row["id"])
    try:
        source = DiscountSource(row.get("source") or DiscountSource.MANUAL.value)
    except ValueError:
        source = DiscountSource.MANUAL
    return DiscountEntry(
        key=row.get("source_key") or manual_key(discount_id),
        name=str(row.get("name") or catalog.get("name") or ""),
        amount=row.get("amount"),
        currency=str(row.get("currency") or catalog.get("currency") or config.LOCAL_CURRENCY),
        source=source,
        id=discount_id,
        period_id=row.get("model_period_id"),
        created_at=row.get("created_at"),
    )


def _to_date(value) -> Optional[date]:
    """Accept 'YYYY-MM-DD', full ISO timestamps, or date objects."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.debug(f"Could not parse date: {repr(value)}")
        return None


# ===========================================================================
# Supabase (PostgREST over httpx)
# ===========================================================================

LINK_SELECT = (
    "model_period_id,platform_id,premium_state,traffic_enabled,"
    "traffic_massive_enabled,traffic_positioning_enabled,"
    "platforms(id,name,unit_type,default_unit_to_usd,supports_weeks,has_traffic)"
)
DISCOUNT_SELECT = (
    "id,model_period_id,name,amount,currency,source,source_key,created_at,"
    "discount:discounts(name,currency)"
)


class SupabaseRepository(PayoutRepository):
    """
    Talks to the hosted tables through PostgREST (`/rest/v1/<table>`).

    Every call is a single HTTP request with a timeout and no retry. Network
    errors and non-2xx responses raise RepositoryError; PATCH/single reads
    that match nothing raise RecordNotFound.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or config.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.SUPABASE_ANON_KEY
        self._transport = transport

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> list[dict]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}/rest/v1/{table}"

        try:
            with httpx.Client(timeout=config.REQUEST_TIMEOUT, transport=self._transport) as client:
                response = client.request(method, url, params=params, json=json, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"Network error on {method} {table}: {e}")
            raise RepositoryError(f"Could not reach the database ({table}): {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"Database error {response.status_code} on {method} {table}: "
                f"{response.text[:300]}"
            )
            raise RepositoryError(
                f"Database returned {response.status_code} for {table}: {response.text[:200]}"
            )

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    def _one(self, rows: list[dict], what: str) -> dict:
        if not rows:
            raise RecordNotFound(f"{what} not found")
        return rows[0]

    # ------------------------------------------------------------------
    # Talents
    # ------------------------------------------------------------------
    def list_talents(self) -> list[Talent]:
        rows = self._request("GET", "models", params={
            "select": "id,display_name,user_id,percent_default,active,created_at",
            "order": "created_at.desc",
        })
        return [_talent_from_row(r) for r in rows]

    def get_talent(self, talent_id: str) -> Talent:
        rows = self._request("GET", "models", params={"select": "*", "id": f"eq.{talent_id}"})
        return _talent_from_row(self._one(rows, f"Talent {talent_id}"))

    def find_talent_by_user(self, user_id: str) -> Optional[Talent]:
        rows = self._request("GET", "models", params={"select": "*", "user_id": f"eq.{user_id}"})
        return _talent_from_row(rows[0]) if rows else None

    def create_talent(self, display_name: str, percent_default: float) -> Talent:
        rows = self._request(
            "POST", "models",
            json={"display_name": display_name, "percent_default": percent_default, "active": True},
            prefer="return=representation",
        )
        return _talent_from_row(self._one(rows, "Created talent"))

    def update_talent(self, talent_id: str, fields: dict[str, Any]) -> Talent:
        rows = self._request(
            "PATCH", "models",
            params={"id": f"eq.{talent_id}"},
            json=fields,
            prefer="return=representation",
        )
        return _talent_from_row(self._one(rows, f"Talent {talent_id}"))

    def delete_talent(self, talent_id: str) -> None:
        self._request("DELETE", "models", params={"id": f"eq.{talent_id}"})

    def get_role(self, user_id: str) -> Optional[Role]:
        rows = self._request("GET", "app_users", params={"select": "role", "user_id": f"eq.{user_id}"})
        if not rows:
            return None
        return Role.ADMIN if rows[0].get("role") == "admin" else Role.TALENT

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------
    def list_periods(self, talent_id: str) -> list[Period]:
        rows = self._request("GET", "model_periods", params={
            "select": "*",
            "model_id": f"eq.{talent_id}",
            "order": "created_at.desc",
        })
        return [_period_from_row(r) for r in rows]

    def get_period(self, period_id: str) -> Period:
        rows = self._request("GET", "model_periods", params={"select": "*", "id": f"eq.{period_id}"})
        return _period_from_row(self._one(rows, f"Period {period_id}"))

    def create_period(self, talent_id: str, fields: dict[str, Any]) -> Period:
        payload = {"model_id": talent_id, "period_type": "custom", **_period_to_row(fields)}
        rows = self._request("POST", "model_periods", json=payload, prefer="return=representation")
        return _period_from_row(self._one(rows, "Created period"))

    def update_period(self, period_id: str, fields: dict[str, Any]) -> Period:
        rows = self._request(
            "PATCH", "model_periods",
            params={"id": f"eq.{period_id}"},
            json=_period_to_row(fields),
            prefer="return=representation",
        )
        return _period_from_row(self._one(rows, f"Period {period_id}"))

    # ------------------------------------------------------------------
    # Catalog + links
    # ------------------------------------------------------------------
    def list_platforms(self) -> list[Platform]:
        rows = self._request("GET", "platforms", params={
            "select": "id,name,unit_type,default_unit_to_usd,supports_weeks,has_traffic",
            "order": "name.asc",
        })
        return [_platform_from_row(r) for r in rows]

    def list_links(self, period_id: str) -> list[PlatformLink]:
        rows = self._request("GET", "model_period_platforms", params={
            "select": LINK_SELECT,
            "model_period_id": f"eq.{period_id}",
            "order": "platform_id.asc",
        })
        return [_link_from_row(r) for r in rows]

    def upsert_link(self, period_id: str, platform_id: str, link_config: LinkConfig) -> None:
        self._request(
            "POST", "model_period_platforms",
            params={"on_conflict": "model_period_id,platform_id"},
            json={
                "model_period_id": period_id,
                "platform_id": platform_id,
                "premium_state": link_config.premium.value,
                "traffic_enabled": link_config.traffic_bots,
                "traffic_massive_enabled": link_config.traffic_massive,
                "traffic_positioning_enabled": link_config.traffic_positioning,
            },
            prefer="resolution=merge-duplicates,return=minimal",
        )

    def delete_link(self, period_id: str, platform_id: str) -> None:
        self._request("DELETE", "model_period_platforms", params={
            "model_period_id": f"eq.{period_id}",
            "platform_id": f"eq.{platform_id}",
        })

    # ------------------------------------------------------------------
    # Production (stored on the link row)
    # ------------------------------------------------------------------
    def list_production(self, period_id: str) -> list[ProductionEntry]:
        rows = self._request("GET", "model_period_platforms", params={
            "select": "model_period_id,platform_id,w1,w2,w3,total_tokens",
            "model_period_id": f"eq.{period_id}",
        })
        return [_production_from_row(r) for r in rows]

    def upsert_production(self, entry: ProductionEntry) -> None:
        self._request(
            "POST", "model_period_platforms",
            params={"on_conflict": "model_period_id,platform_id"},
            json={
                "model_period_id": entry.period_id,
                "platform_id": entry.platform_id,
                "w1": entry.w1,
                "w2": entry.w2,
                "w3": entry.w3,
                "total_tokens": entry.total,
            },
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------
    def list_discounts(self, period_id: str) -> list[DiscountEntry]:
        rows = self._request("GET", "period_discounts", params={
            "select": DISCOUNT_SELECT,
            "model_period_id": f"eq.{period_id}",
            "order": "created_at.desc",
        })
        return [_discount_from_row(r) for r in rows]

    def create_discount(self, period_id: str, name: str, amount: float, currency: str) -> DiscountEntry:
        rows = self._request(
            "POST", "period_discounts",
            json={
                "model_period_id": period_id,
                "name": name,
                "amount": amount,
                "currency": currency,
                "source": DiscountSource.MANUAL.value,
            },
            prefer="return=representation",
        )
        return _discount_from_row(self._one(rows, "Created discount"))

    def update_discount_amount(self, period_id: str, discount_id: str, amount: Optional[float]) -> None:
        rows = self._request(
            "PATCH", "period_discounts",
            params={"id": f"eq.{discount_id}", "model_period_id": f"eq.{period_id}"},
            json={"amount": amount},
            prefer="return=representation",
        )
        self._one(rows, f"Discount {discount_id}")

    def upsert_discount(self, entry: DiscountEntry) -> None:
        self._request(
            "POST", "period_discounts",
            params={"on_conflict": "model_period_id,source_key"},
            json={
                "model_period_id": entry.period_id,
                "name": entry.name,
                "amount": entry.amount,
                "currency": entry.currency,
                "source": entry.source.value,
                "source_key": entry.key,
            },
            prefer="resolution=merge-duplicates,return=minimal",
        )


# ===========================================================================
# In-memory
# ===========================================================================

class InMemoryRepository(PayoutRepository):
    """
    Process-local store with the same semantics as the hosted tables:
    newest-first listings, upsert by composite key, last write wins.
    """

    def __init__(self, platforms: Optional[list[Platform]] = None):
        self.talents: dict[str, Talent] = {}
        self.roles: dict[str, Role] = {}
        self.periods: dict[str, Period] = {}
        self.platforms: dict[str, Platform] = {p.id: p for p in (platforms or [])}
        self.links: dict[tuple[str, str], PlatformLink] = {}
        self.production: dict[tuple[str, str], ProductionEntry] = {}
        self.discounts: dict[str, DiscountEntry] = {}

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    # --- users ---
    def add_user(self, user_id: str, role: Role, talent_id: Optional[str] = None) -> None:
        self.roles[user_id] = role
        if talent_id is not None:
            self.talents[talent_id] = self.get_talent(talent_id).model_copy(update={"user_id": user_id})

    def get_role(self, user_id: str) -> Optional[Role]:
        return self.roles.get(user_id)

    # --- talents ---
    def list_talents(self) -> list[Talent]:
        return list(reversed(self.talents.values()))

    def get_talent(self, talent_id: str) -> Talent:
        if talent_id not in self.talents:
            raise RecordNotFound(f"Talent {talent_id} not found")
        return self.talents[talent_id]

    def find_talent_by_user(self, user_id: str) -> Optional[Talent]:
        for talent in self.talents.values():
            if talent.user_id == user_id:
                return talent
        return None

    def create_talent(self, display_name: str, percent_default: float) -> Talent:
        talent = Talent(
            id=self._new_id(),
            display_name=display_name,
            percent_default=percent_default,
            active=True,
            created_at=self._now(),
        )
        self.talents[talent.id] = talent
        return talent

    def update_talent(self, talent_id: str, fields: dict[str, Any]) -> Talent:
        talent = self.get_talent(talent_id).model_copy(update=fields)
        self.talents[talent_id] = talent
        return talent

    def delete_talent(self, talent_id: str) -> None:
        self.talents.pop(talent_id, None)

    # --- periods ---
    def list_periods(self, talent_id: str) -> list[Period]:
        return [p for p in reversed(self.periods.values()) if p.talent_id == talent_id]

    def get_period(self, period_id: str) -> Period:
        if period_id not in self.periods:
            raise RecordNotFound(f"Period {period_id} not found")
        return self.periods[period_id]

    def create_period(self, talent_id: str, fields: dict[str, Any]) -> Period:
        period = Period(id=self._new_id(), talent_id=talent_id, created_at=self._now(), **fields)
        self.periods[period.id] = period
        return period

    def update_period(self, period_id: str, fields: dict[str, Any]) -> Period:
        current = self.get_period(period_id)
        # Re-validate so the record normalization rules still apply
        period = Period(**{**current.model_dump(), **fields})
        self.periods[period_id] = period
        return period

    # --- catalog + links ---
    def list_platforms(self) -> list[Platform]:
        return sorted(self.platforms.values(), key=lambda p: p.name.lower())

    def list_links(self, period_id: str) -> list[PlatformLink]:
        links = [l for (pid, _), l in self.links.items() if pid == period_id]
        return sorted(links, key=lambda l: l.platform_id)

    def upsert_link(self, period_id: str, platform_id: str, link_config: LinkConfig) -> None:
        if platform_id not in self.platforms:
            raise RecordNotFound(f"Platform {platform_id} not found")
        self.links[(period_id, platform_id)] = PlatformLink(
            period_id=period_id,
            platform=self.platforms[platform_id],
            **link_config.model_dump(),
        )

    def delete_link(self, period_id: str, platform_id: str) -> None:
        self.links.pop((period_id, platform_id), None)
        self.production.pop((period_id, platform_id), None)

    # --- production ---
    def list_production(self, period_id: str) -> list[ProductionEntry]:
        return [e for (pid, _), e in self.production.items() if pid == period_id]

    def upsert_production(self, entry: ProductionEntry) -> None:
        self.production[(entry.period_id, entry.platform_id)] = entry

    # --- discounts ---
    def list_discounts(self, period_id: str) -> list[DiscountEntry]:
        return [d for d in reversed(self.discounts.values()) if d.period_id == period_id]

    def create_discount(self, period_id: str, name: str, amount: float, currency: str) -> DiscountEntry:
        discount_id = self._new_id()
        entry = DiscountEntry(
            key=manual_key(discount_id),
            name=name,
            amount=amount,
            currency=currency,
            source=DiscountSource.MANUAL,
            id=discount_id,
            period_id=period_id,
            created_at=self._now(),
        )
        self.discounts[discount_id] = entry
        return entry

    def update_discount_amount(self, period_id: str, discount_id: str, amount: Optional[float]) -> None:
        entry = self.discounts.get(discount_id)
        if entry is None or entry.period_id != period_id:
            raise RecordNotFound(f"Discount {discount_id} not found")
        self.discounts[discount_id] = entry.model_copy(update={"amount": amount or 0.0})

    def upsert_discount(self, entry: DiscountEntry) -> None:
        for discount_id, existing in self.discounts.items():
            if existing.period_id == entry.period_id and existing.key == entry.key:
                self.discounts[discount_id] = entry.model_copy(update={"id": discount_id})
                return
        discount_id = self._new_id()
        self.discounts[discount_id] = entry.model_copy(
            update={"id": discount_id, "created_at": self._now()}
        )


# ---------------------------------------------------------------------------
# Catalog used when running on the in-memory backend
# ---------------------------------------------------------------------------
DEFAULT_PLATFORMS = [
    Platform(id="chaturbate", name="Chaturbate", currency="tokens",
             unit_to_usd=0.05, weekly=True, has_traffic=True),
    Platform(id="stripchat", name="Stripchat", currency="tokens",
             unit_to_usd=0.05, weekly=True, has_traffic=True),
    Platform(id="streamate", name="Streamate", currency="usd", unit_to_usd=1.0),
    Platform(id="xlove", name="XLove", currency="eur", unit_to_usd=1.0),
]


def build_repository() -> PayoutRepository:
    """Repository selected by config.STORAGE_BACKEND."""
    if config.STORAGE_BACKEND == "supabase":
        logger.info(f"Using Supabase repository at {config.SUPABASE_URL}")
        return SupabaseRepository()
    logger.info("Using in-memory repository")
    return InMemoryRepository(platforms=DEFAULT_PLATFORMS)
