"""
Pydantic models for the Talent Payout Dashboard.

Stored records (loaded through services/repository.py):
  - Talent: a managed talent (display name + default revenue share)
  - Period: one billing cycle of a talent (rates, percent, goal, weeks, hours)
  - Platform: a catalog entry (native currency class + unit→USD factor)
  - PlatformLink: a Platform attached to a Period (premium tier + traffic flags)
  - ProductionEntry: the talent's reported output for one link
  - DiscountEntry: a deduction tied to a Period (manual, traffic or ledger)

Engine output (never persisted):
  - WeekBreakdown / PlatformBreakdown / PayoutBreakdown

Records coming from the hosted tables are loosely typed, so every numeric
field is normalized here with a `mode="before"` validator: non-finite or
missing numbers fall back to a safe default instead of failing the request.
"""

import math
from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

NOT_AVAILABLE = "not available"


# ---------------------------------------------------------------------------
# Coercion helpers shared by the record validators and the engine
# ---------------------------------------------------------------------------
def coerce_number(value, default: float = 0.0) -> float:
    """Return value as a finite float, or default when it is missing/garbage."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class NativeCurrency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    TOKEN = "TOKEN"
    CREDIT = "CREDIT"

    @classmethod
    def parse(cls, raw) -> "NativeCurrency":
        """Accept catalog spellings like 'tokens', 'credits', 'eur'. Unknown → USD."""
        text = str(raw or "").strip().upper()
        if text.endswith("S"):
            text = text[:-1]
        try:
            return cls(text)
        except ValueError:
            return cls.USD


class PremiumTier(str, Enum):
    NONE = "none"
    PREMIUM_15 = "premium_15"
    PREMIUM_25 = "premium_25"

    @property
    def pct(self) -> int:
        return {"premium_15": 15, "premium_25": 25}.get(self.value, 0)


class TrafficFlag(str, Enum):
    BOTS = "bots"
    MASSIVE = "massive"
    POSITIONING = "positioning"


class DiscountSource(str, Enum):
    MANUAL = "manual"
    TRAFFIC = "traffic"
    LEDGER = "ledger"


class Role(str, Enum):
    ADMIN = "admin"
    TALENT = "talent"


# ---------------------------------------------------------------------------
# Talent: a row of the talent roster
# ---------------------------------------------------------------------------
class Talent(BaseModel):
    id: str
    display_name: str
    user_id: Optional[str] = None
    percent_default: float = 60.0
    active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("percent_default", mode="before")
    @classmethod
    def _percent(cls, v):
        return clamp(coerce_number(v, 60.0), 0.0, 100.0)


# ---------------------------------------------------------------------------
# Period: one billing cycle
#
# percent           clamped to [0, 100]; missing → 0
# usd_to_local_rate missing → 1, negative → 0
# eur_to_usd_rate   missing → 1, negative → 0
# weeks_count       clamped to [0, 3]; a stored 0 means no weekly columns
# ---------------------------------------------------------------------------
class Period(BaseModel):
    id: str
    talent_id: str
    name: str = ""
    state: Optional[str] = None
    percent: float = 0.0
    usd_to_local_rate: float = 1.0
    eur_to_usd_rate: float = 1.0
    goal: float = 0.0
    weeks_count: int = 1
    hours_worked: Optional[float] = None
    ledger_enabled: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: Optional[datetime] = None

    @field_validator("percent", mode="before")
    @classmethod
    def _percent(cls, v):
        return clamp(coerce_number(v, 0.0), 0.0, 100.0)

    @field_validator("usd_to_local_rate", "eur_to_usd_rate", mode="before")
    @classmethod
    def _rate(cls, v):
        return max(coerce_number(v, 1.0), 0.0)

    @field_validator("goal", mode="before")
    @classmethod
    def _goal(cls, v):
        return coerce_number(v, 0.0)

    @field_validator("weeks_count", mode="before")
    @classmethod
    def _weeks(cls, v):
        return int(clamp(coerce_number(v, 0.0), 0, 3))

    @field_validator("hours_worked", mode="before")
    @classmethod
    def _hours(cls, v):
        if v is None:
            return None
        return max(coerce_number(v, 0.0), 0.0)

    @field_validator("ledger_enabled", mode="before")
    @classmethod
    def _ledger(cls, v):
        return bool(v)


# ---------------------------------------------------------------------------
# Platform: catalog entry
# ---------------------------------------------------------------------------
class Platform(BaseModel):
    id: str
    name: str
    currency: NativeCurrency = NativeCurrency.USD
    unit_to_usd: float = 1.0  # non-positive or missing factor → 1
    weekly: bool = False
    has_traffic: bool = False

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        if isinstance(v, NativeCurrency):
            return v
        return NativeCurrency.parse(v)

    @field_validator("unit_to_usd", mode="before")
    @classmethod
    def _factor(cls, v):
        factor = coerce_number(v, 1.0)
        return factor if factor > 0 else 1.0

    @field_validator("weekly", "has_traffic", mode="before")
    @classmethod
    def _flag(cls, v):
        return bool(v)


# ---------------------------------------------------------------------------
# PlatformLink: a Platform attached to a Period
# ---------------------------------------------------------------------------
class PlatformLink(BaseModel):
    period_id: str
    platform: Platform
    premium: PremiumTier = PremiumTier.NONE
    traffic_bots: bool = False
    traffic_massive: bool = False
    traffic_positioning: bool = False

    @field_validator("premium", mode="before")
    @classmethod
    def _premium(cls, v):
        try:
            return PremiumTier(v)
        except ValueError:
            return PremiumTier.NONE

    @field_validator("traffic_bots", "traffic_massive", "traffic_positioning", mode="before")
    @classmethod
    def _flag(cls, v):
        return bool(v)

    @property
    def platform_id(self) -> str:
        return self.platform.id

    def flag_enabled(self, flag: TrafficFlag) -> bool:
        return {
            TrafficFlag.BOTS: self.traffic_bots,
            TrafficFlag.MASSIVE: self.traffic_massive,
            TrafficFlag.POSITIONING: self.traffic_positioning,
        }[flag]


# ---------------------------------------------------------------------------
# ProductionEntry: weekly values OR a period total (by the platform's flag)
# Negative or non-finite values are clamped to 0; None means "not entered".
# ---------------------------------------------------------------------------
class ProductionEntry(BaseModel):
    period_id: str
    platform_id: str
    w1: Optional[float] = None
    w2: Optional[float] = None
    w3: Optional[float] = None
    total: Optional[float] = None

    @field_validator("w1", "w2", "w3", "total", mode="before")
    @classmethod
    def _units(cls, v):
        if v is None:
            return None
        return max(coerce_number(v, 0.0), 0.0)

    @property
    def weeks(self) -> list[float]:
        return [self.w1 or 0.0, self.w2 or 0.0, self.w3 or 0.0]


# ---------------------------------------------------------------------------
# DiscountEntry: one deduction. `key` is the stable identity used to
# de-duplicate, e.g. "manual:<id>", "traffic:<platform_id>:bots",
# "ledger:<period_id>".
# ---------------------------------------------------------------------------
class DiscountEntry(BaseModel):
    key: str
    name: str
    amount: float = 0.0
    currency: str = "COP"
    source: DiscountSource = DiscountSource.MANUAL
    id: Optional[str] = None
    period_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return coerce_number(v, 0.0)


# ---------------------------------------------------------------------------
# Engine output
# ---------------------------------------------------------------------------
class WeekBreakdown(BaseModel):
    week: int
    gross_units: float = 0.0
    premium_deduction: float = 0.0
    net_units: float = 0.0
    usd: float = 0.0
    tokens: int = 0


class PlatformBreakdown(BaseModel):
    platform_id: str
    platform_name: str
    currency: NativeCurrency
    weekly: bool
    premium_pct: int = 0
    unit_to_usd: float = 1.0
    gross_units: float = 0.0
    premium_deduction: float = 0.0
    net_units: float = 0.0
    usd: float = 0.0
    tokens: int = 0
    weeks: list[WeekBreakdown] = Field(default_factory=list)


class PayoutBreakdown(BaseModel):
    grand_tokens: int = 0
    grand_usd: float = 0.0
    gross_local: float = 0.0
    total_discounts: float = 0.0
    net_payout: float = 0.0
    shortfall_local: float = 0.0
    shortfall_tokens: int = 0
    avg_tokens_per_hour: Union[float, Literal["not available"]] = NOT_AVAILABLE
    platforms: list[PlatformBreakdown] = Field(default_factory=list)
    discounts: list[DiscountEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Ledger (grocery expenses) and identity
# ---------------------------------------------------------------------------
class LedgerItem(BaseModel):
    date: Optional[datetime] = None
    seller: Optional[str] = None
    product: str = ""
    quantity: float = 0.0
    price: float = 0.0
    subtotal: float = 0.0

    @field_validator("quantity", "price", "subtotal", mode="before")
    @classmethod
    def _number(cls, v):
        return coerce_number(v, 0.0)


class LedgerDetail(BaseModel):
    total: float = 0.0
    items: list[LedgerItem] = Field(default_factory=list)


class Identity(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: Role
    talent_id: Optional[str] = None


# ---------------------------------------------------------------------------
# API request models
# ---------------------------------------------------------------------------
class TalentCreate(BaseModel):
    display_name: str = Field(min_length=1)
    percent_default: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("display_name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("display_name must not be blank")
        return v


class TalentUpdate(BaseModel):
    active: Optional[bool] = None
    percent_default: Optional[float] = None

    @field_validator("percent_default")
    @classmethod
    def _percent(cls, v):
        return None if v is None else clamp(v, 0.0, 100.0)


def check_ledger_dates(enabled: Optional[bool], start: Optional[date], end: Optional[date]):
    if not enabled:
        return
    if start is None or end is None:
        raise ValueError("start_date and end_date are required when the ledger is enabled")
    if start > end:
        raise ValueError(f"start_date ({start}) must be <= end_date ({end})")


class PeriodCreate(BaseModel):
    name: str = Field(min_length=1)
    weeks_count: int = Field(1, ge=1, le=3)
    percent: Optional[float] = None  # None → talent's default percent
    usd_to_local_rate: float = Field(1.0, ge=0)
    eur_to_usd_rate: float = Field(1.0, ge=0)
    goal: float = Field(0.0, ge=0)
    ledger_enabled: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("percent")
    @classmethod
    def _percent(cls, v):
        return None if v is None else clamp(v, 0.0, 100.0)

    @model_validator(mode="after")
    def _ledger_dates(self):
        check_ledger_dates(self.ledger_enabled, self.start_date, self.end_date)
        return self


class PeriodUpdate(BaseModel):
    name: Optional[str] = None
    weeks_count: Optional[int] = Field(None, ge=1, le=3)
    percent: Optional[float] = None
    usd_to_local_rate: Optional[float] = Field(None, ge=0)
    eur_to_usd_rate: Optional[float] = Field(None, ge=0)
    goal: Optional[float] = Field(None, ge=0)
    hours_worked: Optional[float] = Field(None, ge=0)
    ledger_enabled: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("percent")
    @classmethod
    def _percent(cls, v):
        return None if v is None else clamp(v, 0.0, 100.0)

    @model_validator(mode="after")
    def _ledger_dates(self):
        check_ledger_dates(self.ledger_enabled, self.start_date, self.end_date)
        return self


class PeriodSettingsUpdate(BaseModel):
    """The subset of period fields a talent may edit from the dashboard."""
    percent: Optional[float] = None
    usd_to_local_rate: Optional[float] = Field(None, ge=0)
    eur_to_usd_rate: Optional[float] = Field(None, ge=0)
    goal: Optional[float] = Field(None, ge=0)
    hours_worked: Optional[float] = Field(None, ge=0)

    @field_validator("percent")
    @classmethod
    def _percent(cls, v):
        return None if v is None else clamp(v, 0.0, 100.0)


class PeriodDuplicate(BaseModel):
    name: Optional[str] = None
    weeks_count: Optional[int] = Field(None, ge=1, le=3)
    percent: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("percent")
    @classmethod
    def _percent(cls, v):
        return None if v is None else clamp(v, 0.0, 100.0)


class LinkConfig(BaseModel):
    premium: PremiumTier = PremiumTier.NONE
    traffic_bots: bool = False
    traffic_massive: bool = False
    traffic_positioning: bool = False


class ProductionInput(BaseModel):
    platform_id: str
    w1: Optional[float] = None
    w2: Optional[float] = None
    w3: Optional[float] = None
    total: Optional[float] = None


class ProductionSave(BaseModel):
    entries: list[ProductionInput]


class DiscountCreate(BaseModel):
    name: str = Field(min_length=1)
    amount: float = Field(0.0, ge=0)
    currency: str = "COP"


class DiscountAmountUpdate(BaseModel):
    amount: Optional[float] = Field(None, ge=0)


# ---------------------------------------------------------------------------
# API response models
# ---------------------------------------------------------------------------
class PlatformOption(BaseModel):
    platform: Platform
    selected: bool = False
    premium: PremiumTier = PremiumTier.NONE
    traffic_bots: bool = False
    traffic_massive: bool = False
    traffic_positioning: bool = False


class DiscountLine(BaseModel):
    key: str
    name: str
    source: Optional[DiscountSource] = None  # None → informational premium line
    currency: str
    amount: float
    editable: bool = False
    counted: bool = True
    id: Optional[str] = None


class DiscountView(BaseModel):
    lines: list[DiscountLine]
    total: float


class PeriodPayout(BaseModel):
    period: Period
    talent_name: str
    currency: str
    breakdown: PayoutBreakdown
