"""Pydantic data models — the system's type contracts."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# --- Type Aliases ---

Ticker = str
ProviderId = str

# --- Enumerations ---


class DataQuality(StrEnum):
    """Quality flag recorded on a symbol after each ingestion attempt."""

    OK = "ok"
    PARTIAL = "partial"
    STALE = "stale"
    ERROR = "error"


class DataKind(StrEnum):
    """The kinds of market data the ingestion pipeline can fetch."""

    DAILY_BARS = "daily_bars"
    FUNDAMENTALS = "fundamentals"
    QUOTE = "quote"


class ProviderName(StrEnum):
    """Built-in market data providers."""

    YAHOO = "yahoo"
    ALPHA_VANTAGE = "alphavantage"
    MASSIVE = "massive"


class ThesisTag(StrEnum):
    """User-assigned investment thesis buckets."""

    ENERGY = "Energy"
    DEFENSE = "Defense"
    GROWTH = "Growth"
    HEDGE = "Hedge"
    SPEC = "Spec"
    OTHER = "Other"


class TimeHorizon(StrEnum):
    DAYS = "Days"
    WEEKS = "Weeks"
    MONTHS = "Months"
    YEARS = "Years"


class JournalEntryType(StrEnum):
    TRADE = "trade"
    NOTE = "note"
    POSTMORTEM = "postmortem"


class _TickerModel(BaseModel):
    """Frozen model whose `symbol` field is normalized to upper case."""

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol", check_fields=False)
    @classmethod
    def symbol_upper(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v


# --- Market Data Models ---


class Symbol(_TickerModel):
    """Reference data and ingestion bookkeeping for one ticker.

    Created on the first successful ingestion. Refreshes merge into the
    existing row without overwriting present values with absent ones, so a
    partially-populated ``Symbol`` doubles as an update: only the fields that
    were explicitly set (``model_fields_set``) take part in a merge.
    """

    symbol: Ticker
    name: str | None = None
    asset_class: str | None = None
    currency: str | None = None
    sector: str | None = None
    industry: str | None = None
    last_price_update: datetime | None = None
    last_fundamentals_update: datetime | None = None
    data_quality: DataQuality = DataQuality.OK
    last_error: str | None = None
    corporate_action_warning: str | None = None
    warning_created_at: datetime | None = None


class PriceBar(_TickerModel):
    """A single daily OHLCV bar, keyed by (symbol, date)."""

    symbol: Ticker
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int = 0

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"volume must be >= 0, got {v}")
        return v

    @model_validator(mode="after")
    def high_gte_low(self) -> PriceBar:
        if self.high < self.low:
            raise ValueError(
                f"high ({self.high}) must be >= low ({self.low})"
            )
        return self


class Fundamentals(_TickerModel):
    """Valuation and balance-sheet metrics, one row per symbol."""

    symbol: Ticker
    fetched_at: datetime
    market_cap: float | None = None
    trailing_pe: float | None = None
    forward_pe: float | None = None
    price_to_sales: float | None = None
    profit_margins: float | None = None
    revenue_growth: float | None = None
    earnings_growth: float | None = None
    dividend_yield: float | None = None
    beta: float | None = None
    total_debt: float | None = None
    total_cash: float | None = None


class Quote(_TickerModel):
    """Short-lived live price snapshot. Not a historical bar."""

    symbol: Ticker
    fetched_at: datetime
    price: float
    change: float | None = None
    change_pct: float | None = None
    source: ProviderId


# --- User-authored Records ---


class Position(_TickerModel):
    """An open holding."""

    symbol: Ticker
    qty: float
    avg_cost: float
    currency: str | None = None
    thesis_tag: ThesisTag | None = None
    time_horizon: TimeHorizon | None = None
    thesis: str | None = None
    invalidation: float | None = None
    target: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class WatchlistEntry(_TickerModel):
    symbol: Ticker
    added_at: datetime | None = None
    thesis_tag: ThesisTag | None = None
    notes: str | None = None


class JournalEntry(_TickerModel):
    """A trade record, free-form note, or post-mortem."""

    id: int | None = None
    created_at: datetime
    type: JournalEntryType
    symbol: Ticker | None = None
    entry_price: float | None = None
    exit_price: float | None = None
    qty: float | None = None
    pnl: float | None = None
    thesis: str | None = None
    invalidation: float | None = None
    outcome: str | None = None
    lesson: str | None = None
    planned_risk_per_share: float | None = None
    planned_risk_dollars: float | None = None
    r_multiple: float | None = None
    mfe_r: float | None = None
    mae_r: float | None = None
    holding_days: int | None = None
    setup_tag: str | None = None
    thesis_tag: str | None = None


class AIReview(_TickerModel):
    """A stored review produced by an external text-generation collaborator."""

    id: int | None = None
    created_at: datetime
    scope: str
    symbol: Ticker | None = None
    input_json: str
    output_md: str


# --- Freshness / Health ---


class DataFreshness(_TickerModel):
    """Freshness summary for a symbol, consumed by badges and action queues."""

    symbol: Ticker
    prices_fresh: bool
    fundamentals_fresh: bool
    price_age: str
    fundamentals_age: str
    quality: DataQuality


class StorageHealth(BaseModel):
    """Size of the persisted store image."""

    model_config = ConfigDict(frozen=True)

    key: str
    size_bytes: int
    schema_version: int

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


def to_row(model: BaseModel) -> dict[str, Any]:
    """Dump a model into SQLite-ready primitives (ISO strings, plain enums)."""
    return model.model_dump(mode="json")
