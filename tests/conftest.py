"""Shared pytest fixtures for tradeboard."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, ClassVar

import pytest

from tradeboard.core.config import (
    ProvidersConfig,
    StorageConfig,
    TradeboardConfig,
)
from tradeboard.core.models import (
    DataKind,
    Fundamentals,
    JournalEntry,
    JournalEntryType,
    Position,
    PriceBar,
    ProviderName,
    Quote,
    Symbol,
    ThesisTag,
    WatchlistEntry,
)
from tradeboard.ingestion.providers.base import (
    DailyBars,
    FundamentalsData,
    ProviderFailure,
    ProviderSuccess,
)
from tradeboard.store.database import Store

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


# --- Model factories ---


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_bar():
    """Factory for PriceBar with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            symbol="AAPL",
            date=date(2026, 3, 9),
            open=180.0,
            high=182.5,
            low=179.1,
            close=181.7,
            volume=51_000_000,
        )
        defaults.update(overrides)
        return PriceBar(**defaults)

    return _make


@pytest.fixture
def make_bars(make_bar):
    """Factory for ``count`` consecutive daily bars ending at ``end``."""

    def _make(count: int = 60, symbol: str = "AAPL", end: date = date(2026, 3, 9), **overrides):
        return [
            make_bar(symbol=symbol, date=end - timedelta(days=count - 1 - i), **overrides)
            for i in range(count)
        ]

    return _make


@pytest.fixture
def make_quote():
    def _make(**overrides):
        defaults = dict(
            symbol="AAPL",
            fetched_at=NOW,
            price=181.7,
            change=1.2,
            change_pct=0.66,
            source="yahoo",
        )
        defaults.update(overrides)
        return Quote(**defaults)

    return _make


@pytest.fixture
def make_fundamentals():
    def _make(**overrides):
        defaults = dict(
            symbol="AAPL",
            fetched_at=NOW,
            market_cap=2.8e12,
            trailing_pe=29.4,
            forward_pe=27.0,
            beta=1.25,
        )
        defaults.update(overrides)
        return Fundamentals(**defaults)

    return _make


@pytest.fixture
def make_position():
    def _make(**overrides):
        defaults = dict(
            symbol="AAPL",
            qty=10,
            avg_cost=150.0,
            currency="USD",
            thesis_tag=ThesisTag.GROWTH,
            thesis="Services margin expansion",
            invalidation=130.0,
            target=220.0,
            created_at=NOW,
            updated_at=NOW,
        )
        defaults.update(overrides)
        return Position(**defaults)

    return _make


@pytest.fixture
def make_journal_entry():
    def _make(**overrides):
        defaults = dict(
            created_at=NOW,
            type=JournalEntryType.TRADE,
            symbol="AAPL",
            entry_price=150.0,
            exit_price=165.0,
            qty=10,
            pnl=150.0,
            lesson="Let winners run",
            r_multiple=1.5,
            setup_tag="breakout",
        )
        defaults.update(overrides)
        return JournalEntry(**defaults)

    return _make


@pytest.fixture
def make_watchlist_entry():
    def _make(**overrides):
        defaults = dict(symbol="MSFT", added_at=NOW, thesis_tag=ThesisTag.GROWTH, notes="AI capex")
        defaults.update(overrides)
        return WatchlistEntry(**defaults)

    return _make


# --- Store ---


@pytest.fixture
async def store():
    """An open, fully migrated in-memory Store."""
    s = Store()
    await s.open()
    yield s
    await s.close()


# --- Fake providers ---


class FakeProvider:
    """Scripted provider. Records every call in a shared ``calls`` list.

    A result may be a payload, a ``ProviderFailure``, an exception to raise,
    or a callable taking the symbol and returning one of those.
    """

    kinds: ClassVar[frozenset[DataKind]] = frozenset(DataKind)

    def __init__(
        self,
        name: ProviderName,
        calls: list[tuple[str, str, DataKind]],
        results: dict[DataKind, Any] | None = None,
        configured: bool = True,
    ) -> None:
        self.name = name
        self.calls = calls
        self.results = results or {}
        self.configured = configured

    def is_configured(self) -> bool:
        return self.configured

    async def fetch(self, symbol: str, kind: DataKind):
        self.calls.append((str(self.name), symbol, kind))
        result = self.results.get(kind)
        if callable(result):
            result = result(symbol)
        if result is None:
            return ProviderFailure(str(self.name), "no scripted result")
        if isinstance(result, ProviderFailure):
            return result
        if isinstance(result, Exception):
            raise result
        return ProviderSuccess(str(self.name), result)


@pytest.fixture
def provider_calls() -> list[tuple[str, str, DataKind]]:
    return []


@pytest.fixture
def make_provider(provider_calls):
    def _make(name: ProviderName, results: dict[DataKind, Any] | None = None, configured: bool = True):
        return FakeProvider(name, provider_calls, results, configured)

    return _make


@pytest.fixture
def bars_payload(make_bars):
    def _make(symbol: str = "AAPL", count: int = 60, **metadata):
        return DailyBars(
            bars=make_bars(count=count, symbol=symbol),
            metadata=Symbol(symbol=symbol, **metadata),
        )

    return _make


@pytest.fixture
def fundamentals_payload(make_fundamentals):
    def _make(symbol: str = "AAPL", **metadata):
        return FundamentalsData(
            fundamentals=make_fundamentals(symbol=symbol),
            metadata=Symbol(symbol=symbol, **metadata),
        )

    return _make


# --- Config ---


@pytest.fixture
def providers_config() -> ProvidersConfig:
    return ProvidersConfig(alpha_vantage_api_key="av-key", massive_api_key="massive-key")


@pytest.fixture
def engine_config(tmp_path, providers_config) -> TradeboardConfig:
    return TradeboardConfig(
        storage=StorageConfig(
            data_dir=str(tmp_path / "data"),
            legacy_path=None,
            save_debounce_seconds=0.05,
        ),
        providers=providers_config,
    )
