"""Cache-first fetching with ordered provider failover.

For each (symbol, kind) request the orchestrator:

1. Returns the stored record if the freshness policy says it is young enough.
2. Otherwise walks the configured provider order for that kind, skipping
   providers whose rate-limit window is spent, trying the rest one at a time.
3. Persists the first success and updates the symbol's bookkeeping.
4. When every provider fails, marks the symbol and raises
   ``AllProvidersExhaustedError`` with the last provider's reason.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from tradeboard.core.config import FreshnessConfig, ProvidersConfig, RefreshConfig
from tradeboard.core.exceptions import (
    AllProvidersExhaustedError,
    ProviderUnavailableError,
)
from tradeboard.core.models import (
    DataFreshness,
    DataKind,
    DataQuality,
    PriceBar,
    ProviderName,
    Quote,
    Symbol,
)
from tradeboard.ingestion.freshness import age_of, format_age, is_fresh, utcnow
from tradeboard.ingestion.providers.base import (
    DailyBars,
    FundamentalsData,
    MarketDataProvider,
    ProviderFailure,
    ProviderSuccess,
)
from tradeboard.ingestion.ratelimit import RateLimiter
from tradeboard.store.database import Store

logger = logging.getLogger(__name__)

CACHE_SOURCE = "cache"
MIN_PRICE_POINTS = 50
MAX_BAR_AGE_DAYS = 2


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one successful ``fetch``.

    ``value`` is a list of ``PriceBar`` for daily bars, ``Fundamentals`` or
    ``Quote``. ``source`` is the provider that answered, or ``"cache"``.
    ``attempts`` holds the failures that preceded the success.
    """

    symbol: str
    kind: DataKind
    source: str
    value: Any
    fetched_at: datetime
    attempts: tuple[ProviderFailure, ...] = ()

    @property
    def from_cache(self) -> bool:
        return self.source == CACHE_SOURCE


@dataclass
class RefreshReport:
    """Per-symbol outcome of ``refresh_all``."""

    successful: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    fundamentals_failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


def classify_price_data(bars: list[PriceBar], today: date | None = None) -> DataQuality:
    """Quality flag for a freshly fetched bar series.

    Fewer than 50 bars or no volume at all is partial; a latest bar more
    than two days old is stale.
    """
    if len(bars) < MIN_PRICE_POINTS:
        return DataQuality.PARTIAL
    if not any(b.volume > 0 for b in bars):
        return DataQuality.PARTIAL
    today = today or utcnow().date()
    latest = max(b.date for b in bars)
    if (today - latest).days > MAX_BAR_AGE_DAYS:
        return DataQuality.STALE
    return DataQuality.OK


class IngestionOrchestrator:
    """Fetches market data through the cache and the provider cascade.

    Parameters
    ----------
    store : Store
        Open embedded store used as cache and sink.
    providers : Mapping[ProviderName, MarketDataProvider]
        Provider instances keyed by name.
    limiter : RateLimiter
        Shared per-provider call budgets.
    providers_config : ProvidersConfig
        Provider orders and rate-limit budgets.
    freshness_config : FreshnessConfig
        Max ages per data kind.
    refresh_config : RefreshConfig | None
        Batch refresh concurrency.
    clock : Callable[[], datetime]
        Wall clock for freshness decisions. Injected by tests.
    """

    def __init__(
        self,
        store: Store,
        providers: Mapping[ProviderName, MarketDataProvider],
        limiter: RateLimiter,
        providers_config: ProvidersConfig,
        freshness_config: FreshnessConfig,
        refresh_config: RefreshConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._providers = dict(providers)
        self._limiter = limiter
        self._config = providers_config
        self._freshness = freshness_config
        self._refresh = refresh_config or RefreshConfig()
        self._clock = clock

    # --- Policy lookups ---

    def provider_order(self, kind: DataKind) -> list[ProviderName]:
        if kind == DataKind.DAILY_BARS:
            return list(self._config.price_order)
        if kind == DataKind.FUNDAMENTALS:
            return list(self._config.fundamentals_order)
        return list(self._config.quote_order)

    def max_age(self, kind: DataKind) -> timedelta:
        if kind == DataKind.DAILY_BARS:
            return timedelta(minutes=self._freshness.price_stale_minutes)
        if kind == DataKind.FUNDAMENTALS:
            return timedelta(days=self._freshness.fundamentals_stale_days)
        return timedelta(seconds=self._freshness.quote_ttl_seconds)

    # --- Fetch ---

    async def fetch(self, symbol: str, kind: DataKind, force: bool = False) -> FetchResult:
        """Return fresh cached data or fetch it through the provider cascade.

        Raises:
            AllProvidersExhaustedError: No provider produced data. The
                error's context keeps every per-provider reason.
        """
        symbol = symbol.strip().upper()
        kind = DataKind(kind)

        if not force:
            cached = await self._cached(symbol, kind)
            if cached is not None:
                logger.debug("Serving %s for %s from cache", kind, symbol)
                return cached

        try:
            success, attempts = await self._walk(symbol, kind)
        except AllProvidersExhaustedError as e:
            if kind != DataKind.QUOTE:
                await self._record_failure(symbol, e.context.get("reason", str(e)))
            raise

        value = await self._persist(symbol, kind, success)
        return FetchResult(
            symbol=symbol,
            kind=kind,
            source=str(success.provider),
            value=value,
            fetched_at=self._clock(),
            attempts=tuple(attempts),
        )

    async def _cached(self, symbol: str, kind: DataKind) -> FetchResult | None:
        now = self._clock()
        max_age = self.max_age(kind)

        if kind == DataKind.DAILY_BARS:
            record = await self._store.get_symbol(symbol)
            stamp = record.last_price_update if record else None
            if not is_fresh(stamp, max_age, now):
                return None
            bars = await self._store.get_price_bars(symbol)
            if not bars:
                return None
            value: Any = bars
        elif kind == DataKind.FUNDAMENTALS:
            value = await self._store.get_fundamentals(symbol)
            stamp = value.fetched_at if value else None
            if not is_fresh(stamp, max_age, now):
                return None
        else:
            value = await self._store.get_quote(symbol)
            stamp = value.fetched_at if value else None
            if not is_fresh(stamp, max_age, now):
                return None

        return FetchResult(
            symbol=symbol, kind=kind, source=CACHE_SOURCE, value=value, fetched_at=stamp
        )

    def _acquire(self, name: ProviderName) -> None:
        budget = self._config.rate_limits[name]
        if not self._limiter.try_acquire(name, budget.max_calls, budget.window_seconds):
            raise ProviderUnavailableError(
                f"{name} rate limit window spent ({budget.max_calls} per {budget.window_seconds:g}s)",
                context={"provider": str(name)},
            )

    async def _walk(
        self, symbol: str, kind: DataKind
    ) -> tuple[ProviderSuccess[Any], list[ProviderFailure]]:
        failures: list[ProviderFailure] = []
        skipped: list[str] = []

        for name in self.provider_order(kind):
            provider = self._providers.get(name)
            if provider is None:
                failures.append(ProviderFailure(str(name), "provider not registered"))
                continue
            if not provider.is_configured():
                failures.append(ProviderFailure(str(name), "API key not configured"))
                continue
            try:
                self._acquire(name)
            except ProviderUnavailableError as e:
                logger.info("Skipping %s for %s %s: %s", name, symbol, kind, e)
                skipped.append(str(name))
                continue

            try:
                result = await provider.fetch(symbol, kind)
            except Exception as e:
                logger.warning(
                    "%s raised for %s %s", name, symbol, kind, exc_info=True
                )
                result = ProviderFailure(str(name), f"{type(e).__name__}: {e}")
            if isinstance(result, ProviderSuccess):
                if failures:
                    logger.info(
                        "%s %s served by %s after %d failed provider(s)",
                        symbol, kind, name, len(failures),
                    )
                return result, failures

            logger.warning("%s failed for %s %s: %s", name, symbol, kind, result.reason)
            failures.append(result)

        if failures:
            last_provider, reason = failures[-1].provider, failures[-1].reason
        else:
            last_provider, reason = (skipped[-1] if skipped else None), "rate limited"

        attempts = [{"provider": f.provider, "reason": f.reason} for f in failures]
        logger.error(
            "All providers exhausted for %s %s: %s (attempts=%s, rate_limited=%s)",
            symbol, kind, reason, attempts, skipped,
        )
        raise AllProvidersExhaustedError(
            f"All providers failed for {symbol} {kind}: {reason}",
            context={
                "symbol": symbol,
                "kind": str(kind),
                "provider": last_provider,
                "reason": reason,
                "attempts": attempts,
                "rate_limited": skipped,
            },
        )

    async def _persist(self, symbol: str, kind: DataKind, success: ProviderSuccess[Any]) -> Any:
        now = self._clock()

        if kind == DataKind.DAILY_BARS:
            payload: DailyBars = success.value
            await self._store.save_price_bars(payload.bars)
            quality = classify_price_data(payload.bars, now.date())
            await self._store.upsert_symbol(
                Symbol(
                    **payload.metadata.model_dump(exclude_unset=True),
                    last_price_update=now,
                    data_quality=quality,
                    last_error=None,
                )
            )
            return payload.bars

        if kind == DataKind.FUNDAMENTALS:
            data: FundamentalsData = success.value
            await self._store.save_fundamentals(data.fundamentals)
            await self._store.upsert_symbol(
                Symbol(
                    **data.metadata.model_dump(exclude_unset=True),
                    last_fundamentals_update=now,
                    data_quality=data.quality,
                    last_error=None,
                )
            )
            return data.fundamentals

        quote: Quote = success.value
        await self._store.save_quote(quote)
        return quote

    async def _record_failure(self, symbol: str, reason: str) -> None:
        await self._store.upsert_symbol(
            Symbol(symbol=symbol, data_quality=DataQuality.ERROR, last_error=reason)
        )

    # --- Batch refresh ---

    async def tracked_symbols(self) -> list[str]:
        """Symbols held or watched; the default refresh set."""
        return await self._store.tracked_symbols()

    async def refresh_all(
        self,
        symbols: Iterable[str] | None = None,
        concurrency: int | None = None,
        force: bool = False,
    ) -> RefreshReport:
        """Refresh daily bars (required) and fundamentals (optional) per symbol.

        Symbols are processed concurrently up to ``concurrency``; within a
        symbol, bars are fetched before fundamentals.
        """
        if symbols is None:
            symbols = await self.tracked_symbols()
        ordered = list(dict.fromkeys(s.strip().upper() for s in symbols))
        report = RefreshReport()
        if not ordered:
            return report

        semaphore = asyncio.Semaphore(concurrency or self._refresh.concurrency)

        async def refresh_one(symbol: str) -> None:
            async with semaphore:
                try:
                    await self.fetch(symbol, DataKind.DAILY_BARS, force=force)
                except AllProvidersExhaustedError as e:
                    report.failed[symbol] = e.context.get("reason", str(e))
                    return
                except Exception as e:
                    logger.exception("Refreshing bars for %s failed", symbol)
                    report.failed[symbol] = f"{type(e).__name__}: {e}"
                    return
                try:
                    await self.fetch(symbol, DataKind.FUNDAMENTALS, force=force)
                except AllProvidersExhaustedError as e:
                    logger.warning("Fundamentals unavailable for %s: %s", symbol, e)
                    report.fundamentals_failed[symbol] = e.context.get("reason", str(e))
                except Exception as e:
                    logger.exception("Refreshing fundamentals for %s failed", symbol)
                    report.fundamentals_failed[symbol] = f"{type(e).__name__}: {e}"
                report.successful.append(symbol)

        await asyncio.gather(*(refresh_one(s) for s in ordered))
        report.successful.sort(key=ordered.index)
        logger.info(
            "Refresh complete: %d ok, %d failed, %d without fundamentals",
            len(report.successful), len(report.failed), len(report.fundamentals_failed),
        )
        return report

    # --- Freshness query ---

    async def check_freshness(self, symbol: str) -> DataFreshness:
        """Freshness summary from the symbol's bookkeeping timestamps."""
        symbol = symbol.strip().upper()
        record = await self._store.get_symbol(symbol)
        if record is None:
            return DataFreshness(
                symbol=symbol,
                prices_fresh=False,
                fundamentals_fresh=False,
                price_age=format_age(None),
                fundamentals_age=format_age(None),
                quality=DataQuality.ERROR,
            )

        now = self._clock()
        return DataFreshness(
            symbol=symbol,
            prices_fresh=is_fresh(
                record.last_price_update, self.max_age(DataKind.DAILY_BARS), now
            ),
            fundamentals_fresh=is_fresh(
                record.last_fundamentals_update, self.max_age(DataKind.FUNDAMENTALS), now
            ),
            price_age=format_age(age_of(record.last_price_update, now)),
            fundamentals_age=format_age(age_of(record.last_fundamentals_update, now)),
            quality=record.data_quality,
        )
