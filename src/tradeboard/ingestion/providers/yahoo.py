"""Yahoo Finance provider — unauthenticated ``/v8/finance/chart/`` endpoint.

Serves daily bars and live quotes. Requests are paced with an
``aiolimiter.AsyncLimiter`` on top of the per-window call budget the
orchestrator enforces.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, ClassVar

import httpx
from aiolimiter import AsyncLimiter

from tradeboard.core.models import DataKind, PriceBar, ProviderName, Quote, Symbol
from tradeboard.ingestion.providers.base import (
    DailyBars,
    HttpProvider,
    history_start,
)

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart"


class YahooChartAdapter:
    """Transforms a ``chart.result[0]`` object into bars and metadata."""

    def adapt(self, raw_data: dict[str, Any], symbol: str) -> list[PriceBar]:
        """Bars sorted by date ascending.

        Bars without an open or close are skipped. A missing high or low
        falls back to the close; a missing volume counts as zero.
        """
        timestamps: list[int] = raw_data.get("timestamp") or []
        quotes = (raw_data.get("indicators", {}).get("quote") or [{}])[0]

        opens = quotes.get("open") or []
        highs = quotes.get("high") or []
        lows = quotes.get("low") or []
        closes = quotes.get("close") or []
        volumes = quotes.get("volume") or []

        def at(values: list[Any], i: int) -> Any:
            return values[i] if i < len(values) else None

        bars: list[PriceBar] = []
        for i, ts in enumerate(timestamps):
            o, c = at(opens, i), at(closes, i)
            if o is None or c is None:
                continue
            h = at(highs, i)
            lo = at(lows, i)
            v = at(volumes, i)
            bars.append(
                PriceBar(
                    symbol=symbol,
                    date=datetime.fromtimestamp(ts, tz=timezone.utc).date(),
                    open=float(o),
                    high=float(h if h is not None else c),
                    low=float(lo if lo is not None else c),
                    close=float(c),
                    volume=int(v or 0),
                )
            )
        return sorted(bars, key=lambda b: b.date)

    def metadata(self, raw_data: dict[str, Any], symbol: str) -> Symbol:
        meta = raw_data.get("meta") or {}
        return Symbol(
            symbol=symbol,
            name=meta.get("longName") or meta.get("shortName"),
            currency=meta.get("currency"),
            asset_class="stock",
        )


class YahooProvider(HttpProvider):
    """Daily bars and quotes from Yahoo Finance.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client.
    base_url : str
        Yahoo host, or a proxy exposing the same chart paths.
    requests_per_second : float
        Pacing between consecutive requests.
    history_days : int
        Depth of the daily bar request.
    """

    name: ClassVar[ProviderName] = ProviderName.YAHOO
    kinds: ClassVar[frozenset[DataKind]] = frozenset({DataKind.DAILY_BARS, DataKind.QUOTE})

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://query1.finance.yahoo.com",
        requests_per_second: float = 2.0,
        history_days: int = 365,
        adapter: YahooChartAdapter | None = None,
    ) -> None:
        super().__init__(client, history_days=history_days)
        self._base_url = base_url.rstrip("/")
        self._limiter = AsyncLimiter(max_rate=requests_per_second, time_period=1)
        self._adapter = adapter or YahooChartAdapter()

    async def _fetch_chart(
        self, symbol: str, params: dict[str, str], kind: DataKind
    ) -> dict[str, Any]:
        """Return ``chart.result[0]`` or raise ProviderError."""
        async with self._limiter:
            data = await self._get_json(f"{self._base_url}{_CHART_PATH}/{symbol}", symbol, params)

        chart = data.get("chart") or {}
        if chart.get("error"):
            err = chart["error"]
            raise self._fail(symbol, err.get("description") or str(err.get("code")), kind)
        results = chart.get("result")
        if not results:
            raise self._fail(symbol, "No data returned", kind)
        return results[0]

    async def fetch_daily_bars(self, symbol: str) -> DailyBars:
        start = history_start(self._history_days)
        period1 = int(datetime.combine(start, datetime.min.time(), timezone.utc).timestamp())
        period2 = int(datetime.now(timezone.utc).timestamp())
        raw = await self._fetch_chart(
            symbol,
            {"period1": str(period1), "period2": str(period2), "interval": "1d"},
            DataKind.DAILY_BARS,
        )
        bars = self._adapter.adapt(raw, symbol)
        if not bars:
            raise self._fail(symbol, "No price bars returned", DataKind.DAILY_BARS)
        logger.debug("Yahoo returned %d bars for %s", len(bars), symbol)
        return DailyBars(bars=bars, metadata=self._adapter.metadata(raw, symbol))

    async def fetch_quote(self, symbol: str) -> Quote:
        raw = await self._fetch_chart(
            symbol, {"interval": "1d", "range": "1d"}, DataKind.QUOTE
        )
        meta = raw.get("meta") or {}
        price = meta.get("regularMarketPrice")
        if price is None:
            raise self._fail(symbol, "No quote data", DataKind.QUOTE)

        previous = meta.get("previousClose") or meta.get("chartPreviousClose")
        change = change_pct = None
        if previous:
            change = float(price) - float(previous)
            change_pct = change / float(previous) * 100
        return Quote(
            symbol=symbol,
            fetched_at=datetime.now(timezone.utc),
            price=float(price),
            change=change,
            change_pct=change_pct,
            source=str(self.name),
        )
