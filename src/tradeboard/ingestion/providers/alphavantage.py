"""Alpha Vantage provider: daily series, company overview and global quote.

The free tier allows 25 calls per day across all functions, which is why
it sits behind Yahoo for bars and quotes.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, ClassVar

import httpx

from tradeboard.core.models import (
    DataKind,
    DataQuality,
    Fundamentals,
    PriceBar,
    ProviderName,
    Quote,
    Symbol,
)
from tradeboard.ingestion.providers.base import (
    DailyBars,
    FundamentalsData,
    HttpProvider,
    parse_float,
)

logger = logging.getLogger(__name__)

_BASE_URL = "https://www.alphavantage.co/query"


class AlphaVantageProvider(HttpProvider):
    """Key-authenticated provider for all three data kinds."""

    name: ClassVar[ProviderName] = ProviderName.ALPHA_VANTAGE
    kinds: ClassVar[frozenset[DataKind]] = frozenset(
        {DataKind.DAILY_BARS, DataKind.FUNDAMENTALS, DataKind.QUOTE}
    )
    requires_key: ClassVar[bool] = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None = None,
        history_days: int = 365,
        base_url: str = _BASE_URL,
    ) -> None:
        super().__init__(client, api_key=api_key, history_days=history_days)
        self._base_url = base_url

    async def _query(self, function: str, symbol: str, kind: DataKind, **extra: str) -> dict[str, Any]:
        params = {"function": function, "symbol": symbol, "apikey": self._api_key or ""}
        params.update(extra)
        data = await self._get_json(self._base_url, symbol, params)
        if not isinstance(data, dict):
            raise self._fail(symbol, "Unexpected response shape", kind)
        if data.get("Error Message"):
            raise self._fail(symbol, data["Error Message"], kind)
        # Throttled responses come back as 200 with a Note or Information field
        if data.get("Note") or data.get("Information"):
            raise self._fail(symbol, "API rate limit reached", kind)
        return data

    async def fetch_daily_bars(self, symbol: str) -> DailyBars:
        data = await self._query(
            "TIME_SERIES_DAILY", symbol, DataKind.DAILY_BARS, outputsize="full"
        )
        series = data.get("Time Series (Daily)")
        if not series:
            raise self._fail(symbol, "No time series data", DataKind.DAILY_BARS)

        bars = [
            PriceBar(
                symbol=symbol,
                date=date.fromisoformat(day),
                open=float(values["1. open"]),
                high=float(values["2. high"]),
                low=float(values["3. low"]),
                close=float(values["4. close"]),
                volume=int(float(values.get("5. volume") or 0)),
            )
            for day, values in series.items()
        ]
        bars = self._keep_recent(bars)
        if not bars:
            raise self._fail(symbol, "No recent price bars", DataKind.DAILY_BARS)
        return DailyBars(bars=bars, metadata=Symbol(symbol=symbol, asset_class="stock"))

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsData:
        data = await self._query("OVERVIEW", symbol, DataKind.FUNDAMENTALS)
        if not data.get("Symbol"):
            raise self._fail(symbol, "No data", DataKind.FUNDAMENTALS)

        fundamentals = Fundamentals(
            symbol=symbol,
            fetched_at=datetime.now(timezone.utc),
            market_cap=parse_float(data.get("MarketCapitalization")),
            trailing_pe=parse_float(data.get("PERatio")),
            forward_pe=parse_float(data.get("ForwardPE")),
            price_to_sales=parse_float(data.get("PriceToSalesRatioTTM")),
            profit_margins=parse_float(data.get("ProfitMargin")),
            revenue_growth=parse_float(data.get("QuarterlyRevenueGrowthYOY")),
            earnings_growth=parse_float(data.get("QuarterlyEarningsGrowthYOY")),
            dividend_yield=parse_float(data.get("DividendYield")),
            beta=parse_float(data.get("Beta")),
        )
        metadata = Symbol(
            symbol=symbol,
            name=data.get("Name"),
            sector=data.get("Sector"),
            industry=data.get("Industry"),
            asset_class="stock",
            currency=data.get("Currency") or "USD",
        )
        quality = DataQuality.OK if fundamentals.market_cap is not None else DataQuality.PARTIAL
        return FundamentalsData(fundamentals=fundamentals, metadata=metadata, quality=quality)

    async def fetch_quote(self, symbol: str) -> Quote:
        data = await self._query("GLOBAL_QUOTE", symbol, DataKind.QUOTE)
        quote = data.get("Global Quote") or {}
        price = parse_float(quote.get("05. price"))
        if price is None:
            raise self._fail(symbol, "No quote data", DataKind.QUOTE)
        return Quote(
            symbol=symbol,
            fetched_at=datetime.now(timezone.utc),
            price=price,
            change=parse_float(quote.get("09. change")),
            change_pct=parse_float(quote.get("10. change percent")),
            source=str(self.name),
        )
