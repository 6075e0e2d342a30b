"""Massive provider (Polygon-compatible REST API): aggregates and ticker details."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, ClassVar

import httpx

from tradeboard.core.models import (
    DataKind,
    Fundamentals,
    PriceBar,
    ProviderName,
    Symbol,
)
from tradeboard.ingestion.providers.base import (
    DailyBars,
    FundamentalsData,
    HttpProvider,
    history_start,
)

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.polygon.io"
# Free-tier responses report DELAYED instead of OK
_OK_STATUSES = frozenset({"OK", "DELAYED"})


class MassiveProvider(HttpProvider):
    """Tertiary source for bars and fallback for fundamentals (5 calls/minute)."""

    name: ClassVar[ProviderName] = ProviderName.MASSIVE
    kinds: ClassVar[frozenset[DataKind]] = frozenset(
        {DataKind.DAILY_BARS, DataKind.FUNDAMENTALS}
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
        self._base_url = base_url.rstrip("/")

    async def _get(self, path: str, symbol: str, kind: DataKind, missing: str) -> Any:
        data = await self._get_json(
            f"{self._base_url}{path}", symbol, {"apiKey": self._api_key or ""}
        )
        if data.get("status") not in _OK_STATUSES or not data.get("results"):
            raise self._fail(symbol, data.get("error") or missing, kind)
        return data["results"]

    async def fetch_daily_bars(self, symbol: str) -> DailyBars:
        end = datetime.now(timezone.utc).date()
        start = history_start(self._history_days, end)
        results = await self._get(
            f"/v2/aggs/ticker/{symbol}/range/1/day/{start.isoformat()}/{end.isoformat()}",
            symbol,
            DataKind.DAILY_BARS,
            "No results",
        )
        bars = [
            PriceBar(
                symbol=symbol,
                date=datetime.fromtimestamp(bar["t"] / 1000, tz=timezone.utc).date(),
                open=float(bar["o"]),
                high=float(bar["h"]),
                low=float(bar["l"]),
                close=float(bar["c"]),
                volume=int(bar.get("v") or 0),
            )
            for bar in results
        ]
        logger.debug("Massive returned %d bars for %s", len(bars), symbol)
        return DailyBars(
            bars=sorted(bars, key=lambda b: b.date),
            metadata=Symbol(symbol=symbol, asset_class="stock"),
        )

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsData:
        details = await self._get(
            f"/v3/reference/tickers/{symbol}",
            symbol,
            DataKind.FUNDAMENTALS,
            "No ticker details",
        )
        fundamentals = Fundamentals(
            symbol=symbol,
            fetched_at=datetime.now(timezone.utc),
            market_cap=details.get("market_cap"),
        )
        currency = details.get("currency_name")
        metadata = Symbol(
            symbol=symbol,
            name=details.get("name"),
            sector=details.get("sic_description"),
            asset_class=details.get("type"),
            currency=currency.upper() if currency else None,
        )
        return FundamentalsData(fundamentals=fundamentals, metadata=metadata)
