"""Provider result types and the shared HTTP provider machinery.

Every provider call resolves to exactly one of two tagged results:

- ``ProviderSuccess``: the provider answered and the payload parsed.
- ``ProviderFailure``: anything else, with a human-readable reason.

Concrete providers implement one coroutine per supported ``DataKind`` and
raise ``ProviderError`` on failure; ``HttpProvider.fetch`` turns those into
``ProviderFailure`` so callers never see half-populated payloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, ClassVar, Generic, Protocol, TypeVar, runtime_checkable

import httpx

from tradeboard.core.exceptions import ProviderError
from tradeboard.core.models import (
    DataKind,
    DataQuality,
    Fundamentals,
    PriceBar,
    ProviderName,
    Quote,
    Symbol,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_USER_AGENT = "Mozilla/5.0 (compatible; tradeboard/0.1)"


@dataclass(frozen=True)
class DailyBars:
    """Bars from one provider plus whatever symbol metadata came with them."""

    bars: list[PriceBar]
    metadata: Symbol


@dataclass(frozen=True)
class FundamentalsData:
    fundamentals: Fundamentals
    metadata: Symbol
    quality: DataQuality = DataQuality.OK


@dataclass(frozen=True)
class ProviderSuccess(Generic[T]):
    provider: str
    value: T


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    reason: str


ProviderResult = ProviderSuccess[T] | ProviderFailure


@runtime_checkable
class MarketDataProvider(Protocol):
    """Anything the orchestrator can walk in its failover order."""

    name: ClassVar[ProviderName]
    kinds: ClassVar[frozenset[DataKind]]

    def is_configured(self) -> bool: ...
    async def fetch(self, symbol: str, kind: DataKind) -> ProviderResult[Any]: ...


def parse_float(value: Any) -> float | None:
    """Float or None for blanks, "None", "-" and other non-numbers."""
    if value is None:
        return None
    try:
        return float(str(value).strip().rstrip("%"))
    except ValueError:
        return None


def history_start(days: int, today: date | None = None) -> date:
    today = today or datetime.now(timezone.utc).date()
    return today - timedelta(days=days)


class HttpProvider:
    """Base class for providers reached over HTTP with a shared client.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared client owned by the engine.
    api_key : str | None
        Credential for providers that need one.
    history_days : int
        How far back daily bar requests reach.
    """

    name: ClassVar[ProviderName]
    kinds: ClassVar[frozenset[DataKind]] = frozenset()
    requires_key: ClassVar[bool] = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None = None,
        history_days: int = 365,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._history_days = history_days

    def is_configured(self) -> bool:
        return not self.requires_key or bool(self._api_key)

    async def fetch(self, symbol: str, kind: DataKind) -> ProviderResult[Any]:
        if kind not in self.kinds:
            return ProviderFailure(self.name, f"{kind} not supported")
        if not self.is_configured():
            return ProviderFailure(self.name, "API key not configured")

        symbol = symbol.strip().upper()
        try:
            if kind == DataKind.DAILY_BARS:
                value: Any = await self.fetch_daily_bars(symbol)
            elif kind == DataKind.FUNDAMENTALS:
                value = await self.fetch_fundamentals(symbol)
            else:
                value = await self.fetch_quote(symbol)
        except ProviderError as e:
            return ProviderFailure(self.name, e.context.get("reason", str(e)))
        except Exception as e:
            logger.debug("Malformed %s response for %s: %s", self.name, symbol, e)
            return ProviderFailure(self.name, f"Malformed response: {e}")
        return ProviderSuccess(self.name, value)

    async def fetch_daily_bars(self, symbol: str) -> DailyBars:
        raise NotImplementedError

    async def fetch_fundamentals(self, symbol: str) -> FundamentalsData:
        raise NotImplementedError

    async def fetch_quote(self, symbol: str) -> Quote:
        raise NotImplementedError

    def _fail(self, symbol: str, reason: str, kind: DataKind | None = None) -> ProviderError:
        return ProviderError(
            f"{self.name} failed for {symbol}: {reason}",
            context={
                "provider": str(self.name),
                "symbol": symbol,
                "kind": str(kind) if kind else None,
                "reason": reason,
            },
        )

    async def _get_json(
        self,
        url: str,
        symbol: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        """GET ``url`` and decode JSON, mapping transport errors to ProviderError."""
        try:
            resp = await self._client.get(
                url, params=params, headers={"User-Agent": _USER_AGENT}
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise self._fail(symbol, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise self._fail(symbol, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise self._fail(symbol, "Invalid JSON in response") from e

    def _keep_recent(self, bars: list[PriceBar]) -> list[PriceBar]:
        start = history_start(self._history_days)
        return sorted((b for b in bars if b.date >= start), key=lambda b: b.date)
