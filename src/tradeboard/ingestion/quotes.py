"""Live quote cache with stale fallback and concurrent batch fetches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from tradeboard.core.exceptions import AllProvidersExhaustedError, IngestionError
from tradeboard.core.models import DataKind, Quote
from tradeboard.ingestion.orchestrator import IngestionOrchestrator
from tradeboard.store.database import Store

logger = logging.getLogger(__name__)


class QuoteCache:
    """Quotes served through the orchestrator with a short freshness window.

    When a live fetch fails, the last stored quote is returned no matter
    how old it is. Only a symbol that was never quoted raises.
    """

    def __init__(self, orchestrator: IngestionOrchestrator, store: Store) -> None:
        self._orchestrator = orchestrator
        self._store = store

    async def get_quote(self, symbol: str, force_refresh: bool = False) -> Quote:
        """Fresh cached quote, live quote, or stale cached quote, in that order.

        Raises:
            IngestionError: The live fetch failed and nothing is cached.
        """
        symbol = symbol.strip().upper()
        try:
            result = await self._orchestrator.fetch(symbol, DataKind.QUOTE, force=force_refresh)
            return result.value
        except AllProvidersExhaustedError as e:
            cached = await self._store.get_quote(symbol)
            if cached is not None:
                logger.warning(
                    "Using stale quote for %s from %s: %s",
                    symbol, cached.fetched_at.isoformat(), e,
                )
                return cached
            raise IngestionError(
                f"Failed to fetch quote for {symbol}: {e.context.get('reason', e)}",
                context={"symbol": symbol, "kind": str(DataKind.QUOTE)},
            ) from e

    async def get_or_none(self, symbol: str) -> Quote | None:
        """Like ``get_quote`` but returns None instead of raising."""
        try:
            return await self.get_quote(symbol)
        except IngestionError as e:
            logger.error("No quote available for %s: %s", symbol, e)
            return None

    async def batch_fetch(self, symbols: Iterable[str]) -> dict[str, Quote]:
        """Quotes for many symbols fetched concurrently.

        Each symbol succeeds or fails on its own; symbols with neither a
        live nor a cached quote are left out of the result.
        """
        ordered = list(dict.fromkeys(s.strip().upper() for s in symbols))
        results = await asyncio.gather(
            *(self.get_quote(s) for s in ordered), return_exceptions=True
        )

        quotes: dict[str, Quote] = {}
        for symbol, result in zip(ordered, results):
            if isinstance(result, IngestionError):
                logger.error("Failed to fetch quote for %s: %s", symbol, result)
                continue
            if isinstance(result, Exception):
                logger.error("Quote fetch for %s raised", symbol, exc_info=result)
                cached = await self._store.get_quote(symbol)
                if cached is not None:
                    quotes[symbol] = cached
                continue
            if isinstance(result, BaseException):
                raise result
            quotes[symbol] = result
        return quotes
