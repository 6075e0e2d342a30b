"""Market data providers and the registry that builds them from config."""

from __future__ import annotations

import httpx

from tradeboard.core.config import ProvidersConfig
from tradeboard.core.models import ProviderName
from tradeboard.ingestion.providers.alphavantage import AlphaVantageProvider
from tradeboard.ingestion.providers.base import (
    DailyBars,
    FundamentalsData,
    HttpProvider,
    MarketDataProvider,
    ProviderFailure,
    ProviderResult,
    ProviderSuccess,
)
from tradeboard.ingestion.providers.massive import MassiveProvider
from tradeboard.ingestion.providers.yahoo import YahooChartAdapter, YahooProvider


def build_providers(
    config: ProvidersConfig, client: httpx.AsyncClient
) -> dict[ProviderName, MarketDataProvider]:
    """Instantiate every built-in provider against a shared HTTP client."""
    return {
        ProviderName.YAHOO: YahooProvider(
            client,
            base_url=config.yahoo_base_url,
            requests_per_second=config.yahoo_requests_per_second,
            history_days=config.history_days,
        ),
        ProviderName.ALPHA_VANTAGE: AlphaVantageProvider(
            client,
            api_key=config.alpha_vantage_api_key,
            history_days=config.history_days,
        ),
        ProviderName.MASSIVE: MassiveProvider(
            client,
            api_key=config.massive_api_key,
            history_days=config.history_days,
        ),
    }


__all__ = [
    # Results
    "ProviderSuccess",
    "ProviderFailure",
    "ProviderResult",
    "DailyBars",
    "FundamentalsData",
    # Protocols / bases
    "MarketDataProvider",
    "HttpProvider",
    # Implementations
    "YahooProvider",
    "YahooChartAdapter",
    "AlphaVantageProvider",
    "MassiveProvider",
    "build_providers",
]
