"""Integration test fixtures: real providers and store, mocked HTTP."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tradeboard.core.config import ProvidersConfig, StorageConfig, TradeboardConfig
from tradeboard.engine import Engine
from tradeboard.store.persistence import MemoryByteStore

def recent_days(count: int) -> list:
    today = datetime.now(timezone.utc).date()
    return [today - timedelta(days=count - i) for i in range(count)]


@pytest.fixture
def chart_json():
    """Yahoo chart payload with 60 recent daily bars."""

    def _make(symbol: str = "AAPL", price: float = 181.7):
        days = recent_days(60)
        stamps = [
            int(datetime(d.year, d.month, d.day, 14, 30, tzinfo=timezone.utc).timestamp())
            for d in days
        ]
        return {
            "chart": {
                "result": [
                    {
                        "meta": {
                            "symbol": symbol,
                            "currency": "USD",
                            "longName": f"{symbol} Corp.",
                            "regularMarketPrice": price,
                            "previousClose": price - 1,
                        },
                        "timestamp": stamps,
                        "indicators": {
                            "quote": [
                                {
                                    "open": [price - 0.5] * len(days),
                                    "high": [price + 1] * len(days),
                                    "low": [price - 1] * len(days),
                                    "close": [price] * len(days),
                                    "volume": [1_000_000] * len(days),
                                }
                            ]
                        },
                    }
                ],
                "error": None,
            }
        }

    return _make


@pytest.fixture
def av_daily_json():
    days = recent_days(60)
    return {
        "Time Series (Daily)": {
            d.isoformat(): {
                "1. open": "100.0",
                "2. high": "102.0",
                "3. low": "99.0",
                "4. close": "101.0",
                "5. volume": "2000000",
            }
            for d in days
        }
    }


@pytest.fixture
def integration_config(tmp_path) -> TradeboardConfig:
    return TradeboardConfig(
        storage=StorageConfig(
            data_dir=str(tmp_path / "data"),
            legacy_path=None,
            save_debounce_seconds=0.05,
        ),
        providers=ProvidersConfig(
            alpha_vantage_api_key="av-key",
            massive_api_key="massive-key",
            yahoo_requests_per_second=100,
        ),
    )


@pytest.fixture
def byte_store() -> MemoryByteStore:
    return MemoryByteStore()


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def make_engine(integration_config, byte_store, http_client):
    def _make(config: TradeboardConfig | None = None, **kwargs):
        kwargs.setdefault("byte_store", byte_store)
        kwargs.setdefault("http_client", http_client)
        return Engine(config or integration_config, **kwargs)

    return _make


@pytest.fixture
async def engine(make_engine):
    """An open engine over an in-memory byte store."""
    async with make_engine() as e:
        yield e
