"""Engine handle: builds and owns every component for one data directory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

import httpx

from tradeboard.core.config import TradeboardConfig
from tradeboard.core.exceptions import NotInitializedError
from tradeboard.core.models import ProviderName, StorageHealth
from tradeboard.ingestion.orchestrator import IngestionOrchestrator
from tradeboard.ingestion.providers import MarketDataProvider, build_providers
from tradeboard.ingestion.quotes import QuoteCache
from tradeboard.ingestion.ratelimit import RateLimiter
from tradeboard.store.backup import BackupCodec
from tradeboard.store.database import Store
from tradeboard.store.legacy import migrate_legacy_blob
from tradeboard.store.persistence import ByteStore, FileByteStore, PersistenceScheduler

logger = logging.getLogger(__name__)


class Engine:
    """One store, one scheduler, one rate limiter, one HTTP client.

    Construct once at startup and pass it (or its components) to callers.
    Nothing is shared between two engines, so tests get isolation by
    building a fresh one.

    Usage::

        async with Engine(load_config()) as engine:
            result = await engine.orchestrator.fetch("AAPL", DataKind.DAILY_BARS)

    Parameters
    ----------
    config : TradeboardConfig | None
        Engine configuration; defaults when omitted.
    byte_store : ByteStore | None
        Where the store image persists. Defaults to files under
        ``config.storage.data_dir``.
    http_client : httpx.AsyncClient | None
        Shared client for providers. Created (and closed) by the engine
        when omitted.
    providers : Mapping[ProviderName, MarketDataProvider] | None
        Provider overrides; the built-in providers otherwise.
    rate_clock : Callable[[], float] | None
        Monotonic clock for the rate limiter.
    """

    def __init__(
        self,
        config: TradeboardConfig | None = None,
        byte_store: ByteStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        providers: Mapping[ProviderName, MarketDataProvider] | None = None,
        rate_clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or TradeboardConfig()
        storage = self.config.storage

        self.byte_store = byte_store or FileByteStore(storage.data_dir)
        self.store = Store()
        self.scheduler = PersistenceScheduler(
            self.store.serialize,
            self.byte_store,
            storage.store_key,
            debounce_seconds=storage.save_debounce_seconds,
        )
        self.store.set_write_listener(self.scheduler.mark_dirty)

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.config.providers.request_timeout
        )
        self.limiter = RateLimiter(rate_clock) if rate_clock else RateLimiter()
        self.providers = dict(
            providers
            if providers is not None
            else build_providers(self.config.providers, self.http_client)
        )
        self.orchestrator = IngestionOrchestrator(
            self.store,
            self.providers,
            self.limiter,
            self.config.providers,
            self.config.freshness,
            self.config.refresh,
        )
        self.quotes = QuoteCache(self.orchestrator, self.store)
        self.backup = BackupCodec(self.store, self.scheduler)

    @property
    def is_open(self) -> bool:
        return self.store.is_open

    async def open(self) -> int:
        """Migrate legacy data, load the persisted image, apply migrations.

        Returns the schema version. A ``MigrationError`` here is fatal;
        ``reset()`` is the only way forward.
        """
        storage = self.config.storage
        await migrate_legacy_blob(self.byte_store, storage.store_key, storage.legacy_path)

        image = await asyncio.to_thread(self.byte_store.get, storage.store_key)
        version = await self.store.open(image)
        await self.scheduler.flush_now()
        logger.info(
            "Engine ready (store '%s', schema %d, %s)",
            storage.store_key, version, "loaded" if image else "new",
        )
        return version

    async def close(self) -> None:
        """Flush pending writes and release the store and HTTP client."""
        if self.store.is_open:
            await self.scheduler.close()
            await self.store.close()
        if self._owns_client:
            await self.http_client.aclose()

    async def reset(self) -> int:
        """Discard all persisted data and start from an empty, migrated store."""
        key = self.config.storage.store_key
        logger.warning("Resetting store '%s'; all local data is discarded", key)
        await self.scheduler.discard()
        await self.store.close()
        await asyncio.to_thread(self.byte_store.delete, key)
        self.limiter.reset()
        version = await self.store.open(None)
        await self.scheduler.flush_now()
        return version

    async def storage_health(self) -> StorageHealth:
        """Size of the persisted image and the live schema version."""
        if not self.store.is_open:
            raise NotInitializedError(
                "Engine accessed before open()", context={"operation": "storage_health"}
            )
        key = self.config.storage.store_key
        data = await asyncio.to_thread(self.byte_store.get, key)
        health = StorageHealth(
            key=key,
            size_bytes=len(data) if data else 0,
            schema_version=self.store.schema_version,
        )
        logger.debug("Storage health: %.2f MB (%d bytes)", health.size_mb, health.size_bytes)
        return health

    async def __aenter__(self) -> Engine:
        try:
            await self.open()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
