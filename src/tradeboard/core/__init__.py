"""tradeboard.core — Foundation types, config, and exceptions."""

from tradeboard.core.config import (
    FreshnessConfig,
    ProvidersConfig,
    RateLimitConfig,
    RefreshConfig,
    StorageConfig,
    TradeboardConfig,
    load_config,
)
from tradeboard.core.exceptions import (
    AllProvidersExhaustedError,
    BackupError,
    ConfigError,
    IncompatibleBackupVersionError,
    IngestionError,
    MigrationError,
    NotInitializedError,
    PersistenceError,
    ProviderError,
    ProviderUnavailableError,
    StorageError,
    TradeboardError,
)
from tradeboard.core.models import (
    AIReview,
    DataFreshness,
    DataKind,
    DataQuality,
    Fundamentals,
    JournalEntry,
    JournalEntryType,
    Position,
    PriceBar,
    ProviderId,
    ProviderName,
    Quote,
    StorageHealth,
    Symbol,
    ThesisTag,
    Ticker,
    TimeHorizon,
    WatchlistEntry,
)

__all__ = [
    # Type aliases
    "Ticker",
    "ProviderId",
    # Enums
    "DataKind",
    "DataQuality",
    "ProviderName",
    "ThesisTag",
    "TimeHorizon",
    "JournalEntryType",
    # Market data models
    "Symbol",
    "PriceBar",
    "Fundamentals",
    "Quote",
    # User records
    "Position",
    "WatchlistEntry",
    "JournalEntry",
    "AIReview",
    # Freshness / health
    "DataFreshness",
    "StorageHealth",
    # Config
    "TradeboardConfig",
    "StorageConfig",
    "FreshnessConfig",
    "ProvidersConfig",
    "RateLimitConfig",
    "RefreshConfig",
    "load_config",
    # Exceptions
    "TradeboardError",
    "ConfigError",
    "StorageError",
    "NotInitializedError",
    "MigrationError",
    "PersistenceError",
    "IngestionError",
    "ProviderError",
    "ProviderUnavailableError",
    "AllProvidersExhaustedError",
    "BackupError",
    "IncompatibleBackupVersionError",
]
