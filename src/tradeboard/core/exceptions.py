"""Custom exception hierarchy for tradeboard."""

from typing import Any


class TradeboardError(Exception):
    """Base exception for all tradeboard errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(TradeboardError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class StorageError(TradeboardError):
    """Database operation failed.

    Policy: raise immediately. Data integrity is critical.

    Context keys:
        operation: str — "insert", "query", "migrate", etc.
        table: str — the table involved
    """


class NotInitializedError(StorageError):
    """The store was accessed before open() completed.

    Policy: fatal. This is a caller bug, never retried.
    """


class MigrationError(StorageError):
    """A schema migration failed to apply.

    Policy: fatal. The store is left in an indeterminate state and must not
    be used further; recovery requires an explicit reset.

    Context keys:
        version: int — the failing migration version
        description: str — the failing migration description
        current_version: int — last version successfully recorded
    """


class PersistenceError(StorageError):
    """Writing the serialized store image to the byte store failed.

    Policy: log and keep the store dirty. The next dirty signal (or an
    explicit flush) retries. Never surfaced from the debounced path.

    Context keys:
        key: str — the byte-store slot being written
    """


class IngestionError(TradeboardError):
    """Failed to fetch or interpret market data.

    Context keys:
        symbol: str — the ticker being fetched
        kind: str — "daily_bars", "fundamentals" or "quote"
    """


class ProviderError(IngestionError):
    """A single provider call failed (network, HTTP status, parse).

    Policy: record the reason and fall through to the next provider.

    Context keys:
        provider: str — the provider name
        reason: str — why the call failed
    """


class ProviderUnavailableError(IngestionError):
    """A provider was skipped because its rate-limit window is spent.

    Policy: skip to the next provider. Not counted as a failure.

    Context keys:
        provider: str — the provider name
    """


class AllProvidersExhaustedError(IngestionError):
    """Every provider for a data kind was tried without success.

    Policy: surfaced to the caller as the terminal ingestion failure.
    Cached data stays queryable.

    Context keys:
        provider: str | None — the last provider that failed
        reason: str — the last provider's failure reason
        attempts: list[dict] — every per-provider outcome, in order
    """


class BackupError(TradeboardError):
    """Export or import of a backup failed.

    Policy: raise immediately. The store is left unchanged.

    Context keys:
        stage: str — "decode", "validate", "replace", "migrate"
    """


class IncompatibleBackupVersionError(BackupError):
    """The backup was written by a newer schema than this build supports.

    Context keys:
        backup_version: int — schema version recorded in the payload
        supported_version: int — highest version this build can read
    """
