"""tradeboard.store — Embedded database, migrations, persistence, backups."""

from tradeboard.store.backup import BackupCodec, BackupPayload
from tradeboard.store.database import OWNED_TABLES, Store, merge_symbol
from tradeboard.store.legacy import migrate_legacy_blob
from tradeboard.store.migrations import (
    MIGRATIONS,
    SUPPORTED_VERSION,
    Migration,
    MigrationRunner,
    current_version,
)
from tradeboard.store.persistence import (
    ByteStore,
    FileByteStore,
    MemoryByteStore,
    PersistenceScheduler,
)

__all__ = [
    "Store",
    "OWNED_TABLES",
    "merge_symbol",
    "Migration",
    "MIGRATIONS",
    "MigrationRunner",
    "SUPPORTED_VERSION",
    "current_version",
    "ByteStore",
    "FileByteStore",
    "MemoryByteStore",
    "PersistenceScheduler",
    "migrate_legacy_blob",
    "BackupCodec",
    "BackupPayload",
]
