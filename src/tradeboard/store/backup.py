"""Backup and restore of the whole store, as JSON or as a raw image."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from tradeboard import __version__
from tradeboard.core.exceptions import (
    BackupError,
    IncompatibleBackupVersionError,
    StorageError,
)
from tradeboard.store.database import OWNED_TABLES, Store, probe_version
from tradeboard.store.migrations import SUPPORTED_VERSION
from tradeboard.store.persistence import PersistenceScheduler

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


class BackupPayload(BaseModel):
    """Self-describing snapshot of every owned table."""

    model_config = ConfigDict(frozen=True)

    format_version: str = FORMAT_VERSION
    schema_version: int
    exported_at: datetime
    app_version: str
    tables: dict[str, list[dict[str, Any]]]

    @field_validator("schema_version")
    @classmethod
    def version_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("schema_version must be >= 1")
        return v

    @field_validator("tables")
    @classmethod
    def known_tables(cls, v: dict[str, list[dict[str, Any]]]) -> dict[str, list[dict[str, Any]]]:
        unknown = sorted(set(v) - set(OWNED_TABLES))
        if unknown:
            raise ValueError(f"unknown tables in backup: {', '.join(unknown)}")
        return v


class BackupCodec:
    """Exports and imports store snapshots.

    Imports replace the whole store at once, roll the schema forward and
    flush to the byte store immediately. A rejected or failed import leaves
    the store exactly as it was.
    """

    def __init__(self, store: Store, scheduler: PersistenceScheduler) -> None:
        self._store = store
        self._scheduler = scheduler

    # --- JSON payloads ---

    async def export_payload(self) -> BackupPayload:
        tables = await self._store.dump_tables()
        return BackupPayload(
            schema_version=self._store.schema_version,
            exported_at=datetime.now(timezone.utc),
            app_version=__version__,
            tables=tables,
        )

    async def export_json(self, indent: int | None = 2) -> str:
        payload = await self.export_payload()
        return payload.model_dump_json(indent=indent)

    async def import_json(self, text: str | bytes) -> int:
        try:
            payload = BackupPayload.model_validate_json(text)
        except ValidationError as e:
            raise BackupError(
                f"Invalid backup payload: {e}",
                context={"stage": "decode"},
            ) from e
        return await self.import_payload(payload)

    async def import_payload(self, payload: BackupPayload) -> int:
        """Replace the store with ``payload``. Returns the resulting schema version."""
        self._check_version(payload.schema_version)
        await self._check_columns(payload)

        try:
            version = await self._store.replace_tables(payload.tables, payload.schema_version)
        except StorageError as e:
            raise BackupError(
                f"Failed to replace store contents: {e}",
                context={"stage": "replace"},
            ) from e

        await self._scheduler.flush_now()
        logger.info(
            "Imported backup from %s (schema %d, %d rows)",
            payload.exported_at.isoformat(),
            payload.schema_version,
            sum(len(rows) for rows in payload.tables.values()),
        )
        return version

    # --- Raw images ---

    async def export_bytes(self) -> bytes:
        return await self._store.serialize()

    async def import_bytes(self, data: bytes) -> int:
        """Swap in a raw store image. Returns the resulting schema version."""
        try:
            backup_version = await probe_version(data)
        except StorageError as e:
            raise BackupError(
                f"Invalid store image: {e}",
                context={"stage": "decode"},
            ) from e
        self._check_version(backup_version)

        try:
            version = await self._store.replace_image(data)
        except StorageError as e:
            raise BackupError(
                f"Failed to adopt store image: {e}",
                context={"stage": "migrate"},
            ) from e
        await self._scheduler.flush_now()
        logger.info("Imported raw store image (%d bytes, schema %d)", len(data), version)
        return version

    # --- Validation ---

    @staticmethod
    def _check_version(backup_version: int) -> None:
        if backup_version > SUPPORTED_VERSION:
            raise IncompatibleBackupVersionError(
                f"Backup schema version {backup_version} is newer than supported "
                f"version {SUPPORTED_VERSION}",
                context={
                    "stage": "validate",
                    "backup_version": backup_version,
                    "supported_version": SUPPORTED_VERSION,
                },
            )

    async def _check_columns(self, payload: BackupPayload) -> None:
        for table, rows in payload.tables.items():
            columns = set(await self._store.table_columns(table))
            for row in rows:
                unknown = sorted(set(row) - columns)
                if unknown:
                    raise BackupError(
                        f"Backup rows for {table} have unknown columns: {', '.join(unknown)}",
                        context={"stage": "validate", "table": table},
                    )
