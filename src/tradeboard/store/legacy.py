"""One-time transfer of a base64 store image from the legacy file format."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path

from tradeboard.core.exceptions import StorageError
from tradeboard.store.persistence import ByteStore

logger = logging.getLogger(__name__)


async def migrate_legacy_blob(
    byte_store: ByteStore,
    key: str,
    legacy_path: str | Path | None,
) -> bool:
    """Move a legacy base64 image into ``byte_store[key]``.

    Runs only when the slot is empty and the legacy file exists. The legacy
    file is deleted after the slot write succeeds; on any failure it stays
    in place and the error is logged. Returns True when data was moved.
    """
    if legacy_path is None:
        return False
    path = Path(legacy_path)
    if not path.exists():
        return False

    try:
        if await asyncio.to_thread(byte_store.get, key) is not None:
            logger.info("Byte store slot '%s' already has data, skipping legacy migration", key)
            return False

        logger.info("Migrating legacy store image from %s", path)
        encoded = await asyncio.to_thread(path.read_text, "ascii")
        data = base64.b64decode(encoded.strip(), validate=True)
        await asyncio.to_thread(byte_store.put, key, data)
    except (OSError, UnicodeDecodeError, binascii.Error, StorageError) as e:
        logger.error("Legacy store migration from %s failed: %s", path, e)
        return False

    try:
        path.unlink()
    except OSError as e:
        logger.warning("Legacy image migrated but %s could not be removed: %s", path, e)
    logger.info("Legacy store image migrated (%d bytes)", len(data))
    return True
