"""Durable byte slots and the debounced write-back of the store image."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from tradeboard.core.exceptions import PersistenceError, StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class ByteStore(Protocol):
    """Keyed storage for opaque byte images."""

    def get(self, key: str) -> bytes | None: ...
    def put(self, key: str, data: bytes) -> None: ...
    def delete(self, key: str) -> None: ...


class FileByteStore:
    """One file per key inside ``directory``.

    Writes go to a temporary sibling and are moved into place with
    ``os.replace``, so a reader never sees a half-written image.
    """

    suffix = ".sqlite"

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}{self.suffix}"

    def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(
                f"Failed to read store image: {e}",
                context={"key": key, "path": str(path)},
            ) from e

    def put(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write store image: {e}",
                context={"key": key, "path": str(path)},
            ) from e

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Failed to delete store image: {e}",
                context={"key": key},
            ) from e


class MemoryByteStore:
    """In-process byte slots. Used by tests and throwaway engines."""

    def __init__(self) -> None:
        self._slots: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._slots.get(key)

    def put(self, key: str, data: bytes) -> None:
        self._slots[key] = bytes(data)

    def delete(self, key: str) -> None:
        self._slots.pop(key, None)


class PersistenceScheduler:
    """Coalesces bursts of store writes into one image write.

    Every ``mark_dirty()`` restarts a single timer; when it fires, the whole
    store image is serialized and written to ``byte_store[key]``. The dirty
    flag clears only after a successful write, and only if nothing marked
    the store dirty again while the write was in flight. Failed writes are
    logged and leave the store dirty, so the next signal retries.

    Parameters
    ----------
    serialize : Callable[[], Awaitable[bytes]]
        Produces a full snapshot of the store.
    byte_store : ByteStore
        Destination slot storage.
    key : str
        Slot name inside ``byte_store``.
    debounce_seconds : float
        Quiet period after the last dirty signal before writing.
    """

    def __init__(
        self,
        serialize: Callable[[], Awaitable[bytes]],
        byte_store: ByteStore,
        key: str,
        debounce_seconds: float = 2.0,
    ) -> None:
        self._serialize = serialize
        self._byte_store = byte_store
        self._key = key
        self._debounce = debounce_seconds
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[bool] | None = None
        self._write_lock = asyncio.Lock()
        self._dirty = False
        self._generation = 0
        self._write_count = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        """True while a debounced write is scheduled or running."""
        return self._timer is not None or (self._task is not None and not self._task.done())

    @property
    def write_count(self) -> int:
        """Successful image writes since construction."""
        return self._write_count

    @property
    def key(self) -> str:
        return self._key

    def mark_dirty(self) -> None:
        """Record a change and (re)start the debounce timer.

        Must be called from inside the running event loop.
        """
        self._dirty = True
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self._write())

    async def flush_now(self) -> bool:
        """Cancel any pending timer and write the image immediately.

        Returns True when the image was written. A failed write is logged
        and returns False; the store stays dirty.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return await self._write()

    async def close(self) -> None:
        """Settle pending work: wait for an in-flight write, flush if dirty."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            await self._task
        if self._dirty:
            await self.flush_now()

    async def discard(self) -> None:
        """Drop pending work without writing; used before the store is replaced."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            await self._task
        self._dirty = False
        self._generation += 1

    async def _write(self) -> bool:
        async with self._write_lock:
            generation = self._generation
            try:
                data = await self._serialize()
                await asyncio.to_thread(self._byte_store.put, self._key, data)
            except StorageError as e:
                logger.error(
                    "Store image write to '%s' failed, keeping dirty: %s", self._key, e
                )
                return False

            self._write_count += 1
            if self._generation == generation:
                self._dirty = False
            logger.debug("Store image written to '%s' (%d bytes)", self._key, len(data))
            return True
