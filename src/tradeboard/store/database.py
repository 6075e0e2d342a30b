"""Embedded relational store: one in-memory SQLite database behind aiosqlite."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, TypeVar

import aiosqlite
from pydantic import BaseModel

from tradeboard.core.exceptions import NotInitializedError, StorageError
from tradeboard.core.models import (
    AIReview,
    Fundamentals,
    JournalEntry,
    Position,
    PriceBar,
    Quote,
    Symbol,
    WatchlistEntry,
    to_row,
)
from tradeboard.store.migrations import MigrationRunner, current_version, set_version

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Insert order for bulk replacement; also the set of tables a backup carries.
OWNED_TABLES: tuple[str, ...] = (
    "symbols",
    "prices",
    "fundamentals",
    "quotes",
    "positions",
    "watchlist",
    "journal_entries",
    "ai_reviews",
)

SQLITE_HEADER = b"SQLite format 3\x00"


def merge_symbol(existing: Symbol | None, update: Symbol) -> Symbol:
    """Fold ``update`` into ``existing`` without losing known values.

    Only fields explicitly set on ``update`` take part. A None never
    overwrites a stored value, except ``last_error`` which is cleared
    explicitly after a successful ingestion.
    """
    if existing is None:
        return update
    changes: dict[str, Any] = {}
    for name in update.model_fields_set:
        value = getattr(update, name)
        if value is None and name != "last_error":
            continue
        changes[name] = value
    return existing.model_copy(update=changes)


def _connector(image: bytes | None) -> Callable[[], sqlite3.Connection]:
    def connect() -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:", isolation_level=None)
        if image:
            conn.deserialize(image)
        return conn

    return connect


async def _connect(image: bytes | None) -> aiosqlite.Connection:
    if image is not None and not image.startswith(SQLITE_HEADER):
        raise StorageError(
            "Store image is not a SQLite database",
            context={"operation": "load", "size_bytes": len(image)},
        )
    try:
        db = await aiosqlite.Connection(_connector(image), iter_chunk_size=64)
        db.row_factory = aiosqlite.Row
        async with db.execute("PRAGMA schema_version") as cursor:
            await cursor.fetchone()
        return db
    except Exception as e:
        raise StorageError(
            f"Failed to load store image: {e}",
            context={"operation": "load"},
        ) from e


async def probe_version(image: bytes) -> int:
    """Schema version recorded inside a serialized image, without adopting it."""
    db = await _connect(image)
    try:
        return await current_version(db)
    finally:
        await db.close()


class Store:
    """Typed access to the trading data tables.

    The database lives in memory; durability comes from serializing the
    whole image (see ``PersistenceScheduler``). Every write calls
    ``on_write`` after it commits, and writes are serialized through one
    lock so a multi-statement write finishes before the next begins.
    """

    def __init__(
        self,
        runner: MigrationRunner | None = None,
        on_write: Callable[[], None] | None = None,
    ) -> None:
        self._runner = runner or MigrationRunner()
        self._on_write = on_write
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._version = 0

    # --- Lifecycle ---

    async def open(self, image: bytes | None = None) -> int:
        """Load ``image`` (or start empty) and migrate to the latest schema.

        Returns the schema version after migration.
        """
        db = await _connect(image)
        try:
            self._version = await self._runner.apply(db)
        except Exception:
            await db.close()
            raise
        self._db = db
        logger.info("Store opened at schema version %d", self._version)
        return self._version

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def schema_version(self) -> int:
        return self._version

    def set_write_listener(self, on_write: Callable[[], None] | None) -> None:
        self._on_write = on_write

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise NotInitializedError(
                "Store accessed before open()",
                context={"operation": "access"},
            )
        return self._db

    def _notify_write(self) -> None:
        if self._on_write is not None:
            self._on_write()

    @asynccontextmanager
    async def transaction(
        self, table: str, operation: str = "insert"
    ) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive write transaction; commits on exit, rolls back on error."""
        db = self._require_db()
        async with self._lock:
            try:
                await db.execute("BEGIN IMMEDIATE")
                yield db
                await db.execute("COMMIT")
            except Exception as e:
                if db.in_transaction:
                    await db.execute("ROLLBACK")
                if isinstance(e, StorageError):
                    raise
                raise StorageError(
                    f"Failed to {operation} {table}: {e}",
                    context={"operation": operation, "table": table},
                ) from e
        self._notify_write()

    async def _fetchall(
        self, sql: str, params: Sequence[Any] = (), table: str = ""
    ) -> list[aiosqlite.Row]:
        db = self._require_db()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except Exception as e:
            raise StorageError(
                f"Failed to query {table}: {e}",
                context={"operation": "query", "table": table},
            ) from e

    async def _fetchone(
        self, sql: str, params: Sequence[Any] = (), table: str = ""
    ) -> aiosqlite.Row | None:
        rows = await self._fetchall(sql, params, table)
        return rows[0] if rows else None

    @staticmethod
    async def _insert(
        db: aiosqlite.Connection,
        table: str,
        row: Mapping[str, Any],
        verb: str = "INSERT OR REPLACE",
    ) -> int | None:
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        cursor = await db.execute(
            f"{verb} INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        return cursor.lastrowid

    @staticmethod
    def _to_model(model: type[M], row: aiosqlite.Row | None) -> M | None:
        if row is None:
            return None
        return model.model_validate(dict(row))

    # --- Symbols ---

    async def upsert_symbol(self, update: Symbol) -> Symbol:
        """Create the symbol or merge ``update`` into the stored row."""
        async with self.transaction("symbols", "upsert") as db:
            async with db.execute(
                "SELECT * FROM symbols WHERE symbol = ?", (update.symbol,)
            ) as cursor:
                existing = self._to_model(Symbol, await cursor.fetchone())
            merged = merge_symbol(existing, update)
            await self._insert(db, "symbols", to_row(merged))
        return merged

    async def get_symbol(self, symbol: str) -> Symbol | None:
        row = await self._fetchone(
            "SELECT * FROM symbols WHERE symbol = ?", (symbol.upper(),), "symbols"
        )
        return self._to_model(Symbol, row)

    async def get_all_symbols(self) -> list[Symbol]:
        rows = await self._fetchall("SELECT * FROM symbols ORDER BY symbol", (), "symbols")
        return [Symbol.model_validate(dict(r)) for r in rows]

    async def tracked_symbols(self) -> list[str]:
        """Symbols held as positions or on the watchlist, sorted."""
        rows = await self._fetchall(
            """SELECT symbol FROM positions
               UNION
               SELECT symbol FROM watchlist
               ORDER BY symbol""",
            (),
            "positions",
        )
        return [r["symbol"] for r in rows]

    # --- Prices ---

    async def save_price_bars(self, bars: Iterable[PriceBar]) -> int:
        """Insert or replace bars keyed by (symbol, date). Returns rows written."""
        bars = list(bars)
        if not bars:
            return 0
        async with self.transaction("prices") as db:
            for bar in bars:
                await self._insert(db, "prices", to_row(bar))
        return len(bars)

    async def get_price_bars(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PriceBar]:
        """Bars for ``symbol`` in ascending date order, optionally bounded."""
        query = "SELECT * FROM prices WHERE symbol = ?"
        params: list[Any] = [symbol.upper()]
        if start is not None:
            query += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND date <= ?"
            params.append(end.isoformat())
        query += " ORDER BY date"
        rows = await self._fetchall(query, params, "prices")
        return [PriceBar.model_validate(dict(r)) for r in rows]

    async def count_price_bars(self, symbol: str) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) AS n FROM prices WHERE symbol = ?", (symbol.upper(),), "prices"
        )
        return int(row["n"]) if row is not None else 0

    async def get_latest_price_bar(self, symbol: str) -> PriceBar | None:
        row = await self._fetchone(
            "SELECT * FROM prices WHERE symbol = ? ORDER BY date DESC LIMIT 1",
            (symbol.upper(),),
            "prices",
        )
        return self._to_model(PriceBar, row)

    async def delete_price_bars(self, symbol: str) -> None:
        async with self.transaction("prices", "delete") as db:
            await db.execute("DELETE FROM prices WHERE symbol = ?", (symbol.upper(),))

    # --- Fundamentals ---

    async def save_fundamentals(self, fundamentals: Fundamentals) -> None:
        async with self.transaction("fundamentals") as db:
            await self._insert(db, "fundamentals", to_row(fundamentals))

    async def get_fundamentals(self, symbol: str) -> Fundamentals | None:
        row = await self._fetchone(
            "SELECT * FROM fundamentals WHERE symbol = ?", (symbol.upper(),), "fundamentals"
        )
        return self._to_model(Fundamentals, row)

    async def get_all_fundamentals(self) -> list[Fundamentals]:
        rows = await self._fetchall(
            "SELECT * FROM fundamentals ORDER BY symbol", (), "fundamentals"
        )
        return [Fundamentals.model_validate(dict(r)) for r in rows]

    async def delete_fundamentals(self, symbol: str) -> None:
        async with self.transaction("fundamentals", "delete") as db:
            await db.execute("DELETE FROM fundamentals WHERE symbol = ?", (symbol.upper(),))

    # --- Quotes ---

    async def save_quote(self, quote: Quote) -> None:
        async with self.transaction("quotes") as db:
            await self._insert(db, "quotes", to_row(quote))

    async def get_quote(self, symbol: str) -> Quote | None:
        row = await self._fetchone(
            "SELECT * FROM quotes WHERE symbol = ?", (symbol.upper(),), "quotes"
        )
        return self._to_model(Quote, row)

    async def get_all_quotes(self) -> list[Quote]:
        rows = await self._fetchall("SELECT * FROM quotes ORDER BY symbol", (), "quotes")
        return [Quote.model_validate(dict(r)) for r in rows]

    # --- Positions ---

    async def save_position(self, position: Position) -> None:
        async with self.transaction("positions") as db:
            await self._insert(db, "positions", to_row(position))

    async def get_position(self, symbol: str) -> Position | None:
        row = await self._fetchone(
            "SELECT * FROM positions WHERE symbol = ?", (symbol.upper(),), "positions"
        )
        return self._to_model(Position, row)

    async def get_all_positions(self) -> list[Position]:
        rows = await self._fetchall("SELECT * FROM positions ORDER BY symbol", (), "positions")
        return [Position.model_validate(dict(r)) for r in rows]

    async def delete_position(self, symbol: str) -> None:
        async with self.transaction("positions", "delete") as db:
            await db.execute("DELETE FROM positions WHERE symbol = ?", (symbol.upper(),))

    # --- Watchlist ---

    async def add_to_watchlist(self, entry: WatchlistEntry) -> None:
        async with self.transaction("watchlist") as db:
            await self._insert(db, "watchlist", to_row(entry))

    async def get_watchlist(self) -> list[WatchlistEntry]:
        rows = await self._fetchall("SELECT * FROM watchlist ORDER BY symbol", (), "watchlist")
        return [WatchlistEntry.model_validate(dict(r)) for r in rows]

    async def get_watchlist_entry(self, symbol: str) -> WatchlistEntry | None:
        row = await self._fetchone(
            "SELECT * FROM watchlist WHERE symbol = ?", (symbol.upper(),), "watchlist"
        )
        return self._to_model(WatchlistEntry, row)

    async def remove_from_watchlist(self, symbol: str) -> None:
        async with self.transaction("watchlist", "delete") as db:
            await db.execute("DELETE FROM watchlist WHERE symbol = ?", (symbol.upper(),))

    # --- Journal ---

    async def add_journal_entry(self, entry: JournalEntry) -> JournalEntry:
        """Store ``entry``; returns it with the assigned id."""
        row = to_row(entry)
        if row["id"] is None:
            del row["id"]
        async with self.transaction("journal_entries") as db:
            rowid = await self._insert(db, "journal_entries", row, verb="INSERT")
        return entry.model_copy(update={"id": rowid})

    async def get_journal_entry(self, entry_id: int) -> JournalEntry | None:
        row = await self._fetchone(
            "SELECT * FROM journal_entries WHERE id = ?", (entry_id,), "journal_entries"
        )
        return self._to_model(JournalEntry, row)

    async def get_journal_entries(self, symbol: str | None = None) -> list[JournalEntry]:
        """Entries newest first, optionally for one symbol."""
        query = "SELECT * FROM journal_entries"
        params: list[Any] = []
        if symbol is not None:
            query += " WHERE symbol = ?"
            params.append(symbol.upper())
        query += " ORDER BY created_at DESC, id DESC"
        rows = await self._fetchall(query, params, "journal_entries")
        return [JournalEntry.model_validate(dict(r)) for r in rows]

    async def update_journal_entry(self, entry_id: int, **updates: Any) -> JournalEntry | None:
        """Change fields of an existing entry. Returns None if ``entry_id`` is unknown.

        Raises:
            ValueError: ``updates`` names ``id`` or a field JournalEntry lacks.
        """
        unknown = set(updates) - (set(JournalEntry.model_fields) - {"id"})
        if unknown:
            raise ValueError(f"Cannot update journal entry fields: {sorted(unknown)}")

        async with self.transaction("journal_entries", "update") as db:
            async with db.execute(
                "SELECT * FROM journal_entries WHERE id = ?", (entry_id,)
            ) as cursor:
                existing = self._to_model(JournalEntry, await cursor.fetchone())
            if existing is None:
                return None
            updated = JournalEntry.model_validate({**existing.model_dump(), **updates})
            row = to_row(updated)
            del row["id"]
            assignments = ", ".join(f"{column} = ?" for column in row)
            await db.execute(
                f"UPDATE journal_entries SET {assignments} WHERE id = ?",
                (*row.values(), entry_id),
            )
        return updated

    async def delete_journal_entry(self, entry_id: int) -> None:
        async with self.transaction("journal_entries", "delete") as db:
            await db.execute("DELETE FROM journal_entries WHERE id = ?", (entry_id,))

    # --- AI reviews ---

    async def add_ai_review(self, review: AIReview) -> AIReview:
        row = to_row(review)
        if row["id"] is None:
            del row["id"]
        async with self.transaction("ai_reviews") as db:
            rowid = await self._insert(db, "ai_reviews", row, verb="INSERT")
        return review.model_copy(update={"id": rowid})

    async def get_ai_reviews(self, symbol: str | None = None) -> list[AIReview]:
        query = "SELECT * FROM ai_reviews"
        params: list[Any] = []
        if symbol is not None:
            query += " WHERE symbol = ?"
            params.append(symbol.upper())
        query += " ORDER BY created_at DESC, id DESC"
        rows = await self._fetchall(query, params, "ai_reviews")
        return [AIReview.model_validate(dict(r)) for r in rows]

    async def get_ai_review(self, review_id: int) -> AIReview | None:
        row = await self._fetchone(
            "SELECT * FROM ai_reviews WHERE id = ?", (review_id,), "ai_reviews"
        )
        return self._to_model(AIReview, row)

    async def delete_ai_review(self, review_id: int) -> None:
        async with self.transaction("ai_reviews", "delete") as db:
            await db.execute("DELETE FROM ai_reviews WHERE id = ?", (review_id,))

    # --- Whole-store operations ---

    async def table_columns(self, table: str) -> list[str]:
        rows = await self._fetchall(f"PRAGMA table_info({table})", (), table)
        return [r["name"] for r in rows]

    async def dump_tables(self) -> dict[str, list[dict[str, Any]]]:
        """Raw rows of every owned table, in insertion order."""
        tables: dict[str, list[dict[str, Any]]] = {}
        for table in OWNED_TABLES:
            rows = await self._fetchall(f"SELECT * FROM {table} ORDER BY rowid", (), table)
            tables[table] = [dict(r) for r in rows]
        return tables

    async def replace_tables(
        self,
        tables: Mapping[str, Sequence[Mapping[str, Any]]],
        schema_version: int,
    ) -> int:
        """Replace every owned table with ``tables`` written at ``schema_version``.

        The replacement is built on a separate database: schema up to
        ``schema_version``, rows inserted with their original keys and ids,
        version recorded, then migrated forward. It is swapped in only when
        all of that succeeded, so a failure leaves the store unchanged.
        Returns the schema version after migration.
        """
        self._require_db()
        new_db = await _connect(None)
        try:
            await self._runner.apply(new_db, schema_version)
            await new_db.execute("BEGIN")
            for table in OWNED_TABLES:
                for row in tables.get(table, ()):
                    await self._insert(new_db, table, row, verb="INSERT")
            await set_version(new_db, schema_version)
            await new_db.execute("COMMIT")
            version = await self._runner.apply(new_db)
        except Exception as e:
            await new_db.close()
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to replace store contents: {e}",
                context={"operation": "replace", "table": "all"},
            ) from e
        await self._swap(new_db, version)
        return version

    async def serialize(self) -> bytes:
        """Full byte image of the live database."""
        db = self._require_db()
        target = sqlite3.connect(":memory:", check_same_thread=False)
        try:
            async with self._lock:
                await db.backup(target)
            return target.serialize()
        except Exception as e:
            raise StorageError(
                f"Failed to serialize store: {e}",
                context={"operation": "serialize"},
            ) from e
        finally:
            target.close()

    async def replace_image(self, image: bytes) -> int:
        """Adopt ``image`` as the live database and migrate it forward.

        The current database is kept until the new one has loaded and
        migrated, so a failure leaves the store unchanged.
        """
        self._require_db()
        new_db = await _connect(image)
        try:
            version = await self._runner.apply(new_db)
        except Exception:
            await new_db.close()
            raise
        await self._swap(new_db, version)
        return version

    async def _swap(self, new_db: aiosqlite.Connection, version: int) -> None:
        async with self._lock:
            old_db, self._db = self._db, new_db
            self._version = version
        if old_db is not None:
            await old_db.close()
        self._notify_write()
        logger.info("Store contents replaced, schema version %d", version)

    async def migrate(self, target_version: int | None = None) -> int:
        """Apply pending migrations to the live database."""
        db = self._require_db()
        async with self._lock:
            self._version = await self._runner.apply(db, target_version)
        return self._version
