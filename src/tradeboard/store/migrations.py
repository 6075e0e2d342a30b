"""Versioned schema migrations for the embedded store.

Each migration runs in its own transaction together with the bump of the
single-row ``schema_version`` record, so the recorded version is always the
highest migration whose statements all succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

import aiosqlite
from pydantic import BaseModel, ConfigDict, field_validator

from tradeboard.core.exceptions import MigrationError

logger = logging.getLogger(__name__)

_VERSION_TABLE_SQL = """CREATE TABLE IF NOT EXISTS schema_version (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
)"""


class Migration(BaseModel):
    """One schema delta. Immutable and defined at build time."""

    model_config = ConfigDict(frozen=True)

    version: int
    description: str
    statements: tuple[str, ...]

    @field_validator("version")
    @classmethod
    def version_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("migration version must be >= 1")
        return v

    @field_validator("statements")
    @classmethod
    def statements_not_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("migration must contain at least one statement")
        return v


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="Initial schema",
        statements=(
            """CREATE TABLE IF NOT EXISTS symbols (
                symbol TEXT PRIMARY KEY,
                name TEXT,
                asset_class TEXT,
                currency TEXT,
                sector TEXT,
                industry TEXT
            )""",
            """CREATE TABLE IF NOT EXISTS prices (
                symbol TEXT NOT NULL,
                date TEXT NOT NULL,
                open REAL,
                high REAL,
                low REAL,
                close REAL,
                volume INTEGER,
                PRIMARY KEY (symbol, date)
            )""",
            """CREATE TABLE IF NOT EXISTS fundamentals (
                symbol TEXT PRIMARY KEY,
                fetched_at TEXT,
                market_cap REAL,
                trailing_pe REAL,
                forward_pe REAL,
                price_to_sales REAL,
                profit_margins REAL,
                revenue_growth REAL,
                earnings_growth REAL,
                dividend_yield REAL,
                beta REAL,
                total_debt REAL,
                total_cash REAL
            )""",
            """CREATE TABLE IF NOT EXISTS positions (
                symbol TEXT PRIMARY KEY,
                qty REAL,
                avg_cost REAL,
                currency TEXT,
                thesis_tag TEXT,
                time_horizon TEXT,
                thesis TEXT,
                invalidation REAL,
                target REAL,
                created_at TEXT,
                updated_at TEXT
            )""",
            """CREATE TABLE IF NOT EXISTS watchlist (
                symbol TEXT PRIMARY KEY,
                added_at TEXT,
                thesis_tag TEXT,
                notes TEXT
            )""",
            """CREATE TABLE IF NOT EXISTS journal_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT,
                type TEXT,
                symbol TEXT,
                entry_price REAL,
                exit_price REAL,
                qty REAL,
                pnl REAL,
                thesis TEXT,
                invalidation REAL,
                outcome TEXT,
                lesson TEXT
            )""",
            """CREATE TABLE IF NOT EXISTS ai_reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT,
                scope TEXT,
                symbol TEXT,
                input_json TEXT,
                output_md TEXT
            )""",
            "CREATE INDEX IF NOT EXISTS idx_prices_symbol ON prices(symbol)",
        ),
    ),
    Migration(
        version=2,
        description="Data quality tracking on symbols",
        statements=(
            "ALTER TABLE symbols ADD COLUMN last_price_update TEXT",
            "ALTER TABLE symbols ADD COLUMN last_fundamentals_update TEXT",
            "ALTER TABLE symbols ADD COLUMN data_quality TEXT DEFAULT 'ok'",
            "ALTER TABLE symbols ADD COLUMN last_error TEXT",
            "CREATE INDEX IF NOT EXISTS idx_symbols_quality ON symbols(data_quality)",
        ),
    ),
    Migration(
        version=3,
        description="Corporate action warnings on symbols",
        statements=(
            "ALTER TABLE symbols ADD COLUMN corporate_action_warning TEXT",
            "ALTER TABLE symbols ADD COLUMN warning_created_at TEXT",
            "CREATE INDEX IF NOT EXISTS idx_symbols_warnings ON symbols(corporate_action_warning)",
        ),
    ),
    Migration(
        version=4,
        description="Journal performance tracking",
        statements=(
            "ALTER TABLE journal_entries ADD COLUMN planned_risk_per_share REAL",
            "ALTER TABLE journal_entries ADD COLUMN planned_risk_dollars REAL",
            "ALTER TABLE journal_entries ADD COLUMN r_multiple REAL",
            "ALTER TABLE journal_entries ADD COLUMN mfe_r REAL",
            "ALTER TABLE journal_entries ADD COLUMN mae_r REAL",
            "ALTER TABLE journal_entries ADD COLUMN holding_days INTEGER",
            "ALTER TABLE journal_entries ADD COLUMN setup_tag TEXT",
            "ALTER TABLE journal_entries ADD COLUMN thesis_tag TEXT",
            "CREATE INDEX IF NOT EXISTS idx_journal_setup_tag ON journal_entries(setup_tag)",
            "CREATE INDEX IF NOT EXISTS idx_journal_thesis_tag ON journal_entries(thesis_tag)",
        ),
    ),
    Migration(
        version=5,
        description="Live quotes cache",
        statements=(
            """CREATE TABLE IF NOT EXISTS quotes (
                symbol TEXT PRIMARY KEY,
                fetched_at TEXT,
                price REAL,
                change REAL,
                change_pct REAL,
                source TEXT
            )""",
            "CREATE INDEX IF NOT EXISTS idx_quotes_fetched_at ON quotes(fetched_at)",
        ),
    ),
)


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Check that versions are unique, ascending and contiguous from 1."""
    versions = [m.version for m in migrations]
    expected = list(range(1, len(versions) + 1))
    if versions != expected:
        raise MigrationError(
            f"Migration versions must be contiguous from 1, got {versions}",
            context={"versions": versions},
        )


validate_migrations(MIGRATIONS)

SUPPORTED_VERSION: int = MIGRATIONS[-1].version


async def current_version(db: aiosqlite.Connection) -> int:
    """Highest migration recorded on ``db``; 0 for a fresh database."""
    try:
        async with db.execute("SELECT version FROM schema_version WHERE id = 1") as cursor:
            row = await cursor.fetchone()
    except aiosqlite.OperationalError:
        return 0
    return int(row[0]) if row is not None else 0


async def set_version(db: aiosqlite.Connection, version: int) -> None:
    """Record ``version`` in the single-row version table (no commit)."""
    await db.execute(_VERSION_TABLE_SQL)
    await db.execute(
        "INSERT OR REPLACE INTO schema_version (id, version, applied_at) VALUES (1, ?, ?)",
        (version, datetime.now(timezone.utc).isoformat()),
    )


class MigrationRunner:
    """Applies pending migrations to a connection in ascending order.

    The connection must be in autocommit mode (``isolation_level=None``);
    the runner opens and closes one transaction per migration.
    """

    def __init__(self, migrations: Sequence[Migration] = MIGRATIONS) -> None:
        validate_migrations(migrations)
        self._migrations = tuple(migrations)

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    async def apply(
        self,
        db: aiosqlite.Connection,
        target_version: int | None = None,
    ) -> int:
        """Bring ``db`` up to ``target_version`` (default: latest). Returns the new version.

        Raises:
            MigrationError: A migration's statements failed. Its transaction
                is rolled back so the recorded version stays at the previous
                migration; the caller must treat the store as unusable.
        """
        target = self.latest_version if target_version is None else target_version
        await db.execute(_VERSION_TABLE_SQL)
        version = await current_version(db)

        for migration in self._migrations:
            if migration.version <= version or migration.version > target:
                continue
            logger.info(
                "Applying migration %d: %s", migration.version, migration.description
            )
            try:
                await db.execute("BEGIN")
                for sql in migration.statements:
                    await db.execute(sql)
                await set_version(db, migration.version)
                await db.execute("COMMIT")
            except Exception as e:
                await _rollback_quietly(db)
                raise MigrationError(
                    f"Migration {migration.version} ({migration.description}) failed: {e}",
                    context={
                        "operation": "migrate",
                        "version": migration.version,
                        "description": migration.description,
                        "current_version": version,
                    },
                ) from e
            version = migration.version

        return version


async def _rollback_quietly(db: aiosqlite.Connection) -> None:
    try:
        await db.execute("ROLLBACK")
    except aiosqlite.OperationalError:
        # No transaction was open (BEGIN itself failed).
        logger.debug("Rollback skipped: no active transaction")
