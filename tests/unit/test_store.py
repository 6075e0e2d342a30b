"""Tests for the embedded SQLite store."""

from datetime import date, datetime, timedelta, timezone

import pytest

from tradeboard.core.exceptions import NotInitializedError, StorageError
from tradeboard.core.models import AIReview, DataQuality, JournalEntryType, Symbol
from tradeboard.store.database import OWNED_TABLES, Store, merge_symbol, probe_version
from tradeboard.store.migrations import MIGRATIONS, SUPPORTED_VERSION, MigrationRunner


# --- Fixtures ---


@pytest.fixture
def write_log():
    return []


@pytest.fixture
async def observed_store(write_log):
    """Store that records every committed write."""
    s = Store(on_write=lambda: write_log.append(1))
    await s.open()
    yield s
    await s.close()


# --- Tests ---


class TestLifecycle:
    async def test_open_empty_migrates_to_latest(self):
        s = Store()
        assert await s.open() == SUPPORTED_VERSION
        assert s.is_open
        assert s.schema_version == SUPPORTED_VERSION
        await s.close()
        assert not s.is_open

    async def test_access_before_open(self):
        with pytest.raises(NotInitializedError):
            await Store().get_symbol("AAPL")

    async def test_garbage_image_rejected(self):
        with pytest.raises(StorageError, match="not a SQLite database"):
            await Store().open(b"definitely not sqlite")

    async def test_image_round_trip(self, store, make_bar):
        await store.save_price_bars([make_bar()])
        image = await store.serialize()
        assert image.startswith(b"SQLite format 3\x00")

        reopened = Store()
        assert await reopened.open(image) == SUPPORTED_VERSION
        assert await reopened.get_price_bars("AAPL") == [make_bar()]
        await reopened.close()

    async def test_older_image_migrated_on_open(self, make_quote):
        old = Store(runner=MigrationRunner(MIGRATIONS[:2]))
        assert await old.open() == 2
        async with old.transaction("symbols") as db:
            await db.execute("INSERT INTO symbols (symbol, name) VALUES ('AAPL', 'Apple Inc.')")
        image_v2 = await old.serialize()
        await old.close()
        assert await probe_version(image_v2) == 2

        upgraded = Store()
        assert await upgraded.open(image_v2) == SUPPORTED_VERSION
        assert (await upgraded.get_symbol("AAPL")).name == "Apple Inc."
        await upgraded.save_quote(make_quote())
        await upgraded.close()

    async def test_close_is_idempotent(self, store):
        await store.close()
        await store.close()


class TestSymbols:
    async def test_upsert_creates(self, store):
        await store.upsert_symbol(Symbol(symbol="aapl", name="Apple Inc."))
        s = await store.get_symbol("AAPL")
        assert s.name == "Apple Inc."
        assert s.data_quality == DataQuality.OK

    async def test_merge_keeps_known_values(self, store):
        await store.upsert_symbol(Symbol(symbol="AAPL", name="Apple Inc.", sector="Technology"))
        await store.upsert_symbol(Symbol(symbol="AAPL", name=None, currency="USD"))
        s = await store.get_symbol("AAPL")
        assert s.name == "Apple Inc."
        assert s.sector == "Technology"
        assert s.currency == "USD"

    async def test_last_error_cleared_explicitly(self, store):
        await store.upsert_symbol(
            Symbol(symbol="AAPL", data_quality=DataQuality.ERROR, last_error="HTTP 500")
        )
        await store.upsert_symbol(
            Symbol(symbol="AAPL", data_quality=DataQuality.OK, last_error=None)
        )
        s = await store.get_symbol("AAPL")
        assert s.last_error is None
        assert s.data_quality == DataQuality.OK

    async def test_unset_fields_do_not_reset_quality(self, store):
        await store.upsert_symbol(Symbol(symbol="AAPL", data_quality=DataQuality.STALE))
        await store.upsert_symbol(Symbol(symbol="AAPL", name="Apple"))
        assert (await store.get_symbol("AAPL")).data_quality == DataQuality.STALE

    async def test_get_missing(self, store):
        assert await store.get_symbol("ZZZZ") is None

    async def test_get_all_sorted(self, store):
        for ticker in ("MSFT", "AAPL", "XOM"):
            await store.upsert_symbol(Symbol(symbol=ticker))
        assert [s.symbol for s in await store.get_all_symbols()] == ["AAPL", "MSFT", "XOM"]

    def test_merge_symbol_without_existing(self):
        update = Symbol(symbol="AAPL", name="Apple")
        assert merge_symbol(None, update) is update


class TestPrices:
    async def test_save_and_query(self, store, make_bars):
        bars = make_bars(count=10)
        assert await store.save_price_bars(bars) == 10
        result = await store.get_price_bars("aapl")
        assert result == bars
        assert await store.count_price_bars("AAPL") == 10

    async def test_same_key_keeps_one_row_with_latest_values(self, store, make_bar):
        await store.save_price_bars([make_bar(close=181.0)])
        await store.save_price_bars([make_bar(close=183.0, high=184.0)])
        bars = await store.get_price_bars("AAPL")
        assert len(bars) == 1
        assert bars[0].close == 183.0

    async def test_date_range(self, store, make_bars):
        await store.save_price_bars(make_bars(count=10, end=date(2026, 3, 10)))
        result = await store.get_price_bars(
            "AAPL", start=date(2026, 3, 5), end=date(2026, 3, 7)
        )
        assert [b.date for b in result] == [date(2026, 3, 5), date(2026, 3, 6), date(2026, 3, 7)]

    async def test_empty_save_is_noop(self, observed_store, write_log):
        assert await observed_store.save_price_bars([]) == 0
        assert write_log == []

    async def test_symbols_isolated(self, store, make_bar):
        await store.save_price_bars([make_bar(), make_bar(symbol="MSFT")])
        assert len(await store.get_price_bars("MSFT")) == 1
        assert await store.count_price_bars("XOM") == 0

    async def test_latest_bar(self, store, make_bars):
        await store.save_price_bars(make_bars(count=5, end=date(2026, 3, 9)))
        latest = await store.get_latest_price_bar("aapl")
        assert latest.date == date(2026, 3, 9)
        assert await store.get_latest_price_bar("MSFT") is None

    async def test_delete_for_symbol(self, store, make_bar):
        await store.save_price_bars([make_bar(), make_bar(symbol="MSFT")])
        await store.delete_price_bars("aapl")
        assert await store.count_price_bars("AAPL") == 0
        assert await store.count_price_bars("MSFT") == 1


class TestFundamentalsAndQuotes:
    async def test_fundamentals_replace(self, store, make_fundamentals):
        await store.save_fundamentals(make_fundamentals(market_cap=1.0))
        await store.save_fundamentals(make_fundamentals(market_cap=2.0))
        f = await store.get_fundamentals("AAPL")
        assert f.market_cap == 2.0
        assert f.fetched_at.tzinfo is not None

    async def test_quote_round_trip(self, store, make_quote):
        quote = make_quote()
        await store.save_quote(quote)
        assert await store.get_quote("aapl") == quote
        assert await store.get_quote("MSFT") is None

    async def test_all_fundamentals_and_delete(self, store, make_fundamentals):
        await store.save_fundamentals(make_fundamentals(symbol="XOM"))
        await store.save_fundamentals(make_fundamentals())
        assert [f.symbol for f in await store.get_all_fundamentals()] == ["AAPL", "XOM"]

        await store.delete_fundamentals("xom")
        assert await store.get_fundamentals("XOM") is None
        assert [f.symbol for f in await store.get_all_fundamentals()] == ["AAPL"]

    async def test_all_quotes(self, store, make_quote):
        await store.save_quote(make_quote(symbol="XOM", price=110.0))
        await store.save_quote(make_quote())
        quotes = await store.get_all_quotes()
        assert [(q.symbol, q.price) for q in quotes] == [("AAPL", 181.7), ("XOM", 110.0)]


class TestPositionsAndWatchlist:
    async def test_position_crud(self, store, make_position):
        await store.save_position(make_position())
        await store.save_position(make_position(symbol="XOM", qty=5))
        assert [p.symbol for p in await store.get_all_positions()] == ["AAPL", "XOM"]

        await store.save_position(make_position(qty=20))
        assert (await store.get_position("AAPL")).qty == 20

        await store.delete_position("aapl")
        assert await store.get_position("AAPL") is None

    async def test_watchlist(self, store, make_watchlist_entry):
        await store.add_to_watchlist(make_watchlist_entry())
        entries = await store.get_watchlist()
        assert [e.symbol for e in entries] == ["MSFT"]
        await store.remove_from_watchlist("MSFT")
        assert await store.get_watchlist() == []

    async def test_watchlist_entry_by_symbol(self, store, make_watchlist_entry):
        entry = make_watchlist_entry()
        await store.add_to_watchlist(entry)
        assert await store.get_watchlist_entry("msft") == entry
        assert await store.get_watchlist_entry("AAPL") is None

    async def test_tracked_symbols_union(self, store, make_position, make_watchlist_entry):
        await store.save_position(make_position(symbol="AAPL"))
        await store.save_position(make_position(symbol="XOM"))
        await store.add_to_watchlist(make_watchlist_entry(symbol="AAPL"))
        await store.add_to_watchlist(make_watchlist_entry(symbol="LMT"))
        assert await store.tracked_symbols() == ["AAPL", "LMT", "XOM"]


class TestJournal:
    async def test_add_assigns_id(self, store, make_journal_entry):
        first = await store.add_journal_entry(make_journal_entry())
        second = await store.add_journal_entry(make_journal_entry())
        assert first.id is not None
        assert second.id == first.id + 1
        assert await store.get_journal_entry(first.id) == first

    async def test_newest_first_and_filter(self, store, make_journal_entry):
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await store.add_journal_entry(make_journal_entry(created_at=t0))
        await store.add_journal_entry(
            make_journal_entry(created_at=t0 + timedelta(days=1), symbol="XOM")
        )
        await store.add_journal_entry(
            make_journal_entry(
                created_at=t0 + timedelta(days=2), symbol=None, type=JournalEntryType.NOTE
            )
        )

        entries = await store.get_journal_entries()
        assert [e.created_at for e in entries] == [
            t0 + timedelta(days=2),
            t0 + timedelta(days=1),
            t0,
        ]
        assert [e.symbol for e in await store.get_journal_entries("xom")] == ["XOM"]

    async def test_performance_fields_persist(self, store, make_journal_entry):
        entry = await store.add_journal_entry(
            make_journal_entry(mfe_r=2.1, mae_r=-0.4, holding_days=12, thesis_tag="Energy")
        )
        stored = await store.get_journal_entry(entry.id)
        assert stored.mfe_r == 2.1
        assert stored.holding_days == 12
        assert stored.thesis_tag == "Energy"

    async def test_delete(self, store, make_journal_entry):
        entry = await store.add_journal_entry(make_journal_entry())
        await store.delete_journal_entry(entry.id)
        assert await store.get_journal_entry(entry.id) is None

    async def test_update_changes_only_named_fields(self, store, make_journal_entry):
        entry = await store.add_journal_entry(make_journal_entry(outcome=None))

        updated = await store.update_journal_entry(
            entry.id, outcome="Target hit", exit_price=170.0
        )

        assert updated.outcome == "Target hit"
        stored = await store.get_journal_entry(entry.id)
        assert stored == updated
        assert stored.exit_price == 170.0
        assert stored.lesson == entry.lesson
        assert stored.created_at == entry.created_at

    async def test_update_unknown_id(self, store):
        assert await store.update_journal_entry(999, outcome="x") is None

    @pytest.mark.parametrize("field", ["id", "not_a_field"])
    async def test_update_rejects_bad_fields(self, store, make_journal_entry, field):
        entry = await store.add_journal_entry(make_journal_entry())
        with pytest.raises(ValueError):
            await store.update_journal_entry(entry.id, **{field: 5})
        assert await store.get_journal_entry(entry.id) == entry


class TestAIReviews:
    async def test_add_and_list(self, store, now):
        review = await store.add_ai_review(
            AIReview(
                created_at=now,
                scope="position",
                symbol="AAPL",
                input_json='{"qty": 10}',
                output_md="# Review",
            )
        )
        assert review.id is not None
        assert await store.get_ai_reviews("AAPL") == [review]
        assert await store.get_ai_reviews("MSFT") == []

    async def test_get_and_delete_by_id(self, store, now):
        review = await store.add_ai_review(
            AIReview(created_at=now, scope="portfolio", input_json="{}", output_md="ok")
        )
        assert await store.get_ai_review(review.id) == review

        await store.delete_ai_review(review.id)
        assert await store.get_ai_review(review.id) is None
        assert await store.get_ai_reviews() == []


class TestWriteNotification:
    async def test_every_write_notifies(self, observed_store, write_log, make_bar, make_quote):
        await observed_store.save_price_bars([make_bar()])
        await observed_store.save_quote(make_quote())
        await observed_store.upsert_symbol(Symbol(symbol="AAPL"))
        assert len(write_log) == 3

    async def test_reads_do_not_notify(self, observed_store, write_log):
        await observed_store.get_all_symbols()
        await observed_store.get_price_bars("AAPL")
        assert write_log == []

    async def test_failed_write_rolls_back_without_notifying(self, observed_store, write_log):
        with pytest.raises(StorageError) as exc_info:
            async with observed_store.transaction("prices") as db:
                await db.execute(
                    "INSERT INTO prices (symbol, date, close) VALUES ('AAPL', '2026-01-02', 1.0)"
                )
                await db.execute("INSERT INTO missing_table VALUES (1)")

        assert exc_info.value.context["table"] == "prices"
        assert await observed_store.count_price_bars("AAPL") == 0
        assert write_log == []


class TestWholeStore:
    async def test_dump_tables_covers_owned(self, store, make_bar):
        await store.save_price_bars([make_bar()])
        tables = await store.dump_tables()
        assert tuple(tables) == OWNED_TABLES
        assert tables["prices"][0]["close"] == 181.7

    async def test_replace_tables(self, store, make_bar):
        await store.save_price_bars([make_bar()])
        version = await store.replace_tables(
            {"symbols": [{"symbol": "XOM", "name": "Exxon"}]}, SUPPORTED_VERSION
        )
        assert version == SUPPORTED_VERSION
        assert await store.count_price_bars("AAPL") == 0
        assert (await store.get_symbol("XOM")).name == "Exxon"

    async def test_replace_tables_failure_leaves_store(self, store, make_bar):
        await store.save_price_bars([make_bar()])
        with pytest.raises(StorageError):
            await store.replace_tables(
                {"prices": [{"symbol": "AAPL", "date": "2026-01-01", "bogus": 1}]},
                SUPPORTED_VERSION,
            )
        assert await store.count_price_bars("AAPL") == 1

    async def test_migrate_live(self):
        s = Store()
        await s.open()
        assert await s.migrate() == SUPPORTED_VERSION
        await s.close()
