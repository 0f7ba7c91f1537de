"""
Tests for the catalog store (tickdex.core.store): both backends, build
and reopen behaviour, and store-level error handling.
"""

import sqlite3

import pytest

from tickdex.core.engine import Clause, Instrument, MatchKind, WeightedQuery
from tickdex.core.search import QueryFormulator
from tickdex.core.store import (
    CatalogStore,
    MemoryBackend,
    SqliteBackend,
    instrument_fields,
)
from tickdex.exceptions import IndexNotFoundError, SearchError, StoreError

from conftest import make_catalog


def exact_symbol(symbol: str) -> WeightedQuery:
    return WeightedQuery(clauses=(Clause(MatchKind.EXACT, "symbol", symbol),))


# =============================================================================
# Behaviour shared by both backends
# =============================================================================

class TestCatalogStore:

    def test_stats_counts_by_exchange(self, store):
        stats = store.stats()
        assert stats.instruments == 9
        assert stats.exchanges == {"BSE": 1, "NSE": 8}

    def test_exact_lookup_round_trips_fields(self, store, instruments):
        hindunilvr = next(i for i in instruments if i.symbol == "HINDUNILVR")
        hits = store.search(exact_symbol("hindunilvr"))
        assert len(hits) == 1
        assert hits[0].doc_id == "HINDUNILVR-NSE"
        assert hits[0].fields == instrument_fields(hindunilvr)

    def test_lookup_is_case_insensitive(self, store):
        assert [h.doc_id for h in store.search(exact_symbol("HdfcBank"))] == ["HDFCBANK-NSE"]

    def test_cross_listing_hits_in_write_order(self, store):
        assert [h.doc_id for h in store.search(exact_symbol("reliance"))] == [
            "RELIANCE-NSE", "RELIANCE-BSE",
        ]

    def test_hits_ordered_by_relevance(self, store):
        hits = store.search(QueryFormulator().formulate("tcs"))
        assert [h.doc_id for h in hits] == ["TCS-NSE", "TATACONSULT-NSE"]
        assert hits[0].score == pytest.approx(17.0)
        assert hits[1].score == pytest.approx(1.0)

    def test_limit_truncates(self, store):
        query = WeightedQuery(
            clauses=(Clause(MatchKind.CONTAINS, "exchange", "nse"),), limit=3,
        )
        assert len(store.search(query)) == 3

    def test_all_mode_pair_lookup(self, store):
        query = WeightedQuery(mode="all", clauses=(
            Clause(MatchKind.EXACT, "symbol", "reliance"),
            Clause(MatchKind.EXACT, "exchange", "bse"),
        ))
        assert [h.doc_id for h in store.search(query)] == ["RELIANCE-BSE"]

    def test_empty_query_matches_nothing(self, store):
        assert store.search(WeightedQuery(clauses=())) == []

    @pytest.mark.parametrize("wildcard", ["%", "_", "\\"])
    def test_like_wildcards_are_literal(self, store, wildcard):
        query = WeightedQuery(clauses=(
            Clause(MatchKind.CONTAINS, "name", wildcard),
            Clause(MatchKind.PREFIX, "symbol", wildcard),
        ))
        assert store.search(query) == []

    def test_token_match_ignores_partial_words(self, store):
        query = WeightedQuery(clauses=(Clause(MatchKind.TOKEN, "name", "consult", 3.0),))
        assert store.search(query) == []

    def test_search_after_close_raises(self, store):
        store.close()
        with pytest.raises(SearchError):
            store.search(exact_symbol("tcs"))

    def test_close_is_idempotent(self, store):
        store.close()
        store.close()

    def test_stats_after_close_raises(self, store):
        store.close()
        with pytest.raises(StoreError, match="closed"):
            store.stats()


class TestBackendParity:
    """The in-memory and SQLite backends agree on hits and scores."""

    @pytest.mark.parametrize("text", ["tcs", "reliance", "bank", "tata consultancy", "dove", "in"])
    def test_same_ranking(self, tmp_path, text):
        query = QueryFormulator().formulate(text)
        memory = CatalogStore.in_memory(make_catalog())
        sqlite = CatalogStore.open(tmp_path / "catalog.db", make_catalog())
        try:
            mem_hits = [(h.doc_id, round(h.score, 9)) for h in memory.search(query)]
            sql_hits = [(h.doc_id, round(h.score, 9)) for h in sqlite.search(query)]
        finally:
            memory.close()
            sqlite.close()
        assert mem_hits == sql_hits
        assert mem_hits

    def test_long_symbol_lists(self, tmp_path):
        catalog = [Instrument(f"SYM{i:04d}", "NSE", popularity_score=i / 1200) for i in range(1200)]
        clauses = [Clause(MatchKind.EXACT, "symbol", f"sym{i:04d}") for i in range(1200)]
        # A repeated value counts once per clause
        clauses.append(Clause(MatchKind.EXACT, "symbol", "sym0005"))
        clauses.append(Clause(MatchKind.CONTAINS, "symbol", "sym000", 2.0))
        query = WeightedQuery(clauses=tuple(clauses), limit=2000)

        memory = CatalogStore.in_memory(catalog)
        sqlite = CatalogStore.open(tmp_path / "catalog.db", catalog)
        try:
            mem_hits = [(h.doc_id, h.score) for h in memory.search(query)]
            sql_hits = [(h.doc_id, h.score) for h in sqlite.search(query)]
        finally:
            memory.close()
            sqlite.close()
        assert mem_hits == sql_hits
        assert len(sql_hits) == 1200
        assert sql_hits[0] == ("SYM0005-NSE", 4.0)
        assert sql_hits[1] == ("SYM0000-NSE", 3.0)


class TestDuplicateKeys:

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_later_record_replaces_earlier(self, tmp_path, backend):
        catalog = [
            Instrument("RELIANCE", "NSE", "Listing Name", popularity_score=0.2),
            Instrument("TCS", "NSE", "Tata Consultancy Services", popularity_score=0.98),
            Instrument("RELIANCE", "NSE", "Reliance Industries", brand="Jio", popularity_score=1.0),
        ]
        if backend == "memory":
            store = CatalogStore.in_memory(catalog)
        else:
            store = CatalogStore.open(tmp_path / "catalog.db", catalog)
        with store:
            assert store.stats().instruments == 2
            hits = store.search(exact_symbol("reliance"))
            assert len(hits) == 1
            assert hits[0].fields["name"] == "Reliance Industries"
            assert hits[0].fields["brand"] == "Jio"


# =============================================================================
# SQLite persistence
# =============================================================================

class TestSqlitePersistence:

    def test_open_builds_store_file(self, tmp_path, instruments):
        path = tmp_path / "nested" / "catalog.db"
        with CatalogStore.open(path, instruments) as store:
            assert store.location == str(path)
            assert isinstance(store.backend, SqliteBackend)
        assert path.exists()

    def test_reopen_ignores_new_instruments(self, tmp_path, instruments):
        path = tmp_path / "catalog.db"
        CatalogStore.open(path, instruments).close()

        replacement = [Instrument("NEWCO", "NSE", "New Company")]
        with CatalogStore.open(path, replacement) as store:
            assert store.stats().instruments == len(instruments)
            assert store.search(exact_symbol("newco")) == []

    def test_reopen_without_instruments(self, tmp_path, instruments):
        path = tmp_path / "catalog.db"
        CatalogStore.open(path, instruments).close()
        with CatalogStore.open(path) as store:
            assert [h.doc_id for h in store.search(exact_symbol("infy"))] == ["INFY-NSE"]
            assert store.backend.is_populated

    def test_missing_store_without_instruments(self, tmp_path):
        with pytest.raises(IndexNotFoundError):
            CatalogStore.open(tmp_path / "catalog.db")

    def test_missing_store_is_also_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CatalogStore.open(tmp_path / "catalog.db")

    def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "catalog.db"
        path.write_bytes(b"this is not a sqlite database" * 64)
        with pytest.raises(StoreError):
            CatalogStore.open(path)

    def test_foreign_database_raises_store_error(self, tmp_path):
        path = tmp_path / "other.db"
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE unrelated (id INTEGER)")
        conn.commit()
        conn.close()
        with pytest.raises(StoreError, match="not a Tickdex catalog store"):
            CatalogStore.open(path)

    def test_unwritable_location_raises_store_error(self, tmp_path, instruments):
        blocker = tmp_path / "afile"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(StoreError):
            CatalogStore.open(blocker / "catalog.db", instruments)

    def test_failed_build_leaves_no_file(self, tmp_path, monkeypatch, instruments):
        path = tmp_path / "catalog.db"

        def fail_index(self, doc_id, fields):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(SqliteBackend, "index", fail_index)
        with pytest.raises(StoreError, match="disk I/O error"):
            CatalogStore.open(path, instruments)
        assert not path.exists()

    def test_query_failure_raises_search_error(self, tmp_path, instruments):
        path = tmp_path / "catalog.db"
        with CatalogStore.open(path, instruments) as store:
            store.backend._get_connection().execute("DROP TABLE instruments")
            with pytest.raises(SearchError):
                store.search(exact_symbol("tcs"))

    def test_unmarked_store_refuses_to_open(self, tmp_path, instruments):
        path = tmp_path / "catalog.db"
        CatalogStore.open(path, instruments).close()
        conn = sqlite3.connect(path)
        conn.execute("DELETE FROM store_meta")
        conn.commit()
        conn.close()

        with pytest.raises(StoreError, match="build marker"):
            CatalogStore.open(path)

    def test_failing_source_leaves_no_file(self, tmp_path):
        path = tmp_path / "catalog.db"

        def source():
            yield Instrument("TCS", "NSE", "Tata Consultancy Services")
            raise ValueError("bad row")

        with pytest.raises(StoreError, match="bad row"):
            CatalogStore.open(path, source())
        assert not path.exists()

        with CatalogStore.open(path, [Instrument("INFY", "NSE")]) as store:
            assert store.stats().instruments == 1


class TestMemoryBackend:

    def test_in_memory_location(self, instruments):
        with CatalogStore.in_memory(instruments) as store:
            assert store.location == ":memory:"
            assert isinstance(store.backend, MemoryBackend)

    def test_hits_are_copies(self, instruments):
        with CatalogStore.in_memory(instruments) as store:
            store.search(exact_symbol("tcs"))[0].fields["name"] = "changed"
            assert store.search(exact_symbol("tcs"))[0].fields["name"] == "Tata Consultancy Services"
