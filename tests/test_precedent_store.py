"""
Tests for execution/precedent_rag/precedent_store.py

Covers: InMemoryPrecedentStore (dedup, filters, embedding updates, stats),
        PostgresStoreConfig, connection string resolution, and
        PostgresPrecedentStore query paths against a mocked connection.

All database calls are mocked -- no PostgreSQL required.
"""

import uuid
from unittest.mock import MagicMock

import psycopg2
import pytest

from tests.conftest import make_precedent


# ---------------------------------------------------------------------------
# InMemoryPrecedentStore - upsert and dedup
# ---------------------------------------------------------------------------

class TestInMemoryUpsert:

    def test_insert_assigns_id_and_timestamps(self, memory_store):
        result = memory_store.upsert_by_external_id(make_precedent(101))
        assert result.inserted is True
        assert result.record.id
        assert result.record.created_at is not None
        assert result.record.indexed is False

    def test_year_defaults_to_current_year(self, memory_store):
        from datetime import datetime, timezone
        result = memory_store.upsert_by_external_id(make_precedent(102, year=None))
        assert result.record.year == datetime.now(timezone.utc).year

    def test_same_source_id_is_duplicate(self, memory_store):
        first = memory_store.upsert_by_external_id(make_precedent(103))
        second = memory_store.upsert_by_external_id(make_precedent(103, title="Renamed"))

        assert second.inserted is False
        assert second.record.id == first.record.id
        assert second.record.title == first.record.title
        assert len(memory_store.find_all()) == 1

    def test_same_source_url_is_duplicate(self, memory_store):
        memory_store.upsert_by_external_id(make_precedent(104))
        other = make_precedent(
            999, case_number="OTHER-1", source_url="https://indiankanoon.org/doc/104/",
        )
        result = memory_store.upsert_by_external_id(other)
        assert result.inserted is False
        assert len(memory_store.find_all()) == 1

    def test_case_number_collision_is_duplicate(self, memory_store):
        memory_store.upsert_by_external_id(make_precedent(105, case_number="Crl.A. 1/2020"))
        result = memory_store.upsert_by_external_id(make_precedent(106, case_number="Crl.A. 1/2020"))
        assert result.inserted is False

    def test_manual_precedents_without_external_ids_coexist(self, memory_store):
        memory_store.upsert_by_external_id(make_precedent(title="Manual one"))
        memory_store.upsert_by_external_id(make_precedent(title="Manual two"))
        assert len(memory_store.find_all()) == 2

    def test_no_two_records_share_external_id(self, memory_store):
        for tid in [1, 2, 1, 3, 2, 1]:
            memory_store.upsert_by_external_id(make_precedent(tid))
        source_ids = [r.source_id for r in memory_store.find_all()]
        assert len(source_ids) == len(set(source_ids)) == 3

    def test_returned_records_are_copies(self, memory_store):
        result = memory_store.upsert_by_external_id(make_precedent(107))
        result.record.title = "mutated"
        assert memory_store.find_by_id(result.record.id).title == "Case 107"

    def test_list_fields_not_shared_with_callers(self, memory_store):
        payload = make_precedent(42, keywords=["theft"], ipc_sections=["379"])
        result = memory_store.upsert_by_external_id(payload)

        payload.keywords.append("changed-by-submitter")
        result.record.ipc_sections.append("420")
        memory_store.find_by_filter(source_id="42")[0].keywords.append("changed-by-reader")

        stored = memory_store.find_by_filter(source_id="42")[0]
        assert stored.keywords == ["theft"]
        assert stored.ipc_sections == ["379"]

    def test_duplicate_returns_unmodified_existing_record(self, memory_store):
        first = memory_store.upsert_by_external_id(make_precedent(43, judges=["A. Judge"]))
        first.record.judges.append("B. Judge")

        again = memory_store.upsert_by_external_id(make_precedent(43))

        assert again.inserted is False
        assert again.record.judges == ["A. Judge"]


# ---------------------------------------------------------------------------
# InMemoryPrecedentStore - queries
# ---------------------------------------------------------------------------

class TestInMemoryQueries:

    def test_find_by_id_missing(self, memory_store):
        assert memory_store.find_by_id("nope") is None

    def test_filter_by_list_membership(self, memory_store):
        memory_store.upsert_by_external_id(make_precedent(1, ipc_sections=["302", "34"]))
        memory_store.upsert_by_external_id(make_precedent(2, ipc_sections=["420"]))

        hits = memory_store.find_by_filter(ipc_sections="302")
        assert [h.source_id for h in hits] == ["1"]

    def test_filter_by_scalar_and_verdict(self, memory_store):
        from execution.precedent_rag.models import Verdict
        memory_store.upsert_by_external_id(make_precedent(1, court="Delhi High Court", verdict=Verdict.GUILTY))
        memory_store.upsert_by_external_id(make_precedent(2, court="Delhi High Court"))

        assert len(memory_store.find_by_filter(court="Delhi High Court")) == 2
        assert len(memory_store.find_by_filter(court="Delhi High Court", verdict="guilty")) == 1
        assert len(memory_store.find_by_filter(verdict=Verdict.GUILTY)) == 1

    def test_unknown_filter_field_rejected(self, memory_store):
        with pytest.raises(ValueError, match="Unsupported filter"):
            memory_store.find_by_filter(embedding=[1.0])

    def test_find_all_by_source(self, memory_store):
        memory_store.upsert_by_external_id(make_precedent(1))
        memory_store.upsert_by_external_id(make_precedent(title="Manual"))
        assert len(memory_store.find_all(source="IndianKanoon")) == 1
        assert len(memory_store.find_all(source="manual")) == 1


# ---------------------------------------------------------------------------
# InMemoryPrecedentStore - embeddings
# ---------------------------------------------------------------------------

class TestInMemoryEmbeddings:

    def test_set_and_clear_embedding(self, memory_store):
        record = memory_store.upsert_by_external_id(make_precedent(1)).record

        memory_store.set_embedding(record.id, [0.1, 0.2])
        stored = memory_store.find_by_id(record.id)
        assert stored.embedding == [0.1, 0.2]
        assert stored.indexed is True
        assert [r.id for r in memory_store.find_embedded()] == [record.id]

        memory_store.clear_embedding(record.id)
        stored = memory_store.find_by_id(record.id)
        assert stored.embedding is None
        assert stored.indexed is False
        assert memory_store.find_by_id(record.id) is not None
        assert [r.id for r in memory_store.find_unembedded()] == [record.id]

    def test_set_embedding_missing_record(self, memory_store):
        with pytest.raises(KeyError):
            memory_store.set_embedding("missing", [1.0])

    def test_indexed_filter_follows_embedding(self, memory_store):
        a = memory_store.upsert_by_external_id(make_precedent(1)).record
        memory_store.upsert_by_external_id(make_precedent(2))
        memory_store.set_embedding(a.id, [1.0])
        assert [r.id for r in memory_store.find_by_filter(indexed=True)] == [a.id]

    def test_stats(self, memory_store):
        a = memory_store.upsert_by_external_id(make_precedent(1, ipc_sections=["302", "34"])).record
        memory_store.upsert_by_external_id(make_precedent(2, ipc_sections=["302"]))
        memory_store.upsert_by_external_id(make_precedent(title="Manual"))
        memory_store.set_embedding(a.id, [1.0])

        stats = memory_store.stats()
        assert stats["total"] == 3
        assert stats["embedded"] == 1
        assert stats["by_source"] == {"IndianKanoon": 2, "manual": 1}
        assert stats["unique_ipc_sections"] == 2


# ---------------------------------------------------------------------------
# PostgresStoreConfig / connection string
# ---------------------------------------------------------------------------

class TestPostgresStoreConfig:

    def test_defaults(self):
        from execution.precedent_rag.precedent_store import PostgresStoreConfig
        cfg = PostgresStoreConfig()
        assert cfg.connection_string is None
        assert cfg.table_name == "case_precedents"
        assert cfg.use_pooling is True

    def test_uses_config_connection_string(self, monkeypatch):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore, PostgresStoreConfig
        monkeypatch.setenv("POSTGRES_URL", "postgres://env/db")
        store = PostgresPrecedentStore(PostgresStoreConfig(connection_string="postgres://custom/db"))
        assert store._connection_string == "postgres://custom/db"

    def test_falls_back_to_postgres_url_env(self, monkeypatch):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore
        monkeypatch.setenv("POSTGRES_URL", "postgres://env/db")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert PostgresPrecedentStore()._connection_string == "postgres://env/db"

    def test_falls_back_to_database_url_env(self, monkeypatch):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore
        monkeypatch.delenv("POSTGRES_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgres://dburl/db")
        assert PostgresPrecedentStore()._connection_string == "postgres://dburl/db"

    def test_falls_back_to_default_localhost(self, monkeypatch):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore
        monkeypatch.delenv("POSTGRES_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert "localhost" in PostgresPrecedentStore()._connection_string


# ---------------------------------------------------------------------------
# PostgresPrecedentStore against a mocked connection
# ---------------------------------------------------------------------------

def _pg_store():
    from execution.precedent_rag.precedent_store import PostgresPrecedentStore, PostgresStoreConfig
    store = PostgresPrecedentStore(PostgresStoreConfig(connection_string="fake", use_pooling=False))
    conn = MagicMock()
    conn.closed = False
    store._conn = conn
    cursor = conn.cursor.return_value.__enter__.return_value
    return store, conn, cursor


def _row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "case_number": "IK-1",
        "source_id": "1",
        "source_url": "https://indiankanoon.org/doc/1/",
        "source": "IndianKanoon",
        "title": "State vs Accused",
        "year": 2019,
        "court": "Supreme Court of India",
        "doctype": "judgment",
        "judges": ["A.K. Sikri"],
        "parties": {"plaintiff": "State", "defendant": "Accused"},
        "facts": "",
        "decision": "Appeal dismissed",
        "summary": "Conviction upheld",
        "verdict": "guilty",
        "ipc_sections": ["302"],
        "keywords": ["IPC-302"],
        "acts": [],
        "headnotes": [],
        "cites": [],
        "cited_by": [],
        "date": "2019-03-12",
        "bench": None,
        "embedding": None,
        "indexed": False,
        "fetched_at": None,
        "created_at": None,
    }
    row.update(overrides)
    return row


class TestPostgresPrecedentStore:

    def test_row_to_case(self):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore
        from execution.precedent_rag.models import Verdict
        case = PostgresPrecedentStore._row_to_case(_row(embedding=[1, 2]))
        assert case.verdict == Verdict.GUILTY
        assert case.parties.plaintiff == "State"
        assert case.embedding == [1.0, 2.0]
        assert case.has_embedding

    def test_upsert_returns_existing_on_external_id_match(self):
        store, conn, cursor = _pg_store()
        existing = _row()
        cursor.fetchone.side_effect = [existing]

        result = store.upsert_by_external_id(make_precedent(1))

        assert result.inserted is False
        assert result.record.id == str(existing["id"])
        assert cursor.execute.call_count == 1

    def test_upsert_inserts_new_record(self):
        store, conn, cursor = _pg_store()
        cursor.fetchone.side_effect = [None, _row(source_id="2", case_number="IK-2")]

        result = store.upsert_by_external_id(make_precedent(2))

        assert result.inserted is True
        assert "ON CONFLICT (case_number) DO NOTHING" in cursor.execute.call_args_list[1].args[0]
        conn.commit.assert_called()

    def test_upsert_case_number_conflict_returns_existing(self):
        store, conn, cursor = _pg_store()
        cursor.fetchone.side_effect = [None, None, _row(case_number="IK-3")]

        result = store.upsert_by_external_id(make_precedent(3))

        assert result.inserted is False
        assert result.record.case_number == "IK-3"

    def test_set_embedding_missing_raises_key_error(self):
        store, conn, cursor = _pg_store()
        cursor.rowcount = 0
        with pytest.raises(KeyError):
            store.set_embedding(str(uuid.uuid4()), [1.0])

    def test_clear_embedding_nulls_vector(self):
        store, conn, cursor = _pg_store()
        cursor.rowcount = 1
        store.clear_embedding("00000000-0000-0000-0000-000000000001")
        params = cursor.execute.call_args.args[1]
        assert params[0] is None
        assert params[1] is False

    def test_find_by_id_rejects_non_uuid(self):
        store, conn, cursor = _pg_store()
        assert store.find_by_id("not-a-uuid") is None
        cursor.execute.assert_not_called()

    def test_embedding_update_rejects_non_uuid(self):
        store, conn, cursor = _pg_store()
        with pytest.raises(KeyError):
            store.clear_embedding("not-a-uuid")
        cursor.execute.assert_not_called()

    def test_find_by_filter_list_field_uses_any(self):
        store, conn, cursor = _pg_store()
        cursor.fetchall.return_value = [_row()]
        results = store.find_by_filter(ipc_sections="302")
        sql, params = cursor.execute.call_args.args
        assert "%s = ANY(ipc_sections)" in sql
        assert params == ("302",)
        assert len(results) == 1

    def test_stale_connection_retried_once(self):
        store, conn, cursor = _pg_store()
        cursor.fetchall.side_effect = [psycopg2.OperationalError("server closed"), [_row()]]
        fresh = MagicMock()
        fresh.closed = False
        fresh.cursor.return_value.__enter__.return_value = cursor
        store.connect = MagicMock(side_effect=lambda: setattr(store, "_conn", fresh))

        results = store.find_all()

        store.connect.assert_called_once()
        conn.close.assert_called_once()
        assert len(results) == 1

    def test_stale_pooled_connection_is_discarded_and_pool_replaced(self):
        from execution.precedent_rag.precedent_store import PostgresPrecedentStore, PostgresStoreConfig
        store = PostgresPrecedentStore(PostgresStoreConfig(connection_string="fake"))
        dead, healthy = MagicMock(), MagicMock()
        dead.cursor.return_value.__enter__.return_value.fetchall.side_effect = psycopg2.OperationalError("gone")
        healthy.cursor.return_value.__enter__.return_value.fetchall.return_value = [_row()]
        old_pool, new_pool = MagicMock(), MagicMock()
        old_pool.getconn.return_value = dead
        new_pool.getconn.return_value = healthy
        store._pool = old_pool
        store.connect = MagicMock(side_effect=lambda: setattr(store, "_pool", new_pool))

        results = store.find_all()

        assert len(results) == 1
        old_pool.putconn.assert_called_once_with(dead, close=True)
        old_pool.closeall.assert_called_once()
        new_pool.putconn.assert_called_once_with(healthy, close=False)
