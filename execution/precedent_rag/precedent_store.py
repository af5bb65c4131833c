"""
Precedent Store

System of record for precedent cases and their embeddings. Two backends
share one interface:

- PostgresPrecedentStore: psycopg2 with optional connection pooling
- InMemoryPrecedentStore: thread-safe dict store for development and tests

Records are never deleted in normal operation. Clearing an index only
nulls the embedding.
"""

import os
import copy
import json
import uuid
import logging
import threading
from typing import Optional
from datetime import datetime, timezone
from dataclasses import dataclass, replace

from .models import PrecedentCase, Parties, Verdict

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)

# Fields filterable by equality; list-valued ones match by membership.
SCALAR_FILTER_FIELDS = {
    "id", "case_number", "source_id", "source_url", "source", "title",
    "year", "court", "doctype", "verdict", "indexed",
}
LIST_FILTER_FIELDS = {"ipc_sections", "keywords", "judges"}


def _copy_out(record: PrecedentCase) -> PrecedentCase:
    """Independent copy; callers never share lists with stored records."""
    return copy.deepcopy(record)


@dataclass
class UpsertResult:
    """Outcome of upsert_by_external_id."""
    record: PrecedentCase
    inserted: bool


class PrecedentStore:
    """Interface shared by all precedent store backends."""

    def initialize(self) -> None:
        """Prepare storage (create schema, open connections)."""

    def close(self) -> None:
        """Release any held resources."""

    def find_by_id(self, precedent_id: str) -> Optional[PrecedentCase]:
        raise NotImplementedError

    def find_by_filter(self, **fields) -> list[PrecedentCase]:
        raise NotImplementedError

    def find_all(self, source: Optional[str] = None) -> list[PrecedentCase]:
        raise NotImplementedError

    def find_embedded(self) -> list[PrecedentCase]:
        raise NotImplementedError

    def find_unembedded(self) -> list[PrecedentCase]:
        raise NotImplementedError

    def upsert_by_external_id(self, case: PrecedentCase) -> UpsertResult:
        raise NotImplementedError

    def set_embedding(self, precedent_id: str, embedding: list[float]) -> None:
        raise NotImplementedError

    def clear_embedding(self, precedent_id: str) -> None:
        raise NotImplementedError

    def stats(self) -> dict:
        raise NotImplementedError

    @staticmethod
    def _validate_filter(fields: dict) -> None:
        unknown = set(fields) - SCALAR_FILTER_FIELDS - LIST_FILTER_FIELDS
        if unknown:
            raise ValueError(f"Unsupported filter fields: {sorted(unknown)}")

    @staticmethod
    def _prepare_for_insert(case: PrecedentCase) -> PrecedentCase:
        """Copy with internal id, timestamps and a year fallback filled in."""
        now = datetime.now(timezone.utc)
        has_embedding = case.has_embedding
        return replace(
            copy.deepcopy(case),
            id=case.id or str(uuid.uuid4()),
            year=case.year or now.year,
            created_at=case.created_at or now,
            indexed=has_embedding,
            embedding=list(case.embedding) if has_embedding else None,
        )


class InMemoryPrecedentStore(PrecedentStore):
    """Dict-backed store. Iteration follows insertion order."""

    def __init__(self):
        self._records: dict[str, PrecedentCase] = {}
        self._lock = threading.RLock()

    def find_by_id(self, precedent_id: str) -> Optional[PrecedentCase]:
        with self._lock:
            record = self._records.get(precedent_id)
            return _copy_out(record) if record else None

    def find_by_filter(self, **fields) -> list[PrecedentCase]:
        self._validate_filter(fields)
        with self._lock:
            return [_copy_out(r) for r in self._records.values() if self._matches(r, fields)]

    @staticmethod
    def _matches(record: PrecedentCase, fields: dict) -> bool:
        for name, expected in fields.items():
            value = getattr(record, name)
            if name in LIST_FILTER_FIELDS:
                if expected not in value:
                    return False
            elif name == "verdict":
                if value != Verdict.parse(expected):
                    return False
            elif name == "indexed":
                if record.has_embedding != bool(expected):
                    return False
            elif value != expected:
                return False
        return True

    def find_all(self, source: Optional[str] = None) -> list[PrecedentCase]:
        with self._lock:
            return [
                _copy_out(r) for r in self._records.values()
                if source is None or r.source == source
            ]

    def find_embedded(self) -> list[PrecedentCase]:
        with self._lock:
            return [_copy_out(r) for r in self._records.values() if r.has_embedding]

    def find_unembedded(self) -> list[PrecedentCase]:
        with self._lock:
            return [_copy_out(r) for r in self._records.values() if not r.has_embedding]

    def _find_duplicate(self, case: PrecedentCase) -> Optional[PrecedentCase]:
        for record in self._records.values():
            if case.source_id and record.source_id == case.source_id:
                return record
            if case.source_url and record.source_url == case.source_url:
                return record
        for record in self._records.values():
            if case.case_number not in (None, "", "N/A") and record.case_number == case.case_number:
                return record
        return None

    def upsert_by_external_id(self, case: PrecedentCase) -> UpsertResult:
        with self._lock:
            existing = self._find_duplicate(case)
            if existing is not None:
                logger.info(f"    [Already indexed: {existing.case_number}]")
                return UpsertResult(record=_copy_out(existing), inserted=False)

            record = self._prepare_for_insert(case)
            self._records[record.id] = record
            logger.info(f"    [Saved precedent {record.case_number}]")
            return UpsertResult(record=_copy_out(record), inserted=True)

    def set_embedding(self, precedent_id: str, embedding: list[float]) -> None:
        with self._lock:
            record = self._records.get(precedent_id)
            if record is None:
                raise KeyError(f"Precedent not found: {precedent_id}")
            record.embedding = list(embedding)
            record.indexed = True

    def clear_embedding(self, precedent_id: str) -> None:
        with self._lock:
            record = self._records.get(precedent_id)
            if record is None:
                raise KeyError(f"Precedent not found: {precedent_id}")
            record.embedding = None
            record.indexed = False

    def stats(self) -> dict:
        with self._lock:
            records = list(self._records.values())
        by_source = {}
        sections = set()
        for r in records:
            by_source[r.source] = by_source.get(r.source, 0) + 1
            sections.update(r.ipc_sections)
        return {
            "total": len(records),
            "embedded": sum(1 for r in records if r.has_embedding),
            "by_source": by_source,
            "unique_ipc_sections": len(sections),
        }


@dataclass
class PostgresStoreConfig:
    """Configuration for the PostgreSQL precedent store."""
    connection_string: Optional[str] = None
    table_name: str = "case_precedents"
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    use_pooling: bool = True


_COLUMNS = (
    "id", "case_number", "source_id", "source_url", "source", "title", "year",
    "court", "doctype", "judges", "parties", "facts", "decision", "summary",
    "verdict", "ipc_sections", "keywords", "acts", "headnotes", "cites",
    "cited_by", "date", "bench", "embedding", "indexed", "fetched_at", "created_at",
)


class PostgresPrecedentStore(PrecedentStore):
    """
    PostgreSQL precedent store.

    Embeddings are stored as DOUBLE PRECISION[] and ranked in-process by
    the vector index, so no database extension is required.
    """

    def __init__(self, config: Optional[PostgresStoreConfig] = None):
        self.config = config or PostgresStoreConfig()
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/precedent_rag"
        )

    # =========================================================================
    # Connection handling
    # =========================================================================

    def connect(self) -> None:
        """Open the pool, or a single connection when pooling is off."""
        if psycopg2 is None:
            raise ImportError(
                "psycopg2 is required for the Postgres store. Install psycopg2-binary."
            )
        options = {"cursor_factory": psycopg2.extras.RealDictCursor}
        try:
            if not self.config.use_pooling:
                self._conn = psycopg2.connect(self._connection_string, **options)
                self._conn.autocommit = False
                logger.info("Precedent store connected (no pooling)")
                return
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                self.config.pool_min_connections,
                self.config.pool_max_connections,
                dsn=self._connection_string,
                **options,
            )
            logger.info(
                f"Precedent store pool ready "
                f"({self.config.pool_min_connections}-{self.config.pool_max_connections} connections)"
            )
        except Exception as e:
            logger.error(f"Could not connect precedent store: {e}")
            raise

    def _checkout(self):
        if self._pool is None and self._conn is None:
            self.connect()
        if self._pool is not None:
            return self._pool.getconn()
        if self._conn.closed:
            logger.warning("Precedent store connection was closed; reopening")
            self.connect()
        return self._conn

    def _checkin(self, conn, failed: bool = False, discard: bool = False) -> None:
        """
        Roll back after a failure, then hand pooled connections back.
        A discarded connection is closed by the pool instead of reused.
        """
        if failed:
            try:
                conn.rollback()
            except (psycopg2.InterfaceError, psycopg2.OperationalError):
                logger.debug("Rollback skipped on a dead connection")
        if self._pool is not None and conn is not None:
            self._pool.putconn(conn, close=discard)

    def _execute_with_retry(self, operation, label="db_operation"):
        """
        Run operation(conn) once, reconnecting and retrying a single time
        when the connection turns out to be stale.
        """
        retried = False
        while True:
            conn = self._checkout()
            try:
                result = operation(conn)
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._checkin(conn, failed=True, discard=True)
                if retried:
                    raise
                retried = True
                logger.warning(f"{label}: connection lost ({e}), retrying once")
                self.close()
                self.connect()
            except Exception:
                self._checkin(conn, failed=True)
                raise
            else:
                self._checkin(conn)
                return result

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Precedent store pool closed")
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize(self) -> None:
        """Create the precedent table and indexes if they don't exist."""
        table = self.config.table_name
        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id UUID PRIMARY KEY,
            case_number TEXT NOT NULL,
            source_id TEXT,
            source_url TEXT,
            source TEXT DEFAULT 'manual',
            title TEXT NOT NULL,
            year INT,
            court TEXT DEFAULT 'Unknown',
            doctype TEXT DEFAULT 'judgment',
            judges TEXT[] DEFAULT ARRAY[]::TEXT[],
            parties JSONB DEFAULT '{{}}',
            facts TEXT,
            decision TEXT,
            summary TEXT,
            verdict TEXT DEFAULT 'unknown',
            ipc_sections TEXT[] DEFAULT ARRAY[]::TEXT[],
            keywords TEXT[] DEFAULT ARRAY[]::TEXT[],
            acts JSONB DEFAULT '[]',
            headnotes JSONB DEFAULT '[]',
            cites JSONB DEFAULT '[]',
            cited_by JSONB DEFAULT '[]',
            date TEXT,
            bench TEXT,
            embedding DOUBLE PRECISION[],
            indexed BOOLEAN DEFAULT FALSE,
            fetched_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_case_number ON {table}(case_number);
        CREATE INDEX IF NOT EXISTS idx_{table}_source_id ON {table}(source_id);
        CREATE INDEX IF NOT EXISTS idx_{table}_source_url ON {table}(source_url);
        CREATE INDEX IF NOT EXISTS idx_{table}_indexed ON {table}(indexed);
        CREATE INDEX IF NOT EXISTS idx_{table}_ipc ON {table} USING GIN (ipc_sections);
        CREATE INDEX IF NOT EXISTS idx_{table}_keywords ON {table} USING GIN (keywords);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
                conn.commit()

        self._execute_with_retry(_op, "initialize_schema")
        logger.info("Precedent schema initialized successfully")

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _row_to_case(row) -> PrecedentCase:
        data = dict(row)
        parties = data.get("parties") or {}
        if isinstance(parties, str):
            parties = json.loads(parties)
        embedding = data.get("embedding")
        return PrecedentCase(
            id=str(data["id"]),
            case_number=data["case_number"],
            source_id=data.get("source_id"),
            source_url=data.get("source_url"),
            source=data.get("source") or "manual",
            title=data["title"],
            year=data.get("year"),
            court=data.get("court") or "Unknown Court",
            doctype=data.get("doctype") or "judgment",
            judges=list(data.get("judges") or []),
            parties=Parties(
                plaintiff=parties.get("plaintiff"),
                defendant=parties.get("defendant"),
            ),
            facts=data.get("facts") or "",
            decision=data.get("decision") or "",
            summary=data.get("summary") or "",
            verdict=Verdict.parse(data.get("verdict")),
            ipc_sections=list(data.get("ipc_sections") or []),
            keywords=list(data.get("keywords") or []),
            acts=data.get("acts") or [],
            headnotes=data.get("headnotes") or [],
            cites=data.get("cites") or [],
            cited_by=data.get("cited_by") or [],
            date=data.get("date"),
            bench=data.get("bench"),
            embedding=[float(v) for v in embedding] if embedding else None,
            indexed=bool(data.get("indexed")),
            fetched_at=data.get("fetched_at"),
            created_at=data.get("created_at"),
        )

    @staticmethod
    def _case_to_params(case: PrecedentCase) -> tuple:
        return (
            case.id, case.case_number, case.source_id, case.source_url, case.source,
            case.title, case.year, case.court, case.doctype, list(case.judges),
            json.dumps(case.parties.to_dict()), case.facts, case.decision,
            case.summary, case.verdict.value, list(case.ipc_sections),
            list(case.keywords), json.dumps(case.acts), json.dumps(case.headnotes),
            json.dumps(case.cites), json.dumps(case.cited_by), case.date,
            case.bench, case.embedding, case.has_embedding, case.fetched_at,
            case.created_at,
        )

    def _select(self, where: str = "", params: tuple = (), label: str = "select") -> list[PrecedentCase]:
        sql = f"SELECT * FROM {self.config.table_name} {where} ORDER BY created_at, id"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
            return [self._row_to_case(r) for r in rows]

        return self._execute_with_retry(_op, label)

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _is_uuid(value) -> bool:
        try:
            uuid.UUID(str(value))
        except ValueError:
            return False
        return True

    def find_by_id(self, precedent_id: str) -> Optional[PrecedentCase]:
        if not self._is_uuid(precedent_id):
            return None
        rows = self._select("WHERE id = %s::uuid", (precedent_id,), "find_by_id")
        return rows[0] if rows else None

    def find_by_filter(self, **fields) -> list[PrecedentCase]:
        self._validate_filter(fields)
        clauses = []
        params = []
        for name, value in fields.items():
            if name in LIST_FILTER_FIELDS:
                clauses.append(f"%s = ANY({name})")
            elif name == "id":
                clauses.append("id = %s::uuid")
            elif name == "indexed":
                clauses.append("(embedding IS NOT NULL) = %s")
            else:
                clauses.append(f"{name} = %s")
            if isinstance(value, Verdict):
                value = value.value
            params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._select(where, tuple(params), "find_by_filter")

    def find_all(self, source: Optional[str] = None) -> list[PrecedentCase]:
        if source:
            return self._select("WHERE source = %s", (source,), "find_all")
        return self._select(label="find_all")

    def find_embedded(self) -> list[PrecedentCase]:
        return self._select("WHERE embedding IS NOT NULL", label="find_embedded")

    def find_unembedded(self) -> list[PrecedentCase]:
        return self._select("WHERE embedding IS NULL", label="find_unembedded")

    def upsert_by_external_id(self, case: PrecedentCase) -> UpsertResult:
        """
        Insert a precedent unless one with the same source_id or source_url exists.

        The existing record is returned unmodified on a duplicate.
        """
        table = self.config.table_name
        record = self._prepare_for_insert(case)
        placeholders = ", ".join(
            "%s::uuid" if c == "id" else "%s" for c in _COLUMNS
        )
        insert_sql = f"""
        INSERT INTO {table} ({', '.join(_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT (case_number) DO NOTHING
        RETURNING *
        """
        lookup_sql = f"""
        SELECT * FROM {table}
        WHERE (source_id IS NOT NULL AND source_id = %s)
           OR (source_url IS NOT NULL AND source_url = %s)
        ORDER BY created_at
        LIMIT 1
        """
        by_number_sql = f"SELECT * FROM {table} WHERE case_number = %s LIMIT 1"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(lookup_sql, (record.source_id, record.source_url))
                existing = cur.fetchone()
                if existing:
                    conn.commit()
                    return UpsertResult(self._row_to_case(existing), inserted=False)

                cur.execute(insert_sql, self._case_to_params(record))
                inserted = cur.fetchone()
                if inserted is None:
                    cur.execute(by_number_sql, (record.case_number,))
                    existing = cur.fetchone()
                    conn.commit()
                    return UpsertResult(self._row_to_case(existing), inserted=False)
                conn.commit()
                return UpsertResult(self._row_to_case(inserted), inserted=True)

        result = self._execute_with_retry(_op, "upsert_by_external_id")
        if result.inserted:
            logger.info(f"    [Saved precedent {result.record.case_number}]")
        else:
            logger.info(f"    [Already indexed: {result.record.case_number}]")
        return result

    def _update_embedding(self, precedent_id: str, embedding: Optional[list[float]], label: str) -> None:
        if not self._is_uuid(precedent_id):
            raise KeyError(f"Precedent not found: {precedent_id}")
        sql = f"""
        UPDATE {self.config.table_name}
        SET embedding = %s, indexed = %s
        WHERE id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (embedding, embedding is not None, precedent_id))
                updated = cur.rowcount
            conn.commit()
            return updated

        if not self._execute_with_retry(_op, label):
            raise KeyError(f"Precedent not found: {precedent_id}")

    def set_embedding(self, precedent_id: str, embedding: list[float]) -> None:
        self._update_embedding(precedent_id, list(embedding), "set_embedding")

    def clear_embedding(self, precedent_id: str) -> None:
        self._update_embedding(precedent_id, None, "clear_embedding")

    def stats(self) -> dict:
        table = self.config.table_name

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT COUNT(*) AS total, COUNT(embedding) AS embedded FROM {table}"
                )
                counts = cur.fetchone()
                cur.execute(f"SELECT source, COUNT(*) AS n FROM {table} GROUP BY source")
                by_source = {r["source"]: r["n"] for r in cur.fetchall()}
                cur.execute(
                    f"SELECT COUNT(DISTINCT s) AS n FROM {table}, unnest(ipc_sections) AS s"
                )
                sections = cur.fetchone()
            conn.commit()
            return {
                "total": counts["total"],
                "embedded": counts["embedded"],
                "by_source": by_source,
                "unique_ipc_sections": sections["n"],
            }

        return self._execute_with_retry(_op, "stats")
