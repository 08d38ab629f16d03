"""
Record store: persistence for signed provenance records.

Records are append-only. A record is created once with a single atomic
INSERT and removed only by a single atomic DELETE after the caller has
checked the action authorization; there is no update path.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
import structlog
from psycopg2 import extras
from psycopg2.pool import SimpleConnectionPool

from imprint import config
from imprint.models.record import ProvenanceRecord, UsagePolicy

from .errors import RecordStoreError
from .utils import new_record_id, parse_iso8601

__all__ = [
    "SCHEMA_SQL",
    "RecordStore",
    "PostgresRecordStore",
    "InMemoryRecordStore",
    "create_record_store",
]

logger = structlog.get_logger()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS provenance_records (
    id TEXT PRIMARY KEY,
    schema_version TEXT NOT NULL DEFAULT '1.0',
    title TEXT NOT NULL,
    description TEXT,
    file_name TEXT NOT NULL,
    file_size BIGINT NOT NULL,
    content_type TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    perceptual_hash TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    display_name TEXT NOT NULL,
    creator_id TEXT NOT NULL,
    public_key TEXT NOT NULL,
    signature_algorithm TEXT NOT NULL DEFAULT 'Ed25519',
    signed_payload_hash TEXT NOT NULL,
    signature TEXT NOT NULL,
    signed_at TEXT NOT NULL,
    signed_at_ts TIMESTAMPTZ NOT NULL,
    license TEXT NOT NULL,
    ai_training TEXT NOT NULL,
    ai_derivative_generation TEXT NOT NULL,
    commercial_use TEXT NOT NULL,
    attribution_required BOOLEAN NOT NULL,
    policy_note TEXT NOT NULL DEFAULT '',
    policy_hash TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_provenance_records_content_hash ON provenance_records(content_hash);
CREATE INDEX IF NOT EXISTS idx_provenance_records_creator_id ON provenance_records(creator_id);
CREATE INDEX IF NOT EXISTS idx_provenance_records_perceptual_hash ON provenance_records(perceptual_hash);
CREATE INDEX IF NOT EXISTS idx_provenance_records_signed_at_ts ON provenance_records(signed_at_ts);
"""

RECORD_COLUMNS = [
    "id", "schema_version", "title", "description", "file_name", "file_size",
    "content_type", "content_hash", "perceptual_hash", "created_at",
    "display_name", "creator_id", "public_key", "signature_algorithm",
    "signed_payload_hash", "signature", "signed_at", "license", "ai_training",
    "ai_derivative_generation", "commercial_use", "attribution_required",
    "policy_note", "policy_hash",
]

POLICY_COLUMNS = [
    "license", "ai_training", "ai_derivative_generation",
    "commercial_use", "attribution_required", "policy_note",
]


def record_from_row(row: Dict[str, Any]) -> ProvenanceRecord:
    """Map a flat table row back to a record with its nested usage policy."""
    row = dict(row)
    policy = {name: row.pop(name) for name in POLICY_COLUMNS}
    if policy["policy_note"] is None:
        policy["policy_note"] = ""
    row.pop("signed_at_ts", None)
    return ProvenanceRecord(**row, usage_policy=UsagePolicy(**policy))


def row_from_record(record: ProvenanceRecord) -> Dict[str, Any]:
    row = record.model_dump(exclude={"usage_policy"})
    row.update(record.usage_policy.to_payload())
    row["signed_at_ts"] = parse_iso8601(record.signed_at)
    return row


def _signed_order(record: ProvenanceRecord):
    return (parse_iso8601(record.signed_at), record.created_at)


class RecordStore(ABC):
    """Repository contract consumed by the resolver and the HTTP layer."""

    @abstractmethod
    def create(self, record: ProvenanceRecord) -> str:
        """Persist a record atomically and return its id."""

    @abstractmethod
    def find_by_content_hash(self, content_hash: str) -> List[ProvenanceRecord]:
        """Records with this exact content hash, earliest signed_at first."""

    @abstractmethod
    def find_all_with_perceptual_hash(self) -> List[ProvenanceRecord]:
        """Every record that carries a perceptual hash."""

    @abstractmethod
    def find_by_id(self, record_id: str) -> Optional[ProvenanceRecord]:
        ...

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete a record; False when it did not exist."""

    @abstractmethod
    def list_recent(self, limit: int = config.RECORD_LIST_LIMIT) -> List[ProvenanceRecord]:
        """Most recently signed records first."""

    def check_connection(self) -> bool:
        return True

    def stats(self) -> Dict[str, Any]:
        return {}

    def close(self) -> None:
        pass


class PostgresRecordStore(RecordStore):
    """Record store backed by a psycopg2 connection pool."""

    def __init__(
        self,
        dsn: str = config.DB_DSN,
        min_connections: int = config.DB_MIN_CONNECTIONS,
        max_connections: int = config.DB_MAX_CONNECTIONS,
    ):
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool: Optional[SimpleConnectionPool] = None
        self._pool_lock = threading.Lock()

    def _get_pool(self) -> SimpleConnectionPool:
        with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = SimpleConnectionPool(self.min_connections, self.max_connections, self.dsn)
                except psycopg2.Error as e:
                    logger.error("Failed to initialize connection pool", error=str(e))
                    raise RecordStoreError("Record store unavailable") from e
                logger.info("Postgres connection pool initialized",
                            min_connections=self.min_connections,
                            max_connections=self.max_connections)
            return self._pool

    @contextmanager
    def get_connection(self):
        """Pooled connection; rolled back on any error and always returned to the pool."""
        pool = self._get_pool()
        conn = None
        try:
            conn = pool.getconn()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database operation failed", error=str(e))
            if isinstance(e, psycopg2.Error):
                raise RecordStoreError(f"Database operation failed: {e.__class__.__name__}") from e
            raise
        finally:
            if conn:
                pool.putconn(conn)

    def init_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("Provenance schema ensured")

    def _fetch(self, sql: str, params=()) -> List[ProvenanceRecord]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [record_from_row(row) for row in rows]

    def create(self, record: ProvenanceRecord) -> str:
        row = row_from_record(record)
        columns = list(row.keys())
        sql = "INSERT INTO provenance_records ({}) VALUES ({})".format(
            ", ".join(columns), ", ".join(["%s"] * len(columns))
        )
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, [row[c] for c in columns])
            conn.commit()

        logger.info("Provenance record inserted", record_id=record.id, creator_id=record.creator_id)
        return record.id

    def find_by_content_hash(self, content_hash: str) -> List[ProvenanceRecord]:
        sql = f"""
        SELECT {", ".join(RECORD_COLUMNS)} FROM provenance_records
        WHERE content_hash = %s
        ORDER BY signed_at_ts ASC, created_at ASC
        """
        return self._fetch(sql, (content_hash,))

    def find_all_with_perceptual_hash(self) -> List[ProvenanceRecord]:
        sql = f"""
        SELECT {", ".join(RECORD_COLUMNS)} FROM provenance_records
        WHERE perceptual_hash IS NOT NULL
        """
        return self._fetch(sql)

    def find_by_id(self, record_id: str) -> Optional[ProvenanceRecord]:
        sql = f"SELECT {', '.join(RECORD_COLUMNS)} FROM provenance_records WHERE id = %s"
        records = self._fetch(sql, (record_id,))
        return records[0] if records else None

    def delete(self, record_id: str) -> bool:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM provenance_records WHERE id = %s", (record_id,))
                deleted = cur.rowcount
            conn.commit()
        return deleted > 0

    def list_recent(self, limit: int = config.RECORD_LIST_LIMIT) -> List[ProvenanceRecord]:
        sql = f"""
        SELECT {", ".join(RECORD_COLUMNS)} FROM provenance_records
        ORDER BY signed_at_ts DESC, created_at DESC
        LIMIT %s
        """
        return self._fetch(sql, (limit,))

    def check_connection(self) -> bool:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    result = cur.fetchone()
            return result[0] == 1
        except Exception as e:
            logger.error("Database connection check failed", error=str(e))
            return False

    def stats(self) -> Dict[str, Any]:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        SELECT
                            COUNT(*),
                            COUNT(perceptual_hash),
                            COUNT(DISTINCT creator_id),
                            (SELECT version())
                        FROM provenance_records
                    """)
                    result = cur.fetchone()
            return {
                "record_count": result[0],
                "perceptual_hash_count": result[1],
                "creator_count": result[2],
                "postgres_version": result[3],
                "store_type": "postgres",
            }
        except Exception as e:
            logger.error("Failed to get database stats", error=str(e))
            return {"error": str(e), "store_type": "postgres"}

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None


class InMemoryRecordStore(RecordStore):
    """Process-local record store with the same ordering semantics as Postgres."""

    def __init__(self):
        self._records: Dict[str, ProvenanceRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: ProvenanceRecord) -> str:
        record_id = record.id or new_record_id()
        with self._lock:
            if record_id in self._records:
                raise RecordStoreError(f"Record {record_id} already exists")
            self._records[record_id] = record.model_copy(update={"id": record_id})
        logger.info("Provenance record stored", record_id=record_id, creator_id=record.creator_id)
        return record_id

    def _snapshot(self) -> List[ProvenanceRecord]:
        with self._lock:
            return list(self._records.values())

    def find_by_content_hash(self, content_hash: str) -> List[ProvenanceRecord]:
        matches = [r for r in self._snapshot() if r.content_hash == content_hash]
        return sorted(matches, key=_signed_order)

    def find_all_with_perceptual_hash(self) -> List[ProvenanceRecord]:
        return [r for r in self._snapshot() if r.perceptual_hash is not None]

    def find_by_id(self, record_id: str) -> Optional[ProvenanceRecord]:
        with self._lock:
            return self._records.get(record_id)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def list_recent(self, limit: int = config.RECORD_LIST_LIMIT) -> List[ProvenanceRecord]:
        return sorted(self._snapshot(), key=_signed_order, reverse=True)[:limit]

    def stats(self) -> Dict[str, Any]:
        records = self._snapshot()
        return {
            "record_count": len(records),
            "perceptual_hash_count": sum(1 for r in records if r.perceptual_hash is not None),
            "creator_count": len({r.creator_id for r in records}),
            "store_type": "memory",
        }


def create_record_store(kind: Optional[str] = None) -> RecordStore:
    """Build the configured record store backend."""
    kind = (kind or config.RECORD_STORE).lower()
    if kind == "memory":
        return InMemoryRecordStore()
    if kind == "postgres":
        return PostgresRecordStore()
    raise ValueError(f"Unknown record store backend: {kind}")
