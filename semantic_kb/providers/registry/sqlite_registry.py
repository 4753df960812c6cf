"""SQLite-backed knowledge-base registry.

Persists per-knowledge-base metadata records, the rename journal and
ingestion lock rows to a local SQLite database (default
``data/registry.db``).  Uses ``aiosqlite`` for async I/O; every call opens
its own short-lived connection so separate processes can share the file.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
from semantic_kb.models.knowledge_base import KnowledgeBaseRecord, RenameJournalEntry
from semantic_kb.utils.errors import IngestionLockedError, KnowledgeBaseError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/registry.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS kb_metadata (
    name                TEXT PRIMARY KEY,
    collection_name     TEXT    NOT NULL,
    source_path         TEXT,
    file_count          INTEGER NOT NULL DEFAULT 0,
    chunk_count         INTEGER NOT NULL DEFAULT 0,
    document_types      TEXT    NOT NULL DEFAULT '{}',
    last_ingestion      TEXT,
    embedding_model     TEXT,
    embedding_dimension INTEGER,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS rename_journal (
    old_name        TEXT PRIMARY KEY,
    new_name        TEXT    NOT NULL,
    old_collection  TEXT    NOT NULL,
    new_collection  TEXT    NOT NULL,
    phase           TEXT    NOT NULL,
    expected_rows   INTEGER NOT NULL DEFAULT 0,
    started_at      TEXT    NOT NULL,
    rename_token    TEXT    NOT NULL DEFAULT ''
);
""",
    """\
CREATE TABLE IF NOT EXISTS ingestion_locks (
    name        TEXT PRIMARY KEY,
    owner       TEXT NOT NULL,
    acquired_at REAL NOT NULL
);
""",
]

_UPSERT_RECORD_SQL = """\
INSERT INTO kb_metadata (
    name, collection_name, source_path, file_count, chunk_count, document_types,
    last_ingestion, embedding_model, embedding_dimension, created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(name)
DO UPDATE SET collection_name     = excluded.collection_name,
              source_path         = excluded.source_path,
              file_count          = excluded.file_count,
              chunk_count         = excluded.chunk_count,
              document_types      = excluded.document_types,
              last_ingestion      = excluded.last_ingestion,
              embedding_model     = excluded.embedding_model,
              embedding_dimension = excluded.embedding_dimension,
              updated_at          = excluded.updated_at;
"""

_SELECT_RECORD_SQL = """\
SELECT name, collection_name, source_path, file_count, chunk_count, document_types,
       last_ingestion, embedding_model, embedding_dimension, created_at, updated_at
FROM kb_metadata
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _row_to_record(row: aiosqlite.Row) -> KnowledgeBaseRecord:
    data = dict(row)
    data["document_types"] = json.loads(data.get("document_types") or "{}")
    return KnowledgeBaseRecord(**data)


class SQLiteKnowledgeBaseRegistry(IKnowledgeBaseRegistry):
    """SQLite-backed registry of knowledge-base metadata, renames and locks.

    Parameters
    ----------
    db_path:
        Database file; parent directories are created on initialise.
    clock:
        Wall-clock source (epoch seconds) for lock ages.  Injectable for tests.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock

    async def initialize(self) -> None:
        """Create the tables if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            await db.commit()
        logger.info("registry_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Metadata records
    # ------------------------------------------------------------------

    async def get_record(self, name: str) -> KnowledgeBaseRecord | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_RECORD_SQL + "WHERE name = ?", (name,))
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def list_records(self) -> list[KnowledgeBaseRecord]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_RECORD_SQL + "ORDER BY name")
            rows = await cursor.fetchall()
        return [_row_to_record(r) for r in rows]

    async def upsert_record(self, record: KnowledgeBaseRecord) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_RECORD_SQL,
                (
                    record.name,
                    record.collection_name,
                    record.source_path,
                    record.file_count,
                    record.chunk_count,
                    json.dumps(record.document_types, sort_keys=True),
                    record.last_ingestion,
                    record.embedding_model,
                    record.embedding_dimension,
                    record.created_at,
                    record.updated_at,
                ),
            )
            await db.commit()
        logger.debug("registry_record_upserted", name=record.name)

    async def delete_record(self, name: str) -> bool:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM kb_metadata WHERE name = ?", (name,))
            await db.commit()
            deleted = cursor.rowcount > 0
        logger.debug("registry_record_deleted", name=name, existed=deleted)
        return deleted

    async def rename_record(self, old_name: str, new_name: str, new_collection: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM kb_metadata WHERE name = ?", (new_name,))
            await db.execute(
                "UPDATE kb_metadata SET name = ?, collection_name = ?, updated_at = ? "
                "WHERE name = ?",
                (new_name, new_collection, _utcnow(), old_name),
            )
            await db.commit()

    # ------------------------------------------------------------------
    # Rename journal
    # ------------------------------------------------------------------

    async def begin_rename(self, entry: RenameJournalEntry) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            try:
                await db.execute(
                    "INSERT INTO rename_journal (old_name, new_name, old_collection, "
                    "new_collection, phase, expected_rows, started_at, rename_token) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        entry.old_name,
                        entry.new_name,
                        entry.old_collection,
                        entry.new_collection,
                        entry.phase,
                        entry.expected_rows,
                        entry.started_at,
                        entry.rename_token,
                    ),
                )
            except aiosqlite.IntegrityError as exc:
                raise KnowledgeBaseError(
                    message=f"A rename of '{entry.old_name}' is already in progress",
                    provider_name=self.get_provider_name(),
                ) from exc
            await db.commit()

    async def set_rename_phase(self, old_name: str, phase: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE rename_journal SET phase = ? WHERE old_name = ?", (phase, old_name)
            )
            await db.commit()

    async def clear_rename(self, old_name: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM rename_journal WHERE old_name = ?", (old_name,))
            await db.commit()

    async def pending_renames(self) -> list[RenameJournalEntry]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT old_name, new_name, old_collection, new_collection, phase, "
                "expected_rows, started_at, rename_token FROM rename_journal ORDER BY started_at"
            )
            rows = await cursor.fetchall()
        return [RenameJournalEntry(**dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Ingestion locks
    # ------------------------------------------------------------------

    async def acquire_lock(self, name: str, owner: str, ttl_seconds: float) -> None:
        now = self._clock()
        async with aiosqlite.connect(str(self._db_path)) as db:
            # IMMEDIATE takes the write lock up front so check-then-set is atomic
            # across processes.
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT owner, acquired_at FROM ingestion_locks WHERE name = ?", (name,)
            )
            row: Any = await cursor.fetchone()
            if row is not None:
                holder, acquired_at = row[0], float(row[1])
                if holder != owner and now - acquired_at < ttl_seconds:
                    await db.rollback()
                    raise IngestionLockedError(name, owner=holder)
                if holder != owner:
                    logger.warning(
                        "ingestion_lock_stale_taken_over",
                        knowledge_base=name,
                        previous_owner=holder,
                        age_seconds=round(now - acquired_at, 1),
                    )
            await db.execute(
                "INSERT INTO ingestion_locks (name, owner, acquired_at) VALUES (?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET owner = excluded.owner, "
                "acquired_at = excluded.acquired_at",
                (name, owner, now),
            )
            await db.commit()
        logger.debug("ingestion_lock_acquired", knowledge_base=name, owner=owner)

    async def release_lock(self, name: str, owner: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "DELETE FROM ingestion_locks WHERE name = ? AND owner = ?", (name, owner)
            )
            await db.commit()
        logger.debug("ingestion_lock_released", knowledge_base=name, owner=owner)

    def get_provider_name(self) -> str:
        return "sqlite_registry"
