"""Knowledge-base management: listing, statistics, rename and deletion.

Each knowledge base is one vector-store collection plus one registry
record.  Listing and statistics read the collection through projection
scans (no vectors).  Rename is a journaled copy: rows are rewritten into a
new collection, verified by count, and only then is the old collection
dropped.  A crash at any point leaves a journal entry that
:meth:`KnowledgeBaseService.recover_pending_renames` resolves on the next
start.
"""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING, Any

import structlog

from semantic_kb.models.knowledge_base import (
    ChunkSetInfo,
    ChunkTypeStats,
    DocumentInfo,
    KnowledgeBaseMetadata,
    KnowledgeBaseRecord,
    KnowledgeBaseStats,
    RenameJournalEntry,
)
from semantic_kb.utils.errors import (
    IngestionLockedError,
    KnowledgeBaseError,
    NotFoundError,
    SemanticKBError,
)
from semantic_kb.utils.naming import (
    DEFAULT_SCHEMA_VERSION,
    collection_name,
    knowledge_base_from_collection,
    sanitize_name,
)

if TYPE_CHECKING:
    from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
    from semantic_kb.interfaces.vector_store_provider import ICollectionHandle, IVectorStoreProvider
    from semantic_kb.models.store import ChunkRecord

logger = structlog.get_logger(logger_name=__name__)

MutationListener = Callable[[str], Awaitable[None]]

PHASE_COPYING = "copying"
PHASE_COMMITTING = "committing"

_COPY_BATCH_SIZE = 1000


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Re-raise collaborator failures inside the block as KnowledgeBaseError."""
    try:
        yield
    except (KnowledgeBaseError, NotFoundError, IngestionLockedError):
        raise
    except SemanticKBError as exc:
        raise KnowledgeBaseError(
            message=f"{action} failed: {exc.message}",
            provider_name=exc.provider_name,
        ) from exc


class KnowledgeBaseService:
    """Lists, inspects, renames and deletes knowledge bases.

    Parameters
    ----------
    vector_store:
        Store holding one collection per knowledge base.
    registry:
        Metadata records, rename journal and locks.
    schema_version:
        Collection layout version used to derive collection names.
    lock_ttl_seconds:
        TTL passed to the registry when rename/delete take the ingestion lock.
    clock:
        Returns the current time as an ISO-8601 UTC string.
    """

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        registry: IKnowledgeBaseRegistry,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        lock_ttl_seconds: float = 3600.0,
        clock: Callable[[], str] = _utcnow,
    ) -> None:
        self._vector_store = vector_store
        self._registry = registry
        self._schema_version = schema_version
        self._lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock
        self._listeners: list[MutationListener] = []

    def add_mutation_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def list_knowledge_bases(self) -> list[KnowledgeBaseMetadata]:
        """Return every knowledge base, tagged collections and empty records alike.

        Collections without the knowledge-base tag are not listed.  A failure
        reading one knowledge base is logged and reported with zero counts.
        """
        records = {r.name: r for r in await self._registry.list_records()}
        listed: dict[str, KnowledgeBaseMetadata] = {}

        with _store_errors("Listing knowledge bases"):
            collections = await self._vector_store.list_collections()

        for info in collections:
            if info.metadata.get("knowledge_base") is not True:
                continue
            name = info.metadata.get("kb_name") or knowledge_base_from_collection(
                info.name, self._schema_version
            )
            if not name:
                continue
            record = records.get(name)
            try:
                handle = await self._vector_store.open_collection(info.name)
                rows = await handle.query_all()
                chunk_count = await handle.count_rows()
            except Exception as exc:  # noqa: BLE001
                logger.warning("knowledge_base_metadata_failed", knowledge_base=name, error=str(exc))
                listed[name] = KnowledgeBaseMetadata(
                    name=name,
                    collection_name=info.name,
                    source_path=record.source_path if record else None,
                    last_ingestion=record.last_ingestion if record else None,
                )
                continue

            files = {r.file_path: r.document_type for r in rows}
            newest = max((r.ingestion_timestamp for r in rows), default=None)
            listed[name] = KnowledgeBaseMetadata(
                name=name,
                collection_name=info.name,
                chunk_count=chunk_count,
                file_count=len(files),
                document_types=dict(Counter(files.values())),
                source_path=record.source_path if record else None,
                last_ingestion=(record.last_ingestion if record else None) or newest,
            )

        for name, record in records.items():
            if name not in listed:
                listed[name] = KnowledgeBaseMetadata(
                    name=name,
                    collection_name=record.collection_name,
                    source_path=record.source_path,
                    last_ingestion=record.last_ingestion,
                )

        return [listed[name] for name in sorted(listed)]

    async def get_stats(self, name: str) -> KnowledgeBaseStats:
        """Full statistics for one knowledge base.

        Raises
        ------
        NotFoundError
            If the knowledge base has no collection.
        KnowledgeBaseError
            If the vector store cannot be read.
        """
        kb = self._sanitize(name)
        with _store_errors(f"Reading statistics of '{kb}'"):
            handle = await self._open(kb)
            rows = await handle.query_all()
        record = await self._registry.get_record(kb)

        files = {r.file_path: r.document_type for r in rows}
        chunk_types = Counter(r.chunk_type for r in rows)
        chunk_sets = Counter(r.ingestion_timestamp for r in rows)

        return KnowledgeBaseStats(
            name=kb,
            collection_name=handle.name,
            chunk_count=len(rows),
            file_count=len(files),
            chunk_types=[
                ChunkTypeStats(type=t, count=c)
                for t, c in sorted(chunk_types.items(), key=lambda item: (-item[1], item[0]))
            ],
            document_types=dict(Counter(files.values())),
            size_bytes=sum(len(r.content.encode("utf-8")) for r in rows),
            last_ingestion=max(chunk_sets, default=None),
            chunk_sets=[
                ChunkSetInfo(ingestion_timestamp=ts, chunk_count=c)
                for ts, c in sorted(chunk_sets.items())
            ],
            source_path=record.source_path if record else None,
        )

    async def list_documents(self, name: str) -> list[DocumentInfo]:
        """Per-file chunk counts, content size and latest ingestion for *name*."""
        kb = self._sanitize(name)
        with _store_errors(f"Listing documents of '{kb}'"):
            handle = await self._open(kb)
            rows = await handle.query_all()
        documents: dict[str, dict[str, Any]] = {}
        for row in rows:
            doc = documents.setdefault(
                row.file_path,
                {"document_type": row.document_type, "chunk_count": 0, "size_bytes": 0, "last_ingestion": ""},
            )
            doc["chunk_count"] += 1
            doc["size_bytes"] += len(row.content.encode("utf-8"))
            doc["last_ingestion"] = max(doc["last_ingestion"], row.ingestion_timestamp)
        return [DocumentInfo(file_path=path, **doc) for path, doc in sorted(documents.items())]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_knowledge_base(self, name: str) -> KnowledgeBaseMetadata:
        """Register an empty knowledge base.

        No collection is created; the first ingested batch creates it and
        fixes its vector dimension.
        """
        kb = self._sanitize(name)
        coll = collection_name(kb, self._schema_version)
        owner = self._lock_owner()
        await self._registry.acquire_lock(kb, owner, self._lock_ttl_seconds)
        try:
            with _store_errors(f"Creating '{kb}'"):
                await self._ensure_absent(kb, coll)
            now = self._clock()
            await self._registry.upsert_record(
                KnowledgeBaseRecord(name=kb, collection_name=coll, created_at=now, updated_at=now)
            )
        finally:
            await self._registry.release_lock(kb, owner)
        logger.info("knowledge_base_created", knowledge_base=kb)
        return KnowledgeBaseMetadata(name=kb, collection_name=coll)

    async def delete(self, name: str) -> None:
        """Drop the knowledge base's collection and registry record.

        Raises
        ------
        NotFoundError
            If neither a collection nor a record exists.
        KnowledgeBaseError
            If the vector store fails.
        """
        kb = self._sanitize(name)
        coll = collection_name(kb, self._schema_version)
        with _store_errors(f"Deleting '{kb}'"):
            exists = await self._vector_store.collection_exists(coll)
            if not exists and await self._registry.get_record(kb) is None:
                raise NotFoundError("knowledge base", kb)

            owner = self._lock_owner()
            await self._registry.acquire_lock(kb, owner, self._lock_ttl_seconds)
            try:
                if exists:
                    await self._vector_store.delete_collection(coll)
                await self._registry.delete_record(kb)
            finally:
                await self._registry.release_lock(kb, owner)
        logger.info("knowledge_base_deleted", knowledge_base=kb)
        await self._notify(kb)

    async def delete_chunk_set(self, name: str, ingestion_timestamp: str) -> int:
        """Delete every row of one ingestion run; return how many were removed.

        A timestamp with no rows returns 0 without issuing a delete.
        """
        kb = self._sanitize(name)
        where = {"ingestion_timestamp": ingestion_timestamp}
        with _store_errors(f"Deleting chunk set {ingestion_timestamp} of '{kb}'"):
            handle = await self._open(kb)
            count = await handle.count_rows(where)
            if count == 0:
                return 0
            deleted = await handle.delete_where(where)
            logger.info(
                "chunk_set_deleted",
                knowledge_base=kb,
                ingestion_timestamp=ingestion_timestamp,
                deleted=deleted,
            )
            await self._refresh_record(kb, handle)
        await self._notify(kb)
        return count

    async def delete_document(self, name: str, file_path: str) -> int:
        """Delete every chunk of one source file; return how many were removed.

        Raises
        ------
        KnowledgeBaseError
            If *file_path* is empty, absolute or escapes the knowledge base
            with ``..``.
        """
        if not file_path or not file_path.strip():
            raise KnowledgeBaseError("File path must not be empty")
        posix = PurePosixPath(file_path.replace("\\", "/"))
        if posix.is_absolute() or PureWindowsPath(file_path).is_absolute():
            raise KnowledgeBaseError(f"File path must be relative: {file_path}")
        if ".." in posix.parts:
            raise KnowledgeBaseError(f"File path must not contain '..': {file_path}")

        kb = self._sanitize(name)
        where = {"file_path": posix.as_posix()}
        with _store_errors(f"Deleting document '{posix.as_posix()}' of '{kb}'"):
            handle = await self._open(kb)
            count = await handle.count_rows(where)
            if count == 0:
                return 0
            await handle.delete_where(where)
            logger.info("document_deleted", knowledge_base=kb, file_path=posix.as_posix(), deleted=count)
            await self._refresh_record(kb, handle)
        await self._notify(kb)
        return count

    async def rename(self, old_name: str, new_name: str) -> KnowledgeBaseMetadata:
        """Rename a knowledge base by copying its rows into a new collection.

        Every row is stamped with ``knowledge_base=new``, ``renamed_from=old``
        and ``renamed_at``.  The old collection is dropped only after the new
        one holds exactly as many rows.  Both names are locked for the whole
        copy, so no ingestion can write to either side meanwhile.

        Raises
        ------
        NotFoundError
            If *old_name* does not exist.
        IngestionLockedError
            If either name is locked by another run.
        KnowledgeBaseError
            If the names collide, *new_name* exists, the vector store fails,
            or the copy cannot be verified.
        """
        old = self._sanitize(old_name)
        new = self._sanitize(new_name)
        if old == new:
            raise KnowledgeBaseError(f"Old and new names are the same: '{old}'")

        old_coll = collection_name(old, self._schema_version)
        new_coll = collection_name(new, self._schema_version)

        with _store_errors(f"Renaming '{old}' to '{new}'"):
            source = await self._open(old)
            await self._ensure_absent(new, new_coll)

            owner = self._lock_owner()
            locked = await self._acquire_locks([old, new], owner)
            try:
                # Another writer may have claimed the name before we held its lock.
                await self._ensure_absent(new, new_coll)
                expected = await source.count_rows()
                token = uuid.uuid4().hex
                await self._registry.begin_rename(
                    RenameJournalEntry(
                        old_name=old,
                        new_name=new,
                        old_collection=old_coll,
                        new_collection=new_coll,
                        phase=PHASE_COPYING,
                        expected_rows=expected,
                        started_at=self._clock(),
                        rename_token=token,
                    )
                )
                try:
                    target = await self._copy_rows(source, old, new, new_coll, token)
                    copied = await target.count_rows()
                    if copied != expected:
                        raise KnowledgeBaseError(
                            f"Rename verification failed: copied {copied} of {expected} rows"
                        )
                except Exception:
                    await self._drop_rename_target(new_coll, token)
                    await self._registry.clear_rename(old)
                    logger.error("knowledge_base_rename_rolled_back", old=old, new=new)
                    raise

                await self._registry.set_rename_phase(old, PHASE_COMMITTING)
                await self._commit_rename(old, new, old_coll, new_coll)
            finally:
                await self._release_locks(locked, owner)

        logger.info("knowledge_base_renamed", old=old, new=new, rows=expected)
        await self._notify(old)
        await self._notify(new)
        return KnowledgeBaseMetadata(name=new, collection_name=new_coll, chunk_count=expected)

    async def recover_pending_renames(self) -> int:
        """Resolve renames interrupted by a crash; return how many were resolved.

        A rename that reached the commit phase, or whose new collection is
        its own and already complete, is rolled forward.  Anything else is
        rolled back; the new collection is dropped only if the interrupted
        rename created it.
        """
        entries = await self._registry.pending_renames()
        for entry in entries:
            with _store_errors(f"Recovering rename of '{entry.old_name}'"):
                complete = False
                if entry.phase != PHASE_COMMITTING:
                    target = await self._rename_target(entry.new_collection, entry.rename_token)
                    complete = target is not None and await target.count_rows() == entry.expected_rows

                if entry.phase == PHASE_COMMITTING or complete:
                    await self._registry.set_rename_phase(entry.old_name, PHASE_COMMITTING)
                    await self._commit_rename(
                        entry.old_name, entry.new_name, entry.old_collection, entry.new_collection
                    )
                    logger.warning("rename_rolled_forward", old=entry.old_name, new=entry.new_name)
                else:
                    await self._drop_rename_target(entry.new_collection, entry.rename_token)
                    await self._registry.clear_rename(entry.old_name)
                    logger.warning("rename_rolled_back", old=entry.old_name, new=entry.new_name)
        return len(entries)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _copy_rows(
        self,
        source: ICollectionHandle,
        old: str,
        new: str,
        new_coll: str,
        token: str,
    ) -> ICollectionHandle:
        renamed_at = self._clock()
        rows: list[ChunkRecord] = [
            r.with_updates(knowledge_base=new, renamed_from=old, renamed_at=renamed_at)
            for r in await source.query_all(include_vectors=True)
        ]
        metadata = {**source.metadata, "kb_name": new, "renamed_from": old, "rename_token": token}
        if rows:
            # Re-derived from the copied vectors.
            metadata.pop("embedding_dimension", None)

        target = await self._vector_store.create_collection_with_rows(
            new_coll, rows[:_COPY_BATCH_SIZE], metadata
        )
        if target.metadata.get("rename_token") != token:
            raise KnowledgeBaseError(f"Knowledge base '{new}' was created concurrently")
        for i in range(_COPY_BATCH_SIZE, len(rows), _COPY_BATCH_SIZE):
            await target.append_rows(rows[i : i + _COPY_BATCH_SIZE])
        return target

    async def _rename_target(self, coll: str, token: str) -> ICollectionHandle | None:
        """Open *coll* if it exists and was created by the rename holding *token*."""
        if not token or not await self._vector_store.collection_exists(coll):
            return None
        handle = await self._vector_store.open_collection(coll)
        if handle.metadata.get("rename_token") != token:
            return None
        return handle

    async def _drop_rename_target(self, coll: str, token: str) -> None:
        if await self._rename_target(coll, token) is None:
            if await self._vector_store.collection_exists(coll):
                logger.warning("rename_target_kept", collection=coll, reason="not created by this rename")
            return
        await self._vector_store.delete_collection(coll)

    async def _commit_rename(self, old: str, new: str, old_coll: str, new_coll: str) -> None:
        await self._registry.rename_record(old, new, new_coll)
        if await self._vector_store.collection_exists(old_coll):
            await self._vector_store.delete_collection(old_coll)
        await self._registry.clear_rename(old)

    async def _refresh_record(self, kb: str, handle: ICollectionHandle) -> None:
        record = await self._registry.get_record(kb)
        if record is None:
            return
        rows = await handle.query_all()
        files = {r.file_path: r.document_type for r in rows}
        await self._registry.upsert_record(
            record.model_copy(
                update={
                    "file_count": len(files),
                    "chunk_count": len(rows),
                    "document_types": dict(Counter(files.values())),
                    "last_ingestion": max((r.ingestion_timestamp for r in rows), default=None),
                    "updated_at": self._clock(),
                }
            )
        )

    async def _open(self, kb: str) -> ICollectionHandle:
        coll = collection_name(kb, self._schema_version)
        if not await self._vector_store.collection_exists(coll):
            raise NotFoundError("knowledge base", kb)
        return await self._vector_store.open_collection(coll)

    async def _ensure_absent(self, kb: str, coll: str) -> None:
        if await self._vector_store.collection_exists(coll) or await self._registry.get_record(kb):
            raise KnowledgeBaseError(f"Knowledge base '{kb}' already exists")

    async def _acquire_locks(self, names: list[str], owner: str) -> list[str]:
        """Lock *names* in sorted order; on failure release what was taken."""
        held: list[str] = []
        try:
            for kb in sorted(set(names)):
                await self._registry.acquire_lock(kb, owner, self._lock_ttl_seconds)
                held.append(kb)
        except BaseException:
            await self._release_locks(held, owner)
            raise
        return held

    async def _release_locks(self, names: list[str], owner: str) -> None:
        for kb in reversed(names):
            await self._registry.release_lock(kb, owner)

    @staticmethod
    def _sanitize(name: str) -> str:
        try:
            return sanitize_name(name)
        except ValueError as exc:
            raise KnowledgeBaseError(str(exc)) from exc

    @staticmethod
    def _lock_owner() -> str:
        return f"kb-service:{uuid.uuid4().hex[:8]}"

    async def _notify(self, kb: str) -> None:
        for listener in self._listeners:
            try:
                await listener(kb)
            except Exception as exc:  # noqa: BLE001
                logger.warning("mutation_listener_failed", knowledge_base=kb, error=str(exc))
