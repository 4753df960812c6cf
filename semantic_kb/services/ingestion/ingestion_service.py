"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **scan -> convert -> chunk -> embed -> store**.

The :class:`IngestionService` implements the **Orchestrator pattern**: it
coordinates five collaborators (file scanner, document converter, chunker,
embedding provider, vector store) plus the knowledge-base registry, without
any of them knowing about each other.  All dependencies are injected via the
constructor.

Consistency rules enforced here:

* Files are processed in fixed-size batches, strictly sequentially; each
  batch's chunks are embedded with one call and written with one call, so a
  reader mid-ingestion sees a prefix of the final chunk set.
* A conversion or chunking failure skips that file only.  An embedding or
  storage failure aborts the run with :class:`IngestionError`.
* A chunk whose embedding comes back ``None`` is not stored but still counts
  towards ``chunks_created``.
* Every row of a run carries the run's ingestion timestamp, unique and
  strictly increasing per knowledge base, so runs can be pruned
  independently.
* The run holds the knowledge base's ingestion lock from start to finish.
"""

from __future__ import annotations

import asyncio
import os
import socket
import time
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from semantic_kb.models.document import DocumentChunk, ScannedFile, ScanStatistics
from semantic_kb.models.ingestion import FileError, FileIngestionResult, IngestionStats
from semantic_kb.models.knowledge_base import KnowledgeBaseRecord
from semantic_kb.models.store import ChunkRecord
from semantic_kb.services.ingestion.chunker import DocumentChunker
from semantic_kb.services.ingestion.file_scanner import FileScanner
from semantic_kb.utils.errors import IngestionError, SemanticKBError
from semantic_kb.utils.naming import DEFAULT_SCHEMA_VERSION, collection_name, sanitize_name

if TYPE_CHECKING:
    from semantic_kb.interfaces.document_converter import IDocumentConverter
    from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
    from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
    from semantic_kb.interfaces.vector_store_provider import ICollectionHandle, IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[str, int, int], None]
MutationListener = Callable[[str], Awaitable[None]]

PHASE_SCANNING = "scanning"
PHASE_PROCESSING = "processing"
PHASE_EMBEDDING = "embedding"
PHASE_STORING = "storing"


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _lock_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class IngestionService:
    """Ingests directories or explicit file lists into a named knowledge base.

    Parameters
    ----------
    file_scanner:
        Walks and classifies directory sources.
    converter:
        Turns a file into normalised text.
    chunker:
        Splits normalised text into chunks.
    embedding_provider:
        Embeds chunk text; initialised on first ingestion.
    vector_store:
        Holds one collection per knowledge base.
    registry:
        Metadata records and ingestion locks.
    batch_size:
        Files per batch.
    schema_version:
        Collection layout version used in collection names.
    lock_ttl_seconds:
        Age after which another run's lock is considered abandoned.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        file_scanner: FileScanner,
        converter: IDocumentConverter,
        chunker: DocumentChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        registry: IKnowledgeBaseRegistry,
        batch_size: int = 100,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        lock_ttl_seconds: float = 3600.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._scanner = file_scanner
        self._converter = converter
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._registry = registry
        self._batch_size = batch_size
        self._schema_version = schema_version
        self._lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_timestamps: dict[str, str] = {}
        self._listeners: list[MutationListener] = []

    def add_mutation_listener(self, listener: MutationListener) -> None:
        """Register *listener* to be awaited with the knowledge-base name after each run that wrote rows."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        name: str,
        source: str | Path | Sequence[str | Path],
        *,
        respect_ignore_files: bool = True,
        replace_existing: bool = False,
        progress_callback: ProgressCallback | None = None,
    ) -> IngestionStats:
        """Ingest a directory, a single file, or a list of files into *name*.

        Per-file errors of explicit file lists are only available through
        :meth:`ingest_files`; here they are reflected in ``files_failed``.

        Raises
        ------
        IngestionError
            If a single *source* path does not exist.
        """
        if isinstance(source, str | Path) and not Path(source).exists():
            raise IngestionError(f"Source path does not exist: {source}")
        if isinstance(source, str | Path) and Path(source).is_dir():
            return await self.ingest_directory(
                name,
                source,
                respect_ignore_files=respect_ignore_files,
                replace_existing=replace_existing,
                progress_callback=progress_callback,
            )
        files = [source] if isinstance(source, str | Path) else list(source)
        result = await self.ingest_files(
            name,
            files,
            replace_existing=replace_existing,
            progress_callback=progress_callback,
        )
        return result.stats

    async def ingest_directory(
        self,
        name: str,
        source_path: str | Path,
        *,
        respect_ignore_files: bool = True,
        replace_existing: bool = False,
        progress_callback: ProgressCallback | None = None,
    ) -> IngestionStats:
        """Scan *source_path* and ingest every supported file.

        Raises
        ------
        IngestionError
            If the path is not a directory, the embedding provider fails, or
            the vector store rejects a write.
        """
        self._emit(progress_callback, PHASE_SCANNING, 0, 0)
        scan = await asyncio.to_thread(
            self._scanner.scan, source_path, respect_ignore_files=respect_ignore_files
        )
        stats = scan.statistics
        self._emit(progress_callback, PHASE_SCANNING, stats.total_files, stats.total_files)

        result_stats, _ = await self._run(
            name,
            scan.files,
            stats,
            source_path=scan.root,
            replace_existing=replace_existing,
            progress_callback=progress_callback,
        )
        return result_stats

    async def ingest_files(
        self,
        name: str,
        files: Sequence[str | Path],
        *,
        replace_existing: bool = False,
        progress_callback: ProgressCallback | None = None,
    ) -> FileIngestionResult:
        """Ingest an explicit list of files, returning statistics plus per-file errors."""
        candidates = [self._scanner.classify(f) for f in files]
        stats = FileScanner.summarize(candidates)
        self._emit(progress_callback, PHASE_SCANNING, stats.total_files, stats.total_files)
        source_path = str(Path(files[0]).resolve().parent) if len(files) == 1 else None
        result_stats, errors = await self._run(
            name,
            candidates,
            stats,
            source_path=source_path,
            replace_existing=replace_existing,
            progress_callback=progress_callback,
        )
        return FileIngestionResult(stats=result_stats, errors=errors)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(
        self,
        name: str,
        candidates: list[ScannedFile],
        scan_stats: ScanStatistics,
        source_path: str | None,
        replace_existing: bool,
        progress_callback: ProgressCallback | None,
    ) -> tuple[IngestionStats, list[FileError]]:
        try:
            kb = sanitize_name(name)
        except ValueError as exc:
            raise IngestionError(str(exc)) from exc

        try:
            await self._embedding_provider.initialize()
        except SemanticKBError as exc:
            raise IngestionError(
                message=f"Embedding provider could not be initialised: {exc}",
                provider_name=self._embedding_provider.get_provider_name(),
            ) from exc

        owner = _lock_owner()
        await self._registry.acquire_lock(kb, owner, self._lock_ttl_seconds)
        try:
            with structlog.contextvars.bound_contextvars(kb_name=kb):
                return await self._run_locked(
                    kb, candidates, scan_stats, source_path, replace_existing, progress_callback
                )
        finally:
            await self._registry.release_lock(kb, owner)

    async def _run_locked(
        self,
        kb: str,
        candidates: list[ScannedFile],
        scan_stats: ScanStatistics,
        source_path: str | None,
        replace_existing: bool,
        progress_callback: ProgressCallback | None,
    ) -> tuple[IngestionStats, list[FileError]]:
        start_time = time.monotonic()
        coll_name = collection_name(kb, self._schema_version)
        record = await self._registry.get_record(kb)
        timestamp = self._next_timestamp(kb, record)
        handle = await self._open_existing(coll_name)

        supported = [f for f in candidates if f.supported]
        batches = [
            supported[i : i + self._batch_size] for i in range(0, len(supported), self._batch_size)
        ]
        logger.info(
            "ingestion_started",
            knowledge_base=kb,
            ingestion_timestamp=timestamp,
            supported_files=len(supported),
            batches=len(batches),
        )

        errors: list[FileError] = []
        files_processed = 0
        chunks_created = 0
        chunks_stored = 0
        chunks_failed_embedding = 0
        files_done = 0

        for batch_no, batch in enumerate(batches, start=1):
            pending: list[tuple[ScannedFile, DocumentChunk]] = []
            for scanned in batch:
                try:
                    conversion = await self._converter.convert(scanned.path)
                    chunks = self._chunker.chunk(conversion.text, scanned.document_type or "text")
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "file_processing_failed",
                        knowledge_base=kb,
                        file=scanned.relative_path,
                        error=str(exc),
                    )
                    errors.append(FileError(file_path=scanned.relative_path, error=str(exc)))
                else:
                    files_processed += 1
                    chunks_created += len(chunks)
                    pending.extend((scanned, c) for c in chunks)
                files_done += 1
            self._emit(progress_callback, PHASE_PROCESSING, files_done, len(supported))

            if not pending:
                continue

            vectors = await self._embed_batch(kb, [c.content for _, c in pending])
            self._emit(progress_callback, PHASE_EMBEDDING, batch_no, len(batches))

            rows: list[ChunkRecord] = []
            for (scanned, chunk), vector in zip(pending, vectors, strict=True):
                if vector is None:
                    chunks_failed_embedding += 1
                    continue
                rows.append(self._to_row(kb, timestamp, chunks_stored + len(rows), scanned, chunk, vector))

            if rows:
                handle = await self._store_batch(kb, coll_name, handle, rows)
                chunks_stored += len(rows)
            self._emit(progress_callback, PHASE_STORING, batch_no, len(batches))
            logger.info(
                "ingestion_batch_stored",
                knowledge_base=kb,
                batch=batch_no,
                of=len(batches),
                rows=len(rows),
                dropped=len(pending) - len(rows),
            )

        if handle is not None:
            try:
                if replace_existing and chunks_stored > 0:
                    await self._prune_other_runs(kb, handle, timestamp)
                await self._update_record(kb, coll_name, handle, record, source_path, timestamp, chunks_stored > 0)
            except SemanticKBError as exc:
                raise IngestionError(
                    message=f"Finalising ingestion of '{kb}' failed: {exc.message}",
                    provider_name=exc.provider_name,
                ) from exc
            self._last_timestamps[kb] = timestamp
        if chunks_stored > 0:
            await self._notify(kb)

        stats = IngestionStats(
            knowledge_base=kb,
            ingestion_timestamp=timestamp,
            total_files=scan_stats.total_files,
            supported_files=scan_stats.supported_files,
            unsupported_files=scan_stats.unsupported_files,
            unsupported_by_extension=scan_stats.unsupported_by_extension,
            files_processed=files_processed,
            files_failed=len(errors),
            chunks_created=chunks_created,
            chunks_stored=chunks_stored,
            chunks_failed_embedding=chunks_failed_embedding,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        logger.info("ingestion_complete", **stats.model_dump(exclude={"unsupported_by_extension"}))
        return stats, errors

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _open_existing(self, coll_name: str) -> ICollectionHandle | None:
        try:
            if not await self._vector_store.collection_exists(coll_name):
                return None
            handle = await self._vector_store.open_collection(coll_name)
        except SemanticKBError as exc:
            raise IngestionError(f"Could not open collection '{coll_name}': {exc}") from exc

        stored_dim = handle.metadata.get("embedding_dimension")
        expected = self._embedding_provider.get_dimension()
        if stored_dim is not None and int(stored_dim) != expected:
            raise IngestionError(
                f"Collection '{coll_name}' stores {stored_dim}-dimensional vectors but "
                f"the embedding provider produces {expected}; re-create the knowledge base "
                "or switch back to the original model"
            )
        return handle

    async def _embed_batch(self, kb: str, texts: list[str]) -> list[list[float] | None]:
        try:
            vectors = await self._embedding_provider.embed(texts)
        except Exception as exc:
            raise IngestionError(
                message=f"Embedding failed for knowledge base '{kb}': {exc}",
                provider_name=self._embedding_provider.get_provider_name(),
            ) from exc
        if len(vectors) != len(texts):
            raise IngestionError(
                message=f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider_name=self._embedding_provider.get_provider_name(),
            )
        return vectors

    async def _store_batch(
        self,
        kb: str,
        coll_name: str,
        handle: ICollectionHandle | None,
        rows: list[ChunkRecord],
    ) -> ICollectionHandle:
        try:
            if handle is None:
                return await self._vector_store.create_collection_with_rows(
                    coll_name,
                    rows,
                    metadata={
                        "knowledge_base": True,
                        "kb_name": kb,
                        "schema_version": self._schema_version,
                        "embedding_model": self._embedding_provider.get_model_name(),
                    },
                )
            await handle.append_rows(rows)
            return handle
        except Exception as exc:
            raise IngestionError(f"Storing chunks for knowledge base '{kb}' failed: {exc}") from exc

    async def _prune_other_runs(self, kb: str, handle: ICollectionHandle, keep: str) -> None:
        rows = await handle.query_all()
        stale = sorted({r.ingestion_timestamp for r in rows} - {keep})
        for ts in stale:
            deleted = await handle.delete_where({"ingestion_timestamp": ts})
            logger.info("chunk_set_replaced", knowledge_base=kb, ingestion_timestamp=ts, deleted=deleted)

    async def _update_record(
        self,
        kb: str,
        coll_name: str,
        handle: ICollectionHandle,
        previous: KnowledgeBaseRecord | None,
        source_path: str | None,
        timestamp: str,
        wrote_rows: bool,
    ) -> None:
        rows = await handle.query_all()
        files: dict[str, str] = {r.file_path: r.document_type for r in rows}
        now = format_timestamp(self._clock())
        record = KnowledgeBaseRecord(
            name=kb,
            collection_name=coll_name,
            source_path=source_path or (previous.source_path if previous else None),
            file_count=len(files),
            chunk_count=await handle.count_rows(),
            document_types=dict(Counter(files.values())),
            last_ingestion=timestamp if wrote_rows else (previous.last_ingestion if previous else None),
            embedding_model=self._embedding_provider.get_model_name(),
            embedding_dimension=self._embedding_provider.get_dimension(),
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        await self._registry.upsert_record(record)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_timestamp(self, kb: str, record: KnowledgeBaseRecord | None) -> str:
        """Return a timestamp strictly later than every earlier run of *kb*."""
        moment = self._clock().astimezone(timezone.utc)
        for previous in (self._last_timestamps.get(kb), record.last_ingestion if record else None):
            if previous:
                floor = datetime.fromisoformat(previous)
                if moment <= floor:
                    moment = floor + timedelta(microseconds=1)
        return format_timestamp(moment)

    @staticmethod
    def _to_row(
        kb: str,
        timestamp: str,
        sequence: int,
        scanned: ScannedFile,
        chunk: DocumentChunk,
        vector: list[float],
    ) -> ChunkRecord:
        return ChunkRecord(
            id=f"{kb}:{timestamp}:{sequence}",
            knowledge_base=kb,
            file_path=scanned.relative_path,
            content=chunk.content,
            document_type=scanned.document_type or "text",
            chunk_type=chunk.chunk_type.value,
            chunk_index=chunk.index,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            token_count=chunk.token_count,
            heading_path=chunk.heading_path,
            page_number=chunk.page_number,
            is_test=scanned.is_test,
            ingestion_timestamp=timestamp,
            vector=vector,
        )

    @staticmethod
    def _emit(callback: ProgressCallback | None, phase: str, current: int, total: int) -> None:
        if callback is None:
            return
        try:
            callback(phase, current, total)
        except Exception as exc:  # noqa: BLE001
            logger.warning("progress_callback_failed", phase=phase, error=str(exc))

    async def _notify(self, kb: str) -> None:
        for listener in self._listeners:
            try:
                await listener(kb)
            except Exception as exc:  # noqa: BLE001
                logger.warning("mutation_listener_failed", knowledge_base=kb, error=str(exc))
