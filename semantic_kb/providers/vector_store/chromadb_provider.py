"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Every knowledge base lives in its own collection configured for cosine
distance.  Fully local, free, and Python-native — no external service
required.

ChromaDB's client is synchronous, so every call runs through
``asyncio.to_thread`` via the ``_*_sync`` helpers below.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any

# Disable ChromaDB telemetry before importing chromadb; the env var is
# respected at import time, Settings(anonymized_telemetry=False) below is
# authoritative for the client.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from semantic_kb.interfaces.vector_store_provider import (
    ICollectionHandle,
    IVectorStoreProvider,
    Predicate,
)
from semantic_kb.models.store import ChunkRecord, CollectionInfo, VectorMatch
from semantic_kb.utils.errors import (
    DimensionMismatchError,
    NotFoundError,
    VectorStoreError,
)

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER = "chromadb"
_PAGE_SIZE = 5000
_WRITE_BATCH = 1000
_BASE_METADATA: dict[str, Any] = {"hnsw:space": "cosine"}


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    semantic-kb always passes pre-computed embeddings, so ChromaDB's
    built-in embedding is never invoked.  Without this, ChromaDB downloads
    and loads its default ONNX model on collection creation.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "semantic-kb uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    @staticmethod
    def name() -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"

    def get_config(self) -> dict[str, Any]:
        return {}

    @staticmethod
    def build_from_config(config: dict[str, Any]) -> _NoopEmbeddingFunction:
        return _NoopEmbeddingFunction()


# ---------------------------------------------------------------------------
# Row <-> ChromaDB metadata
# ---------------------------------------------------------------------------

def _record_to_metadata(record: ChunkRecord) -> dict[str, str | int | float | bool]:
    """Convert a ChunkRecord to a ChromaDB-compatible metadata dict.

    ChromaDB metadata values must be str, int, float, or bool, and may not
    be None.  ``heading_path`` is stored as a JSON array string; optional
    fields are omitted when unset.
    """
    meta: dict[str, str | int | float | bool] = {
        "knowledge_base": record.knowledge_base,
        "file_path": record.file_path,
        "document_type": record.document_type,
        "chunk_type": record.chunk_type,
        "chunk_index": record.chunk_index,
        "start_line": record.start_line,
        "end_line": record.end_line,
        "token_count": record.token_count,
        "heading_path": json.dumps(record.heading_path),
        "is_test": record.is_test,
        "ingestion_timestamp": record.ingestion_timestamp,
    }
    if record.page_number is not None:
        meta["page_number"] = record.page_number
    if record.renamed_from is not None:
        meta["renamed_from"] = record.renamed_from
    if record.renamed_at is not None:
        meta["renamed_at"] = record.renamed_at
    return meta


def _metadata_to_record(
    row_id: str,
    meta: dict[str, Any] | None,
    document: str | None,
    vector: Any = None,
) -> ChunkRecord:
    meta = meta or {}
    try:
        heading_path = json.loads(meta.get("heading_path") or "[]")
    except (TypeError, ValueError):
        heading_path = []
    return ChunkRecord(
        id=row_id,
        knowledge_base=str(meta.get("knowledge_base", "")),
        file_path=str(meta.get("file_path", "")),
        content=document or "",
        document_type=str(meta.get("document_type", "unknown")),
        chunk_type=str(meta.get("chunk_type", "paragraph")),
        chunk_index=int(meta.get("chunk_index", 0)),
        start_line=int(meta.get("start_line", 1)),
        end_line=int(meta.get("end_line", 1)),
        token_count=int(meta.get("token_count", 0)),
        heading_path=[str(h) for h in heading_path],
        page_number=meta.get("page_number"),
        is_test=bool(meta.get("is_test", False)),
        ingestion_timestamp=str(meta.get("ingestion_timestamp", "")),
        renamed_from=meta.get("renamed_from"),
        renamed_at=meta.get("renamed_at"),
        vector=[float(x) for x in vector] if vector is not None else None,
    )


def _translate_predicate(where: Predicate | None) -> dict[str, Any] | None:
    """Translate a flat equality predicate to a ChromaDB ``where`` clause."""
    if not where:
        return None
    clauses = [{key: {"$eq": value}} for key, value in sorted(where.items())]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _user_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    meta = dict(metadata or {})
    for key in list(meta):
        if key.startswith("hnsw:") or meta[key] is None:
            meta.pop(key)
    return meta


# ---------------------------------------------------------------------------
# Collection handle
# ---------------------------------------------------------------------------

class ChromaDBCollection(ICollectionHandle):
    """One ChromaDB collection holding one knowledge base."""

    def __init__(self, collection: Any) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    @property
    def metadata(self) -> dict[str, Any]:
        return _user_metadata(self._collection.metadata)

    @property
    def dimension(self) -> int | None:
        value = (self._collection.metadata or {}).get("embedding_dimension")
        return int(value) if value is not None else None

    # -- Sync helpers (executed via asyncio.to_thread) ---------------------

    def _ids_sync(self, where: Predicate | None) -> list[str]:
        clause = _translate_predicate(where)
        ids: list[str] = []
        offset = 0
        while True:
            kwargs: dict[str, Any] = {"include": [], "limit": _PAGE_SIZE, "offset": offset}
            if clause:
                kwargs["where"] = clause
            page = self._collection.get(**kwargs)
            page_ids = page["ids"] or []
            ids.extend(page_ids)
            if len(page_ids) < _PAGE_SIZE:
                return ids
            offset += _PAGE_SIZE

    def _count_sync(self, where: Predicate | None) -> int:
        if not where:
            return self._collection.count()
        return len(self._ids_sync(where))

    def _query_sync(
        self, vector: list[float], limit: int, where: Predicate | None
    ) -> list[VectorMatch]:
        total = self._collection.count()
        if total == 0:
            return []
        kwargs: dict[str, Any] = {
            "query_embeddings": [vector],
            "n_results": min(limit, total),
            "include": ["documents", "metadatas", "distances"],
        }
        clause = _translate_predicate(where)
        if clause:
            kwargs["where"] = clause
        results = self._collection.query(**kwargs)

        ids = results["ids"][0] if results["ids"] else []
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [0.0] * len(ids)

        matches: list[VectorMatch] = []
        for row_id, doc, meta, distance in zip(ids, documents, metadatas, distances, strict=True):
            # Cosine distance spans [0, 2]; opposite vectors count as fully distant.
            normalised = max(0.0, min(1.0, float(distance)))
            matches.append(
                VectorMatch(record=_metadata_to_record(row_id, meta, doc), distance=normalised)
            )
        return matches

    def _get_all_sync(
        self, where: Predicate | None, include_vectors: bool, limit: int | None
    ) -> list[ChunkRecord]:
        clause = _translate_predicate(where)
        include = ["documents", "metadatas"]
        if include_vectors:
            include.append("embeddings")

        records: list[ChunkRecord] = []
        offset = 0
        while True:
            page_size = _PAGE_SIZE if limit is None else min(_PAGE_SIZE, limit - len(records))
            if page_size <= 0:
                break
            kwargs: dict[str, Any] = {"include": include, "limit": page_size, "offset": offset}
            if clause:
                kwargs["where"] = clause
            page = self._collection.get(**kwargs)
            ids = page["ids"] or []
            documents = page.get("documents")
            metadatas = page.get("metadatas")
            embeddings = page.get("embeddings") if include_vectors else None
            for i, row_id in enumerate(ids):
                records.append(
                    _metadata_to_record(
                        row_id,
                        metadatas[i] if metadatas is not None else None,
                        documents[i] if documents is not None else None,
                        embeddings[i] if embeddings is not None else None,
                    )
                )
            if len(ids) < page_size:
                break
            offset += len(ids)

        records.sort(key=lambda r: (r.ingestion_timestamp, r.file_path, r.chunk_index))
        return records

    def _add_sync(self, rows: list[ChunkRecord]) -> None:
        for start in range(0, len(rows), _WRITE_BATCH):
            batch = rows[start : start + _WRITE_BATCH]
            self._collection.add(
                ids=[r.id for r in batch],
                embeddings=[r.vector for r in batch],
                documents=[r.content for r in batch],
                metadatas=[_record_to_metadata(r) for r in batch],
            )

    def _delete_sync(self, where: Predicate) -> int:
        ids = self._ids_sync(where)
        for start in range(0, len(ids), _PAGE_SIZE):
            self._collection.delete(ids=ids[start : start + _PAGE_SIZE])
        return len(ids)

    # -- ICollectionHandle implementation ----------------------------------

    async def count_rows(self, where: Predicate | None = None) -> int:
        try:
            return await asyncio.to_thread(self._count_sync, where)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Count failed on collection '{self.name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc

    async def query_by_vector(
        self,
        vector: list[float],
        limit: int,
        where: Predicate | None = None,
    ) -> list[VectorMatch]:
        dimension = self.dimension
        if dimension is not None and len(vector) != dimension:
            raise DimensionMismatchError(dimension, len(vector), provider_name=_PROVIDER)
        try:
            matches = await asyncio.to_thread(self._query_sync, vector, limit, where)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Query failed on collection '{self.name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        logger.debug("chromadb_query", collection=self.name, results_count=len(matches))
        return matches

    async def query_all(
        self,
        where: Predicate | None = None,
        include_vectors: bool = False,
        limit: int | None = None,
    ) -> list[ChunkRecord]:
        try:
            return await asyncio.to_thread(self._get_all_sync, where, include_vectors, limit)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Scan failed on collection '{self.name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc

    async def append_rows(self, rows: list[ChunkRecord]) -> None:
        if not rows:
            return
        expected = self.dimension
        for row in rows:
            if not row.vector:
                raise VectorStoreError(
                    message=f"Row '{row.id}' has no embedding vector",
                    provider_name=_PROVIDER,
                )
            if expected is None:
                expected = len(row.vector)
            if len(row.vector) != expected:
                raise DimensionMismatchError(expected, len(row.vector), provider_name=_PROVIDER)
        try:
            await asyncio.to_thread(self._add_sync, rows)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Append failed on collection '{self.name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        logger.debug("chromadb_rows_appended", collection=self.name, rows=len(rows))

    async def delete_where(self, where: Predicate) -> int:
        if not where:
            raise ValueError("delete_where requires a non-empty predicate")
        try:
            deleted = await asyncio.to_thread(self._delete_sync, where)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Delete failed on collection '{self.name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        logger.info("chromadb_rows_deleted", collection=self.name, deleted_count=deleted)
        return deleted


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for ChromaDB's on-disk storage.
    client:
        Optional pre-built client (e.g. ``chromadb.EphemeralClient()`` in tests).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        if client is None:
            os.makedirs(persist_directory, exist_ok=True)
            client = chromadb.PersistentClient(
                path=persist_directory,
                settings=chromadb.config.Settings(anonymized_telemetry=False),
            )
        self._client = client

    # -- Sync helpers (executed via asyncio.to_thread) ---------------------

    def _names_sync(self) -> list[str]:
        names: list[str] = []
        for entry in self._client.list_collections():
            # chromadb 0.6 returns names; 0.5 and 1.x return Collection objects.
            names.append(entry if isinstance(entry, str) else entry.name)
        return names

    def _list_sync(self) -> list[CollectionInfo]:
        infos: list[CollectionInfo] = []
        for name in self._names_sync():
            collection = self._client.get_collection(name=name)
            infos.append(CollectionInfo(name=name, metadata=_user_metadata(collection.metadata)))
        return infos

    def _open_sync(self, name: str) -> Any:
        try:
            return self._client.get_collection(
                name=name, embedding_function=_NoopEmbeddingFunction()
            )
        except ValueError:
            # Collections persisted with a different embedding function refuse
            # ours; our vectors are pre-computed so the stored one is fine.
            return self._client.get_collection(name=name)

    def _get_or_create_sync(self, name: str, metadata: dict[str, Any] | None) -> Any:
        full_metadata = {**_BASE_METADATA, **_user_metadata(metadata)}
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata=full_metadata,
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            return self._client.get_or_create_collection(name=name, metadata=full_metadata)

    # -- IVectorStoreProvider implementation -------------------------------

    async def list_collections(self) -> list[CollectionInfo]:
        try:
            return await asyncio.to_thread(self._list_sync)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Listing collections failed: {exc}", provider_name=_PROVIDER
            ) from exc

    async def collection_exists(self, name: str) -> bool:
        try:
            names = await asyncio.to_thread(self._names_sync)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Listing collections failed: {exc}", provider_name=_PROVIDER
            ) from exc
        return name in names

    async def get_or_create_collection(
        self,
        name: str,
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        try:
            collection = await asyncio.to_thread(self._get_or_create_sync, name, metadata)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Could not open or create collection '{name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        return ChromaDBCollection(collection)

    async def open_collection(self, name: str) -> ICollectionHandle:
        if not await self.collection_exists(name):
            raise NotFoundError("collection", name, provider_name=_PROVIDER)
        try:
            collection = await asyncio.to_thread(self._open_sync, name)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Could not open collection '{name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        return ChromaDBCollection(collection)

    async def create_collection_with_rows(
        self,
        name: str,
        rows: list[ChunkRecord],
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        if await self.collection_exists(name):
            raise VectorStoreError(
                message=f"Collection '{name}' already exists", provider_name=_PROVIDER
            )
        full_metadata = dict(metadata or {})
        if rows and rows[0].vector:
            full_metadata["embedding_dimension"] = len(rows[0].vector)
        handle = await self.get_or_create_collection(name, full_metadata)
        try:
            await handle.append_rows(rows)
        except Exception:
            # Never leave a half-written collection that would fix a wrong dimension.
            await asyncio.to_thread(self._client.delete_collection, name)
            raise
        logger.info("chromadb_collection_created", collection=name, rows=len(rows))
        return handle

    async def delete_collection(self, name: str) -> None:
        if not await self.collection_exists(name):
            raise NotFoundError("collection", name, provider_name=_PROVIDER)
        try:
            await asyncio.to_thread(self._client.delete_collection, name)
        except Exception as exc:
            raise VectorStoreError(
                message=f"Could not delete collection '{name}': {exc}",
                provider_name=_PROVIDER,
            ) from exc
        logger.info("chromadb_collection_deleted", collection=name)

    def get_provider_name(self) -> str:
        return _PROVIDER
