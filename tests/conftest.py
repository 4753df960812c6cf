"""Shared pytest fixtures for the semantic-kb test suite."""

from __future__ import annotations

import hashlib
import math
import struct
from typing import Any

import pytest

from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
from semantic_kb.interfaces.vector_store_provider import (
    ICollectionHandle,
    IVectorStoreProvider,
    Predicate,
)
from semantic_kb.models.knowledge_base import KnowledgeBaseRecord, RenameJournalEntry
from semantic_kb.models.store import ChunkRecord, CollectionInfo, VectorMatch
from semantic_kb.providers.cache.memory_cache import MemoryCacheProvider
from semantic_kb.providers.converter.docling_converter import DoclingDocumentConverter
from semantic_kb.services.ingestion.chunker import DocumentChunker
from semantic_kb.services.ingestion.file_scanner import FileScanner
from semantic_kb.services.ingestion.ingestion_service import IngestionService
from semantic_kb.services.knowledge_base_service import KnowledgeBaseService
from semantic_kb.services.search_service import SearchService
from semantic_kb.utils.errors import (
    DimensionMismatchError,
    EmbeddingError,
    IngestionLockedError,
    KnowledgeBaseError,
    NotFoundError,
    VectorStoreError,
)

# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------

EMBEDDING_DIM = 16


def _hash_to_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector derived from SHA-256 of *text*."""
    raw = hashlib.sha256(text.encode("utf-8")).digest()
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    values = [v if math.isfinite(v) else 0.0 for v in struct.unpack(f"<{dim}f", raw[: dim * 4])]
    # Keep magnitudes sane; unpacked floats can be huge.
    values = [math.tanh(v) for v in values]
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic hash-based embedder that counts its calls.

    Texts containing any marker in ``fail_markers`` embed to ``None``;
    ``raise_error`` makes every ``embed`` call raise.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM, initialized: bool = True) -> None:
        self.dimension = dimension
        self.initialized = initialized
        self.fail_markers: set[str] = set()
        self.raise_error: Exception | None = None
        self.embed_calls = 0
        self.embed_single_calls = 0

    async def initialize(self) -> None:
        self.initialized = True

    def is_initialized(self) -> bool:
        return self.initialized

    async def embed(self, texts: list[str]) -> list[list[float] | None]:
        self.embed_calls += 1
        if self.raise_error is not None:
            raise self.raise_error
        return [
            None if any(m in t for m in self.fail_markers) else _hash_to_vector(t, self.dimension)
            for t in texts
        ]

    async def embed_single(self, text: str) -> list[float]:
        self.embed_single_calls += 1
        if self.raise_error is not None:
            raise EmbeddingError(str(self.raise_error))
        return _hash_to_vector(text, self.dimension)

    def get_dimension(self) -> int:
        return self.dimension

    def get_model_name(self) -> str:
        return "mock-model"

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Vector store
# ---------------------------------------------------------------------------


def _matches(record: ChunkRecord, where: Predicate | None) -> bool:
    if not where:
        return True
    return all(getattr(record, field) == value for field, value in where.items())


class InMemoryCollection(ICollectionHandle):
    """List-backed collection that records delete calls."""

    def __init__(self, name: str, metadata: dict[str, Any] | None = None) -> None:
        self._name = name
        self._metadata = dict(metadata or {})
        self.rows: list[ChunkRecord] = []
        self.delete_calls: list[Predicate] = []
        self.fail_queries = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def metadata(self) -> dict[str, Any]:
        return self._metadata

    async def count_rows(self, where: Predicate | None = None) -> int:
        return sum(1 for r in self.rows if _matches(r, where))

    async def query_by_vector(
        self,
        vector: list[float],
        limit: int,
        where: Predicate | None = None,
    ) -> list[VectorMatch]:
        if self.fail_queries:
            raise VectorStoreError(f"query failed on {self._name}")
        scored: list[VectorMatch] = []
        for row in self.rows:
            if not _matches(row, where):
                continue
            dot = sum(a * b for a, b in zip(vector, row.vector or [], strict=False))
            distance = max(0.0, min(1.0, 1.0 - dot))
            scored.append(VectorMatch(record=row.with_updates(vector=None), distance=distance))
        scored.sort(key=lambda m: m.distance)
        return scored[:limit]

    async def query_all(
        self,
        where: Predicate | None = None,
        include_vectors: bool = False,
        limit: int | None = None,
    ) -> list[ChunkRecord]:
        rows = [
            r if include_vectors else r.with_updates(vector=None)
            for r in self.rows
            if _matches(r, where)
        ]
        rows.sort(key=lambda r: (r.ingestion_timestamp, r.file_path, r.chunk_index))
        return rows[:limit] if limit is not None else rows

    async def append_rows(self, rows: list[ChunkRecord]) -> None:
        expected = self._metadata.get("embedding_dimension")
        for row in rows:
            if not row.vector:
                raise VectorStoreError("row without vector")
            if expected is not None and len(row.vector) != expected:
                raise DimensionMismatchError(expected, len(row.vector), "in-memory")
        self.rows.extend(rows)

    async def delete_where(self, where: Predicate) -> int:
        if not where:
            raise ValueError("delete_where requires a non-empty predicate")
        self.delete_calls.append(dict(where))
        before = len(self.rows)
        self.rows = [r for r in self.rows if not _matches(r, where)]
        return before - len(self.rows)


class InMemoryVectorStore(IVectorStoreProvider):
    def __init__(self) -> None:
        self.collections: dict[str, InMemoryCollection] = {}

    async def list_collections(self) -> list[CollectionInfo]:
        return [
            CollectionInfo(name=name, metadata=dict(c.metadata))
            for name, c in sorted(self.collections.items())
        ]

    async def collection_exists(self, name: str) -> bool:
        return name in self.collections

    async def get_or_create_collection(
        self,
        name: str,
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        if name not in self.collections:
            self.collections[name] = InMemoryCollection(name, metadata)
        return self.collections[name]

    async def open_collection(self, name: str) -> ICollectionHandle:
        if name not in self.collections:
            raise NotFoundError("collection", name)
        return self.collections[name]

    async def create_collection_with_rows(
        self,
        name: str,
        rows: list[ChunkRecord],
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        if name in self.collections:
            raise VectorStoreError(f"Collection '{name}' already exists")
        full = dict(metadata or {})
        if rows and rows[0].vector:
            full["embedding_dimension"] = len(rows[0].vector)
        collection = InMemoryCollection(name, full)
        await collection.append_rows(rows)
        self.collections[name] = collection
        return collection

    async def delete_collection(self, name: str) -> None:
        if name not in self.collections:
            raise NotFoundError("collection", name)
        del self.collections[name]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class InMemoryRegistry(IKnowledgeBaseRegistry):
    def __init__(self) -> None:
        self.records: dict[str, KnowledgeBaseRecord] = {}
        self.journal: dict[str, RenameJournalEntry] = {}
        self.locks: dict[str, str] = {}

    async def initialize(self) -> None:
        return None

    async def get_record(self, name: str) -> KnowledgeBaseRecord | None:
        return self.records.get(name)

    async def list_records(self) -> list[KnowledgeBaseRecord]:
        return [self.records[n] for n in sorted(self.records)]

    async def upsert_record(self, record: KnowledgeBaseRecord) -> None:
        existing = self.records.get(record.name)
        if existing is not None:
            record = record.model_copy(update={"created_at": existing.created_at})
        self.records[record.name] = record

    async def delete_record(self, name: str) -> bool:
        return self.records.pop(name, None) is not None

    async def rename_record(self, old_name: str, new_name: str, new_collection: str) -> None:
        record = self.records.pop(old_name, None)
        if record is not None:
            self.records[new_name] = record.model_copy(
                update={"name": new_name, "collection_name": new_collection}
            )

    async def begin_rename(self, entry: RenameJournalEntry) -> None:
        if entry.old_name in self.journal:
            raise KnowledgeBaseError(f"A rename of '{entry.old_name}' is already in progress")
        self.journal[entry.old_name] = entry

    async def set_rename_phase(self, old_name: str, phase: str) -> None:
        if old_name in self.journal:
            self.journal[old_name] = self.journal[old_name].model_copy(update={"phase": phase})

    async def clear_rename(self, old_name: str) -> None:
        self.journal.pop(old_name, None)

    async def pending_renames(self) -> list[RenameJournalEntry]:
        return list(self.journal.values())

    async def acquire_lock(self, name: str, owner: str, ttl_seconds: float) -> None:
        holder = self.locks.get(name)
        if holder is not None and holder != owner:
            raise IngestionLockedError(name, holder)
        self.locks[name] = owner

    async def release_lock(self, name: str, owner: str) -> None:
        if self.locks.get(name) == owner:
            del self.locks[name]


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeTimer:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def fake_timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def cache(fake_timer: FakeTimer) -> MemoryCacheProvider:
    return MemoryCacheProvider(max_size=100, ttl=60.0, timer=fake_timer)


@pytest.fixture
def ingestion_service(
    embedding_provider: MockEmbeddingProvider,
    vector_store: InMemoryVectorStore,
    registry: InMemoryRegistry,
) -> IngestionService:
    return IngestionService(
        file_scanner=FileScanner(profile="documents"),
        converter=DoclingDocumentConverter(),
        chunker=DocumentChunker(max_tokens=64, chunk_size=200, chunk_overlap=40),
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        registry=registry,
        batch_size=2,
    )


@pytest.fixture
def search_service(
    embedding_provider: MockEmbeddingProvider,
    vector_store: InMemoryVectorStore,
    cache: MemoryCacheProvider,
) -> SearchService:
    return SearchService(
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        cache=cache,
        default_max_results=10,
    )


@pytest.fixture
def kb_service(vector_store: InMemoryVectorStore, registry: InMemoryRegistry) -> KnowledgeBaseService:
    return KnowledgeBaseService(vector_store=vector_store, registry=registry)


def make_row(
    knowledge_base: str = "docs",
    file_path: str = "a.md",
    content: str = "hello world",
    ingestion_timestamp: str = "2026-01-01T00:00:00.000000+00:00",
    chunk_index: int = 0,
    seq: int = 0,
    document_type: str = "markdown",
    chunk_type: str = "paragraph",
    is_test: bool = False,
    vector: list[float] | None = None,
) -> ChunkRecord:
    """Build a stored row with a deterministic vector derived from *content*."""
    return ChunkRecord(
        id=f"{knowledge_base}:{ingestion_timestamp}:{seq}",
        knowledge_base=knowledge_base,
        file_path=file_path,
        content=content,
        document_type=document_type,
        chunk_type=chunk_type,
        chunk_index=chunk_index,
        ingestion_timestamp=ingestion_timestamp,
        is_test=is_test,
        vector=vector if vector is not None else _hash_to_vector(content),
    )


def embed_text(text: str) -> list[float]:
    return _hash_to_vector(text)


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def embed_fn():
    return embed_text
