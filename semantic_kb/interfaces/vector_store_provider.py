"""Abstract base classes for vector-store service providers.

Defines the contract for storing, querying, and managing knowledge-base
collections.  One collection holds one knowledge base; each row is a
:class:`~semantic_kb.models.store.ChunkRecord` plus its vector.
Implementations may wrap ChromaDB (local/free), LanceDB, Qdrant or any other
vector database.  The adapter pattern keeps the ingestion, search and
management services independent of the chosen backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from semantic_kb.models.store import ChunkRecord, CollectionInfo, VectorMatch

# A predicate is a flat mapping of row field -> required value.  All clauses
# must match (logical AND); an empty or None predicate matches every row.
# Supported fields: knowledge_base, file_path, document_type, chunk_type,
# ingestion_timestamp, is_test.
Predicate = dict[str, Any]


# Concrete implementation: ChromaDBCollection (semantic_kb/providers/vector_store/)
class ICollectionHandle(ABC):
    """Handle to one open collection.

    Handles are cheap to obtain and hold no locks; callers must not cache
    them across a rename or delete of the underlying collection.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Collection name in the store."""

    @property
    @abstractmethod
    def metadata(self) -> dict[str, Any]:
        """Collection-level metadata (knowledge-base tag, dimension, schema version)."""

    @abstractmethod
    async def count_rows(self, where: Predicate | None = None) -> int:
        """Return the number of rows, optionally restricted by *where*."""

    @abstractmethod
    async def query_by_vector(
        self,
        vector: list[float],
        limit: int,
        where: Predicate | None = None,
    ) -> list[VectorMatch]:
        """Return the *limit* nearest rows to *vector*.

        Parameters
        ----------
        vector:
            Query embedding; must have the collection's dimension.
        limit:
            Maximum number of matches.
        where:
            Optional equality predicate applied inside the store.

        Returns
        -------
        list[VectorMatch]
            Matches ordered nearest first.  Every ``distance`` is normalised
            to ``[0, 1]`` so callers may score them as ``1 - distance``.

        Raises
        ------
        semantic_kb.utils.errors.VectorStoreError
            If the store query fails.
        """

    @abstractmethod
    async def query_all(
        self,
        where: Predicate | None = None,
        include_vectors: bool = False,
        limit: int | None = None,
    ) -> list[ChunkRecord]:
        """Read rows without a query vector.

        Vectors are omitted (``record.vector is None``) unless
        *include_vectors* is set, which keeps full-table statistics scans
        cheap.
        """

    @abstractmethod
    async def append_rows(self, rows: list[ChunkRecord]) -> None:
        """Append *rows*; every row must carry a vector of the collection's dimension.

        Raises
        ------
        semantic_kb.utils.errors.DimensionMismatchError
            If a vector's length differs from the collection dimension.
        semantic_kb.utils.errors.VectorStoreError
            If the write fails.
        """

    @abstractmethod
    async def delete_where(self, where: Predicate) -> int:
        """Delete every row matching *where* and return how many were removed.

        An empty predicate is rejected with ``ValueError``; use
        :meth:`IVectorStoreProvider.delete_collection` to drop everything.
        """


# Concrete implementation: ChromaDBProvider (semantic_kb/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for the collection store used by every core service.

    All methods are async to support network-backed stores without
    blocking the event loop.
    """

    @abstractmethod
    async def list_collections(self) -> list[CollectionInfo]:
        """Return every collection with its metadata, tagged or not."""

    @abstractmethod
    async def collection_exists(self, name: str) -> bool:
        """Return ``True`` if a collection called *name* exists."""

    @abstractmethod
    async def get_or_create_collection(
        self,
        name: str,
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        """Open *name*, creating it empty with *metadata* if missing."""

    @abstractmethod
    async def open_collection(self, name: str) -> ICollectionHandle:
        """Open an existing collection.

        Raises
        ------
        semantic_kb.utils.errors.NotFoundError
            If no collection called *name* exists.
        """

    @abstractmethod
    async def create_collection_with_rows(
        self,
        name: str,
        rows: list[ChunkRecord],
        metadata: dict[str, Any] | None = None,
    ) -> ICollectionHandle:
        """Create *name* and write *rows* into it.

        The first row's vector fixes the collection's dimension, which is
        recorded in the collection metadata as ``embedding_dimension``.

        Raises
        ------
        semantic_kb.utils.errors.VectorStoreError
            If the collection already exists or the write fails.
        """

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Drop *name* and all of its rows.

        Raises
        ------
        semantic_kb.utils.errors.NotFoundError
            If no collection called *name* exists.
        """

    async def close(self) -> None:  # noqa: B027
        """Release any client resources. Default is a no-op."""
