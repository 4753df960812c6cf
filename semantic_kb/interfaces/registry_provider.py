"""Abstract base class for the knowledge-base registry.

The registry is the durable home of everything that is *about* a knowledge
base rather than *in* it: the per-knowledge-base metadata record, the
rename journal used to recover from a crash mid-rename, and the ingestion
lock that serialises runs against the same knowledge base across processes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from semantic_kb.models.knowledge_base import KnowledgeBaseRecord, RenameJournalEntry


# Concrete implementation: SQLiteKnowledgeBaseRegistry (semantic_kb/providers/registry/)
class IKnowledgeBaseRegistry(ABC):
    """Contract for knowledge-base metadata, rename journal and lock storage."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create backing tables if they don't exist."""

    # -- metadata records ------------------------------------------------

    @abstractmethod
    async def get_record(self, name: str) -> KnowledgeBaseRecord | None:
        """Return the record for sanitized *name*, or ``None``."""

    @abstractmethod
    async def list_records(self) -> list[KnowledgeBaseRecord]:
        """Return all records ordered by name."""

    @abstractmethod
    async def upsert_record(self, record: KnowledgeBaseRecord) -> None:
        """Insert or replace the record keyed by ``record.name``.

        ``created_at`` of an existing record is preserved.
        """

    @abstractmethod
    async def delete_record(self, name: str) -> bool:
        """Delete the record; return ``True`` if one existed."""

    @abstractmethod
    async def rename_record(self, old_name: str, new_name: str, new_collection: str) -> None:
        """Move the record for *old_name* to *new_name*.  No-op if absent."""

    # -- rename journal --------------------------------------------------

    @abstractmethod
    async def begin_rename(self, entry: RenameJournalEntry) -> None:
        """Persist *entry*.  Fails if a rename from ``entry.old_name`` is pending."""

    @abstractmethod
    async def set_rename_phase(self, old_name: str, phase: str) -> None:
        """Advance the journal entry for *old_name* to *phase*."""

    @abstractmethod
    async def clear_rename(self, old_name: str) -> None:
        """Remove the journal entry for *old_name* (no-op if absent)."""

    @abstractmethod
    async def pending_renames(self) -> list[RenameJournalEntry]:
        """Return every journal entry left behind by an interrupted rename."""

    # -- ingestion locks -------------------------------------------------

    @abstractmethod
    async def acquire_lock(self, name: str, owner: str, ttl_seconds: float) -> None:
        """Take the ingestion lock for *name* on behalf of *owner*.

        A lock older than *ttl_seconds* is considered abandoned and taken
        over.

        Raises
        ------
        semantic_kb.utils.errors.IngestionLockedError
            If another owner holds a live lock.
        """

    @abstractmethod
    async def release_lock(self, name: str, owner: str) -> None:
        """Release the lock for *name* if *owner* holds it."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""
