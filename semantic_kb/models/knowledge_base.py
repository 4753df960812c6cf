"""Knowledge-base level models: registry records, listings and statistics."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# KnowledgeBaseRecord — the per-knowledge-base metadata entity.
# ---------------------------------------------------------------------------
class KnowledgeBaseRecord(BaseModel):
    """Metadata kept in the registry, independent of the collection's rows.

    Empty knowledge bases still have a record, and listings never need to
    read chunk rows to find the source path or last ingestion time.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    collection_name: str
    source_path: str | None = None
    file_count: int = Field(default=0, ge=0)
    chunk_count: int = Field(default=0, ge=0)
    document_types: dict[str, int] = Field(default_factory=dict)
    last_ingestion: str | None = None
    embedding_model: str | None = None
    embedding_dimension: int | None = None
    created_at: str
    updated_at: str


class RenameJournalEntry(BaseModel):
    """Durable marker for an in-flight rename, used for crash recovery."""

    model_config = ConfigDict(frozen=True)

    old_name: str
    new_name: str
    old_collection: str
    new_collection: str
    phase: str = Field(description='"copying" or "committing".')
    expected_rows: int = Field(default=0, ge=0)
    started_at: str
    rename_token: str = Field(
        default="",
        description="Stamped into the new collection's metadata; only a collection carrying it may be dropped on roll-back.",
    )


class IngestionLock(BaseModel):
    model_config = ConfigDict(frozen=True)

    knowledge_base: str
    owner: str
    acquired_at: float = Field(description="Unix epoch seconds.")


# ---------------------------------------------------------------------------
# Listing / statistics views
# ---------------------------------------------------------------------------
class KnowledgeBaseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    collection_name: str
    chunk_count: int = 0
    file_count: int = 0
    document_types: dict[str, int] = Field(default_factory=dict)
    source_path: str | None = None
    last_ingestion: str | None = None


class ChunkTypeStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    count: int


class ChunkSetInfo(BaseModel):
    """One ingestion run (chunk set) within a knowledge base."""

    model_config = ConfigDict(frozen=True)

    ingestion_timestamp: str
    chunk_count: int


class KnowledgeBaseStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    collection_name: str
    chunk_count: int = 0
    file_count: int = 0
    chunk_types: list[ChunkTypeStats] = Field(default_factory=list)
    document_types: dict[str, int] = Field(default_factory=dict)
    size_bytes: int = Field(default=0, description="UTF-8 size of all chunk content.")
    last_ingestion: str | None = None
    chunk_sets: list[ChunkSetInfo] = Field(default_factory=list)
    source_path: str | None = None


class DocumentInfo(BaseModel):
    """One source file inside a knowledge base."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    document_type: str
    chunk_count: int
    size_bytes: int
    last_ingestion: str
