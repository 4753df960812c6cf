"""Vector-store row and query models.

:class:`ChunkRecord` is the persisted shape of one chunk: provenance,
content and (when requested) its embedding vector.  Adapters translate it
to and from their native representation.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChunkRecord(BaseModel):
    """One row in a knowledge-base collection."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="'{knowledge_base}:{ingestion_timestamp}:{sequence}'")
    knowledge_base: str
    file_path: str
    content: str
    document_type: str
    chunk_type: str
    chunk_index: int = Field(ge=0)
    start_line: int = 1
    end_line: int = 1
    token_count: int = 0
    heading_path: list[str] = Field(default_factory=list)
    page_number: int | None = None
    is_test: bool = False
    ingestion_timestamp: str
    # Provenance stamped by rename.
    renamed_from: str | None = None
    renamed_at: str | None = None
    vector: list[float] | None = Field(
        default=None,
        description="Embedding vector; omitted by projection reads.",
    )

    def with_updates(self, **changes: Any) -> ChunkRecord:
        return self.model_copy(update=changes)


class VectorMatch(BaseModel):
    """A row returned by a nearest-neighbour query, with its normalised distance."""

    model_config = ConfigDict(frozen=True)

    record: ChunkRecord
    distance: float = Field(ge=0.0, le=1.0, description="Distance normalised to [0, 1].")


class CollectionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    metadata: dict[str, Any] = Field(default_factory=dict)
