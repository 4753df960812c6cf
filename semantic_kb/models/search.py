"""Search request and response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SearchFilters(BaseModel):
    """Attribute filter pushed down to the vector store as an equality predicate.

    ``exclude_tests`` is shorthand for ``is_test=False`` and is ignored when
    ``is_test`` is set explicitly.
    """

    model_config = ConfigDict(frozen=True)

    document_type: str | None = None
    chunk_type: str | None = None
    file_path: str | None = None
    ingestion_timestamp: str | None = None
    is_test: bool | None = None
    exclude_tests: bool = False

    def to_predicate(self) -> dict[str, Any] | None:
        predicate: dict[str, Any] = {}
        for field in ("document_type", "chunk_type", "file_path", "ingestion_timestamp"):
            value = getattr(self, field)
            if value is not None:
                predicate[field] = value
        if self.is_test is not None:
            predicate["is_test"] = self.is_test
        elif self.exclude_tests:
            predicate["is_test"] = False
        return predicate or None


class SearchResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    document_type: str
    chunk_type: str
    chunk_index: int
    start_line: int
    end_line: int
    is_test: bool = False
    page_number: int | None = None
    heading_path: list[str] = Field(default_factory=list)
    ingestion_timestamp: str


class SearchResult(BaseModel):
    """One ranked chunk returned by a search."""

    model_config = ConfigDict(frozen=True)

    content: str
    score: float = Field(ge=0.0, le=1.0, description="1 - normalised distance.")
    knowledge_base: str
    metadata: SearchResultMetadata


class SearchResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    total_results: int = 0
    query_time_ms: float = 0.0
    cached: bool = False
