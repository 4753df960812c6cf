"""Ingestion run result models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# IngestionStats — aggregate counters for one ingestion run.
# ---------------------------------------------------------------------------
class IngestionStats(BaseModel):
    """Summary of one ingestion run into a knowledge base.

    ``chunks_created`` counts every chunk the chunker produced for a
    successfully converted file, whether or not it was embedded.
    ``chunks_stored`` counts rows actually written; the difference is
    ``chunks_failed_embedding``.
    """

    model_config = ConfigDict(frozen=True)

    knowledge_base: str = Field(description="Sanitized knowledge-base name.")
    ingestion_timestamp: str = Field(description="Timestamp shared by every row of this run.")
    total_files: int = Field(default=0, ge=0)
    supported_files: int = Field(default=0, ge=0)
    unsupported_files: int = Field(default=0, ge=0)
    unsupported_by_extension: dict[str, int] = Field(default_factory=dict)
    files_processed: int = Field(default=0, ge=0, description="Files converted and chunked.")
    files_failed: int = Field(default=0, ge=0, description="Files skipped after a conversion error.")
    chunks_created: int = Field(default=0, ge=0)
    chunks_stored: int = Field(default=0, ge=0)
    chunks_failed_embedding: int = Field(default=0, ge=0)
    duration_ms: float = Field(default=0.0, ge=0.0, description="Wall-clock duration.")


class FileError(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    error: str


class FileIngestionResult(BaseModel):
    """Statistics plus the per-file errors of an explicit file-list ingestion."""

    model_config = ConfigDict(frozen=True)

    stats: IngestionStats
    errors: list[FileError] = Field(default_factory=list)
