"""semantic-kb domain models — re-exports all public model classes.

The models are organized across five submodules by domain concern:
    - document.py       — Scanning, conversion and chunking
    - ingestion.py      — Ingestion run statistics and per-file errors
    - store.py          — Vector-store rows and nearest-neighbour matches
    - search.py         — Search filters and ranked results
    - knowledge_base.py — Registry records, listings and statistics
"""

from __future__ import annotations

from semantic_kb.models.document import (
    ChunkType,
    ConversionResult,
    DocumentChunk,
    DocumentMetadata,
    DocumentType,
    ScannedFile,
    ScanResult,
    ScanStatistics,
)
from semantic_kb.models.ingestion import FileError, FileIngestionResult, IngestionStats
from semantic_kb.models.knowledge_base import (
    ChunkSetInfo,
    ChunkTypeStats,
    DocumentInfo,
    IngestionLock,
    KnowledgeBaseMetadata,
    KnowledgeBaseRecord,
    KnowledgeBaseStats,
    RenameJournalEntry,
)
from semantic_kb.models.search import (
    SearchFilters,
    SearchResult,
    SearchResultMetadata,
    SearchResults,
)
from semantic_kb.models.store import ChunkRecord, CollectionInfo, VectorMatch

__all__ = [
    "ChunkRecord",
    "ChunkSetInfo",
    "ChunkType",
    "ChunkTypeStats",
    "CollectionInfo",
    "ConversionResult",
    "DocumentChunk",
    "DocumentInfo",
    "DocumentMetadata",
    "DocumentType",
    "FileError",
    "FileIngestionResult",
    "IngestionLock",
    "IngestionStats",
    "KnowledgeBaseMetadata",
    "KnowledgeBaseRecord",
    "KnowledgeBaseStats",
    "RenameJournalEntry",
    "ScanResult",
    "ScanStatistics",
    "ScannedFile",
    "SearchFilters",
    "SearchResult",
    "SearchResultMetadata",
    "SearchResults",
    "VectorMatch",
]
