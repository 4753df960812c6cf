"""Document-side data models: scanning, conversion and chunking.

These models describe a file's journey up to (but not including) the
embedding stage.  All models use frozen config; a chunk never changes after
the chunker emits it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, Enum):
    """Document formats understood by the converter.

    Source-code files use their language name (``"typescript"``, ``"python"``)
    as their document type instead of one of these members.
    """

    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    XLSX = "xlsx"
    HTML = "html"
    MARKDOWN = "markdown"
    TEXT = "text"
    AUDIO = "audio"


class ChunkType(str, Enum):
    PARAGRAPH = "paragraph"
    SECTION = "section"
    TABLE = "table"
    HEADING = "heading"
    LIST = "list"
    CODE = "code"


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------
class ScannedFile(BaseModel):
    """One file discovered by the scanner, classified but not yet read."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Absolute path on disk.")
    relative_path: str = Field(description="Path relative to the scan root, forward slashes.")
    extension: str = Field(description='Lowercased extension including the dot, or "".')
    size_bytes: int = Field(default=0, ge=0)
    supported: bool = Field(default=False)
    document_type: str | None = Field(
        default=None,
        description="Document type or code language; None for unsupported files.",
    )
    is_test: bool = False
    is_library: bool = False


class ScanStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_files: int = 0
    supported_files: int = 0
    unsupported_files: int = 0
    unsupported_by_extension: dict[str, int] = Field(default_factory=dict)


class ScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    root: str
    files: list[ScannedFile] = Field(default_factory=list)
    statistics: ScanStatistics = Field(default_factory=ScanStatistics)

    @property
    def supported(self) -> list[ScannedFile]:
        return [f for f in self.files if f.supported]


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------
class DocumentMetadata(BaseModel):
    """Structural metadata reported by the converter for one document."""

    model_config = ConfigDict(frozen=True)

    title: str
    format: str
    page_count: int | None = None
    word_count: int = 0
    has_images: bool = False
    has_tables: bool = False


class ConversionResult(BaseModel):
    """Normalised text for one file plus whatever structure the converter kept."""

    model_config = ConfigDict(frozen=True)

    text: str
    metadata: DocumentMetadata
    structured_document: dict[str, Any] | None = Field(
        default=None,
        description="Converter-native document tree (docling JSON), when available.",
    )


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """A chunk of normalised text, ready for embedding.

    ``start_line``/``end_line`` are 1-based and inclusive, relative to the
    converted text.  ``has_context`` is False for chunks produced by the
    sliding-window fallback, which carries no heading information.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    index: int = Field(ge=0, description="Position of the chunk within its file.")
    token_count: int = Field(default=0, ge=0)
    chunk_type: ChunkType = ChunkType.PARAGRAPH
    heading_path: list[str] = Field(default_factory=list)
    page_number: int | None = None
    start_line: int = Field(default=1, ge=1)
    end_line: int = Field(default=1, ge=1)
    has_context: bool = True
