"""Utility modules for semantic-kb.

- **errors** -- Domain-specific exception hierarchy rooted at SemanticKBError;
  each pipeline stage raises its own subclass so callers can handle failures
  granularly without broad ``except Exception`` blocks.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **naming** -- knowledge-base name sanitising and versioned collection names.
- **file_classification** -- test / library path detection.
"""

from semantic_kb.utils.errors import (
    ConfigurationError,
    ConversionTimeoutError,
    DimensionMismatchError,
    DocumentConversionError,
    EmbeddingError,
    IngestionError,
    IngestionLockedError,
    KnowledgeBaseError,
    NotFoundError,
    SearchError,
    SemanticKBError,
    UnsupportedFormatError,
    VectorStoreError,
)
from semantic_kb.utils.file_classification import classify_file, is_library_file, is_test_file
from semantic_kb.utils.logging import configure_logging, get_logger
from semantic_kb.utils.naming import collection_name, sanitize_name

__all__ = [
    "ConfigurationError",
    "ConversionTimeoutError",
    "DimensionMismatchError",
    "DocumentConversionError",
    "EmbeddingError",
    "IngestionError",
    "IngestionLockedError",
    "KnowledgeBaseError",
    "NotFoundError",
    "SearchError",
    "SemanticKBError",
    "UnsupportedFormatError",
    "VectorStoreError",
    "classify_file",
    "collection_name",
    "configure_logging",
    "get_logger",
    "is_library_file",
    "is_test_file",
    "sanitize_name",
]
