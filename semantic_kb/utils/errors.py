"""Custom exception hierarchy for semantic-kb.

All application exceptions inherit from :class:`SemanticKBError`, which
carries an optional ``provider_name`` so error handlers can identify which
collaborator (e.g. "chromadb", "fastembed", "docling") caused the failure.

The hierarchy is organized by pipeline domain:

    SemanticKBError  (base -- catch-all for any semantic-kb error)
    +-- ConfigurationError       (startup / invalid config)
    +-- IngestionError           (scan -> convert -> chunk -> embed -> store)
    |   +-- IngestionLockedError (another run holds the knowledge-base lock)
    +-- DocumentConversionError  (per-file conversion failure)
    |   +-- UnsupportedFormatError
    |   +-- ConversionTimeoutError
    +-- EmbeddingError           (embedding model load / inference failure)
    +-- VectorStoreError         (collection read / write failure)
    |   +-- DimensionMismatchError
    +-- SearchError              (query-time failure)
    +-- KnowledgeBaseError       (management operation failure)
    +-- NotFoundError            (named resource does not exist)

Services wrap collaborator failures with ``raise ... from exc`` so the
original cause is always reachable through ``__cause__``.  ``NotFoundError``
is deliberately kept outside the domain branches so callers can branch on
"does not exist" without inspecting message text.
"""


class SemanticKBError(Exception):
    """Base exception for all semantic-kb errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which collaborator triggered the error.
    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[chromadb] Failed to open collection``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Startup errors
# ---------------------------------------------------------------------------

class ConfigurationError(SemanticKBError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class IngestionError(SemanticKBError):
    """Raised when an ingestion run cannot continue (embedding or storage failure)."""

    def __init__(
        self,
        message: str = "Ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionLockedError(IngestionError):
    """Raised when another ingestion run already holds the knowledge-base lock."""

    def __init__(
        self,
        knowledge_base: str,
        owner: str | None = None,
    ) -> None:
        self._knowledge_base = knowledge_base
        self._owner = owner
        detail = f" (held by {owner})" if owner else ""
        super().__init__(
            message=f"Ingestion already in progress for knowledge base '{knowledge_base}'{detail}",
        )

    @property
    def knowledge_base(self) -> str:
        return self._knowledge_base

    @property
    def owner(self) -> str | None:
        return self._owner


class DocumentConversionError(SemanticKBError):
    """Raised when a single document cannot be converted to text."""

    def __init__(
        self,
        message: str = "Document conversion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormatError(DocumentConversionError):
    """Raised when no converter handles the file's extension."""

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConversionTimeoutError(DocumentConversionError):
    """Raised when an external conversion exceeds its time bound."""

    def __init__(
        self,
        message: str = "Document conversion timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding / vector-store errors
# ---------------------------------------------------------------------------

class EmbeddingError(SemanticKBError):
    """Raised when the embedding model cannot be loaded or fails to embed."""

    def __init__(
        self,
        message: str = "Embedding operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(SemanticKBError):
    """Raised when a vector-store read or write fails."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(VectorStoreError):
    """Raised when a vector's length differs from the collection dimension."""

    def __init__(
        self,
        expected: int,
        actual: int,
        provider_name: str | None = None,
    ) -> None:
        self._expected = expected
        self._actual = actual
        super().__init__(
            message=f"Vector dimension {actual} does not match collection dimension {expected}",
            provider_name=provider_name,
        )

    @property
    def expected(self) -> int:
        return self._expected

    @property
    def actual(self) -> int:
        return self._actual


# ---------------------------------------------------------------------------
# Query / management errors
# ---------------------------------------------------------------------------

class SearchError(SemanticKBError):
    """Raised when a search request is invalid or cannot be served."""

    def __init__(
        self,
        message: str = "Search failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class KnowledgeBaseError(SemanticKBError):
    """Raised when a knowledge-base management operation fails."""

    def __init__(
        self,
        message: str = "Knowledge base operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(SemanticKBError):
    """Raised when a named resource (knowledge base, collection) does not exist.

    Carries the resource type and name so CLIs and APIs can render hints
    without parsing the message.
    """

    def __init__(
        self,
        resource_type: str,
        resource_name: str,
        provider_name: str | None = None,
    ) -> None:
        self._resource_type = resource_type
        self._resource_name = resource_name
        super().__init__(
            message=f"{resource_type.capitalize()} '{resource_name}' not found",
            provider_name=provider_name,
        )

    @property
    def resource_type(self) -> str:
        return self._resource_type

    @property
    def resource_name(self) -> str:
        return self._resource_name
