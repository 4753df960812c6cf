"""Public interface definitions for every external collaborator.

The core services (ingestion, search, knowledge-base management) talk to
storage, models and converters exclusively through the abstract base classes
defined in this package.  Concrete adapters implement these interfaces and
are wired together in :func:`semantic_kb.main.build_services`; unit tests
inject fakes instead.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in semantic_kb/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider         →  FastEmbedEmbeddingProvider,
                                  SentenceTransformerEmbeddingProvider,
                                  OpenAIEmbeddingProvider
    IVectorStoreProvider       →  ChromaDBProvider
    ICollectionHandle          →  ChromaDBCollection
    IDocumentConverter         →  DoclingDocumentConverter
    ICodeParser                →  (none shipped; chunker falls back to line windows)
    ICacheProvider             →  MemoryCacheProvider
    IKnowledgeBaseRegistry     →  SQLiteKnowledgeBaseRegistry
"""

from semantic_kb.interfaces.cache_provider import ICacheProvider
from semantic_kb.interfaces.document_converter import CodeSpan, ICodeParser, IDocumentConverter
from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
from semantic_kb.interfaces.vector_store_provider import (
    ICollectionHandle,
    IVectorStoreProvider,
    Predicate,
)

__all__ = [
    "CodeSpan",
    "ICacheProvider",
    "ICodeParser",
    "ICollectionHandle",
    "IDocumentConverter",
    "IEmbeddingProvider",
    "IKnowledgeBaseRegistry",
    "IVectorStoreProvider",
    "Predicate",
]
