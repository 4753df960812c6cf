"""Composition root for semantic-kb.

Builds every provider and service exactly once from a :class:`Settings`
instance and wires them together by explicit constructor injection.
Nothing here runs at import time; callers (the CLI, tests, an embedding
application) own initialisation and shutdown::

    container = build_services(load_config("config.yaml"))
    await container.start()
    try:
        await container.ingestion.ingest_directory("docs", "./docs")
    finally:
        await container.close()
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from semantic_kb.config.settings import Settings
from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.interfaces.registry_provider import IKnowledgeBaseRegistry
from semantic_kb.interfaces.vector_store_provider import IVectorStoreProvider
from semantic_kb.providers.cache.memory_cache import MemoryCacheProvider
from semantic_kb.providers.converter.docling_converter import DoclingDocumentConverter
from semantic_kb.providers.registry.sqlite_registry import SQLiteKnowledgeBaseRegistry
from semantic_kb.services.ingestion.chunker import DocumentChunker
from semantic_kb.services.ingestion.file_scanner import FileScanner
from semantic_kb.services.ingestion.ingestion_service import IngestionService
from semantic_kb.services.knowledge_base_service import KnowledgeBaseService
from semantic_kb.services.search_service import SearchService
from semantic_kb.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Embedding provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Instantiate the configured embedding provider.

    ``fastembed`` (default) and ``sentence-transformers`` run locally;
    ``openai`` covers OpenAI and any OpenAI-compatible endpoint.  Local
    providers are imported lazily so their model runtimes load only when
    selected.
    """
    choice = app_settings.embedding_provider.strip().lower()
    model = app_settings.embedding_model or None

    if choice == "openai":
        from semantic_kb.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        return OpenAIEmbeddingProvider(settings=app_settings)

    if choice in ("sentence-transformers", "sentence_transformers"):
        from semantic_kb.providers.embedding.sentence_transformer_embedding_provider import (
            SentenceTransformerEmbeddingProvider,
        )

        return SentenceTransformerEmbeddingProvider(model_name=model)

    if choice == "fastembed":
        from semantic_kb.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        return FastEmbedEmbeddingProvider(model_name=model)

    raise ConfigurationError(
        f"Unknown embedding provider {app_settings.embedding_provider!r}; "
        "expected 'fastembed', 'sentence-transformers' or 'openai'"
    )


def _build_vector_store(app_settings: Settings) -> IVectorStoreProvider:
    from semantic_kb.providers.vector_store.chromadb_provider import ChromaDBProvider

    return ChromaDBProvider(persist_directory=app_settings.chromadb_persist_dir)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass
class ServiceContainer:
    """Every long-lived collaborator, built once per process."""

    settings: Settings
    embedding_provider: IEmbeddingProvider
    vector_store: IVectorStoreProvider
    registry: IKnowledgeBaseRegistry
    cache: MemoryCacheProvider
    ingestion: IngestionService
    search: SearchService
    knowledge_bases: KnowledgeBaseService

    async def start(self, load_embedding_model: bool = False) -> None:
        """Create registry tables and resolve renames interrupted by a crash.

        The embedding model is loaded only on request; ingestion loads it on
        first use, while search requires it to be loaded beforehand.
        """
        await self.registry.initialize()
        recovered = await self.knowledge_bases.recover_pending_renames()
        if recovered:
            logger.warning("pending_renames_recovered", count=recovered)
        if load_embedding_model:
            await self.embedding_provider.initialize()

    async def close(self) -> None:
        await self.vector_store.close()
        await self.registry.close()


def build_services(app_settings: Settings | None = None) -> ServiceContainer:
    """Assemble the full service graph from *app_settings*."""
    app_settings = app_settings or Settings()

    embedding_provider = _build_embedding_provider(app_settings)
    vector_store = _build_vector_store(app_settings)
    registry = SQLiteKnowledgeBaseRegistry(db_path=app_settings.registry_db_path)
    cache = MemoryCacheProvider(
        max_size=app_settings.search_cache_max_entries,
        ttl=app_settings.search_cache_ttl_seconds,
    )

    ingestion = IngestionService(
        file_scanner=FileScanner(
            profile=app_settings.ingestion_profile,
            max_file_size=app_settings.ingestion_max_file_size,
        ),
        converter=DoclingDocumentConverter(timeout=app_settings.document_conversion_timeout),
        chunker=DocumentChunker(
            max_tokens=app_settings.document_max_tokens,
            chunk_size=app_settings.document_chunk_size,
            chunk_overlap=app_settings.document_chunk_overlap,
        ),
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        registry=registry,
        batch_size=app_settings.ingestion_batch_size,
        schema_version=app_settings.schema_version,
        lock_ttl_seconds=app_settings.ingestion_lock_ttl_seconds,
    )
    search = SearchService(
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        cache=cache,
        default_max_results=app_settings.search_default_max_results,
        schema_version=app_settings.schema_version,
    )
    knowledge_bases = KnowledgeBaseService(
        vector_store=vector_store,
        registry=registry,
        schema_version=app_settings.schema_version,
        lock_ttl_seconds=app_settings.ingestion_lock_ttl_seconds,
    )

    # Mutations drop affected search responses immediately; the TTL covers
    # writes made by other processes.
    ingestion.add_mutation_listener(search.invalidate)
    knowledge_bases.add_mutation_listener(search.invalidate)

    logger.info(
        "services_built",
        embedding_provider=embedding_provider.get_provider_name(),
        embedding_model=embedding_provider.get_model_name(),
        chromadb_persist_dir=app_settings.chromadb_persist_dir,
        profile=app_settings.ingestion_profile,
    )
    return ServiceContainer(
        settings=app_settings,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        registry=registry,
        cache=cache,
        ingestion=ingestion,
        search=search,
        knowledge_bases=knowledge_bases,
    )
