"""Semantic search across knowledge bases.

A query is embedded once and matched against one knowledge base's
collection (scoped search) or every collection tagged as a knowledge base
(unscoped search).  Matches from all collections are merged, ranked by
``1 - distance`` and truncated.  Complete responses are cached by the
normalised request for a short TTL; the ingestion and management services
invalidate affected entries through :meth:`SearchService.invalidate`.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

import structlog

from semantic_kb.models.search import SearchFilters, SearchResult, SearchResultMetadata, SearchResults
from semantic_kb.utils.errors import NotFoundError, SearchError, SemanticKBError
from semantic_kb.utils.naming import DEFAULT_SCHEMA_VERSION, collection_name, sanitize_name

if TYPE_CHECKING:
    from semantic_kb.interfaces.cache_provider import ICacheProvider
    from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
    from semantic_kb.interfaces.vector_store_provider import ICollectionHandle, IVectorStoreProvider
    from semantic_kb.models.store import VectorMatch

logger = structlog.get_logger(logger_name=__name__)


class SearchService:
    """Embeds queries and ranks matching chunks across knowledge bases.

    Parameters
    ----------
    embedding_provider:
        Must already be initialised; search never loads a model.
    vector_store:
        Store holding one collection per knowledge base.
    cache:
        Response cache; its TTL bounds how stale a result can be.
    default_max_results:
        Limit applied when a request gives none.
    schema_version:
        Collection layout version used to resolve scoped searches.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        cache: ICacheProvider,
        default_max_results: int = 50,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._cache = cache
        self._default_max_results = default_max_results
        self._schema_version = schema_version

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        knowledge_base: str | None = None,
        filters: SearchFilters | None = None,
        max_results: int | None = None,
    ) -> SearchResults:
        """Return the chunks most similar to *query*.

        Raises
        ------
        SearchError
            For a blank query, a non-positive limit, an uninitialised
            embedding provider, a failing query embedding, or a vector store
            that cannot list or open the target collections.
        NotFoundError
            If *knowledge_base* is given and has no collection.
        """
        start = time.monotonic()
        query = query.strip()
        if not query:
            raise SearchError("Search query must not be empty")
        limit = self._default_max_results if max_results is None else max_results
        if limit < 1:
            raise SearchError(f"max_results must be >= 1, got {limit}")

        kb: str | None = None
        if knowledge_base is not None:
            try:
                kb = sanitize_name(knowledge_base)
            except ValueError as exc:
                raise SearchError(str(exc)) from exc

        predicate = filters.to_predicate() if filters is not None else None
        key = self._cache_key(query, kb, predicate, limit)

        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("search_cache_hit", query=query, knowledge_base=kb)
            # Served as stored, including the original query_time_ms.
            return cached.model_copy(update={"cached": True})

        if not self._embedding_provider.is_initialized():
            raise SearchError(
                message="Embedding provider not initialized",
                provider_name=self._embedding_provider.get_provider_name(),
            )

        handles = await self._target_collections(kb)

        try:
            vector = await self._embedding_provider.embed_single(query)
        except SemanticKBError as exc:
            raise SearchError(
                message=f"Query embedding failed: {exc}",
                provider_name=self._embedding_provider.get_provider_name(),
            ) from exc

        results: list[SearchResult] = []
        for handle in handles:
            try:
                matches = await handle.query_by_vector(vector, limit=limit, where=predicate)
            except Exception as exc:  # noqa: BLE001
                logger.warning("collection_query_failed", collection=handle.name, error=str(exc))
                continue
            results.extend(self._to_result(m) for m in matches)

        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:limit]

        response = SearchResults(
            query=query,
            results=results,
            total_results=len(results),
            query_time_ms=self._elapsed_ms(start),
            cached=False,
        )
        await self._cache.set(key, response)
        logger.info(
            "search_complete",
            query=query,
            knowledge_base=kb,
            collections=len(handles),
            total_results=response.total_results,
            query_time_ms=response.query_time_ms,
        )
        return response

    async def invalidate(self, knowledge_base: str) -> int:
        """Drop cached responses that could include *knowledge_base*.

        That is every entry scoped to it plus every unscoped entry.  Returns
        the number of entries removed.
        """
        removed = 0
        for key in await self._cache.keys():
            try:
                scope = json.loads(key).get("knowledge_base")
            except (ValueError, AttributeError):
                continue
            if scope is None or scope == knowledge_base:
                await self._cache.delete(key)
                removed += 1
        if removed:
            logger.debug("search_cache_invalidated", knowledge_base=knowledge_base, removed=removed)
        return removed

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _target_collections(self, kb: str | None) -> list[ICollectionHandle]:
        if kb is not None:
            name = collection_name(kb, self._schema_version)
            try:
                if not await self._vector_store.collection_exists(name):
                    raise NotFoundError("knowledge base", kb)
                return [await self._vector_store.open_collection(name)]
            except NotFoundError:
                raise
            except SemanticKBError as exc:
                raise SearchError(
                    message=f"Opening knowledge base '{kb}' failed: {exc.message}",
                    provider_name=exc.provider_name,
                ) from exc

        try:
            infos = await self._vector_store.list_collections()
        except SemanticKBError as exc:
            raise SearchError(f"Listing collections failed: {exc}") from exc

        handles: list[ICollectionHandle] = []
        for info in infos:
            if info.metadata.get("knowledge_base") is not True:
                continue
            try:
                handles.append(await self._vector_store.open_collection(info.name))
            except SemanticKBError as exc:
                logger.warning("collection_open_failed", collection=info.name, error=str(exc))
        return handles

    @staticmethod
    def _cache_key(
        query: str,
        kb: str | None,
        predicate: dict[str, Any] | None,
        limit: int,
    ) -> str:
        return json.dumps(
            {
                "query": query,
                "knowledge_base": kb,
                "filters": predicate,
                "max_results": limit,
            },
            sort_keys=True,
        )

    @staticmethod
    def _to_result(match: VectorMatch) -> SearchResult:
        record = match.record
        return SearchResult(
            content=record.content,
            score=round(max(0.0, min(1.0, 1.0 - match.distance)), 6),
            knowledge_base=record.knowledge_base,
            metadata=SearchResultMetadata(
                file_path=record.file_path,
                document_type=record.document_type,
                chunk_type=record.chunk_type,
                chunk_index=record.chunk_index,
                start_line=record.start_line,
                end_line=record.end_line,
                is_test=record.is_test,
                page_number=record.page_number,
                heading_path=record.heading_path,
                ingestion_timestamp=record.ingestion_timestamp,
            ),
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.monotonic() - start) * 1000, 2)
