"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers (TogetherAI,
Fireworks, a local vLLM server) via a custom ``base_url`` and model name.
"""

from __future__ import annotations

import openai
import structlog

from semantic_kb.config.settings import Settings
from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.providers.embedding._batching import embed_batch
from semantic_kb.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048
_DEFAULT_MODEL = "text-embedding-3-small"

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  OpenAI
    embeddings are unit length, so cosine distance stays within ``[0, 1]``
    for related text.  :meth:`initialize` validates the key and discovers
    the dimension of models missing from the lookup table with one sample
    call.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        client_kwargs: dict = {"api_key": self._api_key or "unset"}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.embedding_model or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 0)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        if not self._api_key:
            raise EmbeddingError(
                message="OPENAI_API_KEY is not configured",
                provider_name=self.get_provider_name(),
            )
        if not self._dimension:
            sample = await self._encode(["dimension check"])
            self._dimension = len(sample[0])
        self._initialized = True
        logger.info("openai_embedding_ready", model=self._model, dimension=self._dimension)

    def is_initialized(self) -> bool:
        return self._initialized

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug(
            "openai_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [item.embedding for item in response.data]

    async def embed(self, texts: list[str]) -> list[list[float] | None]:
        """Generate embedding vectors, splitting at the API's per-call limit."""
        if not texts:
            return []
        self._require_initialized()
        return await embed_batch(texts, self._encode, _OPENAI_BATCH_LIMIT, self.get_provider_name())

    async def embed_single(self, text: str) -> list[float]:
        self._require_initialized()
        return (await self._encode([text]))[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise EmbeddingError(
                message="Embedding provider not initialized; call initialize() first",
                provider_name=self.get_provider_name(),
            )
