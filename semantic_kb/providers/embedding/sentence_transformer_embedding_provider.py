"""Local sentence-transformers embedding provider adapter.

Wraps the ``sentence-transformers`` library to implement
:class:`IEmbeddingProvider` using any HuggingFace embedding model locally.
Fully free — runs on CPU/GPU with no API key required.  Heavier than the
fastembed provider because it pulls in PyTorch; install the
``sentence-transformers`` extra to use it.
"""

from __future__ import annotations

import asyncio

import structlog

from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.providers.embedding._batching import embed_batch
from semantic_kb.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
_BATCH_LIMIT = 64  # Conservative batch size for CPU inference


class SentenceTransformerEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by a local sentence-transformers model.

    Vectors are L2-normalised so cosine distance stays within ``[0, 1]``
    for the vector store.
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = 0
        self._model = None
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._model is not None:
                return
            try:
                from sentence_transformers import SentenceTransformer

                logger.info("loading_sentence_transformer", model=self._model_name)
                model = await asyncio.to_thread(SentenceTransformer, self._model_name)
                self._dimension = int(model.get_sentence_embedding_dimension())
                self._model = model
            except Exception as exc:
                raise EmbeddingError(
                    message=f"Failed to load sentence-transformers model '{self._model_name}': {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            logger.info(
                "sentence_transformer_loaded",
                model=self._model_name,
                dimension=self._dimension,
            )

    def is_initialized(self) -> bool:
        return self._model is not None

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        vectors = await asyncio.to_thread(
            self._model.encode,
            texts,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return vectors.tolist()

    async def embed(self, texts: list[str]) -> list[list[float] | None]:
        if not texts:
            return []
        self._require_model()
        results = await embed_batch(texts, self._encode, _BATCH_LIMIT, self.get_provider_name())
        logger.debug(
            "sentence_transformer_embedding_batch",
            model=self._model_name,
            batch_size=len(texts),
        )
        return results

    async def embed_single(self, text: str) -> list[float]:
        self._require_model()
        try:
            return (await self._encode([text]))[0]
        except Exception as exc:
            raise EmbeddingError(
                message=f"Sentence-transformers embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model_name

    def get_provider_name(self) -> str:
        return f"sentence_transformer_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if sentence-transformers is installed."""
        try:
            import sentence_transformers  # noqa: F401
            return True
        except ImportError:
            return False

    def _require_model(self) -> None:
        if self._model is None:
            raise EmbeddingError(
                message="Embedding provider not initialized; call initialize() first",
                provider_name=self.get_provider_name(),
            )
