"""Local ONNX-based embedding provider using fastembed.

Wraps the ``fastembed`` library to implement :class:`IEmbeddingProvider`
using ONNX Runtime — **no PyTorch dependency required**.  Fully free,
runs on CPU with minimal RAM footprint.

Default model: ``sentence-transformers/all-MiniLM-L6-v2`` (384 dimensions).
"""

from __future__ import annotations

import asyncio

import structlog

from semantic_kb.interfaces.embedding_provider import IEmbeddingProvider
from semantic_kb.providers.embedding._batching import embed_batch
from semantic_kb.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

# Known model dimensions for fastembed-supported models.
_MODEL_DIMENSIONS: dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "intfloat/multilingual-e5-large": 1024,
}

_DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
_BATCH_LIMIT = 64


class FastEmbedEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by fastembed (ONNX Runtime).

    The model is loaded by :meth:`initialize`, once per process; weights are
    downloaded on first run and cached locally.
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model_name, 384)
        self._model = None
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._init_lock:
            if self._model is not None:
                return
            try:
                from fastembed import TextEmbedding

                logger.info(
                    "loading_fastembed_model",
                    model=self._model_name,
                    msg="Loading ONNX model (first use may download weights)...",
                )
                self._model = await asyncio.to_thread(TextEmbedding, model_name=self._model_name)
            except Exception as exc:
                raise EmbeddingError(
                    message=f"Failed to load fastembed model '{self._model_name}': {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

            # Trust the model over the lookup table for unknown names.
            sample = await self._encode(["dimension check"])
            self._dimension = len(sample[0])
            logger.info(
                "fastembed_model_loaded",
                model=self._model_name,
                dimension=self._dimension,
            )

    def is_initialized(self) -> bool:
        return self._model is not None

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        vectors = await asyncio.to_thread(lambda: list(self._model.embed(texts)))
        return [v.tolist() for v in vectors]

    async def embed(self, texts: list[str]) -> list[list[float] | None]:
        """Generate embedding vectors for a batch of texts."""
        if not texts:
            return []
        self._require_model()
        return await embed_batch(texts, self._encode, _BATCH_LIMIT, self.get_provider_name())

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        self._require_model()
        try:
            return (await self._encode([text]))[0]
        except Exception as exc:
            raise EmbeddingError(
                message=f"Fastembed embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model_name

    def get_provider_name(self) -> str:
        return f"fastembed_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if fastembed is installed."""
        try:
            import fastembed  # noqa: F401

            return True
        except ImportError:
            return False

    def _require_model(self) -> None:
        if self._model is None:
            raise EmbeddingError(
                message="Embedding provider not initialized; call initialize() first",
                provider_name=self.get_provider_name(),
            )
