"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap FastEmbed (ONNX), Sentence Transformers, an
OpenAI-compatible API, or any other embedding backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   FastEmbedEmbeddingProvider           — lightweight ONNX (no PyTorch), default
#   SentenceTransformerEmbeddingProvider — all-MiniLM-L6-v2 (local, needs PyTorch)
#   OpenAIEmbeddingProvider              — text-embedding-3-small (requires API key)
# Located in: semantic_kb/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and search.

    The model is loaded once by :meth:`initialize`; inference methods never
    load lazily and raise :class:`~semantic_kb.utils.errors.EmbeddingError`
    when called before initialisation.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Load the model.  Idempotent: repeat calls after success are no-ops.

        Raises
        ------
        semantic_kb.utils.errors.EmbeddingError
            If the model cannot be loaded.
        """

    @abstractmethod
    def is_initialized(self) -> bool:
        """Return ``True`` once :meth:`initialize` has succeeded."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float] | None]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations should
            handle batching internally if the underlying API has a per-call
            limit.

        Returns
        -------
        list[list[float] | None]
            Vectors corresponding positionally to *texts*.  ``None`` marks a
            per-item failure (for example an empty text, or an item that
            failed on its own after a batch error); the remaining items are
            still returned.

        Raises
        ------
        semantic_kb.utils.errors.EmbeddingError
            If the provider is not initialised or the call fails as a whole.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string (e.g. a query).

        Raises
        ------
        semantic_kb.utils.errors.EmbeddingError
            If the text cannot be embedded.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance and must match the dimension of every collection it writes.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier, e.g. ``"sentence-transformers/all-MiniLM-L6-v2"``."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider's library/credentials are present."""
