"""Embedding provider implementations.

Three implementations of IEmbeddingProvider (listed in typical priority order):
    1. FastEmbedEmbeddingProvider — ONNX-based, no PyTorch needed.
       Default. Uses all-MiniLM-L6-v2 (384 dims).
    2. SentenceTransformerEmbeddingProvider — PyTorch-based; optional extra.
    3. OpenAIEmbeddingProvider    — text-embedding-3-small (1536 dims) or any
       OpenAI-compatible endpoint; requires an API key.

Only the OpenAI provider is re-exported here; the local providers are
imported where needed so their heavy dependencies load only when selected.
"""

from semantic_kb.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
