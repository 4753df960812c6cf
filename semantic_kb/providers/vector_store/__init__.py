"""Vector store providers.

ChromaDBProvider keeps one cosine-distance collection per knowledge base in
a local persistent directory.
"""

from semantic_kb.providers.vector_store.chromadb_provider import ChromaDBCollection, ChromaDBProvider

__all__ = ["ChromaDBCollection", "ChromaDBProvider"]
