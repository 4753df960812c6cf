"""Knowledge-base registry providers."""

from semantic_kb.providers.registry.sqlite_registry import SQLiteKnowledgeBaseRegistry

__all__ = ["SQLiteKnowledgeBaseRegistry"]
