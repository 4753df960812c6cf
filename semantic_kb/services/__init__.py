"""Core services: ingestion, search and knowledge-base management."""

from semantic_kb.services.ingestion.ingestion_service import IngestionService
from semantic_kb.services.knowledge_base_service import KnowledgeBaseService
from semantic_kb.services.search_service import SearchService

__all__ = ["IngestionService", "KnowledgeBaseService", "SearchService"]
