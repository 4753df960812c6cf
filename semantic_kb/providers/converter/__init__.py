"""Document converter providers."""

from semantic_kb.providers.converter.docling_converter import DoclingDocumentConverter

__all__ = ["DoclingDocumentConverter"]
