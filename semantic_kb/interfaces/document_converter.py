"""Abstract base classes for the document conversion and code parsing capabilities.

A converter turns one raw file into normalised text plus structural
metadata.  A code parser splits source text into syntactic spans; the
chunker uses it when injected and falls back to line windows otherwise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from semantic_kb.models.document import ConversionResult


class IDocumentConverter(ABC):
    """Contract for file-to-text conversion."""

    @abstractmethod
    async def convert(self, file_path: str) -> ConversionResult:
        """Convert *file_path* into normalised text.

        Raises
        ------
        semantic_kb.utils.errors.UnsupportedFormatError
            If the extension is not handled.
        semantic_kb.utils.errors.ConversionTimeoutError
            If an external conversion exceeds its time bound.
        semantic_kb.utils.errors.DocumentConversionError
            For any other conversion failure.
        """

    @abstractmethod
    def supported_extensions(self) -> frozenset[str]:
        """Return the lowercased extensions (with dot) this converter accepts."""


@dataclass(frozen=True)
class CodeSpan:
    """A syntactic unit of source code; lines are 1-based and inclusive."""

    start_line: int
    end_line: int
    kind: str


class ICodeParser(ABC):
    """Contract for syntax-aware splitting of source code."""

    @abstractmethod
    def supports(self, language: str) -> bool:
        """Return ``True`` if *language* can be parsed."""

    @abstractmethod
    def parse(self, source: str, language: str) -> list[CodeSpan]:
        """Return top-level spans (functions, classes, ...) in source order."""
