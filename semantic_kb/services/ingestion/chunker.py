"""Structure-aware chunking with a sliding-window fallback.

Splits converted text into :class:`~semantic_kb.models.document.DocumentChunk`
objects sized for embedding models (``max_tokens``, default 512).

Three strategies, chosen per document:

1. **Structural** (markdown-like text: markdown, docling output, flattened
   HTML, plain text).  The text is parsed into blocks — headings, fenced
   code, tables, lists, paragraphs — while a heading stack tracks each
   block's heading path.  A heading absorbs the prose and lists that
   follow it into a ``section`` chunk; tables and code blocks stand alone
   so their type survives.  Oversized blocks are split by window.

2. **Code** (source files).  Spans from an injected :class:`ICodeParser`
   when it supports the language, otherwise line windows of ``chunk_size``
   characters with ``chunk_overlap`` overlap.

3. **Sliding window** — fixed ``chunk_size`` characters with
   ``chunk_overlap`` overlap.  Used when structural chunking raises or yields
   nothing for non-blank text.

Token counts are estimated as ``ceil(len(text) / 4)``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

import structlog

from semantic_kb.interfaces.document_converter import ICodeParser
from semantic_kb.models.document import ChunkType, DocumentChunk
from semantic_kb.utils.formats import is_code_language

logger = structlog.get_logger(logger_name=__name__)

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE = re.compile(r"^\s*(```|~~~)")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_TABLE_ROW = re.compile(r"^\s*\|")
_PAGE_BREAK = re.compile(r"^\s*(?:<!--\s*page[- ]?break\s*-->|\f)\s*$", re.IGNORECASE)

# Blocks that a heading may absorb into a section.
_SECTION_BODY = frozenset({ChunkType.PARAGRAPH, ChunkType.LIST})


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


@dataclass
class _Block:
    kind: ChunkType
    start_line: int
    heading_path: tuple[str, ...]
    page_number: int | None
    lines: list[str] = field(default_factory=list)
    end_line: int = 0

    @property
    def text(self) -> str:
        return "\n".join(self.lines).strip()


class DocumentChunker:
    """Splits normalised text into ordered chunks.

    Parameters
    ----------
    max_tokens:
        Token budget per structural chunk.
    chunk_size:
        Window size in characters for the fallback and code strategies.
    chunk_overlap:
        Characters shared by consecutive windows; values ``>= chunk_size``
        degrade to no overlap.
    parser:
        Optional syntax-aware splitter for source code.
    """

    def __init__(
        self,
        max_tokens: int = 512,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        parser: ICodeParser | None = None,
    ) -> None:
        self._max_tokens = max_tokens
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap if chunk_overlap < chunk_size else 0
        self._parser = parser

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, document_type: str) -> list[DocumentChunk]:
        """Split *text* into chunks appropriate for *document_type*.

        Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        if is_code_language(document_type):
            chunks = self._chunk_code(text, document_type)
            strategy = "code"
        else:
            try:
                chunks = self._chunk_structural(text)
                strategy = "structural"
            except Exception as exc:  # noqa: BLE001
                logger.warning("structural_chunking_failed", error=str(exc))
                chunks = []
            if not chunks:
                chunks = self.sliding_window(text)
                strategy = "sliding_window"

        logger.debug(
            "chunking_complete",
            strategy=strategy,
            document_type=document_type,
            num_chunks=len(chunks),
        )
        return chunks

    def sliding_window(self, text: str) -> list[DocumentChunk]:
        """Fixed-size character windows with overlap; always makes progress."""
        pieces = self._windows(text, 0, len(text), self._chunk_size)
        return [
            DocumentChunk(
                content=content,
                index=i,
                token_count=estimate_tokens(content),
                chunk_type=ChunkType.PARAGRAPH,
                start_line=start_line,
                end_line=end_line,
                has_context=False,
            )
            for i, (content, start_line, end_line) in enumerate(pieces)
        ]

    # ------------------------------------------------------------------
    # Structural strategy
    # ------------------------------------------------------------------

    def _chunk_structural(self, text: str) -> list[DocumentChunk]:
        blocks = self._parse_blocks(text)
        groups = self._group_blocks(blocks)

        chunks: list[DocumentChunk] = []
        for group in groups:
            kind = group[0].kind
            if kind == ChunkType.HEADING and len(group) > 1:
                kind = ChunkType.SECTION
            content = "\n\n".join(b.text for b in group)
            first, last = group[0], group[-1]
            if estimate_tokens(content) <= self._max_tokens:
                chunks.append(
                    DocumentChunk(
                        content=content,
                        index=len(chunks),
                        token_count=estimate_tokens(content),
                        chunk_type=kind,
                        heading_path=list(first.heading_path),
                        page_number=first.page_number,
                        start_line=first.start_line,
                        end_line=max(last.end_line, first.start_line),
                    )
                )
                continue
            # Only single blocks can exceed the budget; split them by window.
            window = min(self._chunk_size, self._max_tokens * 4)
            for piece, rel_start, rel_end in self._windows(content, 0, len(content), window):
                chunks.append(
                    DocumentChunk(
                        content=piece,
                        index=len(chunks),
                        token_count=estimate_tokens(piece),
                        chunk_type=kind,
                        heading_path=list(first.heading_path),
                        page_number=first.page_number,
                        start_line=first.start_line + rel_start - 1,
                        end_line=first.start_line + rel_end - 1,
                    )
                )
        return chunks

    @staticmethod
    def _parse_blocks(text: str) -> list[_Block]:
        lines = text.splitlines()
        paginated = any(_PAGE_BREAK.match(line) for line in lines)
        page = 1 if paginated else None
        stack: list[tuple[int, str]] = []
        blocks: list[_Block] = []
        current: _Block | None = None
        in_fence = False

        def path() -> tuple[str, ...]:
            return tuple(title for _, title in stack)

        def flush(end_line: int) -> None:
            nonlocal current
            if current is not None and current.text:
                current.end_line = end_line
                blocks.append(current)
            current = None

        def start(kind: ChunkType, line_no: int, line: str) -> None:
            nonlocal current
            current = _Block(kind=kind, start_line=line_no, heading_path=path(), page_number=page)
            current.lines.append(line)

        for line_no, line in enumerate(lines, start=1):
            if in_fence:
                current.lines.append(line)
                if _FENCE.match(line):
                    in_fence = False
                    flush(line_no)
                continue

            if _PAGE_BREAK.match(line):
                flush(line_no - 1)
                if page is not None:
                    page += 1
                continue

            if _FENCE.match(line):
                flush(line_no - 1)
                start(ChunkType.CODE, line_no, line)
                in_fence = True
                continue

            heading = _HEADING.match(line)
            if heading:
                flush(line_no - 1)
                level = len(heading.group(1))
                while stack and stack[-1][0] >= level:
                    stack.pop()
                stack.append((level, heading.group(2).strip()))
                start(ChunkType.HEADING, line_no, line)
                flush(line_no)
                continue

            if not line.strip():
                flush(line_no - 1)
                continue

            if _TABLE_ROW.match(line):
                if current is None or current.kind != ChunkType.TABLE:
                    flush(line_no - 1)
                    start(ChunkType.TABLE, line_no, line)
                else:
                    current.lines.append(line)
                continue

            if _LIST_ITEM.match(line):
                if current is None or current.kind != ChunkType.LIST:
                    flush(line_no - 1)
                    start(ChunkType.LIST, line_no, line)
                else:
                    current.lines.append(line)
                continue

            if current is not None and current.kind in (ChunkType.PARAGRAPH, ChunkType.LIST):
                # Lazy continuation of a paragraph or list item.
                current.lines.append(line)
                continue

            flush(line_no - 1)
            start(ChunkType.PARAGRAPH, line_no, line)

        flush(len(lines))
        return blocks

    def _group_blocks(self, blocks: list[_Block]) -> list[list[_Block]]:
        groups: list[list[_Block]] = []
        tokens = 0
        for block in blocks:
            block_tokens = estimate_tokens(block.text)
            if groups:
                group = groups[-1]
                lead = group[0]
                same_path = lead.heading_path == block.heading_path
                same_page = lead.page_number == block.page_number
                fits = tokens + block_tokens <= self._max_tokens
                if lead.kind == ChunkType.HEADING:
                    compatible = block.kind in _SECTION_BODY
                else:
                    compatible = block.kind == lead.kind and block.kind != ChunkType.CODE
                if same_path and same_page and fits and compatible:
                    group.append(block)
                    tokens += block_tokens
                    continue
            groups.append([block])
            tokens = block_tokens
        return groups

    # ------------------------------------------------------------------
    # Code strategy
    # ------------------------------------------------------------------

    def _chunk_code(self, text: str, language: str) -> list[DocumentChunk]:
        lines = text.splitlines()
        spans: list[tuple[int, int]] = []
        if self._parser is not None and self._parser.supports(language):
            try:
                spans = [(s.start_line, s.end_line) for s in self._parser.parse(text, language)]
            except Exception as exc:  # noqa: BLE001
                logger.warning("code_parsing_failed", language=language, error=str(exc))
                spans = []

        if not spans:
            spans = self._line_windows(lines)

        chunks: list[DocumentChunk] = []
        for start_line, end_line in spans:
            content = "\n".join(lines[start_line - 1 : end_line]).strip("\n")
            if not content.strip():
                continue
            if estimate_tokens(content) > self._max_tokens and end_line > start_line:
                # An oversized parser span falls back to line windows within it.
                for sub_start, sub_end in self._line_windows(lines[start_line - 1 : end_line]):
                    abs_start = start_line + sub_start - 1
                    abs_end = start_line + sub_end - 1
                    piece = "\n".join(lines[abs_start - 1 : abs_end])
                    if piece.strip():
                        chunks.append(self._code_chunk(piece, len(chunks), abs_start, abs_end))
                continue
            chunks.append(self._code_chunk(content, len(chunks), start_line, end_line))
        return chunks

    @staticmethod
    def _code_chunk(content: str, index: int, start_line: int, end_line: int) -> DocumentChunk:
        return DocumentChunk(
            content=content,
            index=index,
            token_count=estimate_tokens(content),
            chunk_type=ChunkType.CODE,
            start_line=start_line,
            end_line=max(end_line, start_line),
            has_context=False,
        )

    def _line_windows(self, lines: list[str]) -> list[tuple[int, int]]:
        """Group whole lines into windows of about ``chunk_size`` characters.

        Returns 1-based inclusive ``(start_line, end_line)`` pairs; consecutive
        windows share trailing lines worth up to ``chunk_overlap`` characters.
        """
        windows: list[tuple[int, int]] = []
        start = 0
        total = len(lines)
        while start < total:
            size = 0
            end = start
            while end < total and (end == start or size + len(lines[end]) + 1 <= self._chunk_size):
                size += len(lines[end]) + 1
                end += 1
            windows.append((start + 1, end))
            if end >= total:
                break
            # Step back over overlap lines, but always advance at least one line.
            back = end
            overlap = 0
            while back - 1 > start and overlap + len(lines[back - 1]) + 1 <= self._chunk_overlap:
                back -= 1
                overlap += len(lines[back]) + 1
            start = max(back, start + 1)
        return windows

    # ------------------------------------------------------------------
    # Window helper
    # ------------------------------------------------------------------

    def _windows(self, text: str, begin: int, finish: int, size: int) -> list[tuple[str, int, int]]:
        """Return ``(content, start_line, end_line)`` windows over ``text[begin:finish]``."""
        size = max(1, size)
        overlap = self._chunk_overlap if self._chunk_overlap < size else 0
        step = size - overlap
        pieces: list[tuple[str, int, int]] = []
        start = begin
        while start < finish:
            end = min(start + size, finish)
            content = text[start:end].strip()
            if content:
                start_line = text.count("\n", 0, start) + 1
                end_line = text.count("\n", 0, max(start, end - 1)) + 1
                pieces.append((content, start_line, end_line))
            if end >= finish:
                break
            start += step
        return pieces
