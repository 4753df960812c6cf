"""Document converter backed by direct reads and the docling CLI.

# ─── DESIGN ────────────────────────────────────────────────────────────
#
# Conversion strategy per format:
#   TXT / MD / source code  →  read directly (UTF-8, undecodable bytes replaced)
#   HTML                    →  read directly, flattened to markdown via BeautifulSoup
#   PDF / Office / audio    →  `docling` CLI subprocess → <stem>.md + <stem>.json
#
# The docling call is bounded by ``timeout`` seconds.  On expiry the
# process is killed and ConversionTimeoutError is raised; the ingestion
# service treats that as a per-file failure.
#
# External tool detection happens at call time, not at init, so the
# converter degrades gracefully — without docling installed, text formats
# still convert and binary formats fail per file with a clear error.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

import structlog
from bs4 import BeautifulSoup

from semantic_kb.interfaces.document_converter import IDocumentConverter
from semantic_kb.models.document import ConversionResult, DocumentMetadata, DocumentType
from semantic_kb.utils.errors import (
    ConversionTimeoutError,
    DocumentConversionError,
    UnsupportedFormatError,
)
from semantic_kb.utils.formats import CODE_EXTENSIONS, DIRECT_READ_TYPES, DOCUMENT_EXTENSIONS

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER = "docling"
_TABLE_ROW = re.compile(r"^\s*\|.*\|\s*$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def _count_words(text: str) -> int:
    return len(text.split())


def _html_to_markdown(html: str) -> tuple[str, bool, bool]:
    """Flatten HTML to markdown-ish text, keeping headings, lists, tables and code.

    Returns ``(text, has_images, has_tables)``.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    has_images = soup.find("img") is not None
    has_tables = soup.find("table") is not None

    for pre in soup.find_all("pre"):
        pre.replace_with(f"\n\n```\n{pre.get_text().strip()}\n```\n\n")
    for level in range(1, 7):
        for heading in soup.find_all(f"h{level}"):
            heading.replace_with(f"\n\n{'#' * level} {heading.get_text(' ', strip=True)}\n\n")
    for row in soup.find_all("tr"):
        cells = [c.get_text(" ", strip=True) for c in row.find_all(["td", "th"])]
        row.replace_with(f"\n| {' | '.join(cells)} |")
    for item in soup.find_all("li"):
        item.replace_with(f"\n- {item.get_text(' ', strip=True)}")
    for para in soup.find_all(["p", "div", "br"]):
        para.insert_after("\n\n")

    text = soup.get_text()
    lines = [line.rstrip() for line in text.splitlines()]
    text = _BLANK_RUNS.sub("\n\n", "\n".join(lines)).strip()
    return text, has_images, has_tables


class DoclingDocumentConverter(IDocumentConverter):
    """Converts files to normalised text for chunking.

    Parameters
    ----------
    timeout:
        Seconds allowed for one docling conversion.
    docling_binary:
        Name or path of the docling executable.
    """

    def __init__(self, timeout: float = 30.0, docling_binary: str = "docling") -> None:
        self._timeout = timeout
        self._docling_binary = docling_binary

    def supported_extensions(self) -> frozenset[str]:
        return frozenset(DOCUMENT_EXTENSIONS) | frozenset(CODE_EXTENSIONS)

    async def convert(self, file_path: str) -> ConversionResult:
        path = Path(file_path)
        ext = path.suffix.lower()
        if ext in CODE_EXTENSIONS:
            return await self._read_direct(path, CODE_EXTENSIONS[ext])
        doc_type = DOCUMENT_EXTENSIONS.get(ext)
        if doc_type is None:
            raise UnsupportedFormatError(
                message=f"Unsupported file format: {ext or '(none)'}", provider_name=_PROVIDER
            )
        if doc_type.value in DIRECT_READ_TYPES:
            return await self._read_direct(path, doc_type.value)
        return await self._convert_with_docling(path, doc_type)

    # ------------------------------------------------------------------
    # Direct reads
    # ------------------------------------------------------------------

    async def _read_direct(self, path: Path, format_name: str) -> ConversionResult:
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        except OSError as exc:
            raise DocumentConversionError(
                message=f"Failed to read document {path}: {exc}", provider_name="filesystem"
            ) from exc

        has_images = False
        if format_name == DocumentType.HTML.value:
            text, has_images, has_tables = _html_to_markdown(raw)
        else:
            text = raw
            has_tables = format_name == DocumentType.MARKDOWN.value and bool(_TABLE_ROW.search(raw))

        return ConversionResult(
            text=text,
            metadata=DocumentMetadata(
                title=path.name,
                format=format_name,
                word_count=_count_words(text),
                has_images=has_images,
                has_tables=has_tables,
            ),
        )

    # ------------------------------------------------------------------
    # docling CLI
    # ------------------------------------------------------------------

    async def _convert_with_docling(self, path: Path, doc_type: DocumentType) -> ConversionResult:
        binary = shutil.which(self._docling_binary)
        if not binary:
            raise DocumentConversionError(
                message=(
                    f"docling not installed; cannot convert {path.name}. "
                    "Install via: pip install docling"
                ),
                provider_name=_PROVIDER,
            )

        with tempfile.TemporaryDirectory(prefix="semantic_kb_docling_") as output_dir:
            args = [
                "--ocr",
                "--image-export-mode", "placeholder",
                str(path),
                "--to", "md",
                "--to", "json",
                "--output", output_dir,
            ]
            logger.debug("docling_cli_started", file=str(path), timeout=self._timeout)
            proc = await asyncio.create_subprocess_exec(
                binary, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                proc.kill()
                await proc.wait()
                raise ConversionTimeoutError(
                    message=f"Conversion of {path.name} exceeded {self._timeout:g}s",
                    provider_name=_PROVIDER,
                ) from exc

            stderr = stderr_bytes.decode("utf-8", errors="replace")
            if proc.returncode != 0:
                raise DocumentConversionError(
                    message=f"docling exited with code {proc.returncode}: {stderr[-500:]}",
                    provider_name=_PROVIDER,
                )
            if "failed to convert" in stderr.lower():
                raise DocumentConversionError(
                    message=f"docling failed to convert {path.name}: {stderr[-500:]}",
                    provider_name=_PROVIDER,
                )

            md_path = Path(output_dir) / f"{path.stem}.md"
            json_path = Path(output_dir) / f"{path.stem}.json"
            markdown = md_path.read_text(encoding="utf-8") if md_path.exists() else ""
            structured: dict[str, Any] | None = None
            if json_path.exists():
                try:
                    structured = json.loads(json_path.read_text(encoding="utf-8"))
                except ValueError:
                    logger.warning("docling_json_unreadable", file=str(path))

        if not markdown.strip():
            raise DocumentConversionError(
                message=f"docling produced no text for {path.name}", provider_name=_PROVIDER
            )

        metadata = DocumentMetadata(
            title=str((structured or {}).get("name") or path.name),
            format=doc_type.value,
            page_count=self._page_count(structured),
            word_count=_count_words(markdown),
            has_images=bool((structured or {}).get("pictures")),
            has_tables=bool((structured or {}).get("tables")) or bool(_TABLE_ROW.search(markdown)),
        )
        logger.info(
            "document_converted",
            file=str(path),
            format=doc_type.value,
            word_count=metadata.word_count,
            page_count=metadata.page_count,
        )
        return ConversionResult(text=markdown, metadata=metadata, structured_document=structured)

    @staticmethod
    def _page_count(structured: dict[str, Any] | None) -> int | None:
        if not structured:
            return None
        pages = structured.get("pages")
        if isinstance(pages, dict | list):
            return len(pages) or None
        count = structured.get("page_count")
        return int(count) if isinstance(count, int) else None
