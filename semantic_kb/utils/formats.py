"""Static extension tables shared by the scanner and the converter.

Two profiles exist: ``documents`` (office formats, markup, audio) and
``code`` (source files, keyed by language).  Under the code profile,
markdown and JSON are deliberately unsupported.
"""

from __future__ import annotations

from semantic_kb.models.document import DocumentType

DOCUMENT_EXTENSIONS: dict[str, DocumentType] = {
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.DOCX,
    ".doc": DocumentType.DOCX,
    ".pptx": DocumentType.PPTX,
    ".ppt": DocumentType.PPTX,
    ".xlsx": DocumentType.XLSX,
    ".xls": DocumentType.XLSX,
    ".html": DocumentType.HTML,
    ".htm": DocumentType.HTML,
    ".md": DocumentType.MARKDOWN,
    ".markdown": DocumentType.MARKDOWN,
    ".txt": DocumentType.TEXT,
    ".mp3": DocumentType.AUDIO,
    ".wav": DocumentType.AUDIO,
    ".m4a": DocumentType.AUDIO,
    ".flac": DocumentType.AUDIO,
}

CODE_EXTENSIONS: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".java": "java",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".kt": "kotlin",
    ".swift": "swift",
    ".scala": "scala",
    ".sh": "shell",
}

# Document types read straight from disk, bypassing the external converter.
DIRECT_READ_TYPES: frozenset[str] = frozenset({
    DocumentType.TEXT.value,
    DocumentType.MARKDOWN.value,
    DocumentType.HTML.value,
})

PROFILES: tuple[str, ...] = ("documents", "code")

CODE_LANGUAGES: frozenset[str] = frozenset(CODE_EXTENSIONS.values())


def extension_table(profile: str) -> dict[str, str]:
    """Return ``{extension: document_type}`` for *profile*."""
    if profile == "documents":
        return {ext: dt.value for ext, dt in DOCUMENT_EXTENSIONS.items()}
    if profile == "code":
        return dict(CODE_EXTENSIONS)
    raise ValueError(f"Unknown scan profile: {profile!r} (expected one of {PROFILES})")


def is_code_language(document_type: str) -> bool:
    return document_type in CODE_LANGUAGES
