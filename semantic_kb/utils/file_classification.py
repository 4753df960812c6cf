"""Path-based classification of test and library/vendor files.

Paths are normalised to forward slashes and given a leading ``/`` before
matching, so ``tests/foo.py`` and ``pkg/tests/foo.py`` classify the same way.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_TEST_FILE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.test\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"\.spec\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"_test\.(ts|js|tsx|jsx|py|java|cs|go)$", re.IGNORECASE),
    re.compile(r"_spec\.(ts|js|tsx|jsx|py|java|cs|rb)$", re.IGNORECASE),
    re.compile(r"/test_[^/]*\.(py|java|cs)$", re.IGNORECASE),
)

_TEST_DIR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/__tests__/"),
    re.compile(r"/tests?/"),
    re.compile(r"/spec/"),
)

LIBRARY_DIR_NAMES: frozenset[str] = frozenset({
    "node_modules",
    "vendor",
    "packages",
    "dist",
    "build",
    "out",
    "target",
    "bin",
    "obj",
    ".venv",
    "venv",
    "site-packages",
})


@dataclass(frozen=True)
class FileClassification:
    is_test: bool
    is_library: bool


def _normalise(file_path: str) -> str:
    path = file_path.replace("\\", "/")
    return path if path.startswith("/") else f"/{path}"


def is_test_file(file_path: str) -> bool:
    """Return ``True`` if *file_path* looks like a test file or lives in a test directory."""
    path = _normalise(file_path)
    if any(p.search(path) for p in _TEST_FILE_PATTERNS):
        return True
    return any(p.search(path) for p in _TEST_DIR_PATTERNS)


def is_library_file(file_path: str) -> bool:
    """Return ``True`` if any directory component of *file_path* is a vendor/build dir."""
    parts = _normalise(file_path).split("/")[:-1]
    return any(part in LIBRARY_DIR_NAMES for part in parts)


def classify_file(file_path: str) -> FileClassification:
    return FileClassification(
        is_test=is_test_file(file_path),
        is_library=is_library_file(file_path),
    )
