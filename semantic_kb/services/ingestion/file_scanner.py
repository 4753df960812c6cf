"""Directory scanner for the ingestion pipeline.

Walks a root directory, applies ignore rules and classifies every file it
finds as supported/unsupported (static extension table for the active
profile) and test/library (path patterns).  Nothing is read beyond the
ignore files themselves.

Ignore files (``.gitignore`` and ``.kbignore``) are honoured at every level
of the tree.  Supported syntax: glob patterns, ``#`` comments, a leading
``/`` anchoring to the ignore file's directory, a trailing ``/`` restricting
the rule to directories, and ``!`` negation.  The last matching rule wins.
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import structlog

from semantic_kb.models.document import ScannedFile, ScanResult, ScanStatistics
from semantic_kb.utils.errors import IngestionError
from semantic_kb.utils.file_classification import classify_file
from semantic_kb.utils.formats import extension_table

logger = structlog.get_logger(logger_name=__name__)

IGNORE_FILES: tuple[str, ...] = (".gitignore", ".kbignore")
NO_EXTENSION = "(none)"

# Never descended into, even with ignore files disabled.
ALWAYS_SKIPPED_DIRS: frozenset[str] = frozenset({
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    "site-packages",
})


@dataclass(frozen=True)
class _IgnoreRule:
    base: str  # directory of the ignore file, relative to the scan root ("" for root)
    pattern: str
    negated: bool
    dir_only: bool
    anchored: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.base:
            if not rel_path.startswith(self.base + "/"):
                return False
            rel_path = rel_path[len(self.base) + 1 :]
        if self.anchored:
            return fnmatch.fnmatchcase(rel_path, self.pattern)
        return fnmatch.fnmatchcase(PurePosixPath(rel_path).name, self.pattern)


def _parse_ignore_file(path: Path, base: str) -> list[_IgnoreRule]:
    rules: list[_IgnoreRule] = []
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        logger.warning("ignore_file_unreadable", path=str(path), error=str(exc))
        return rules

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        negated = line.startswith("!")
        if negated:
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = "/" in line
        line = line.lstrip("/")
        if line.startswith("**/"):
            # "**/name" matches at any depth, same as an unanchored "name".
            line = line[3:]
            anchored = "/" in line
        if not line:
            continue
        rules.append(
            _IgnoreRule(base=base, pattern=line, negated=negated, dir_only=dir_only, anchored=anchored)
        )
    return rules


def _is_ignored(rules: list[_IgnoreRule], rel_path: str, is_dir: bool) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negated
    return ignored


class FileScanner:
    """Finds and classifies candidate files under a root directory.

    Parameters
    ----------
    profile:
        ``"documents"`` or ``"code"``; selects the supported-extension table.
    max_file_size:
        Files larger than this many bytes are classified as unsupported.
    """

    def __init__(self, profile: str = "documents", max_file_size: int = 1_048_576) -> None:
        self._profile = profile
        self._extensions = extension_table(profile)
        self._max_file_size = max_file_size

    @property
    def profile(self) -> str:
        return self._profile

    def classify(self, file_path: str | Path, root: str | Path | None = None) -> ScannedFile:
        """Classify a single file without walking anything."""
        path = Path(file_path).resolve()
        if root is not None:
            try:
                relative = path.relative_to(Path(root).resolve()).as_posix()
            except ValueError:
                relative = path.name
        else:
            relative = path.name

        extension = path.suffix.lower()
        try:
            size = path.stat().st_size
        except OSError:
            size = 0
        document_type = self._extensions.get(extension)
        supported = document_type is not None and size <= self._max_file_size
        classification = classify_file(relative)
        return ScannedFile(
            path=str(path),
            relative_path=relative,
            extension=extension,
            size_bytes=size,
            supported=supported,
            document_type=document_type if supported else None,
            is_test=classification.is_test,
            is_library=classification.is_library,
        )

    def scan(
        self,
        root: str | Path,
        respect_ignore_files: bool = True,
        skip_hidden: bool = True,
    ) -> ScanResult:
        """Walk *root* and return every non-ignored file with aggregate statistics.

        Raises
        ------
        IngestionError
            If *root* does not exist or is not a directory.
        """
        root_path = Path(root).resolve()
        if not root_path.is_dir():
            raise IngestionError(f"Source path is not a directory: {root}")

        rules_by_dir: dict[str, list[_IgnoreRule]] = {}
        files: list[ScannedFile] = []

        for dirpath, dirnames, filenames in os.walk(root_path):
            current = Path(dirpath)
            rel_dir = current.relative_to(root_path).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir

            parent_rules = rules_by_dir.get(str(PurePosixPath(rel_dir).parent), []) if rel_dir else []
            rules = list(parent_rules)
            if respect_ignore_files:
                for ignore_name in IGNORE_FILES:
                    ignore_path = current / ignore_name
                    if ignore_path.is_file():
                        rules.extend(_parse_ignore_file(ignore_path, rel_dir))
            rules_by_dir[rel_dir or "."] = rules

            kept_dirs: list[str] = []
            for d in sorted(dirnames):
                if d in ALWAYS_SKIPPED_DIRS or (skip_hidden and d.startswith(".")):
                    continue
                rel = f"{rel_dir}/{d}" if rel_dir else d
                if respect_ignore_files and _is_ignored(rules, rel, is_dir=True):
                    continue
                kept_dirs.append(d)
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                if skip_hidden and name.startswith("."):
                    continue
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if respect_ignore_files and _is_ignored(rules, rel, is_dir=False):
                    continue
                full = current / name
                if not full.is_file():
                    continue
                files.append(self.classify(full, root_path))

        result = ScanResult(
            root=str(root_path),
            files=files,
            statistics=self.summarize(files),
        )
        logger.info(
            "directory_scanned",
            root=str(root_path),
            profile=self._profile,
            total_files=result.statistics.total_files,
            supported_files=result.statistics.supported_files,
        )
        return result

    @staticmethod
    def summarize(files: list[ScannedFile]) -> ScanStatistics:
        unsupported: dict[str, int] = {}
        supported = 0
        for f in files:
            if f.supported:
                supported += 1
            else:
                key = f.extension or NO_EXTENSION
                unsupported[key] = unsupported.get(key, 0) + 1
        return ScanStatistics(
            total_files=len(files),
            supported_files=supported,
            unsupported_files=len(files) - supported,
            unsupported_by_extension=dict(sorted(unsupported.items())),
        )
