"""Knowledge-base naming rules.

A knowledge base is identified by its *sanitized* name; its collection in
the vector store carries a schema-version suffix so incompatible stored
layouts can coexist side by side during a migration::

    "My Docs!"  ->  "my_docs"  ->  "kb_my_docs_1_0_0"
"""

from __future__ import annotations

import re

COLLECTION_PREFIX = "kb_"
DEFAULT_SCHEMA_VERSION = "1.0.0"

_INVALID_CHARS = re.compile(r"[^a-z0-9]+")
_SCHEMA_VERSION = re.compile(r"^\d+\.\d+\.\d+$")


def sanitize_name(name: str) -> str:
    """Normalise a user-facing knowledge-base name.

    Lowercases, collapses every run of non-alphanumerics into ``_`` and
    strips leading/trailing underscores.

    Raises
    ------
    ValueError
        If nothing alphanumeric remains.
    """
    sanitized = _INVALID_CHARS.sub("_", name.strip().lower()).strip("_")
    if not sanitized:
        raise ValueError(f"Invalid knowledge base name: {name!r}")
    return sanitized


def schema_suffix(schema_version: str = DEFAULT_SCHEMA_VERSION) -> str:
    """Return the collection-name suffix for *schema_version* (``1.0.0`` -> ``1_0_0``)."""
    if not _SCHEMA_VERSION.match(schema_version):
        raise ValueError(f"Schema version must be MAJOR.MINOR.PATCH, got {schema_version!r}")
    return schema_version.replace(".", "_")


def collection_name(name: str, schema_version: str = DEFAULT_SCHEMA_VERSION) -> str:
    """Derive the vector-store collection name for knowledge base *name*."""
    return f"{COLLECTION_PREFIX}{sanitize_name(name)}_{schema_suffix(schema_version)}"


def knowledge_base_from_collection(
    collection: str, schema_version: str = DEFAULT_SCHEMA_VERSION
) -> str | None:
    """Inverse of :func:`collection_name`.

    Returns ``None`` when *collection* does not follow the naming scheme for
    *schema_version* (e.g. an unrelated collection or an older layout).
    """
    suffix = f"_{schema_suffix(schema_version)}"
    if not collection.startswith(COLLECTION_PREFIX) or not collection.endswith(suffix):
        return None
    inner = collection[len(COLLECTION_PREFIX) : -len(suffix)]
    return inner or None
