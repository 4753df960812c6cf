"""Config-file loader with environment variable overrides.

A config file is optional.  It may be YAML or JSON (JSON is valid YAML, so
both go through ``yaml.safe_load``) and may be flat or grouped by section::

    ingestion:
      batch_size: 50
    search:
      cache_ttl_seconds: 120
    chromadb_persist_dir: /var/lib/kb

Section keys are joined with their section name (``ingestion`` +
``batch_size`` -> ``ingestion_batch_size``); keys that already name a field
are taken as-is.  Environment variables still win over anything in the file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from semantic_kb.config.settings import Settings
from semantic_kb.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def load_config(path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from defaults, an optional config file and the environment.

    Args:
        path: Path to a YAML/JSON config file.  ``None`` skips the file layer.

    Returns:
        Fully resolved, validated settings.

    Raises:
        ConfigurationError: If the file is missing, unparseable, or a value
            fails validation.
    """
    file_values: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Could not parse config file {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        file_values = _flatten(raw)
        logger.debug("config_file_loaded", path=str(config_path), keys=sorted(file_values))

    try:
        return Settings(**file_values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def _flatten(raw: dict[str, Any]) -> dict[str, Any]:
    """Collapse ``{section: {key: value}}`` into ``{section_key: value}``."""
    fields = Settings.model_fields
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                joined = f"{key}_{sub_key}"
                if joined in fields:
                    flat[joined] = sub_value
                elif sub_key in fields:
                    flat[sub_key] = sub_value
                else:
                    logger.warning("config_key_ignored", key=f"{key}.{sub_key}")
        elif key in fields:
            flat[key] = value
        else:
            logger.warning("config_key_ignored", key=key)
    return flat
