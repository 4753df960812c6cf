"""Configuration module — exports Settings and load_config.

No settings instance is created at import time; the composition root in
:mod:`semantic_kb.main` builds one and passes it down.
"""

from semantic_kb.config.loader import load_config
from semantic_kb.config.settings import Settings

__all__ = ["Settings", "load_config"]
