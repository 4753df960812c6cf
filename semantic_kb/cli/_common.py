"""Helpers shared by the CLI commands."""

from __future__ import annotations

import argparse

from semantic_kb.config.loader import load_config
from semantic_kb.config.settings import Settings
from semantic_kb.utils.logging import configure_logging


def add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="YAML/JSON config file (environment variables still take precedence)",
    )


def load_settings(args: argparse.Namespace, **overrides: object) -> Settings:
    """Load settings for a CLI run and configure logging from them.

    Raises
    ------
    semantic_kb.utils.errors.ConfigurationError
        If the config file is missing or invalid.
    """
    app_settings = load_config(args.config)
    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        app_settings = app_settings.model_copy(update=updates)
    configure_logging(
        log_level=app_settings.log_level,
        json_output=app_settings.app_env == "production",
    )
    return app_settings
