# =============================================================================
# semantic_kb/cli/ingest.py — CLI Ingest Command
# =============================================================================
#
# Ingests a directory tree (or a single file) into a named knowledge base:
#   scan -> convert -> chunk -> embed -> store
#
# Every run appends a new chunk set tagged with its own ingestion timestamp;
# --replace drops the knowledge base's earlier chunk sets once the new run
# has been stored.
#
# Usage examples:
#   python -m semantic_kb.cli ingest --path ./docs --name "Product Docs"
#   python -m semantic_kb.cli ingest --path ./src --name backend --profile code
#   python -m semantic_kb.cli ingest --path ./docs --name docs --replace
#
# The command always exits 0 once argument parsing succeeded: ingestion
# errors are reported on stderr, and the stores are still closed.
# =============================================================================

"""Ingest a directory or file into a knowledge base.

Usage::

    python -m semantic_kb.cli ingest --path ./docs --name docs [--profile code]
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from semantic_kb.cli._common import add_config_argument, load_settings
from semantic_kb.config.settings import Settings
from semantic_kb.main import ServiceContainer, build_services
from semantic_kb.models.ingestion import IngestionStats
from semantic_kb.utils.errors import IngestionLockedError, SemanticKBError


def _print_progress(phase: str, current: int, total: int) -> None:
    if total:
        print(f"  [{phase:<10}] {current}/{total}")
    else:
        print(f"  [{phase:<10}] ...")


def _print_stats(stats: IngestionStats) -> None:
    print("\nIngestion complete:")
    print(f"  Knowledge base:    {stats.knowledge_base}")
    print(f"  Chunk set:         {stats.ingestion_timestamp}")
    print(f"  Files found:       {stats.total_files}")
    print(f"  Supported files:   {stats.supported_files}")
    print(f"  Files processed:   {stats.files_processed}")
    print(f"  Files failed:      {stats.files_failed}")
    print(f"  Chunks created:    {stats.chunks_created}")
    print(f"  Chunks stored:     {stats.chunks_stored}")
    if stats.chunks_failed_embedding:
        print(f"  Failed embeddings: {stats.chunks_failed_embedding}")
    print(f"  Time:              {stats.duration_ms / 1000:.2f}s")

    if stats.unsupported_by_extension:
        print("\n  Unsupported files by extension:")
        for ext, count in stats.unsupported_by_extension.items():
            print(f"    {ext:<12} {count}")


async def _handle_ingest(args: argparse.Namespace, app_settings: Settings) -> int:
    """Run one ingestion; failures are printed, never raised."""
    print(f"Ingesting {args.path} into knowledge base '{args.name}'")
    print(f"  Profile: {app_settings.ingestion_profile}")

    container: ServiceContainer | None = None
    try:
        container = build_services(app_settings)
        await container.start()
        stats = await container.ingestion.ingest(
            args.name,
            args.path,
            respect_ignore_files=not args.no_gitignore,
            replace_existing=args.replace,
            progress_callback=_print_progress,
        )
    except IngestionLockedError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("  Another ingestion of this knowledge base is running; retry later.", file=sys.stderr)
        return 0
    except (SemanticKBError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.__cause__ is not None:
            print(f"  Caused by: {exc.__cause__}", file=sys.stderr)
        return 0
    finally:
        if container is not None:
            await container.close()

    _print_stats(stats)
    return 0


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--path", required=True, help="Directory or file to ingest")
    parser.add_argument("--name", required=True, help="Knowledge base name")
    parser.add_argument(
        "--profile",
        choices=("documents", "code"),
        default=None,
        help="Supported-extension profile (default: from settings)",
    )
    parser.add_argument(
        "--no-gitignore",
        action="store_true",
        dest="no_gitignore",
        help="Do not apply .gitignore/.kbignore rules",
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Delete earlier chunk sets after this run is stored",
    )
    add_config_argument(parser)


def run(args: argparse.Namespace) -> int:
    try:
        app_settings = load_settings(args, ingestion_profile=args.profile)
    except SemanticKBError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return asyncio.run(_handle_ingest(args, app_settings))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="python -m semantic_kb.cli.ingest",
        description="Ingest documents or source code into a knowledge base.",
    )
    add_arguments(parser)
    sys.exit(run(parser.parse_args(argv)))


if __name__ == "__main__":
    main()
