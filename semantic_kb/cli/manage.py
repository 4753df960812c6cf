# =============================================================================
# semantic_kb/cli/manage.py — CLI Knowledge-Base Management
# =============================================================================
#
# Subcommands:
#
#   list              — All knowledge bases with chunk/file counts
#   stats NAME        — Chunk types, document types, chunk sets, size
#   documents NAME    — Per-file chunk counts
#   search QUERY      — Semantic search, optionally scoped with --kb
#   create NAME       — Register an empty knowledge base
#   rename OLD NEW    — Journaled rename (copy, verify, drop old)
#   delete NAME       — Drop a knowledge base (asks unless --yes)
#   delete-chunk-set NAME TIMESTAMP — Drop one ingestion run
#
# Usage examples:
#   python -m semantic_kb.cli manage list
#   python -m semantic_kb.cli manage search "retry policy" --kb docs --limit 5
#   python -m semantic_kb.cli manage delete-chunk-set docs 2026-01-05T10:00:00.000000+00:00
# =============================================================================

"""Manage knowledge bases from the command line."""

from __future__ import annotations

import argparse
import asyncio
import sys

from semantic_kb.cli._common import add_config_argument, load_settings
from semantic_kb.config.settings import Settings
from semantic_kb.main import ServiceContainer, build_services
from semantic_kb.models.search import SearchFilters
from semantic_kb.utils.errors import NotFoundError, SemanticKBError


async def _handle_list(args: argparse.Namespace, container: ServiceContainer) -> int:
    knowledge_bases = await container.knowledge_bases.list_knowledge_bases()
    if not knowledge_bases:
        print("No knowledge bases found.")
        return 0
    print(f"{'Name':<30} {'Chunks':>8} {'Files':>7}  Last ingestion")
    print("-" * 80)
    for kb in knowledge_bases:
        print(f"{kb.name:<30} {kb.chunk_count:>8} {kb.file_count:>7}  {kb.last_ingestion or '-'}")
    return 0


async def _handle_stats(args: argparse.Namespace, container: ServiceContainer) -> int:
    stats = await container.knowledge_bases.get_stats(args.name)
    print(f"Knowledge base: {stats.name}")
    print("=" * 40)
    print(f"  Collection:     {stats.collection_name}")
    print(f"  Source path:    {stats.source_path or '-'}")
    print(f"  Chunks:         {stats.chunk_count}")
    print(f"  Files:          {stats.file_count}")
    print(f"  Size:           {stats.size_bytes} bytes")
    print(f"  Last ingestion: {stats.last_ingestion or '-'}")

    if stats.chunk_types:
        print("\n  Chunk types:")
        for item in stats.chunk_types:
            print(f"    {item.type:<12} {item.count}")
    if stats.document_types:
        print("\n  Document types:")
        for doc_type, count in sorted(stats.document_types.items()):
            print(f"    {doc_type:<12} {count}")
    if stats.chunk_sets:
        print("\n  Chunk sets:")
        for chunk_set in stats.chunk_sets:
            print(f"    {chunk_set.ingestion_timestamp}  {chunk_set.chunk_count}")
    return 0


async def _handle_documents(args: argparse.Namespace, container: ServiceContainer) -> int:
    documents = await container.knowledge_bases.list_documents(args.name)
    if not documents:
        print("No documents.")
        return 0
    for doc in documents:
        print(f"{doc.file_path:<60} {doc.document_type:<12} {doc.chunk_count:>6} chunks")
    return 0


async def _handle_search(args: argparse.Namespace, container: ServiceContainer) -> int:
    filters = SearchFilters(document_type=args.type, exclude_tests=args.exclude_tests)
    results = await container.search.search(
        args.query,
        knowledge_base=args.kb,
        filters=filters,
        max_results=args.limit,
    )
    print(f"{results.total_results} results in {results.query_time_ms:.1f} ms")
    for rank, result in enumerate(results.results, start=1):
        meta = result.metadata
        print(
            f"\n{rank}. [{result.score:.3f}] {result.knowledge_base}:{meta.file_path}"
            f" (lines {meta.start_line}-{meta.end_line}, {meta.chunk_type})"
        )
        snippet = result.content.strip().replace("\n", " ")
        print(f"   {snippet[:200]}")
    return 0


async def _handle_create(args: argparse.Namespace, container: ServiceContainer) -> int:
    created = await container.knowledge_bases.create_knowledge_base(args.name)
    print(f"Created knowledge base '{created.name}'.")
    return 0


async def _handle_rename(args: argparse.Namespace, container: ServiceContainer) -> int:
    renamed = await container.knowledge_bases.rename(args.old, args.new)
    print(f"Renamed '{args.old}' to '{renamed.name}' ({renamed.chunk_count} chunks).")
    return 0


async def _handle_delete(args: argparse.Namespace, container: ServiceContainer) -> int:
    if not args.yes:
        confirm = input(f"  Delete knowledge base '{args.name}'? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0
    await container.knowledge_bases.delete(args.name)
    print(f"Deleted knowledge base '{args.name}'.")
    return 0


async def _handle_delete_chunk_set(args: argparse.Namespace, container: ServiceContainer) -> int:
    deleted = await container.knowledge_bases.delete_chunk_set(args.name, args.timestamp)
    if deleted == 0:
        print(f"No chunks found with ingestion timestamp {args.timestamp}. Nothing deleted.")
    else:
        print(f"Deleted {deleted} chunks.")
    return 0


_HANDLERS = {
    "list": _handle_list,
    "stats": _handle_stats,
    "documents": _handle_documents,
    "search": _handle_search,
    "create": _handle_create,
    "rename": _handle_rename,
    "delete": _handle_delete,
    "delete-chunk-set": _handle_delete_chunk_set,
}


async def _dispatch(args: argparse.Namespace, app_settings: Settings) -> int:
    container: ServiceContainer | None = None
    try:
        container = build_services(app_settings)
        await container.start(load_embedding_model=args.action == "search")
        return await _HANDLERS[args.action](args, container)
    except NotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.resource_type == "knowledge base":
            print("  Run 'manage list' to see the available knowledge bases.", file=sys.stderr)
        return 1
    except SemanticKBError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if container is not None:
            await container.close()


def add_arguments(parser: argparse.ArgumentParser) -> None:
    add_config_argument(parser)
    actions = parser.add_subparsers(dest="action", required=True, help="Management actions")

    actions.add_parser("list", help="List knowledge bases")

    stats_parser = actions.add_parser("stats", help="Show knowledge-base statistics")
    stats_parser.add_argument("name")

    docs_parser = actions.add_parser("documents", help="List documents in a knowledge base")
    docs_parser.add_argument("name")

    search_parser = actions.add_parser("search", help="Semantic search")
    search_parser.add_argument("query")
    search_parser.add_argument("--kb", default=None, help="Restrict to one knowledge base")
    search_parser.add_argument("--type", default=None, help="Filter by document type")
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum results")
    search_parser.add_argument(
        "--exclude-tests",
        action="store_true",
        dest="exclude_tests",
        help="Skip chunks from test files",
    )

    create_parser = actions.add_parser("create", help="Register an empty knowledge base")
    create_parser.add_argument("name")

    rename_parser = actions.add_parser("rename", help="Rename a knowledge base")
    rename_parser.add_argument("old")
    rename_parser.add_argument("new")

    delete_parser = actions.add_parser("delete", help="Delete a knowledge base")
    delete_parser.add_argument("name")
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    chunk_set_parser = actions.add_parser("delete-chunk-set", help="Delete one ingestion run")
    chunk_set_parser.add_argument("name")
    chunk_set_parser.add_argument("timestamp", help="Ingestion timestamp of the chunk set")


def run(args: argparse.Namespace) -> int:
    try:
        app_settings = load_settings(args)
    except SemanticKBError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return asyncio.run(_dispatch(args, app_settings))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="python -m semantic_kb.cli.manage",
        description="Manage semantic-kb knowledge bases.",
    )
    add_arguments(parser)
    sys.exit(run(parser.parse_args(argv)))


if __name__ == "__main__":
    main()
