"""Allow ``python -m semantic_kb.cli ingest|manage ...`` execution."""

from __future__ import annotations

import argparse
import sys

from semantic_kb.cli import ingest, manage


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m semantic_kb.cli",
        description="Build and query semantic knowledge bases.",
    )
    commands = parser.add_subparsers(dest="command", help="Commands")
    ingest.add_arguments(commands.add_parser("ingest", help="Ingest a directory or file"))
    manage.add_arguments(commands.add_parser("manage", help="Manage knowledge bases"))
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)
    module = ingest if args.command == "ingest" else manage
    sys.exit(module.run(args))


main()
