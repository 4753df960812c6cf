# =============================================================================
# semantic_kb/cli/__init__.py — CLI Module Overview
# =============================================================================
#
# Command-line tools for operating semantic-kb knowledge bases, run as
#     python -m semantic_kb.cli <command> ...
#
#   1. INGESTION (ingest.py)
#      Scans a directory (or ingests a single file) into a named knowledge
#      base, printing per-phase progress and the final statistics.
#
#   2. MANAGEMENT (manage.py)
#      Lists knowledge bases, shows statistics and documents, runs searches,
#      renames and deletes knowledge bases and individual chunk sets.
#
# Both commands build the full service graph through
# semantic_kb.main.build_services and close the stores before exiting.
# =============================================================================

"""Command-line interface for semantic-kb."""
