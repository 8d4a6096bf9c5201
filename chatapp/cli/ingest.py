# =============================================================================
# chatapp/cli/ingest.py — CLI Ingest Command (Vector Index Management)
# =============================================================================
#
# Standalone CLI for keeping the chatapp vector index in sync with its
# document folder and for querying it.
#
# Supported subcommands:
#
#   run     — Ingest NEW and MODIFIED documents, delete REMOVED ones
#   plan    — Print the diff between the folder and the index (no writes)
#   search  — Embed a query and print the nearest chunks with citations
#   stats   — Display index statistics (documents, chunks, sources)
#
# Exit codes:
#   0 — success
#   1 — the command ran but something failed (a document, the store)
#   2 — configuration is invalid; nothing was touched
#
# Usage examples:
#   python -m chatapp.cli.ingest run
#   python -m chatapp.cli.ingest run --dry-run
#   python -m chatapp.cli.ingest search "retention policy" --top-k 3
#   python -m chatapp.cli.ingest stats --config config/config.yaml
# =============================================================================

"""Standalone CLI for the chatapp vector index.

Usage::

    python -m chatapp.cli.ingest run
    python -m chatapp.cli.ingest plan
    python -m chatapp.cli.ingest search "how are refunds handled" --top-k 3
    python -m chatapp.cli.ingest stats
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import TYPE_CHECKING

from chatapp.config.loader import load_settings
from chatapp.utils.errors import ChatAppError, ConfigurationError
from chatapp.utils.logging import configure_logging

if TYPE_CHECKING:
    from chatapp.config.settings import Settings
    from chatapp.main import AppContainer
    from chatapp.models.ingestion import IngestionRunSummary

_EXIT_OK = 0
_EXIT_FAILED = 1
_EXIT_CONFIG = 2


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_summary(summary: IngestionRunSummary) -> None:
    title = "Ingestion plan (dry run)" if summary.dry_run else "Ingestion complete"
    print(f"\n{title}: {summary.source_id} (run {summary.run_id})")
    for outcome in summary.outcomes:
        line = f"  [{outcome.state.value:>8}] {outcome.key}  {outcome.status}"
        if outcome.error:
            line += f"  ({outcome.error})"
        print(line)

    if summary.dry_run:
        if summary.failed:
            print(f"  Blocked:        {summary.failed}")
        print(f"  Unchanged:      {summary.unchanged}")
        return

    print(f"  Succeeded:      {summary.succeeded}")
    print(f"  Failed:         {summary.failed}")
    print(f"  Skipped:        {summary.skipped}")
    print(f"  Removed:        {summary.removed}")
    print(f"  Unchanged:      {summary.unchanged}")
    print(f"  Chunks written: {summary.chunks_written}")
    print(f"  Chunks deleted: {summary.chunks_deleted}")
    print(f"  Time:           {summary.duration_s:.2f}s")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_run(args: argparse.Namespace, container: AppContainer) -> int:
    """Synchronize the index with the document folder."""
    print(f"Ingesting: {container.source.get_provider_name()} ({container.source.source_id})")
    summary = await container.coordinator.run(container.source, dry_run=args.dry_run)
    _print_summary(summary)
    return _EXIT_FAILED if summary.failed else _EXIT_OK


async def _handle_plan(args: argparse.Namespace, container: AppContainer) -> int:  # noqa: ARG001
    """Print what a run would change without writing anything."""
    summary = await container.coordinator.run(container.source, dry_run=True)
    _print_summary(summary)
    return _EXIT_OK


async def _handle_search(args: argparse.Namespace, container: AppContainer) -> int:
    """Run a semantic search and print the results with citations."""
    results = await container.search_service.search(
        args.query,
        top_k=args.top_k,
        document_key=args.document,
    )
    if not results:
        print("No results.")
        return _EXIT_OK

    if args.raw:
        print(container.search_service.format_for_chat(results))
        return _EXIT_OK

    for rank, result in enumerate(results, start=1):
        print(f"{rank:>2}. [{result.score:.3f}] {result.citation}")
        print(f"    {result.text[:200]}")
    return _EXIT_OK


async def _handle_stats(args: argparse.Namespace, container: AppContainer) -> int:  # noqa: ARG001
    """Display index statistics."""
    stats = await container.coordinator.get_corpus_stats()

    print("Corpus Statistics")
    print("=" * 40)
    print(f"  Total documents: {stats.total_documents}")
    print(f"  Total chunks:    {stats.total_chunks}")
    print(f"  Vector store:    {container.vector_store.get_provider_name()}")
    print(f"  Embedding:       {container.embedding_provider.get_provider_name()}")

    if stats.documents_by_source:
        print("\n  Documents by source:")
        for source_id, count in sorted(stats.documents_by_source.items()):
            print(f"    {source_id}: {count}")
    return _EXIT_OK


_HANDLERS = {
    "run": _handle_run,
    "plan": _handle_plan,
    "search": _handle_search,
    "stats": _handle_stats,
}


async def _dispatch(args: argparse.Namespace, app_settings: Settings) -> int:
    """Build the container, run one handler, and close the store."""
    # Deferred: pulls in the providers and their SDKs.
    from chatapp.main import build_container

    container = await build_container(app_settings)
    try:
        return await _HANDLERS[args.command](args, container)
    finally:
        await container.close()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatapp.cli.ingest",
        description="Manage and query the chatapp vector index.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="YAML settings file (default: config/config.yaml; optional)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # -- run --
    run_parser = subparsers.add_parser("run", help="Synchronize the index with the source")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="Compute the plan without writing",
    )

    # -- plan --
    subparsers.add_parser("plan", help="Show what a run would change")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Semantic search over the index")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument(
        "--top-k",
        type=int,
        default=None,
        dest="top_k",
        help="Maximum number of results (default: SEARCH_DEFAULT_TOP_K)",
    )
    search_parser.add_argument(
        "--document",
        default=None,
        help="Restrict results to one document key",
    )
    search_parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the chat-context rendering instead of a ranked list",
    )

    # -- stats --
    subparsers.add_parser("stats", help="Show index statistics")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Loads and validates settings once, then dispatches to the subcommand
    handler.  Configuration problems exit with status 2 before any store
    is opened; application errors raised while the command runs exit
    with status 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(_EXIT_FAILED)

    try:
        app_settings = load_settings(args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(_EXIT_CONFIG)

    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        exit_code = asyncio.run(_dispatch(args, app_settings))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        exit_code = _EXIT_CONFIG
    except ChatAppError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = _EXIT_FAILED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
