"""
`codesearch` command line interface.

Builds, maintains and queries the local semantic code index.

Commands
--------
codesearch index                      -- full rebuild of the index
codesearch index --watch              -- full rebuild then start file watcher
codesearch update                     -- incremental update (changed files only)
codesearch search "<query>"           -- ranked code units, no LLM
codesearch search "<query>" --top-k 5
codesearch ask "<query>"              -- retrieval-augmented answer
codesearch ask "<query>" --no-llm     -- ranked report without generation
codesearch status                     -- index summary
codesearch clear                      -- delete the index
codesearch watch                      -- keep the index current while files change

Global options: ``--config PATH`` (YAML settings file), ``--verbose``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from typing import Optional

from ..cli_display import ProgressDisplay, setup_logger
from ..config import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _coordinator(config: Config):
    from .local.indexer import IndexCoordinator
    return IndexCoordinator(config)


def _require_ready(coordinator) -> None:
    """Exit with an informative message if there is no usable index."""
    if not coordinator.is_ready:
        print("No index found. Run `codesearch index` first.", file=sys.stderr)
        sys.exit(1)


def _run_with_progress(coordinator, desc: str, run) -> Optional[dict]:
    """
    Run an indexing pass on a worker thread with a progress bar.

    Ctrl+C asks the coordinator to cancel; the pass then stops at the next
    file boundary and leaves the committed index untouched.
    """
    display = ProgressDisplay(desc)
    coordinator.add_progress_listener(display)
    outcome: dict = {}
    worker = threading.Thread(target=lambda: outcome.update(summary=run()),
                              daemon=True, name="codesearch-cli-pass")
    try:
        worker.start()
        while worker.is_alive():
            try:
                worker.join(timeout=0.5)
            except KeyboardInterrupt:
                print("\nCancelling...", file=sys.stderr)
                coordinator.cancel_indexing()
        return outcome.get("summary")
    finally:
        coordinator.remove_progress_listener(display)
        display.close()


def _print_summary(title: str, summary: dict) -> None:
    print(
        f"\n{title}:\n"
        f"  Files:   {summary['files']}\n"
        f"  Units:   {summary['units']}\n"
        f"  Removed: {summary['removed']}\n"
        f"  Errors:  {summary['errors']}\n"
        f"  Time:    {summary['elapsed_seconds']:.1f}s"
    )


def _watch(coordinator, config: Config) -> None:
    from .local.watcher import IndexWatcher
    watcher = IndexWatcher(coordinator, config.resolve_folders(),
                           config.WATCH_DEBOUNCE_SECONDS)
    print("\nStarting file watcher... (Ctrl+C to stop)")
    watcher.start()  # blocking
    print("\nFile watcher stopped.")


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_index(args: argparse.Namespace, config: Config) -> None:
    """Rebuild the whole index."""
    print(f"Indexing project: {config.PROJECT_ROOT}")
    coordinator = _coordinator(config)
    summary = _run_with_progress(coordinator, "Indexing", coordinator.rebuild_index)
    if summary is None:
        print("Indexing did not complete; see the log for details.", file=sys.stderr)
        sys.exit(1)
    _print_summary("Index complete", summary)

    if args.watch:
        _watch(coordinator, config)


def _cmd_update(args: argparse.Namespace, config: Config) -> None:
    """Reprocess only changed, added and deleted files."""
    coordinator = _coordinator(config)
    summary = _run_with_progress(coordinator, "Updating", coordinator.incremental_update)
    if summary is None:
        print("Update did not complete; see the log for details.", file=sys.stderr)
        sys.exit(1)
    _print_summary("Update complete", summary)


def _cmd_search(args: argparse.Namespace, config: Config) -> None:
    """Print ranked code units for a query."""
    from .local.rag import RetrievalOrchestrator

    coordinator = _coordinator(config)
    _require_ready(coordinator)

    orchestrator = RetrievalOrchestrator(coordinator, config=config)
    results = orchestrator.search_only(args.query, args.top_k)
    if not results:
        print(f"  (no results for: {args.query})")
        return

    print(f"\nResults for '{args.query}'  [{len(results)} result(s)]")
    print("-" * 60)
    for r in results:
        unit = r.unit
        location = f"{os.path.relpath(unit.file_path, config.PROJECT_ROOT)}:" \
                   f"{unit.line_start}-{unit.line_end}"
        label = f"{unit.kind.value:<10}  {unit.name}"
        print(f"  {r.score:5.2f}  {label:<50}  {location}")
        if unit.summary:
            print(f"         {unit.summary}")


def _cmd_ask(args: argparse.Namespace, config: Config) -> None:
    """Answer a question from the indexed code."""
    from ..llm import create_inference_service
    from .local.rag import RetrievalOrchestrator

    coordinator = _coordinator(config)
    _require_ready(coordinator)

    service = None
    if not args.no_llm:
        try:
            service = create_inference_service(config)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(1)

    streamed = []

    def _on_text(text: str) -> None:
        streamed.append(text)
        sys.stdout.write(text)
        sys.stdout.flush()

    orchestrator = RetrievalOrchestrator(coordinator, service, config)
    answer = orchestrator.query_with_context(args.query, on_text=_on_text, top_k=args.top_k)
    if streamed and answer == "".join(streamed):
        print()
    else:
        print(answer)


def _cmd_status(args: argparse.Namespace, config: Config) -> None:
    """Print the index summary."""
    stats = _coordinator(config).stats()
    print("\nCode Index Status")
    print("=" * 40)
    for k, v in stats.items():
        print(f"  {k:<20} {v}")
    print()


def _cmd_clear(args: argparse.Namespace, config: Config) -> None:
    """Delete the persisted index."""
    if not _coordinator(config).clear_index():
        print("Index is busy; try again when indexing has finished.", file=sys.stderr)
        sys.exit(1)
    print("Index cleared.")


def _cmd_watch(args: argparse.Namespace, config: Config) -> None:
    """Watch the indexed folders and update the index on change."""
    coordinator = _coordinator(config)
    if not coordinator.is_ready:
        summary = _run_with_progress(coordinator, "Updating", coordinator.incremental_update)
        if summary is not None:
            _print_summary("Update complete", summary)
    _watch(coordinator, config)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="codesearch",
        description="Local incremental semantic code index and retrieval",
    )
    parser.add_argument("--config", help="Path to a .codesearch.yaml settings file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log debug output to the console")
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- index ---
    index_p = subparsers.add_parser("index", help="Rebuild the index from scratch")
    index_p.add_argument(
        "--watch", action="store_true",
        help="After indexing, start a file watcher for incremental updates",
    )
    index_p.set_defaults(func=_cmd_index)

    # --- update ---
    update_p = subparsers.add_parser("update", help="Incrementally update the index")
    update_p.set_defaults(func=_cmd_update)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Ranked search without an LLM")
    search_p.add_argument("query", help="Natural language or identifier query")
    search_p.add_argument("--top-k", type=int, default=None,
                          help="Number of results (default: top_k setting)")
    search_p.set_defaults(func=_cmd_search)

    # --- ask ---
    ask_p = subparsers.add_parser("ask", help="Answer a question using the indexed code")
    ask_p.add_argument("query", help="Question about the code")
    ask_p.add_argument("--top-k", type=int, default=None,
                       help="Units used as context (default: top_k setting)")
    ask_p.add_argument("--no-llm", action="store_true",
                       help="Skip generation and print the ranked report")
    ask_p.set_defaults(func=_cmd_ask)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show index summary")
    status_p.set_defaults(func=_cmd_status)

    # --- clear ---
    clear_p = subparsers.add_parser("clear", help="Delete the index")
    clear_p.set_defaults(func=_cmd_clear)

    # --- watch ---
    watch_p = subparsers.add_parser("watch", help="Update the index as files change")
    watch_p.set_defaults(func=_cmd_watch)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for the ``codesearch`` console script.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv if None.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Configure logging if not already configured
    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    config = Config.load(args.config)
    log_dir = config.LOG_DIR
    if not os.path.isabs(log_dir):
        log_dir = os.path.join(config.PROJECT_ROOT, log_dir)
    setup_logger(log_dir)

    args.func(args, config)


if __name__ == "__main__":
    main()
