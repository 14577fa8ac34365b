"""Entry point for ``python -m event_every``.

Provides a CLI that extracts calendar events from text, images and linked
pages, serves the HTTP API, and manages the saved history.  Uses stdlib
:mod:`argparse` for argument parsing.

Subcommands:
    extract -- Default. Extract events from text and/or images.
    serve   -- Run the HTTP API with uvicorn.
    history -- List, search, delete, clear or export saved events.

Exit codes:
    0 -- Command completed successfully (including zero events).
    1 -- An error occurred (bad input, missing file, config error).
    2 -- Argument parsing error (handled by argparse).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

from event_every.config import ConfigError, load_event_store_path, load_settings
from event_every.demo_output import format_event_list, print_pipeline_result
from event_every.exceptions import EventEveryError
from event_every.export import export_all_events, export_events_to_ics
from event_every.log import setup_logging
from event_every.pipeline import run_pipeline
from event_every.server import create_app
from event_every.storage import EventStorage

_SUBCOMMANDS = {"extract", "serve", "history"}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="event-every",
        description="Turn text, images and links into calendar events.",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- "extract" subcommand (default) -------------------------------
    extract_parser = subparsers.add_parser(
        "extract",
        help="Extract events from text and/or images.",
    )
    extract_parser.add_argument(
        "text",
        nargs="?",
        default=None,
        help="Event text (may include links and instructions such as 'import as all-day').",
    )
    extract_parser.add_argument(
        "-f",
        "--file",
        type=str,
        default=None,
        help="Read the event text from a file instead.",
    )
    extract_parser.add_argument(
        "-i",
        "--image",
        action="append",
        default=[],
        help="Image file to extract from (repeatable).",
    )
    extract_parser.add_argument(
        "--instructions",
        type=str,
        default=None,
        help="Instructions sent along with the images.",
    )
    extract_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Extract events but do not save them to the history.",
    )
    extract_parser.add_argument(
        "--ics",
        type=str,
        default=None,
        help="Write the extracted events to this .ics file or directory.",
    )
    extract_parser.add_argument(
        "--server",
        type=str,
        default=None,
        help="Use a running event-every server (e.g. http://localhost:8000).",
    )
    extract_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    # --- "serve" subcommand -------------------------------------------
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port.")
    serve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    # --- "history" subcommand -----------------------------------------
    history_parser = subparsers.add_parser("history", help="Manage saved events.")
    actions = history_parser.add_mutually_exclusive_group()
    actions.add_argument("--search", metavar="QUERY", help="Show events matching QUERY.")
    actions.add_argument("--delete", metavar="EVENT_ID", help="Delete one event.")
    actions.add_argument("--clear", action="store_true", help="Delete every saved event.")
    actions.add_argument(
        "--export-ics",
        metavar="PATH",
        help="Export every saved event to an .ics file or directory.",
    )
    actions.add_argument(
        "--export-all",
        metavar="PATH",
        help="Export events and attachments to a zip file or directory.",
    )
    history_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    return parser


def _resolve_command(
    parser: argparse.ArgumentParser,
    argv: list[str],
) -> argparse.Namespace:
    """Parse *argv*, routing anything that is not a subcommand to ``extract``.

    ``event-every "Lunch tomorrow at noon"`` and
    ``event-every --dry-run -i flyer.png`` both run ``extract``.
    """
    if not argv:
        argv = ["extract"]
    elif argv[0] in {"-h", "--help"}:
        pass
    elif argv[0] not in _SUBCOMMANDS:
        argv = ["extract", *argv]

    return parser.parse_args(argv)


def _handle_extract(args: argparse.Namespace) -> int:
    """Execute the ``extract`` subcommand."""
    text = args.text
    if args.file:
        file_path = Path(args.file)
        if not file_path.is_file():
            print(f"Error: File not found: {file_path}", file=sys.stderr)
            return 1
        try:
            text = file_path.read_text(encoding="utf-8")
        except OSError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    if not (text and text.strip()) and not args.image:
        print("Error: Provide event text, --file or at least one --image.", file=sys.stderr)
        return 1

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        result = run_pipeline(
            text=text,
            image_paths=[Path(p) for p in args.image],
            instructions=args.instructions,
            dry_run=args.dry_run,
            ics_output=Path(args.ics) if args.ics else None,
            server_url=args.server,
            settings=settings,
        )
    except (EventEveryError, FileNotFoundError, PermissionError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print_pipeline_result(result)
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    """Execute the ``serve`` subcommand."""
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level="debug" if args.verbose else settings.log_level.lower(),
    )
    return 0


def _handle_history(args: argparse.Namespace) -> int:
    """Execute the ``history`` subcommand."""
    storage = EventStorage(load_event_store_path())

    try:
        if args.clear:
            storage.clear_history().unwrap()
            print("History cleared.")
        elif args.delete:
            storage.delete_event(args.delete).unwrap()
            print(f"Deleted {args.delete}.")
        elif args.export_ics:
            events = storage.get_all_events().unwrap() or []
            path = export_events_to_ics(events, Path(args.export_ics))
            print(f"Exported {len(events)} event(s) to {path}")
        elif args.export_all:
            path = export_all_events(storage, Path(args.export_all))
            print(f"Exported history to {path}")
        else:
            events = storage.search_events(args.search or "").unwrap() or []
            print(format_event_list(events))
    except (EventEveryError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the event-every CLI.

    Args:
        argv: Command-line arguments.  Defaults to ``sys.argv[1:]``
            when ``None`` (the normal case).

    Returns:
        Exit code: ``0`` on success, ``1`` on error.
    """
    parser = build_parser()
    args = _resolve_command(parser, argv if argv is not None else sys.argv[1:])

    # --- Configure logging --------------------------------------------
    log_level = "DEBUG" if getattr(args, "verbose", False) else "INFO"
    setup_logging(log_level)

    # --- Dispatch to subcommand handler -------------------------------
    if args.command == "serve":
        return _handle_serve(args)
    if args.command == "history":
        return _handle_history(args)

    return _handle_extract(args)


if __name__ == "__main__":
    raise SystemExit(main())
