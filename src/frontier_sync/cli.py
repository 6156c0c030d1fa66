"""Command-line entry point: ``frontier-sync``.

Subcommands:

- ``sync``            -- run one sync attempt.
- ``complete-merge``  -- commit and push resolved conflicts.
- ``lock-status``     -- inspect the workspace sync lock.
- ``lock-cleanup``    -- remove a stale sync lock.
- ``init-config``     -- write a starter config file.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import load_author, load_credentials
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .git.errors import OfflineError, SyncError
from .git.repository import DulwichRepository
from .logger import setup_logging
from .sync.completion import MergeCompletionHandler
from .sync.engine import SyncEngine
from .sync.lock import SyncLockManager
from .sync.models import Resolution, ResolvedFile
from .sync.progress import LoggingProgressSink, NullProgressSink
from .sync.reporter import (
    format_lock_status,
    format_merge_outcome,
    format_sync_result,
    lock_status_to_json,
    result_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICTS = 3


def _add_identity_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--username",
        help="Basic-auth username (overrides FRONTIER_SYNC_USERNAME, default: oauth2)",
    )
    parser.add_argument(
        "--password",
        help="Access token (overrides FRONTIER_SYNC_TOKEN)"
        " (visible in process list -- prefer FRONTIER_SYNC_TOKEN env var)",
    )
    parser.add_argument(
        "--author-name",
        help="Commit author name (overrides FRONTIER_SYNC_AUTHOR_NAME and config)",
    )
    parser.add_argument(
        "--author-email",
        help="Commit author email (overrides FRONTIER_SYNC_AUTHOR_EMAIL and config)",
    )


def parse_resolution(value: str) -> ResolvedFile:
    """Parse ``PATH=deleted|created|modified``."""
    path, sep, resolution = value.rpartition("=")
    if not sep or not path:
        raise argparse.ArgumentTypeError(
            f"Invalid resolution '{value}': expected PATH=deleted|created|modified"
        )
    try:
        return ResolvedFile(path=path, resolution=Resolution(resolution))
    except ValueError as e:
        raise argparse.ArgumentTypeError(
            f"Invalid resolution '{resolution}' for {path}: "
            "expected deleted, created or modified"
        ) from e


def load_resolutions_file(path: str) -> list[ResolvedFile]:
    """Read resolutions from a JSON list of ``{"path", "resolution"}`` objects."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of resolutions")
    return [ResolvedFile.model_validate(item) for item in data]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="frontier-sync",
        description="Sync a project workspace with its git remote",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync the project in the current directory
  FRONTIER_SYNC_TOKEN=... frontier-sync sync --author-name "Jane Doe"

  # Sync with a custom commit message and JSON output for the editor
  frontier-sync --json sync --message "Translate Genesis 1"

  # Finish a merge after resolving conflicts in the working tree
  frontier-sync complete-merge -r GEN.usfm=modified -r notes/old.md=deleted

  # Show or clear the sync lock
  frontier-sync lock-status
  frontier-sync lock-cleanup

Exit codes: 0 success (or skipped because a sync is already running),
1 error, 3 conflicts need resolution.
        """,
    )
    parser.add_argument(
        "-C", "--workspace",
        default=".",
        help="Workspace directory (default: current directory)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of text",
    )
    parser.add_argument(
        "--background",
        action="store_true",
        help="Log to file only (for editor-driven auto sync)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log line format (default: text)",
    )
    parser.add_argument("--log-file", help="Log file path")
    parser.add_argument(
        "--version",
        action="version",
        version=f"frontier-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sync_p = sub.add_parser("sync", help="Run one sync attempt")
    _add_identity_args(sync_p)
    sync_p.add_argument("-m", "--message", help="Commit message for local changes")
    sync_p.add_argument(
        "--preview",
        action="store_true",
        help="Show the diff and merge preview for each conflict",
    )

    merge_p = sub.add_parser(
        "complete-merge", help="Commit and push resolved conflicts"
    )
    _add_identity_args(merge_p)
    merge_p.add_argument(
        "-r", "--resolution",
        action="append",
        type=parse_resolution,
        default=[],
        metavar="PATH=RESOLUTION",
        help="Resolution for one path: deleted, created or modified (repeatable)",
    )
    merge_p.add_argument(
        "--resolutions-file",
        help="JSON list of {\"path\": ..., \"resolution\": ...} objects",
    )

    sub.add_parser("lock-status", help="Inspect the sync lock")
    sub.add_parser("lock-cleanup", help="Remove the sync lock if it is stale")
    sub.add_parser("init-config", help="Write a starter config file if none exists")

    return parser


def _emit(args: argparse.Namespace, text: str, data: dict) -> None:
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        print(text)


async def _cmd_sync(args: argparse.Namespace, config: UnifiedConfig) -> int:
    auth = load_credentials(args.username, args.password)
    author = load_author(
        args.author_name, args.author_email, config.author.model_dump()
    )
    engine = SyncEngine(
        DulwichRepository(args.workspace),
        config=config,
        progress=NullProgressSink() if args.json else LoggingProgressSink(),
    )
    result = await engine.sync_changes(auth, author, args.message)
    _emit(
        args,
        format_sync_result(result, args.preview),
        result_to_json(result, args.preview),
    )
    return EXIT_CONFLICTS if result.had_conflicts else EXIT_OK


async def _cmd_complete_merge(
    args: argparse.Namespace, config: UnifiedConfig
) -> int:
    resolved = list(args.resolution)
    if args.resolutions_file:
        resolved.extend(load_resolutions_file(args.resolutions_file))

    auth = load_credentials(args.username, args.password)
    author = load_author(
        args.author_name, args.author_email, config.author.model_dump()
    )
    handler = MergeCompletionHandler(
        DulwichRepository(args.workspace),
        config=config,
        progress=NullProgressSink() if args.json else LoggingProgressSink(),
    )
    outcome = await handler.complete_merge(auth, author, resolved)
    _emit(args, format_merge_outcome(outcome), outcome.model_dump(mode="json"))
    return EXIT_OK


def _cmd_lock_status(args: argparse.Namespace, config: UnifiedConfig) -> int:
    status = SyncLockManager(config.lock).check_filesystem_lock(args.workspace)
    _emit(args, format_lock_status(status), lock_status_to_json(status))
    return EXIT_OK


def _cmd_lock_cleanup(args: argparse.Namespace, config: UnifiedConfig) -> int:
    removed = SyncLockManager(config.lock).cleanup_stale_lock(args.workspace)
    text = "Removed stale sync lock." if removed else "No stale sync lock found."
    _emit(args, text, {"removed": removed})
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and dispatch a subcommand."""
    args = build_parser().parse_args(argv)

    load_dotenv()
    args.workspace = str(Path(args.workspace).resolve())
    try:
        raw = load_hierarchical_config(args.workspace)
        config = build_config(raw)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_ERROR

    if (raw.get("logging") or {}).get("level"):
        os.environ.setdefault("LOG_LEVEL", config.logging.level)
    setup_logging(
        mode="background" if args.background else "cli",
        debug=args.debug,
        log_file=args.log_file or config.logging.file,
        debug_format=args.log_format,
    )

    try:
        if args.command == "sync":
            return asyncio.run(_cmd_sync(args, config))
        if args.command == "complete-merge":
            return asyncio.run(_cmd_complete_merge(args, config))
        if args.command == "lock-status":
            return _cmd_lock_status(args, config)
        if args.command == "lock-cleanup":
            return _cmd_lock_cleanup(args, config)
        if args.command == "init-config":
            print(f"Config: {ensure_config(workspace=args.workspace)}")
            return EXIT_OK
    except OfflineError as e:
        print(f"Error: {e}. Local changes are saved.", file=sys.stderr)
        return EXIT_ERROR
    except (SyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_ERROR

    return EXIT_ERROR


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
