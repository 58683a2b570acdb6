"""
Workspace store admin CLI.

Offline maintenance of a single workspace database file:
- migrate: bring the schema up to date
- status: schema version and per-workspace statistics
- rebuild: replay the event log into empty projections
- history: print events as JSON lines
- coworkers: print active coworkers as JSON lines

Usage:
    workspace-store migrate /path/to/Acme.cowork/workspace.db
    workspace-store rebuild /path/to/workspace.db --workspace-id <id>
    workspace-store history /path/to/workspace.db --workspace-id <id> --since-seq 10

Configuration is via environment variables, see config.py.

Invariants:
    - The database is always closed (and checkpointed) before exit
    - status never migrates and never creates a database file
    - Store errors and a missing status target exit with code 1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import json_log_formatter

from .apply.workspace_store import WorkspaceStore
from .config import WorkspaceStoreConfig
from .errors import WorkspaceStoreError
from .storage.migrations import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)


def setup_logging(config: WorkspaceStoreConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration
        verbose: Force DEBUG level
    """
    level = logging.DEBUG if verbose else getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workspace-store",
        description="Maintain a workspace event store database",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    commands = parser.add_subparsers(dest="command", required=True)

    migrate = commands.add_parser("migrate", help="Bring the schema up to date")
    migrate.add_argument("path", help="Workspace database file")

    status = commands.add_parser("status", help="Show schema version and statistics")
    status.add_argument("path", help="Workspace database file")

    rebuild = commands.add_parser("rebuild", help="Rebuild projections from the event log")
    rebuild.add_argument("path", help="Workspace database file")
    rebuild.add_argument("--workspace-id", required=True, help="Workspace to rebuild")

    history = commands.add_parser("history", help="Print events as JSON lines")
    history.add_argument("path", help="Workspace database file")
    history.add_argument("--workspace-id", required=True, help="Workspace to read")
    history.add_argument("--entity-type", help="Only events of this entity type (with --entity-id)")
    history.add_argument("--entity-id", help="Only events of this entity")
    history.add_argument("--since-seq", type=int, help="Only events after this seq")

    coworkers = commands.add_parser("coworkers", help="Print active coworkers as JSON lines")
    coworkers.add_argument("path", help="Workspace database file")
    coworkers.add_argument("--workspace-id", required=True, help="Workspace to read")

    return parser


async def run_command(args: argparse.Namespace, config: WorkspaceStoreConfig) -> int:
    """Execute one CLI command.

    Returns:
        Process exit code
    """
    path = Path(args.path).expanduser().resolve()

    if args.command == "status":
        if not path.is_file():
            print(f"No workspace database at {path}", file=sys.stderr)
            return 1
        store = WorkspaceStore.open(path, config.storage, migrate=False)
        async with store:
            version = await store.schema_version()
            print(f"Schema version: {version} (current: {CURRENT_SCHEMA_VERSION})")
            if version < CURRENT_SCHEMA_VERSION:
                print("  Pending migrations, run 'migrate'")
                return 0
            for workspace_id in await store.workspace_ids():
                print(f"Workspace {workspace_id}: {json.dumps(await store.stats(workspace_id))}")
        return 0

    store = WorkspaceStore.open(path, config.storage)
    async with store:
        if args.command == "migrate":
            print(f"Schema version: {await store.schema_version()}")

        elif args.command == "rebuild":
            result = await store.rebuild(args.workspace_id)
            print("Rebuild completed successfully")
            print(f"  Events replayed: {result.events_replayed}")
            print(f"  Rows removed: {result.rows_removed}")
            print(f"  Last seq: {result.last_seq if result.last_seq is not None else 'none'}")
            print(f"  Duration: {result.duration_ms}ms")

        elif args.command == "history":
            if args.entity_id:
                if not args.entity_type:
                    print("--entity-id requires --entity-type", file=sys.stderr)
                    return 2
                events = await store.list_by_entity(args.workspace_id, args.entity_type, args.entity_id)
                if args.since_seq is not None:
                    events = [e for e in events if e.seq > args.since_seq]
            else:
                events = await store.list_by_workspace(args.workspace_id, args.since_seq)
                if args.entity_type:
                    events = [e for e in events if e.entity_type == args.entity_type]
            for event in events:
                print(json.dumps(event.to_dict(), sort_keys=True))

        elif args.command == "coworkers":
            for coworker in await store.list_active(args.workspace_id, "coworker"):
                print(json.dumps(asdict(coworker), sort_keys=True))

    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = WorkspaceStoreConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    try:
        code = asyncio.run(run_command(args, config))
    except WorkspaceStoreError as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"code": e.code})
        print(f"{args.command} failed: {e.message}", file=sys.stderr)
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
