"""
User Search Index Entry Point.

Bootstraps the dependency graph via constructor injection, initialises the
relational schema, rebuilds the user documents, then runs one command.
Every subsystem is wired here; there are no module-level globals.

Usage::

    python main.py reindex
    python main.py recover
    python main.py lookup john.smith@corp.com
    python main.py search smith --page 2 --page-size 20
    python main.py search --inactive
"""

from __future__ import annotations

import argparse
import atexit
import json
import sys
from typing import Optional, Sequence

from usersearch.config import AppConfig, get_config
from usersearch.database import DatabaseManager
from usersearch.index.store import SqliteDocumentStore
from usersearch.logger import StructuredLogger, get_logger
from usersearch.models.search_models import SearchOptions, UserQuery
from usersearch.schema import initialize_schema
from usersearch.services import (
    IndexingFailure,
    QueryFailure,
    ServiceContainer,
    create_services,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Index the users table and query the user documents.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("reindex", help="Rebuild every user document.")
    commands.add_parser("recover", help="Replay pending index queue rows.")

    lookup = commands.add_parser(
        "lookup", help="Resolve an SCM account to at most three active users.",
    )
    lookup.add_argument("term")

    search = commands.add_parser("search", help="Search users by login, name or email.")
    search.add_argument("text", nargs="?", default=None)
    search.add_argument("--inactive", action="store_true", help="Search deactivated users.")
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--page-size", type=int, default=SearchOptions.DEFAULT_LIMIT)
    return parser


def run_command(args: argparse.Namespace, services: ServiceContainer) -> dict[str, object]:
    """Execute the parsed command and return a JSON-serialisable result."""
    indexer = services["user_indexer"]
    user_index = services["user_index"]

    if args.command == "reindex":
        return {"indexed": indexer.index_all()}
    if args.command == "recover":
        return {"indexed": indexer.index_pending()}
    if args.command == "lookup":
        docs = user_index.get_at_most_three_active_users_for_scm_account(args.term)
        return {"users": [doc.model_dump() for doc in docs]}
    if args.command == "search":
        result = user_index.search(
            UserQuery(text_query=args.text, active=not args.inactive),
            SearchOptions.for_page(args.page, args.page_size),
        )
        return {"total": result.total, "users": [doc.model_dump() for doc in result.docs]}
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None, config: Optional[AppConfig] = None) -> int:
    """Wire dependencies, index the users, then run the command."""
    args = _build_parser().parse_args(argv)

    logger: StructuredLogger = get_logger("main")
    config = config or get_config()

    # ------------------------------------------------------------------
    # 1. Relational source + schema (idempotent)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=config.SQLITE_PATH,
        logger=StructuredLogger(name="database"),
    )
    atexit.register(db.close)
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 2. Document store
    # ------------------------------------------------------------------
    store = SqliteDocumentStore(
        path=config.INDEX_PATH,
        logger=StructuredLogger(name="document_store"),
    )
    atexit.register(store.close)

    # ------------------------------------------------------------------
    # 3. Services + startup indexing
    # ------------------------------------------------------------------
    services = create_services(db=db, store=store, config=config)

    try:
        services["user_indexer"].index_on_startup(set())
        result = run_command(args, services)
    except (IndexingFailure, QueryFailure) as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        return 1
    except ValueError as exc:
        logger.error("Invalid arguments: %s", exc)
        return 2
    finally:
        store.close()
        db.close()

    sys.stdout.write(json.dumps(result, ensure_ascii=False) + "\n")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
