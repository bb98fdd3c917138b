"""
Services Package.

The indexer (sole writer of user documents) and the query engine (read
only), plus the ``create_services()`` factory that wires them to their
repositories and store, returning a typed dict the entry point can
consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from usersearch.config import AppConfig
from usersearch.database import DatabaseManager
from usersearch.index.store import DocumentStore
from usersearch.logger import get_logger
from usersearch.repositories.index_queue_repository import IndexQueueRepository
from usersearch.repositories.user_repository import UserRepository
from usersearch.services.user_index import MAX_SCM_ACCOUNT_MATCHES, QueryFailure, UserIndex
from usersearch.services.user_indexer import IndexingFailure, UserIndexer

__all__ = [
    "IndexingFailure",
    "MAX_SCM_ACCOUNT_MATCHES",
    "QueryFailure",
    "ServiceContainer",
    "UserIndex",
    "UserIndexer",
    "create_services",
]


class ServiceContainer(TypedDict):
    """Typed container for repositories and services."""

    user_repository: UserRepository
    index_queue_repository: IndexQueueRepository
    user_indexer: UserIndexer
    user_index: UserIndex


def create_services(
    db: DatabaseManager,
    store: DocumentStore,
    config: AppConfig,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    Args:
        db: Relational source (schema already initialised).
        store: Document store holding the user documents.
        config: Application configuration.

    Returns:
        A :class:`ServiceContainer` with every repository and service.
    """
    user_repo = UserRepository(db=db, logger=get_logger("repositories.users"))
    queue_repo = IndexQueueRepository(db=db, logger=get_logger("repositories.index_queue"))

    return ServiceContainer(
        user_repository=user_repo,
        index_queue_repository=queue_repo,
        user_indexer=UserIndexer(
            db=db,
            store=store,
            user_repo=user_repo,
            queue_repo=queue_repo,
            config=config,
            logger=get_logger("user_indexer"),
        ),
        user_index=UserIndex(store=store, logger=get_logger("user_index")),
    )
