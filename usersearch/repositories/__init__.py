"""
Repository Layer.

Data access for the relational source.  Every method takes the caller's
:class:`~usersearch.database.DbSession`; none of them commits.
"""

from usersearch.repositories.base_repository import BaseRepository
from usersearch.repositories.index_queue_repository import IndexQueueRepository
from usersearch.repositories.user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "IndexQueueRepository",
    "UserRepository",
]
