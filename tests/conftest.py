"""
Pytest fixtures for the user search index tests.

Every test gets its own relational database and document store under
``tmp_path``, wired through ``create_services()`` exactly as ``main.py``
wires them.
"""

import itertools
import os
import uuid

import pytest

# Keep test runs from writing usersearch.log into the working directory.
os.environ["LOG_FILE"] = ""

from usersearch.config import AppConfig  # noqa: E402
from usersearch.database import DatabaseManager  # noqa: E402
from usersearch.index.store import SqliteDocumentStore  # noqa: E402
from usersearch.logger import StructuredLogger  # noqa: E402
from usersearch.models.user import User  # noqa: E402
from usersearch.models.user_doc import UserDoc  # noqa: E402
from usersearch.schema import initialize_schema  # noqa: E402
from usersearch.services import create_services  # noqa: E402


# ── Helpers ───────────────────────────────────────────────────────────────────

_DEFAULT_EMAIL = object()


def new_user_doc(login, scm_accounts=(), email=_DEFAULT_EMAIL, active=True):
    """A document the way the search tests need it: name is the upper-cased login.

    ``email`` defaults to ``<login>@mail.com``; pass ``None`` for no email.
    """
    return UserDoc(
        uuid=str(uuid.uuid4()),
        login=login,
        name=login.upper(),
        email=f"{login}@mail.com" if email is _DEFAULT_EMAIL else email,
        active=active,
        scm_accounts=list(scm_accounts),
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def logger():
    return StructuredLogger(name="tests", log_file="")


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        SQLITE_PATH=tmp_path / "users.db",
        INDEX_PATH=tmp_path / "index.db",
        INDEX_BATCH_SIZE=2,
        LOG_FILE="",
    )


@pytest.fixture
def db(config, logger):
    manager = DatabaseManager(sqlite_path=config.SQLITE_PATH, logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def store(config, logger):
    document_store = SqliteDocumentStore(path=config.INDEX_PATH, logger=logger)
    yield document_store
    document_store.close()


@pytest.fixture
def services(db, store, config):
    return create_services(db=db, store=store, config=config)


@pytest.fixture
def user_repo(services):
    return services["user_repository"]


@pytest.fixture
def queue_repo(services):
    return services["index_queue_repository"]


@pytest.fixture
def indexer(services):
    return services["user_indexer"]


@pytest.fixture
def user_index(services):
    return services["user_index"]


@pytest.fixture
def insert_user(db, user_repo):
    """Insert and commit a user; keyword arguments override the generated fields."""
    counter = itertools.count(1)

    def _insert(**overrides):
        n = next(counter)
        fields = {
            "uuid": str(uuid.uuid4()),
            "login": f"login{n}",
            "name": f"Name {n}",
            "email": f"user{n}@corp.com",
            "active": True,
            "scm_accounts": [],
        }
        fields.update(overrides)
        with db.session() as session:
            user = user_repo.insert(session, User(**fields))
            session.commit()
        return user

    return _insert
