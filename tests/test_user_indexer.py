"""
Tests for the user indexer: full rebuilds, incremental sync and recovery
from a document store outage.
"""

import threading

import pytest

from conftest import new_user_doc
from usersearch.index.definition import TYPE_USER
from usersearch.index.store import DocumentStoreError, SqliteDocumentStore
from usersearch.models.index_queue import QueueStatus
from usersearch.models.user import User
from usersearch.models.user_doc import UserDoc
from usersearch.services import IndexingFailure, UserIndexer


def _docs(store):
    return store.get_documents(TYPE_USER, UserDoc)


def _logins(store):
    return sorted(doc.login for doc in _docs(store))


def _assert_doc_mirrors(doc, user):
    assert doc.uuid == user.uuid
    assert doc.login == user.login
    assert doc.name == user.name
    assert doc.email == user.email
    assert doc.active == user.active
    assert doc.scm_accounts == user.scm_accounts


class FlakyStore(SqliteDocumentStore):
    """Document store whose writes fail while ``failing`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = False
        self.put_calls = []
        self.on_document_ids = None

    def put_documents(self, index_type, docs):
        docs = list(docs)
        self.put_calls.append(len(docs))
        if self.failing:
            raise DocumentStoreError("document store is unavailable")
        return super().put_documents(index_type, docs)

    def document_ids(self, index_type):
        if self.on_document_ids is not None:
            self.on_document_ids()
        return super().document_ids(index_type)


@pytest.fixture
def flaky_store(tmp_path, logger):
    document_store = FlakyStore(path=tmp_path / "flaky.db", logger=logger)
    yield document_store
    document_store.close()


@pytest.fixture
def flaky_indexer(db, flaky_store, user_repo, queue_repo, config, logger):
    return UserIndexer(
        db=db,
        store=flaky_store,
        user_repo=user_repo,
        queue_repo=queue_repo,
        config=config,
        logger=logger,
    )


def _queue_count(db, queue_repo, status=None):
    with db.session() as session:
        return queue_repo.count(session, status)


# ── Full rebuild ──────────────────────────────────────────────────────────────

class TestIndexOnStartup:

    def test_empty_table_indexes_nothing(self, store, indexer):
        assert indexer.index_on_startup(set()) == 0
        assert store.count_documents(TYPE_USER) == 0

    def test_documents_mirror_user_rows(self, store, indexer, insert_user):
        user = insert_user(
            login="jdoe",
            name="John Doe",
            email="jdoe@corp.com",
            scm_accounts=["jdoe-gh", "John.Doe"],
        )

        assert indexer.index_on_startup(set()) == 1

        docs = _docs(store)
        assert len(docs) == 1
        _assert_doc_mirrors(docs[0], user)

    def test_users_without_optional_fields(self, store, indexer, insert_user):
        user = insert_user(name=None, email=None, scm_accounts=[])

        indexer.index_on_startup(set())

        _assert_doc_mirrors(_docs(store)[0], user)

    def test_inactive_users_are_indexed(self, store, indexer, insert_user):
        insert_user(login="active")
        insert_user(login="inactive", active=False)

        indexer.index_on_startup(set())

        assert _logins(store) == ["active", "inactive"]

    def test_excluded_users_are_skipped(self, store, indexer, insert_user):
        kept = insert_user()
        excluded = insert_user()

        assert indexer.index_on_startup({excluded.uuid}) == 1

        assert store.document_ids(TYPE_USER) == {kept.uuid}

    def test_existing_document_of_excluded_user_is_left_alone(
        self, store, indexer, insert_user,
    ):
        excluded = insert_user(login="migrating")
        stale = UserDoc.from_user(excluded).model_copy(update={"name": "old name"})
        store.put_documents(TYPE_USER, [stale])

        indexer.index_on_startup({excluded.uuid})

        docs = _docs(store)
        assert len(docs) == 1
        assert docs[0].name == "old name"

    def test_documents_without_user_are_pruned(self, store, indexer, insert_user):
        user = insert_user()
        store.put_documents(TYPE_USER, [new_user_doc("orphan")])

        indexer.index_on_startup(set())

        assert store.document_ids(TYPE_USER) == {user.uuid}

    def test_streams_in_batches(self, db, flaky_store, flaky_indexer, insert_user):
        # INDEX_BATCH_SIZE is 2 in the test configuration
        for _ in range(5):
            insert_user()

        assert flaky_indexer.index_on_startup(set()) == 5

        assert flaky_store.put_calls == [2, 2, 1]
        assert flaky_store.count_documents(TYPE_USER) == 5

    def test_store_outage_raises_indexing_failure(
        self, flaky_store, flaky_indexer, insert_user,
    ):
        insert_user()
        flaky_store.failing = True

        with pytest.raises(IndexingFailure) as exc_info:
            flaky_indexer.index_on_startup(set())
        assert isinstance(exc_info.value.original_error, DocumentStoreError)

    def test_malformed_row_raises_indexing_failure(self, db, indexer):
        with db.session() as session:
            session.execute(
                "INSERT INTO users (uuid, login, scm_accounts) VALUES (?, ?, ?)",
                ("u-1", "broken", "not json"),
            )
            session.commit()

        with pytest.raises(IndexingFailure):
            indexer.index_on_startup(set())


class TestIndexAll:

    def test_indexes_every_user(self, store, indexer, insert_user):
        users = [insert_user() for _ in range(3)]

        assert indexer.index_all() == 3

        assert store.document_ids(TYPE_USER) == {user.uuid for user in users}

    def test_is_idempotent(self, store, indexer, insert_user):
        insert_user(scm_accounts=["a", "b"])
        insert_user()

        indexer.index_all()
        first = _docs(store)
        indexer.index_all()

        assert _docs(store) == first

    def test_picks_up_changes_made_without_indexing(
        self, db, store, user_repo, indexer, insert_user,
    ):
        user = insert_user(name="Before")
        indexer.index_all()

        with db.session() as session:
            user_repo.update(session, user.model_copy(update={"name": "After"}))
            session.commit()
        indexer.index_all()

        assert _docs(store)[0].name == "After"

    def test_user_committed_during_rebuild_keeps_its_document(
        self, db, flaky_store, user_repo, queue_repo, flaky_indexer, insert_user,
    ):
        insert_user()
        late = User(uuid="late", login="late")
        writers = []

        def commit_late_user():
            with db.session() as session:
                user_repo.insert(session, late)
                flaky_indexer.commit_and_index(session, late)

        def start_writer_before_prune():
            flaky_store.on_document_ids = None
            writer = threading.Thread(target=commit_late_user)
            writers.append(writer)
            writer.start()
            # Let the writer finish if nothing blocks it.
            writer.join(timeout=0.5)

        flaky_store.on_document_ids = start_writer_before_prune
        flaky_indexer.index_all()
        for writer in writers:
            writer.join()

        assert len(writers) == 1
        with db.session() as session:
            assert user_repo.select_by_uuid(session, "late") is not None
        assert "late" in flaky_store.document_ids(TYPE_USER)
        assert _queue_count(db, queue_repo) == 0


# ── Incremental sync ──────────────────────────────────────────────────────────

class TestCommitAndIndex:

    def test_indexes_only_the_given_user(self, db, store, indexer, insert_user):
        user1 = insert_user()
        insert_user()

        with db.session() as session:
            assert indexer.commit_and_index(session, user1) == 1

        assert store.document_ids(TYPE_USER) == {user1.uuid}

    def test_indexes_several_users(self, db, store, user_repo, indexer, insert_user):
        user1 = insert_user(login="first")
        user2 = insert_user(login="second")

        with db.session() as session:
            assert indexer.commit_and_index(session, [user1, user2]) == 2
            assert user_repo.count(session) == 2

        assert _logins(store) == ["first", "second"]

    def test_commits_the_callers_transaction(self, db, store, user_repo, indexer):
        user = User(uuid="u-42", login="fresh", email="fresh@corp.com")

        with db.session() as session:
            user_repo.insert(session, user)
            indexer.commit_and_index(session, user)
            assert not session.in_transaction

        with db.session() as session:
            assert user_repo.select_by_uuid(session, "u-42") is not None
        _assert_doc_mirrors(_docs(store)[0], user)

    def test_replaces_the_whole_document(self, db, store, user_repo, indexer, insert_user):
        user = insert_user(scm_accounts=["old-alias"], email="old@corp.com")
        indexer.index_all()

        with db.session() as session:
            updated = user_repo.update(
                session, user.model_copy(update={"scm_accounts": [], "email": None}),
            )
            indexer.commit_and_index(session, updated)

        doc = _docs(store)[0]
        assert doc.scm_accounts == []
        assert doc.email is None

    def test_deactivation_hides_user_from_lookup(
        self, db, user_repo, indexer, user_index, insert_user,
    ):
        user = insert_user(login="leaving", scm_accounts=["leaving-gh"])
        indexer.index_all()
        lookup = user_index.get_at_most_three_active_users_for_scm_account
        assert [doc.login for doc in lookup("leaving-gh")] == ["leaving"]

        with db.session() as session:
            deactivated = user_repo.deactivate(session, user.uuid)
            indexer.commit_and_index(session, deactivated)

        assert lookup("leaving-gh") == []

    def test_other_documents_are_untouched(
        self, db, store, user_repo, indexer, insert_user,
    ):
        user1 = insert_user()
        user2 = insert_user(name="Indexed name")
        indexer.index_all()

        with db.session() as session:
            user_repo.update(session, user2.model_copy(update={"name": "Unindexed"}))
            indexer.commit_and_index(session, user1)

        docs = {doc.uuid: doc for doc in _docs(store)}
        assert docs[user2.uuid].name == "Indexed name"

    def test_empty_input_still_commits(self, db, user_repo, indexer):
        with db.session() as session:
            user_repo.insert(session, User(uuid="u-1", login="nobody"))
            assert indexer.commit_and_index(session, []) == 0

        with db.session() as session:
            assert user_repo.count(session) == 1

    def test_duplicate_uuids_are_indexed_once(self, db, store, indexer, insert_user):
        user = insert_user()

        with db.session() as session:
            assert indexer.commit_and_index_by_uuids(session, [user.uuid, user.uuid]) == 1

        assert store.count_documents(TYPE_USER) == 1

    def test_queue_is_empty_after_success(self, db, queue_repo, indexer, insert_user):
        user = insert_user()

        with db.session() as session:
            indexer.commit_and_index(session, user)

        assert _queue_count(db, queue_repo) == 0

    def test_concurrent_callers(self, db, store, user_repo, indexer):
        def work(prefix):
            for n in range(5):
                with db.session() as session:
                    user = user_repo.insert(
                        session, User(uuid=f"{prefix}-{n}", login=f"{prefix}{n}"),
                    )
                    indexer.commit_and_index(session, user)

        threads = [threading.Thread(target=work, args=(p,)) for p in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.count_documents(TYPE_USER) == 10


# ── Store outage and recovery ─────────────────────────────────────────────────

class TestRecovery:

    def test_outage_keeps_relational_commit_and_marks_queue(
        self, db, flaky_store, user_repo, queue_repo, flaky_indexer,
    ):
        user = User(uuid="u-1", login="survivor")
        flaky_store.failing = True

        with db.session() as session:
            user_repo.insert(session, user)
            with pytest.raises(IndexingFailure):
                flaky_indexer.commit_and_index(session, user)

        with db.session() as session:
            assert user_repo.select_by_uuid(session, "u-1") is not None
            pending = queue_repo.select_pending(session, TYPE_USER.key)
        assert [item.doc_id for item in pending] == ["u-1"]
        assert pending[0].status is QueueStatus.FAILED
        assert "unavailable" in pending[0].error_message
        assert flaky_store.count_documents(TYPE_USER) == 0

    def test_index_pending_replays_failed_rows(
        self, db, flaky_store, user_repo, queue_repo, flaky_indexer,
    ):
        user = User(uuid="u-1", login="survivor", scm_accounts=["surv"])
        flaky_store.failing = True
        with db.session() as session:
            user_repo.insert(session, user)
            with pytest.raises(IndexingFailure):
                flaky_indexer.commit_and_index(session, user)

        flaky_store.failing = False
        assert flaky_indexer.index_pending() == 1

        _assert_doc_mirrors(_docs(flaky_store)[0], user)
        assert _queue_count(db, queue_repo) == 0

    def test_index_pending_failure_keeps_rows(
        self, db, flaky_store, queue_repo, flaky_indexer, insert_user,
    ):
        user = insert_user()
        with db.session() as session:
            queue_repo.enqueue(session, TYPE_USER.key, [user.uuid])
            session.commit()
        flaky_store.failing = True

        with pytest.raises(IndexingFailure):
            flaky_indexer.index_pending()

        assert _queue_count(db, queue_repo, QueueStatus.FAILED) == 1

    def test_index_pending_with_empty_queue(self, indexer):
        assert indexer.index_pending() == 0

    def test_index_pending_honours_limit(self, db, store, queue_repo, indexer, insert_user):
        users = [insert_user() for _ in range(3)]
        with db.session() as session:
            queue_repo.enqueue(session, TYPE_USER.key, [user.uuid for user in users])
            session.commit()

        assert indexer.index_pending(limit=2) == 2
        assert _queue_count(db, queue_repo) == 1
        assert indexer.index_pending() == 1
        assert store.count_documents(TYPE_USER) == 3

    def test_queued_user_that_no_longer_exists_is_dropped(
        self, db, store, queue_repo, indexer,
    ):
        with db.session() as session:
            queue_repo.enqueue(session, TYPE_USER.key, ["missing-uuid"])
            session.commit()

        assert indexer.index_pending() == 0

        assert _queue_count(db, queue_repo) == 0
        assert store.count_documents(TYPE_USER) == 0
