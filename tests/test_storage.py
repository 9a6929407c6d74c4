from datetime import timedelta
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nexus_chat.models.session import Sender
from nexus_chat.services import storage
from nexus_chat.services.storage import (
    MemoryStore,
    SqlStore,
    StorageError,
    UsernameTakenError,
)


def test_create_session(store):
    session = store.create_session()
    assert session.session_id
    assert session.id != session.session_id
    assert session.user_id is None
    assert session.created_at == session.updated_at


def test_create_session_with_user(store):
    session = store.create_session("user-1")
    assert store.get_session(session.session_id).user_id == "user-1"


def test_get_session_by_token(store):
    created = store.create_session()
    found = store.get_session(created.session_id)
    assert found.id == created.id
    assert found.session_id == created.session_id


def test_get_unknown_session(store):
    store.create_session()
    assert store.get_session("does-not-exist") is None


def test_session_tokens_are_unique():
    store = MemoryStore()
    tokens = {store.create_session().session_id for _ in range(10_000)}
    assert len(tokens) == 10_000


def test_sql_session_tokens_are_unique(sql_store):
    tokens = {sql_store.create_session().session_id for _ in range(200)}
    assert len(tokens) == 200


def test_update_session_timestamp(store, clock):
    session = store.create_session()
    clock.advance(5)
    store.update_session_timestamp(session.session_id)
    updated = store.get_session(session.session_id)
    assert updated.updated_at == clock.now
    assert updated.created_at == session.created_at


def test_update_session_timestamp_never_goes_back(store, clock):
    session = store.create_session()
    before = session.updated_at
    clock.advance(-60)
    store.update_session_timestamp(session.session_id)
    assert store.get_session(session.session_id).updated_at == before


def test_update_unknown_session_is_noop(store):
    store.update_session_timestamp("does-not-exist")
    assert store.get_session("does-not-exist") is None


def test_create_message(store):
    session = store.create_session()
    message = store.create_message(session.session_id, "hola", Sender.USER)
    assert message.id
    assert message.session_id == session.session_id
    assert message.content == "hola"
    assert Sender(message.sender) is Sender.USER
    assert message.is_read is False
    assert message.timestamp is not None


def test_message_round_trip(store):
    session = store.create_session()
    content = "¿Qué tal?  ñandú 🚀\nsegunda línea"
    created = store.create_message(session.session_id, content, Sender.BOT)
    messages = store.get_messages_by_session(session.session_id)
    assert [m.id for m in messages] == [created.id]
    assert messages[0].content == content
    assert Sender(messages[0].sender) is Sender.BOT


def test_messages_ordered_by_timestamp(store, clock):
    session = store.create_session()
    for i in range(5):
        store.create_message(session.session_id, f"m{i}", Sender.USER)
        clock.advance(1)
    messages = store.get_messages_by_session(session.session_id)
    assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
    timestamps = [m.timestamp for m in messages]
    assert timestamps == sorted(timestamps)


def test_equal_timestamps_keep_insertion_order(store, clock):
    session = store.create_session()
    contents = [f"same-{i}" for i in range(20)]
    for i, content in enumerate(contents):
        store.create_message(session.session_id, content, Sender.USER if i % 2 else Sender.BOT)
    messages = store.get_messages_by_session(session.session_id)
    assert [m.content for m in messages] == contents


def test_messages_are_scoped_to_session(store):
    first = store.create_session()
    second = store.create_session()
    store.create_message(first.session_id, "uno", Sender.USER)
    store.create_message(second.session_id, "dos", Sender.USER)
    assert [m.content for m in store.get_messages_by_session(first.session_id)] == ["uno"]
    assert [m.content for m in store.get_messages_by_session(second.session_id)] == ["dos"]


def test_unknown_session_has_no_messages(store):
    assert store.get_messages_by_session("does-not-exist") == []


def test_orphan_messages_are_accepted(store):
    store.create_message("no-such-session", "huérfano", Sender.USER)
    messages = store.get_messages_by_session("no-such-session")
    assert [m.content for m in messages] == ["huérfano"]
    assert store.get_session("no-such-session") is None


def test_users(store):
    user = store.create_user("ana", "secret")
    assert store.get_user(user.id).username == "ana"
    assert store.get_user_by_username("ana").id == user.id
    assert store.get_user("missing") is None
    assert store.get_user_by_username("missing") is None


def test_duplicate_username_rejected(store):
    store.create_user("ana", "secret")
    with pytest.raises(UsernameTakenError):
        store.create_user("ana", "other")


def test_returned_records_are_detached(store, clock):
    session = store.create_session()
    before = session.updated_at
    session.updated_at = before - timedelta(days=1)
    session.user_id = "intruder"

    stored = store.get_session(session.session_id)
    assert stored.updated_at == before
    assert stored.user_id is None

    message = store.create_message(session.session_id, "hola", Sender.USER)
    message.content = "cambiado"
    fetched = store.get_messages_by_session(session.session_id)
    fetched[0].content = "otra vez"
    assert [m.content for m in store.get_messages_by_session(session.session_id)] == ["hola"]


def test_concurrent_timestamp_updates():
    store = MemoryStore()
    session = store.create_session()
    errors = []

    def worker():
        try:
            for _ in range(200):
                store.update_session_timestamp(session.session_id)
                store.create_message(session.session_id, "x", Sender.USER)
        except Exception as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.get_session(session.session_id).updated_at >= session.created_at
    messages = store.get_messages_by_session(session.session_id)
    assert len(messages) == 8 * 200
    assert len({m.id for m in messages}) == len(messages)


def test_sql_failure_raises_storage_error():
    # No tables created, so every query fails
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    store = SqlStore(sessionmaker(bind=engine))
    with pytest.raises(StorageError):
        store.create_session()
    with pytest.raises(StorageError):
        store.get_session("anything")
    with pytest.raises(StorageError):
        store.get_messages_by_session("anything")


def test_create_store_rejects_unknown_backend():
    from nexus_chat.config import Settings

    with pytest.raises(ValueError):
        storage.create_store(Settings(STORAGE_BACKEND="redis"))


def test_create_store_memory():
    from nexus_chat.config import Settings

    assert isinstance(storage.create_store(Settings(STORAGE_BACKEND="memory")), MemoryStore)
