import os

# Settings are read at import time
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("RESPONSE_STRATEGY", "pattern")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta
import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nexus_chat.db.database import init_db
from nexus_chat.main import app
from nexus_chat.routers.chat import get_chat_service
from nexus_chat.services.chat_service import ChatService
from nexus_chat.services.responders import PatternResponder, ResponseGenerator
from nexus_chat.services import storage
from nexus_chat.services.storage import MemoryStore, SqlStore


class FakeClock:
    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now += timedelta(seconds=seconds)


class FailingResponder(ResponseGenerator):
    async def generate(self, text, session_id=None):
        raise RuntimeError("upstream down")


class FixedResponder(ResponseGenerator):
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def generate(self, text, session_id=None):
        self.calls.append((text, session_id))
        return self.reply


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def sql_store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield SqlStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def seeded_responder():
    return PatternResponder(rng=random.Random(42))


@pytest.fixture
def make_client(memory_store):
    """TestClient whose chat service uses the given responder."""
    def _make(responder=None, store=None):
        service = ChatService(store or memory_store, responder or PatternResponder(rng=random.Random(7)))
        app.dependency_overrides[get_chat_service] = lambda: service
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def failing_responder():
    return FailingResponder()


@pytest.fixture
def fixed_responder():
    return FixedResponder("respuesta fija")


@pytest.fixture
def clock(monkeypatch):
    """Pins the time the stores stamp on sessions and messages."""
    fake = FakeClock()
    monkeypatch.setattr(storage, "utcnow", fake)
    return fake
