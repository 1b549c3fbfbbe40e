import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="taskboard-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["TASKBOARD_SECRET_KEY"] = "test-secret"
os.environ["TASKBOARD_PASSWORD_ITERATIONS"] = "1000"
os.environ.pop("TASKBOARD_WEBHOOK_URL", None)
os.environ.pop("DISCORD_WEBHOOK_URL", None)

import pytest
from fastapi.testclient import TestClient

from taskboard.auth import issue_token
from taskboard.config import settings
from taskboard.db import Base, SessionLocal, engine
from taskboard.main import app
from taskboard.storage import Storage


@pytest.fixture(autouse=True)
def fresh_db(monkeypatch):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(settings, "webhook_url", None)
    monkeypatch.setattr(settings, "list_delete_requires_owner", True)
    yield


@pytest.fixture
def session():
    db = SessionLocal()
    yield db
    db.close()


@pytest.fixture
def storage(session):
    return Storage(session)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(storage):
    def _make(username, password="secret"):
        return storage.create_user(username, password)

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def board(storage, alice, bob):
    """Board owned by alice with bob as a member; carol is an outsider."""
    board = storage.create_board(alice.id, "Roadmap", "Q3 work")
    storage.add_member(board, bob)
    return board


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}

    return _headers
