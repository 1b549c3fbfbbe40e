import pytest
from fastapi.testclient import TestClient

from taskboard import auth
from taskboard.db import User
from taskboard.errors import Unauthenticated
from taskboard.main import app


def test_password_hash_roundtrip():
    stored = auth.hash_password("hunter2")
    assert stored.startswith("pbkdf2_sha256$")
    assert auth.verify_password("hunter2", stored)
    assert not auth.verify_password("hunter3", stored)


def test_login_returns_working_token(client, alice):
    resp = client.post("/login", json={"username": "alice", "password": "secret"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["user"] == {"id": alice.id, "username": "alice"}
    boards = client.get("/boards", headers={"Authorization": f"Bearer {body['token']}"})
    assert boards.status_code == 200


@pytest.mark.parametrize(
    "body, code",
    [
        ({"username": "alice"}, "MISSING_CREDENTIALS"),
        ({"username": "  ", "password": "secret"}, "MISSING_CREDENTIALS"),
        ({"username": "alice", "password": "wrong"}, "INVALID_CREDENTIALS"),
        ({"username": "nobody", "password": "secret"}, "INVALID_CREDENTIALS"),
    ],
)
def test_login_failures(client, alice, body, code):
    resp = client.post("/login", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == code


def test_plaintext_password_is_upgraded_on_login(client, session):
    session.add(User(username="legacy", password_hash="letmein"))
    session.commit()

    resp = client.post("/login", json={"username": "legacy", "password": "letmein"})

    assert resp.status_code == 200
    session.expire_all()
    user = session.query(User).filter_by(username="legacy").one()
    assert user.password_hash.startswith("pbkdf2_sha256$")


def test_startup_hashes_plaintext_passwords(session):
    session.add(User(username="legacy", password_hash="letmein"))
    session.commit()

    with TestClient(app):
        pass

    session.expire_all()
    user = session.query(User).filter_by(username="legacy").one()
    assert auth.verify_password("letmein", user.password_hash)
    assert auth.is_hashed(user.password_hash)


def test_expired_and_tampered_tokens_are_rejected(alice):
    with pytest.raises(Unauthenticated):
        auth.decode_token(auth.issue_token(alice, now=0))

    token = auth.issue_token(alice)
    payload, signature = token.split(".")
    with pytest.raises(Unauthenticated):
        auth.decode_token(payload[:-1] + ("A" if payload[-1] != "A" else "B") + "." + signature)

    assert auth.decode_token(token)["sub"] == alice.id


def test_token_for_deleted_user_is_rejected(client, session, alice):
    headers = {"Authorization": f"Bearer {auth.issue_token(alice)}"}
    session.delete(alice)
    session.commit()

    resp = client.get("/boards", headers=headers)

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_TOKEN"
