from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Optional

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import User, get_db
from .errors import Unauthenticated, ValidationFailed

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"


# === Passwords ===


def hash_password(password: str, salt: Optional[str] = None, iterations: Optional[int] = None) -> str:
    iterations = iterations or settings.password_iterations
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{HASH_SCHEME}${iterations}${salt}${base64.b64encode(digest).decode('ascii')}"


def is_hashed(stored: str) -> bool:
    return stored.startswith(HASH_SCHEME + "$")


def verify_password(password: str, stored: str) -> bool:
    """Check ``password`` against a stored hash.

    Rows created before hashing was introduced hold the plain text; those are
    compared directly and should be rehashed by the caller on success.
    """
    if not is_hashed(stored):
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))
    try:
        _, iterations, salt, _digest = stored.split("$", 3)
        expected = hash_password(password, salt, int(iterations))
    except ValueError:
        logger.warning("auth.malformed_password_hash")
        return False
    return hmac.compare_digest(expected, stored)


def authenticate(db: Session, username: Optional[str], password: Optional[str]) -> User:
    if not username or not username.strip() or not password:
        raise ValidationFailed("MISSING_CREDENTIALS", "Username and password are required")
    user = db.scalar(select(User).where(User.username == username.strip()))
    if user is None or not verify_password(password, user.password_hash):
        raise ValidationFailed("INVALID_CREDENTIALS", "Invalid credentials")
    if not is_hashed(user.password_hash):
        user.password_hash = hash_password(password)
        db.commit()
        logger.info("auth.password_rehashed", extra={"user_id": user.id})
    return user


def rehash_plaintext_passwords(db: Session) -> int:
    """Hash any password still stored as plain text. Returns the count."""
    count = 0
    for user in db.scalars(select(User)):
        if not is_hashed(user.password_hash):
            user.password_hash = hash_password(user.password_hash)
            count += 1
    if count:
        db.commit()
        logger.info("auth.plaintext_passwords_hashed", extra={"count": count})
    return count


# === Tokens ===


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(payload: str) -> str:
    return hmac.new(settings.secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_token(user: User, now: Optional[float] = None) -> str:
    issued = int(now if now is not None else time.time())
    claims = {"sub": user.id, "username": user.username, "exp": issued + settings.token_ttl}
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{payload}.{_sign(payload)}"


def decode_token(token: str, now: Optional[float] = None) -> dict[str, Any]:
    invalid = Unauthenticated("INVALID_TOKEN", "Invalid or expired token")
    payload, _, signature = token.partition(".")
    if not payload or not signature or not hmac.compare_digest(signature, _sign(payload)):
        raise invalid
    try:
        claims = json.loads(_b64decode(payload))
    except ValueError:
        raise invalid from None
    if not isinstance(claims, dict) or not claims.get("sub"):
        raise invalid
    if int(claims.get("exp", 0)) < (now if now is not None else time.time()):
        raise invalid
    return claims


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> str:
    """Resolve the bearer token to a user id."""
    prefix = "Bearer "
    if not authorization or not authorization.startswith(prefix):
        raise Unauthenticated("NO_TOKEN", "Access token required")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise Unauthenticated("NO_TOKEN", "Access token required")
    claims = decode_token(token)
    if db.get(User, claims["sub"]) is None:
        raise Unauthenticated("INVALID_TOKEN", "Invalid or expired token")
    return claims["sub"]
