from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    database_url: str
    secret_key: str
    token_ttl: int
    password_iterations: int
    webhook_url: Optional[str]
    webhook_timeout: float
    list_delete_requires_owner: bool
    log_level: str


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./taskboard.db"),
        secret_key=os.getenv("TASKBOARD_SECRET_KEY", "dev-secret-change-me"),
        token_ttl=int(os.getenv("TASKBOARD_TOKEN_TTL", str(7 * 24 * 3600))),
        password_iterations=int(os.getenv("TASKBOARD_PASSWORD_ITERATIONS", "310000")),
        webhook_url=os.getenv("TASKBOARD_WEBHOOK_URL") or os.getenv("DISCORD_WEBHOOK_URL") or None,
        webhook_timeout=float(os.getenv("TASKBOARD_WEBHOOK_TIMEOUT", "5")),
        list_delete_requires_owner=_flag("TASKBOARD_LIST_DELETE_REQUIRES_OWNER", True),
        log_level=os.getenv("TASKBOARD_LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
