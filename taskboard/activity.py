"""Audit trail and chat notifications.

``record_activity`` runs as a background task once the response has been
produced.  It never raises: failures are logged and the primary operation is
unaffected.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .db import ActivityLog, Board, Card, SessionLocal, User

logger = logging.getLogger(__name__)


def compose_message(action: str, username: str, board_title: str, card_title: Optional[str] = None) -> str:
    """One line summary of an action, or ``""`` when the action has no template."""
    if "card" in action and card_title:
        return f'📋 {username} {action} "{card_title}" in board "{board_title}"'
    if "list" in action:
        return f'📋 {username} {action} in board "{board_title}"'
    if "board" in action:
        return f'📋 {username} {action} "{board_title}"'
    return ""


def send_notification(message: str) -> bool:
    """Post ``message`` to the configured webhook. Returns True when delivered."""
    url = settings.webhook_url
    if not url:
        logger.debug("activity.webhook_not_configured")
        return False
    try:
        response = requests.post(url, json={"content": message}, timeout=settings.webhook_timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("activity.webhook_failed", extra={"error": str(exc)})
        return False
    return True


def _persist(
    action: str,
    user_id: str,
    board_id: str,
    card_id: Optional[str],
    details: dict[str, Any],
) -> str:
    session = SessionLocal()
    try:
        user = session.get(User, user_id)
        board = session.get(Board, board_id)
        card = session.get(Card, card_id) if card_id else None
        if board is not None:
            session.add(
                ActivityLog(
                    action=action,
                    user_id=user_id,
                    board_id=board_id,
                    card_id=card_id,
                    details=details,
                )
            )
            session.commit()
        return compose_message(
            action,
            user.username if user else "Unknown User",
            board.title if board else details.get("boardTitle", "Unknown Board"),
            card.title if card else details.get("cardTitle"),
        )
    except SQLAlchemyError:
        session.rollback()
        raise
    finally:
        session.close()


def record_activity(
    action: str,
    user_id: str,
    board_id: str,
    card_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    details = dict(details or {})
    try:
        message = _persist(action, user_id, board_id, card_id, details)
    except Exception:
        logger.exception("activity.record_failed", extra={"action": action, "board_id": board_id})
        message = compose_message(
            action,
            "Unknown User",
            details.get("boardTitle", "Unknown Board"),
            details.get("cardTitle"),
        )
    if message:
        send_notification(message)
