"""Board level capability checks.

Ownership and membership are separate predicates and both are always checked;
the creator is authorized even when missing from ``members``.
"""

from __future__ import annotations

from .config import settings
from .db import Board
from .errors import AccessDenied


def is_owner(board: Board, user_id: str) -> bool:
    return board.created_by == user_id


def is_member(board: Board, user_id: str) -> bool:
    return any(member.id == user_id for member in board.members)


def is_authorized(board: Board, user_id: str) -> bool:
    return is_owner(board, user_id) or is_member(board, user_id)


def require_member(board: Board, user_id: str) -> None:
    if not is_authorized(board, user_id):
        raise AccessDenied("ACCESS_DENIED", "Access denied")


def require_owner(board: Board, user_id: str, action: str) -> None:
    if not is_owner(board, user_id):
        raise AccessDenied("ACCESS_DENIED", f"Only the board creator can {action}")


def require_list_delete(board: Board, user_id: str) -> None:
    # owner-only unless relaxed through TASKBOARD_LIST_DELETE_REQUIRES_OWNER
    if settings.list_delete_requires_owner:
        require_owner(board, user_id, "delete this list")
    else:
        require_member(board, user_id)
