from __future__ import annotations

from typing import Any, Optional


class ApiError(Exception):
    """Base for every error surfaced to API callers.

    Carries a stable short ``code`` (e.g. ``BOARD_NOT_FOUND``) next to the
    human readable ``message``; the HTTP status is fixed per subclass.
    """

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class ValidationFailed(ApiError):
    status_code = 400


class Unauthenticated(ApiError):
    status_code = 401


class AccessDenied(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class InternalError(ApiError):
    status_code = 500


def missing_title(kind: str) -> ValidationFailed:
    return ValidationFailed("MISSING_TITLE", f"{kind} title is required")
