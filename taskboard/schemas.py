from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    requestId: Optional[str] = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str


class Message(BaseModel):
    message: str


# === Auth ===


class LoginIn(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class UserSummary(BaseModel):
    id: str
    username: str


class LoginOut(BaseModel):
    token: str
    user: UserSummary


# === Boards ===


class BoardIn(BaseModel):
    # title presence is checked by the route so it can answer MISSING_TITLE
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class BoardOut(BaseModel):
    id: str
    title: str
    description: Optional[str]
    createdBy: UserSummary
    createdAt: datetime
    members: list[UserSummary]


# === Lists ===


class ListIn(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)


class ListMove(BaseModel):
    boardId: Optional[str] = None
    position: Optional[int] = None


class ListOut(BaseModel):
    id: str
    boardId: str
    title: str
    position: int
    createdAt: datetime


# === Cards ===


class CardIn(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    priority: Optional[Priority] = None
    labels: Optional[list[str]] = None
    dueDate: Optional[datetime] = None
    assigneeIds: Optional[list[str]] = None


class CardMove(BaseModel):
    listId: Optional[str] = None
    position: Optional[int] = None
    # when given, must match the card's current list
    fromListId: Optional[str] = None


class CardOut(BaseModel):
    id: str
    listId: str
    title: str
    description: Optional[str]
    position: int
    priority: Priority
    labels: list[str]
    dueDate: Optional[datetime]
    assignees: list[UserSummary]
    createdAt: datetime
    updatedAt: datetime


class ListWithCards(ListOut):
    cards: list[CardOut]


# === Activity ===


class ActivityOut(BaseModel):
    id: str
    action: str
    user: Optional[UserSummary]
    boardId: str
    cardId: Optional[str]
    details: dict[str, Any]
    createdAt: datetime
