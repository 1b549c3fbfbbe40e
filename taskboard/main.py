from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .activity import record_activity
from .auth import authenticate, get_current_user, issue_token, rehash_plaintext_passwords
from .db import ActivityLog, Board, BoardList, Card, SessionLocal, User, get_db, init_db
from .errors import ApiError, Conflict, ValidationFailed
from .guard import require_list_delete, require_member, require_owner
from .schemas import (
    ActivityOut,
    BoardIn,
    BoardOut,
    CardIn,
    CardMove,
    CardOut,
    ErrorBody,
    ErrorEnvelope,
    Health,
    ListIn,
    ListMove,
    ListOut,
    ListWithCards,
    LoginIn,
    LoginOut,
    Message,
    Priority,
    UserSummary,
    Version,
)
from .storage import Storage
from .utils import new_uuid

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    with SessionLocal() as db:
        rehash_plaintext_passwords(db)
        storage = Storage(db)
        storage.remove_orphaned_cards()
        repaired = storage.repair_positions()
    if repaired:
        logger.warning("startup.positions_repaired", extra={"groups": repaired})
    yield


app = FastAPI(title="Taskboard API", version=VERSION, lifespan=lifespan)


def get_storage(db: Session = Depends(get_db)) -> Storage:
    return Storage(db)


# === Errors ===


def error_response(status_code: int, code: str, message: str, details: Optional[dict[str, Any]] = None) -> JSONResponse:
    body = ErrorEnvelope(error=ErrorBody(code=code, message=message, details=details or {}, requestId=new_uuid()))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed", extra={"path": request.url.path, "code": exc.code})
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")} for err in exc.errors()]
    return error_response(400, "INVALID_REQUEST", "Request is invalid", {"errors": errors})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.crashed", extra={"path": request.url.path})
    return error_response(500, "SERVER_ERROR", "Internal server error")


# === Helpers ===


def user_summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, username=user.username)


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        title=board.title,
        description=board.description,
        createdBy=user_summary(board.creator),
        createdAt=board.created_at,
        members=[user_summary(m) for m in board.members],
    )


def list_out(lst: BoardList) -> ListOut:
    return ListOut(
        id=lst.id,
        boardId=lst.board_id,
        title=lst.title,
        position=lst.position,
        createdAt=lst.created_at,
    )


def card_out(card: Card) -> CardOut:
    return CardOut(
        id=card.id,
        listId=card.list_id,
        title=card.title,
        description=card.description,
        position=card.position,
        priority=Priority(card.priority),
        labels=list(card.labels or []),
        dueDate=card.due_date,
        assignees=[user_summary(u) for u in card.assignees],
        createdAt=card.created_at,
        updatedAt=card.updated_at,
    )


def activity_out(log: ActivityLog) -> ActivityOut:
    return ActivityOut(
        id=log.id,
        action=log.action,
        user=user_summary(log.user) if log.user else None,
        boardId=log.board_id,
        cardId=log.card_id,
        details=log.details or {},
        createdAt=log.created_at,
    )


def priority_value(priority: Optional[Priority]) -> Optional[str]:
    return priority.value if priority is not None else None


# === Health & auth ===


@app.get("/health", response_model=Health)
def health() -> Health:
    return Health()


@app.get("/version", response_model=Version)
def version() -> Version:
    return Version(version=VERSION)


@app.post("/login", response_model=LoginOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = authenticate(db, payload.username, payload.password)
    return LoginOut(token=issue_token(user), user=user_summary(user))


# === Board endpoints ===


@app.get("/boards", response_model=list[BoardOut])
def list_boards(user: str = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return [board_out(b) for b in storage.boards_for_user(user)]


@app.post("/boards", response_model=BoardOut, status_code=201)
def create_board(
    payload: BoardIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    board = storage.create_board(user, payload.title, payload.description)
    background.add_task(record_activity, "created board", user, board.id, None, {"boardTitle": board.title})
    return board_out(board)


@app.get("/boards/{board_id}", response_model=BoardOut)
def get_board(board_id: str, user: str = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    board = storage.get_board(board_id)
    require_member(board, user)
    return board_out(board)


@app.put("/boards/{board_id}", response_model=BoardOut)
def update_board(
    board_id: str,
    payload: BoardIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    board = storage.get_board(board_id)
    require_owner(board, user, "edit this board")
    board = storage.update_board(board, payload.title, payload.description)
    background.add_task(record_activity, "updated board", user, board.id, None, {"boardTitle": board.title})
    return board_out(board)


@app.delete("/boards/{board_id}", response_model=Message)
def delete_board(
    board_id: str,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    board = storage.get_board(board_id)
    require_owner(board, user, "delete this board")
    title = board.title
    storage.delete_board(board)
    background.add_task(record_activity, "deleted board", user, board_id, None, {"boardTitle": title})
    return Message(message="Board deleted successfully")


@app.get("/boards/{board_id}/activities", response_model=list[ActivityOut])
def list_activities(board_id: str, user: str = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    board = storage.get_board(board_id)
    require_member(board, user)
    return [activity_out(log) for log in storage.activities_for_board(board.id)]


# === List endpoints ===


@app.get("/boards/{board_id}/lists", response_model=list[ListWithCards])
def list_lists(board_id: str, user: str = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    board = storage.get_board(board_id)
    require_member(board, user)
    return [
        ListWithCards(**list_out(lst).model_dump(), cards=[card_out(c) for c in storage.cards_for_list(lst.id)])
        for lst in storage.lists_for_board(board.id)
    ]


@app.post("/boards/{board_id}/lists", response_model=ListOut, status_code=201)
def create_list(
    board_id: str,
    payload: ListIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    board = storage.get_board(board_id)
    require_member(board, user)
    lst = storage.create_list(board, payload.title)
    background.add_task(record_activity, "created list", user, board.id, None, {"listTitle": lst.title})
    return list_out(lst)


@app.put("/lists/{list_id}", response_model=ListOut)
def rename_list(
    list_id: str,
    payload: ListIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    lst = storage.get_list(list_id)
    require_member(lst.board, user)
    lst = storage.rename_list(lst, payload.title)
    background.add_task(record_activity, "updated list", user, lst.board_id, None, {"listTitle": lst.title})
    return list_out(lst)


@app.put("/lists/{list_id}/move", response_model=ListOut)
def move_list(
    list_id: str,
    payload: ListMove,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if payload.boardId is None or payload.position is None:
        raise ValidationFailed("MISSING_FIELDS", "Board ID and position are required")
    lst = storage.get_list(list_id)
    require_member(lst.board, user)
    if payload.boardId != lst.board_id:
        raise ValidationFailed("INVALID_BOARD", "List does not belong to the specified board")
    old_position = storage.move_list(lst, payload.position)
    background.add_task(
        record_activity,
        "moved list",
        user,
        lst.board_id,
        None,
        {"listTitle": lst.title, "oldPosition": old_position, "newPosition": payload.position},
    )
    return list_out(lst)


@app.delete("/lists/{list_id}", response_model=Message)
def delete_list(
    list_id: str,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    lst = storage.get_list(list_id)
    require_list_delete(lst.board, user)
    board_id, title = lst.board_id, lst.title
    storage.delete_list(lst)
    background.add_task(record_activity, "deleted list", user, board_id, None, {"listTitle": title})
    return Message(message="List deleted successfully")


# === Card endpoints ===


@app.get("/lists/{list_id}/cards", response_model=list[CardOut])
def list_cards(list_id: str, user: str = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    lst = storage.get_list(list_id)
    require_member(lst.board, user)
    return [card_out(c) for c in storage.cards_for_list(lst.id)]


@app.post("/lists/{list_id}/cards", response_model=CardOut, status_code=201)
def create_card(
    list_id: str,
    payload: CardIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    lst = storage.get_list(list_id)
    board = lst.board
    require_member(board, user)
    card = storage.create_card(
        lst,
        payload.title,
        description=payload.description,
        priority=priority_value(payload.priority),
        labels=payload.labels,
        due_date=payload.dueDate,
        assignees=storage.resolve_assignees(board, payload.assigneeIds or []),
    )
    background.add_task(record_activity, "created card", user, board.id, card.id, {"cardTitle": card.title})
    return card_out(card)


@app.put("/cards/{card_id}", response_model=CardOut)
def update_card(
    card_id: str,
    payload: CardIn,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    card = storage.get_card(card_id)
    board = card.board_list.board
    require_member(board, user)
    assignees = None
    if payload.assigneeIds is not None:
        assignees = storage.resolve_assignees(board, payload.assigneeIds)
    card = storage.update_card(
        card,
        payload.title,
        description=payload.description,
        priority=priority_value(payload.priority),
        labels=payload.labels,
        due_date=payload.dueDate,
        assignees=assignees,
    )
    background.add_task(record_activity, "updated card", user, board.id, card.id, {"cardTitle": card.title})
    return card_out(card)


@app.put("/cards/{card_id}/move", response_model=CardOut)
def move_card(
    card_id: str,
    payload: CardMove,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    if payload.listId is None or payload.position is None:
        raise ValidationFailed("MISSING_FIELDS", "List ID and position are required")
    card = storage.get_card(card_id)
    board = card.board_list.board
    require_member(board, user)
    dest = storage.get_list(payload.listId)
    if dest.board_id != board.id:
        raise Conflict("INVALID_LIST", "Cards can only move between lists of the same board")
    if payload.fromListId is not None and payload.fromListId != card.list_id:
        raise Conflict("LIST_MISMATCH", "Card is not in the declared source list")
    dest_title = dest.title
    moved = storage.move_card(card, dest, payload.position)
    background.add_task(
        record_activity,
        "moved card",
        user,
        board.id,
        card.id,
        {
            "cardTitle": card.title,
            "oldPosition": moved.position,
            "newPosition": payload.position,
            "fromListTitle": moved.list_title,
            "listTitle": dest_title,
        },
    )
    return card_out(card)


@app.delete("/cards/{card_id}", response_model=Message)
def delete_card(
    card_id: str,
    background: BackgroundTasks,
    user: str = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    card = storage.get_card(card_id)
    board_id = card.board_list.board_id
    require_member(card.board_list.board, user)
    title = card.title
    storage.delete_card(card)
    background.add_task(record_activity, "deleted card", user, board_id, card_id, {"cardTitle": title})
    return Message(message="Card deleted successfully")
