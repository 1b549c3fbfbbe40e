from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import InvalidRequestError

from . import ledger
from .auth import hash_password
from .db import ActivityLog, Board, BoardList, Card, User
from .errors import NotFound, ValidationFailed, missing_title
from .guard import is_authorized
from .locks import GroupLocks, board_group, group_locks, list_group
from .utils import clean_text

logger = logging.getLogger(__name__)


class MovedFrom(NamedTuple):
    """Where a card was before a move."""

    list_id: str
    list_title: str
    position: int


class Storage:
    """SQLAlchemy backed store for boards, lists and cards.

    Operations that change positions hold the lock of every sibling group
    they touch from the first read until the commit, and apply all their
    writes in one transaction.
    """

    def __init__(self, session: Session, locks: GroupLocks = group_locks) -> None:
        self.session = session
        self.locks = locks

    # === Users ===

    def create_user(self, username: str, password: str) -> User:
        user = User(username=username.strip(), password_hash=hash_password(password))
        self.session.add(user)
        self.session.commit()
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    # === Boards ===

    def create_board(self, owner_id: str, title: Optional[str], description: Optional[str]) -> Board:
        title = clean_text(title)
        if not title:
            raise missing_title("Board")
        owner = self.session.get(User, owner_id)
        board = Board(
            title=title,
            description=clean_text(description),
            created_by=owner_id,
            members=[owner] if owner is not None else [],
        )
        self.session.add(board)
        self.session.commit()
        return board

    def add_member(self, board: Board, user: User) -> None:
        if user not in board.members:
            board.members.append(user)
            self.session.commit()

    def boards_for_user(self, user_id: str) -> List[Board]:
        stmt = (
            select(Board)
            .where(or_(Board.created_by == user_id, Board.members.any(User.id == user_id)))
            .order_by(Board.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def get_board(self, board_id: str) -> Board:
        board = self.session.get(Board, board_id)
        if board is None:
            raise NotFound("BOARD_NOT_FOUND", "Board not found")
        return board

    def update_board(self, board: Board, title: Optional[str], description: Optional[str]) -> Board:
        board.title = clean_text(title) or board.title
        if description is not None:
            board.description = clean_text(description)
        self.session.commit()
        return board

    def delete_board(self, board: Board) -> None:
        # lists, cards and activity rows go with it through ORM cascades
        self.session.delete(board)
        self.session.commit()

    def activities_for_board(self, board_id: str, limit: int = 50) -> List[ActivityLog]:
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.board_id == board_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    # === Lists ===

    def get_list(self, list_id: str) -> BoardList:
        lst = self.session.get(BoardList, list_id)
        if lst is None:
            raise NotFound("LIST_NOT_FOUND", "List not found")
        return lst

    def lists_for_board(self, board_id: str) -> List[BoardList]:
        return list(self._list_rows(board_id).values())

    def create_list(self, board: Board, title: Optional[str]) -> BoardList:
        title = clean_text(title)
        if not title:
            raise missing_title("List")
        group = board_group(board.id)
        with self._locked(group):
            positions = self._settle(self._list_rows(board.id), group)
            lst = BoardList(board_id=board.id, title=title, position=ledger.append(positions))
            self.session.add(lst)
            self.session.commit()
        logger.info("list.created", extra={"list_id": lst.id, "board_id": board.id, "position": lst.position})
        return lst

    def rename_list(self, lst: BoardList, title: Optional[str]) -> BoardList:
        title = clean_text(title)
        if not title:
            raise missing_title("List")
        lst.title = title
        self.session.commit()
        return lst

    def move_list(self, lst: BoardList, position: int) -> int:
        """Reorder ``lst`` inside its board. Returns its previous position."""
        group = board_group(lst.board_id)
        with self._locked(group):
            rows = self._list_rows(lst.board_id)
            if lst.id not in rows:
                raise NotFound("LIST_NOT_FOUND", "List not found")
            positions = self._settle(rows, group)
            old_position = positions[lst.id]
            writes = self._plan(ledger.move_within, positions, lst.id, position)
            self._write(rows, writes)
            self.session.commit()
        logger.info(
            "list.moved",
            extra={"list_id": lst.id, "from": old_position, "to": position, "writes": len(writes)},
        )
        return old_position

    def delete_list(self, lst: BoardList) -> None:
        list_id = lst.id
        group = board_group(lst.board_id)
        # the list's own card group too, so no card can be moved or added into it meanwhile
        with self._locked(group, list_group(list_id)):
            rows = self._list_rows(lst.board_id)
            if list_id not in rows:
                raise NotFound("LIST_NOT_FOUND", "List not found")
            positions = self._settle(rows, group)
            writes = ledger.delete_at(positions, positions[list_id])
            del rows[list_id]
            self.session.expire(lst, ["cards"])
            self.session.delete(lst)
            self._write(rows, writes)
            self.session.commit()
        logger.info("list.deleted", extra={"list_id": list_id, "shifted": len(writes)})

    # === Cards ===

    def get_card(self, card_id: str) -> Card:
        card = self.session.get(Card, card_id)
        if card is None:
            raise NotFound("CARD_NOT_FOUND", "Card not found")
        return card

    def cards_for_list(self, list_id: str) -> List[Card]:
        return list(self._card_rows(list_id).values())

    def resolve_assignees(self, board: Board, user_ids: Iterable[str]) -> List[User]:
        users: List[User] = []
        for user_id in dict.fromkeys(user_ids):
            user = self.session.get(User, user_id)
            if user is None or not is_authorized(board, user.id):
                raise ValidationFailed(
                    "INVALID_ASSIGNEE",
                    "Assignees must be members of the board",
                    {"userId": user_id},
                )
            users.append(user)
        return users

    def create_card(
        self,
        lst: BoardList,
        title: Optional[str],
        description: Optional[str] = None,
        priority: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
        due_date: Optional[datetime] = None,
        assignees: Sequence[User] = (),
    ) -> Card:
        title = clean_text(title)
        if not title:
            raise missing_title("Card")
        group = list_group(lst.id)
        with self._locked(group):
            self._reload_list(lst.id)
            positions = self._settle(self._card_rows(lst.id), group)
            card = Card(
                list_id=lst.id,
                title=title,
                description=clean_text(description),
                position=ledger.append(positions),
                priority=priority or "medium",
                labels=list(labels or []),
                due_date=due_date,
                assignees=list(assignees),
            )
            self.session.add(card)
            self.session.commit()
        logger.info("card.created", extra={"card_id": card.id, "list_id": lst.id, "position": card.position})
        return card

    def update_card(
        self,
        card: Card,
        title: Optional[str],
        description: Optional[str] = None,
        priority: Optional[str] = None,
        labels: Optional[Sequence[str]] = None,
        due_date: Optional[datetime] = None,
        assignees: Optional[Sequence[User]] = None,
    ) -> Card:
        title = clean_text(title)
        if not title:
            raise missing_title("Card")
        card.title = title
        if description is not None:
            card.description = clean_text(description)
        if priority is not None:
            card.priority = priority
        if labels is not None:
            card.labels = list(labels)
        if due_date is not None:
            card.due_date = due_date
        if assignees is not None:
            card.assignees = list(assignees)
        self.session.commit()
        return card

    def move_card(self, card: Card, dest: BoardList, position: int) -> MovedFrom:
        """Move ``card`` to ``position`` in ``dest``, which may be its own list.

        Returns the list the card left and its position there.
        """
        dest_id = dest.id
        while True:
            source_id = card.list_id
            with self._locked(list_group(source_id), list_group(dest_id)):
                self._refresh_card(card)
                if card.list_id != source_id:
                    # moved by someone else while we waited; lock its new list
                    continue
                self._reload_list(dest_id)
                source_title = card.board_list.title
                source_rows = self._card_rows(source_id)
                source = self._settle(source_rows, list_group(source_id))
                old_position = source[card.id]
                if dest_id == source_id:
                    writes = self._plan(ledger.move_within, source, card.id, position)
                    self._write(source_rows, writes)
                else:
                    dest_rows = self._card_rows(dest_id)
                    target = self._settle(dest_rows, list_group(dest_id))
                    source_writes, dest_writes = self._plan(
                        ledger.move_across, source, card.id, target, position
                    )
                    self._write(source_rows, source_writes)
                    dest_rows[card.id] = card
                    self._write(dest_rows, dest_writes)
                    card.list_id = dest_id
                self.session.commit()
            logger.info(
                "card.moved",
                extra={
                    "card_id": card.id,
                    "from_list": source_id,
                    "to_list": dest_id,
                    "from": old_position,
                    "to": position,
                },
            )
            return MovedFrom(source_id, source_title, old_position)

    def delete_card(self, card: Card) -> None:
        card_id = card.id
        while True:
            list_id = card.list_id
            with self._locked(list_group(list_id)):
                self._refresh_card(card)
                if card.list_id != list_id:
                    continue
                rows = self._card_rows(list_id)
                positions = self._settle(rows, list_group(list_id))
                writes = ledger.delete_at(positions, positions[card.id])
                del rows[card.id]
                self.session.delete(card)
                self._write(rows, writes)
                self.session.commit()
            logger.info("card.deleted", extra={"card_id": card_id, "list_id": list_id, "shifted": len(writes)})
            return

    # === Maintenance ===

    def remove_orphaned_cards(self) -> int:
        """Delete cards whose list no longer exists. Returns the count."""
        stmt = (
            delete(Card)
            .where(Card.list_id.not_in(select(BoardList.id)))
            .execution_options(synchronize_session=False)
        )
        removed = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        if removed:
            logger.warning("cards.orphans_removed", extra={"count": removed})
        return removed

    def repair_positions(self) -> int:
        """Renumber every sibling group that is not contiguous.

        Returns the number of groups rewritten.
        """
        groups: List[Tuple[str, Callable[[str], Dict[str, object]], str]] = []
        for board_id in self.session.scalars(select(Board.id)).all():
            groups.append((board_group(board_id), self._list_rows, board_id))
        for list_id in self.session.scalars(select(BoardList.id)).all():
            groups.append((list_group(list_id), self._card_rows, list_id))

        repaired = 0
        for group, load, parent_id in groups:
            with self._locked(group):
                rows = load(parent_id)
                if ledger.is_contiguous({key: row.position for key, row in rows.items()}):
                    continue
                self._settle(rows, group)
                self.session.commit()
                repaired += 1
        return repaired

    # === Helpers ===

    @contextmanager
    def _locked(self, *groups: str) -> Iterator[None]:
        with self.locks.hold(*groups):
            try:
                yield
            except Exception:
                self.session.rollback()
                raise

    def _list_rows(self, board_id: str) -> Dict[str, BoardList]:
        stmt = (
            select(BoardList)
            .where(BoardList.board_id == board_id)
            .order_by(BoardList.position, BoardList.created_at, BoardList.id)
            .execution_options(populate_existing=True)
        )
        return {lst.id: lst for lst in self.session.scalars(stmt)}

    def _card_rows(self, list_id: str) -> Dict[str, Card]:
        stmt = (
            select(Card)
            .where(Card.list_id == list_id)
            .order_by(Card.position, Card.created_at, Card.id)
            .execution_options(populate_existing=True)
        )
        return {card.id: card for card in self.session.scalars(stmt)}

    def _reload_list(self, list_id: str) -> BoardList:
        lst = self.session.get(BoardList, list_id, populate_existing=True)
        if lst is None:
            raise NotFound("LIST_NOT_FOUND", "List not found")
        return lst

    def _refresh_card(self, card: Card) -> None:
        try:
            self.session.refresh(card)
        except InvalidRequestError:
            raise NotFound("CARD_NOT_FOUND", "Card not found") from None

    def _settle(self, rows: Dict, group: str) -> Dict[str, int]:
        """Current positions of ``rows``, renumbered first if the group is damaged."""
        positions = {key: row.position for key, row in rows.items()}
        if not ledger.is_contiguous(positions):
            writes = ledger.normalize(positions)
            logger.warning("positions.renormalized", extra={"group": group, "writes": len(writes)})
            self._write(rows, writes)
            positions = ledger.apply(positions, writes)
        return positions

    @staticmethod
    def _plan(plan: Callable, *args):
        try:
            return plan(*args)
        except ledger.PositionError as exc:
            raise ValidationFailed("INVALID_POSITION", str(exc)) from None

    @staticmethod
    def _write(rows: Dict, writes: Dict[str, int]) -> None:
        for key, position in writes.items():
            rows[key].position = position
