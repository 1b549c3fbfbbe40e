from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator


def board_group(board_id: str) -> str:
    """Lock key for the lists of a board."""
    return f"board:{board_id}"


def list_group(list_id: str) -> str:
    """Lock key for the cards of a list."""
    return f"list:{list_id}"


class GroupLocks:
    """Per sibling-group mutual exclusion.

    Locks only serialize work inside one process.  Keys are acquired in sorted
    order so an operation spanning two groups cannot deadlock against another
    spanning the same pair.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._lock_for(key))
            yield


group_locks = GroupLocks()
