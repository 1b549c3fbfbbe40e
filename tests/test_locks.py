import threading
import time

from taskboard.locks import GroupLocks, board_group, list_group


def test_group_keys():
    assert board_group("b1") == "board:b1"
    assert list_group("l1") == "list:l1"


def test_hold_serializes_work_on_one_group():
    locks = GroupLocks()
    inside = []
    overlaps = []

    def worker():
        for _ in range(30):
            with locks.hold("list:a"):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
                time.sleep(0.0005)
                inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert not overlaps


def test_hold_pairs_in_opposite_order_does_not_deadlock():
    locks = GroupLocks()

    def worker(first, second):
        for _ in range(200):
            with locks.hold(first, second):
                pass

    threads = [
        threading.Thread(target=worker, args=("list:a", "list:b")),
        threading.Thread(target=worker, args=("list:b", "list:a")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert not any(t.is_alive() for t in threads)


def test_other_groups_are_not_blocked():
    locks = GroupLocks()
    acquired = threading.Event()

    def other():
        with locks.hold("list:y"):
            acquired.set()

    with locks.hold("list:x"):
        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=5)
    t.join(timeout=5)


def test_same_key_twice_is_taken_once():
    locks = GroupLocks()
    with locks.hold("list:a", "list:a"):
        pass
