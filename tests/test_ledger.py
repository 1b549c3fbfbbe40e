import itertools
import random

import pytest

from taskboard import ledger


def group(*keys):
    return {key: index for index, key in enumerate(keys)}


def reorder(keys, key, to_position):
    """Reference model: pop ``key`` and reinsert it at ``to_position``."""
    order = [k for k in keys if k != key]
    order.insert(to_position, key)
    return {k: index for index, k in enumerate(order)}


def test_append_returns_count_and_touches_nothing():
    assert ledger.append({}) == 0
    siblings = group("a", "b", "c")
    assert ledger.append(siblings) == 3
    assert siblings == group("a", "b", "c")


@pytest.mark.parametrize("removed", range(6))
def test_delete_at_only_shifts_later_siblings(removed):
    siblings = group("a", "b", "c", "d", "e", "f")
    writes = ledger.delete_at(siblings, removed)

    for key, pos in siblings.items():
        if pos > removed:
            assert writes[key] == pos - 1
        else:
            assert key not in writes

    removed_key = next(k for k, p in siblings.items() if p == removed)
    after = ledger.apply(siblings, writes)
    del after[removed_key]
    assert ledger.is_contiguous(after)


@pytest.mark.parametrize("removed", [-1, 3])
def test_delete_at_rejects_positions_outside_group(removed):
    with pytest.raises(ledger.PositionError):
        ledger.delete_at(group("a", "b", "c"), removed)


def test_move_within_forward_shifts_intervening_run_down():
    siblings = group("e0", "e1", "e2", "e3", "e4")
    writes = ledger.move_within(siblings, "e1", 3)

    assert writes == {"e2": 1, "e3": 2, "e1": 3}
    assert list(writes)[-1] == "e1"
    after = ledger.apply(siblings, writes)
    assert after["e0"] == 0 and after["e4"] == 4


def test_move_within_backward_shifts_intervening_run_up():
    siblings = group("e0", "e1", "e2", "e3", "e4")
    writes = ledger.move_within(siblings, "e3", 1)

    assert writes == {"e1": 2, "e2": 3, "e3": 1}


@pytest.mark.parametrize("key", ["a", "b", "c"])
def test_move_within_same_slot_is_a_true_noop(key):
    siblings = group("a", "b", "c")
    assert ledger.move_within(siblings, key, siblings[key]) == {}


def test_move_within_matches_pop_and_insert_for_every_pair():
    keys = ["a", "b", "c", "d", "e"]
    siblings = group(*keys)
    for key, to_position in itertools.product(keys, range(len(keys))):
        writes = ledger.move_within(siblings, key, to_position)
        assert ledger.apply(siblings, writes) == reorder(keys, key, to_position)
        # only the moved record and the span it crossed are written
        low, high = sorted((siblings[key], to_position))
        assert all(low <= siblings[k] <= high for k in writes)


@pytest.mark.parametrize("to_position", [-1, 3])
def test_move_within_rejects_target_outside_group(to_position):
    with pytest.raises(ledger.PositionError):
        ledger.move_within(group("a", "b", "c"), "a", to_position)


def test_move_within_rejects_unknown_key():
    with pytest.raises(ledger.PositionError):
        ledger.move_within(group("a", "b"), "z", 0)


def test_move_across_heals_source_and_opens_slot_in_dest():
    source = group("A", "B")
    dest = group("C")

    source_writes, dest_writes = ledger.move_across(source, "A", dest, 1)

    assert source_writes == {"B": 0}
    assert dest_writes == {"A": 1}
    remaining = ledger.apply({k: v for k, v in source.items() if k != "A"}, source_writes)
    assert remaining == {"B": 0}
    assert ledger.apply(dest, dest_writes) == {"C": 0, "A": 1}


def test_move_across_to_front_increments_every_dest_sibling():
    source_writes, dest_writes = ledger.move_across(group("A"), "A", group("C", "D"), 0)

    assert source_writes == {}
    assert dest_writes == {"C": 1, "D": 2, "A": 0}
    assert list(dest_writes)[-1] == "A"


def test_move_across_accepts_append_slot_only():
    dest = group("C", "D")
    _, dest_writes = ledger.move_across(group("A"), "A", dest, 2)
    assert dest_writes == {"A": 2}
    with pytest.raises(ledger.PositionError):
        ledger.move_across(group("A"), "A", dest, 3)


def test_move_across_rejects_key_already_in_dest():
    with pytest.raises(ledger.PositionError):
        ledger.move_across(group("A"), "A", group("A"), 0)


def test_normalize_keeps_relative_order():
    damaged = {"a": 0, "b": 2, "c": 2, "d": 7}

    writes = ledger.normalize(damaged)

    assert writes == {"b": 1, "d": 3}
    assert ledger.apply(damaged, writes) == {"a": 0, "b": 1, "c": 2, "d": 3}
    assert ledger.normalize(group("x", "y")) == {}


def test_is_contiguous():
    assert ledger.is_contiguous({})
    assert ledger.is_contiguous({"a": 1, "b": 0})
    assert not ledger.is_contiguous({"a": 0, "b": 0})
    assert not ledger.is_contiguous({"a": 0, "b": 2})


def test_random_operation_sequences_keep_every_group_contiguous():
    rng = random.Random(20240611)
    groups = {"todo": {}, "doing": {}, "done": {}}
    ids = itertools.count()

    for _ in range(600):
        name = rng.choice(list(groups))
        siblings = groups[name]
        op = rng.choice(["append", "delete", "within", "across"])

        if op == "append" or not siblings:
            before = dict(siblings)
            siblings[next(ids)] = ledger.append(siblings)
            assert len(siblings) == len(before) + 1
            assert all(siblings[k] == v for k, v in before.items())
        elif op == "delete":
            key = rng.choice(list(siblings))
            writes = ledger.delete_at(siblings, siblings[key])
            del siblings[key]
            siblings.update(writes)
        elif op == "within":
            key = rng.choice(list(siblings))
            siblings.update(ledger.move_within(siblings, key, rng.randrange(len(siblings))))
        else:
            dest = groups[rng.choice([n for n in groups if n != name])]
            key = rng.choice(list(siblings))
            total = len(siblings) + len(dest)
            source_writes, dest_writes = ledger.move_across(siblings, key, dest, rng.randint(0, len(dest)))
            del siblings[key]
            siblings.update(source_writes)
            dest.update(dest_writes)
            assert len(siblings) + len(dest) == total

        for positions in groups.values():
            assert ledger.is_contiguous(positions)
