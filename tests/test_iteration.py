# tests/test_iteration.py
import random

import pytest

from domain.errors import BackendError, UnsupportedOperationError
from domain.iteration import ItemRowIterator, PushbackCursor, UserGroupingIterator, drain
from domain.models import DEFAULT_FACTORY, EntityFactory, PreferenceRow, group_rows


class CloseCounter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


def sorted_rows(rows):
    return sorted(rows, key=lambda row: (row.user_id, row.item_id))


def as_sets(users):
    return {user.id: {(p.item.id, p.value) for p in user.preferences} for user in users}


def failing_rows(good_rows, error):
    yield from good_rows
    raise error


def test_pushback_cursor():
    cursor = PushbackCursor([1, 2, 3])

    assert cursor.peek() == 1
    assert next(cursor) == 1
    row = next(cursor)
    cursor.push_back(row)
    with pytest.raises(RuntimeError):
        cursor.push_back(row)
    assert list(cursor) == [2, 3]
    assert not cursor.has_more()


def test_groups_contiguous_rows():
    rows = [
        PreferenceRow("i1", 3.0, "u1"),
        PreferenceRow("i2", 4.0, "u1"),
        PreferenceRow("i1", 5.0, "u2"),
    ]

    users = list(UserGroupingIterator(rows))

    assert [user.id for user in users] == ["u1", "u2"]
    assert as_sets(users) == {"u1": {("i1", 3.0), ("i2", 4.0)}, "u2": {("i1", 5.0)}}


@pytest.mark.parametrize("seed", range(20))
def test_grouping_matches_reference_group_by(seed):
    rng = random.Random(seed)
    rows = [
        PreferenceRow(f"i{item}", float(rng.randint(1, 5)), f"u{user}")
        for user in range(rng.randint(0, 12))
        for item in rng.sample(range(30), rng.randint(1, 6))
    ]
    rows = sorted_rows(rows)

    streamed = list(UserGroupingIterator(rows, DEFAULT_FACTORY))
    reference = group_rows(rows, DEFAULT_FACTORY)

    assert as_sets(streamed) == as_sets(reference)
    assert len(streamed) == len(reference)


def test_grouping_uses_factory_key_conversion():
    factory = EntityFactory.with_key_types(user_key=int, item_key=int)
    rows = [PreferenceRow("1", 2.0, "10"), PreferenceRow("2", 3.0, "10"), PreferenceRow("1", 1.0, "11")]

    users = list(UserGroupingIterator(rows, factory))

    assert [user.id for user in users] == [10, 11]
    assert [p.item.id for p in users[0].preferences] == [1, 2]


def test_has_next_is_idempotent():
    close = CloseCounter()
    iterator = UserGroupingIterator([PreferenceRow("i1", 1.0, "u1")], close=close)

    assert iterator.has_next()
    assert iterator.has_next()
    assert iterator.has_next()
    assert next(iterator).id == "u1"
    assert close.calls == 0


def test_exhaustion_releases_resource_once():
    close = CloseCounter()
    iterator = UserGroupingIterator([PreferenceRow("i1", 1.0, "u1")], close=close)

    next(iterator)
    assert not iterator.has_next()
    assert not iterator.has_next()
    assert iterator.closed
    assert close.calls == 1

    with pytest.raises(StopIteration):
        next(iterator)
    iterator.close()
    assert close.calls == 1


def test_empty_rows():
    close = CloseCounter()
    iterator = UserGroupingIterator([], close=close)

    assert list(iterator) == []
    assert close.calls == 1


def test_early_close_stops_iteration():
    close = CloseCounter()
    rows = [PreferenceRow("i1", 1.0, "u1"), PreferenceRow("i1", 1.0, "u2")]

    with UserGroupingIterator(rows, close=close) as iterator:
        assert next(iterator).id == "u1"

    assert close.calls == 1
    assert not iterator.has_next()
    with pytest.raises(StopIteration):
        next(iterator)


def test_backend_failure_closes_and_raises():
    close = CloseCounter()
    rows = failing_rows([PreferenceRow("i1", 1.0, "u1"), PreferenceRow("i2", 1.0, "u1")], OSError("connection lost"))
    iterator = UserGroupingIterator(rows, close=close)

    with pytest.raises(BackendError) as exc_info:
        next(iterator)

    assert isinstance(exc_info.value.cause, OSError)
    assert close.calls == 1
    assert not iterator.has_next()


def test_close_errors_are_not_raised():
    def broken_close():
        raise OSError("already gone")

    iterator = UserGroupingIterator([], close=broken_close)

    assert not iterator.has_next()
    assert iterator.closed


def test_remove_is_unsupported():
    with pytest.raises(UnsupportedOperationError):
        UserGroupingIterator([]).remove()


def test_item_iterator():
    close = CloseCounter()
    items = list(ItemRowIterator(["i1", "i2"], close=close))

    assert [item.id for item in items] == ["i1", "i2"]
    assert close.calls == 1


def test_drain_with_limit_closes_early():
    close = CloseCounter()
    rows = [PreferenceRow("i1", 1.0, f"u{n}") for n in range(5)]

    users = drain(UserGroupingIterator(rows, close=close), limit=2)

    assert [user.id for user in users] == ["u0", "u1"]
    assert close.calls == 1


def test_drain_plain_iterator():
    assert drain(iter([1, 2, 3])) == [1, 2, 3]
    assert drain(iter([1, 2, 3]), limit=0) == []
