# tests/test_snapshot.py
import pytest

from domain.errors import NotFoundError, UnsupportedOperationError
from domain.models import DEFAULT_FACTORY, PreferenceRow, group_rows
from domain.snapshot import SnapshotDataModel


def build_snapshot(rows):
    return SnapshotDataModel(group_rows(rows, DEFAULT_FACTORY))


@pytest.fixture
def snapshot():
    return build_snapshot([
        PreferenceRow("i2", 4.0, "u1"),
        PreferenceRow("i1", 5.0, "u2"),
        PreferenceRow("i1", 3.0, "u1"),
    ])


def test_users_and_items_are_sorted(snapshot):
    assert [user.id for user in snapshot.list_users()] == ["u1", "u2"]
    assert [item.id for item in snapshot.list_items()] == ["i1", "i2"]
    assert snapshot.count_users() == 2
    assert snapshot.count_items() == 2


def test_preferences_for_item_sorted_by_user(snapshot):
    prefs = snapshot.get_preferences_for_item("i1")

    assert [(p.user_id, p.value) for p in prefs] == [("u1", 3.0), ("u2", 5.0)]
    assert snapshot.get_preferences_for_item("unknown") == ()


def test_missing_user_on_empty_model():
    with pytest.raises(NotFoundError):
        SnapshotDataModel([]).get_user("missing")


def test_get_item(snapshot):
    assert snapshot.get_item("i1").id == "i1"
    with pytest.raises(NotFoundError):
        snapshot.get_item("i9")


def test_assume_exists_returns_phantom_item(snapshot):
    item = snapshot.get_item("i9", assume_exists=True)

    assert item.id == "i9"
    assert snapshot.count_items() == 2


def test_snapshot_is_read_only(snapshot):
    with pytest.raises(UnsupportedOperationError):
        snapshot.set_preference("u1", "i1", 1.0)
    with pytest.raises(UnsupportedOperationError):
        snapshot.remove_preference("u1", "i1")
    snapshot.refresh()


def test_from_model_copies_users(snapshot):
    copy = SnapshotDataModel.from_model(snapshot)

    assert copy.users == snapshot.users
    assert copy is not snapshot


def test_users_none_rejected():
    with pytest.raises(ValueError):
        SnapshotDataModel(None)
