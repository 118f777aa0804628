# domain/snapshot.py - Immutable in-memory data model
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from domain.errors import NotFoundError, UnsupportedOperationError
from domain.models import DEFAULT_FACTORY, DataModel, EntityFactory, Item, Preference, User

logger = logging.getLogger(__name__)


class SnapshotDataModel(DataModel):
    """Read-only model built once from a collection of users.

    Every index is fully built before the constructor returns and nothing is
    mutated afterwards, so readers can share one instance without locking.
    """

    def __init__(self, users: Iterable[User], factory: Optional[EntityFactory] = None):
        if users is None:
            raise ValueError("users must not be None")
        self.factory = factory or DEFAULT_FACTORY

        user_map: Dict[Any, User] = {}
        item_map: Dict[Any, Item] = {}
        prefs_for_items: Dict[Any, List[Preference]] = {}

        for user in users:
            user_map[user.id] = user
            for preference in user.preferences:
                item_id = preference.item.id
                item_map.setdefault(item_id, preference.item)
                prefs_for_items.setdefault(item_id, []).append(preference)

        self._users: Tuple[User, ...] = tuple(sorted(user_map.values()))
        self._items: Tuple[Item, ...] = tuple(sorted(item_map.values()))
        self._user_map = MappingProxyType(user_map)
        self._item_map = MappingProxyType(item_map)
        self._prefs_for_items = MappingProxyType({
            item_id: tuple(sorted(prefs, key=lambda p: p.user))
            for item_id, prefs in prefs_for_items.items()
        })
        logger.debug(f"Built snapshot with {len(self._users)} users and {len(self._items)} items")

    @classmethod
    def from_model(cls, model: DataModel) -> "SnapshotDataModel":
        """Copy every user of another model into memory"""
        return cls(model.list_users(), factory=model.factory)

    @property
    def users(self) -> Tuple[User, ...]:
        return self._users

    def list_users(self) -> Iterator[User]:
        return iter(self._users)

    def get_user(self, user_id: Any) -> User:
        try:
            return self._user_map[user_id]
        except KeyError:
            raise NotFoundError(f"User {user_id!r} not found")

    def list_items(self) -> Iterator[Item]:
        return iter(self._items)

    def get_item(self, item_id: Any, assume_exists: bool = False) -> Item:
        item = self._item_map.get(item_id)
        if item is not None:
            return item
        if assume_exists:
            return self.factory.build_item(item_id)
        raise NotFoundError(f"Item {item_id!r} not found")

    def get_preferences_for_item(self, item_id: Any) -> Sequence[Preference]:
        return self._prefs_for_items.get(item_id, ())

    def count_users(self) -> int:
        return len(self._users)

    def count_items(self) -> int:
        return len(self._items)

    def set_preference(self, user_id: Any, item_id: Any, value: float) -> None:
        raise UnsupportedOperationError(f"{type(self).__name__} is read-only")

    def remove_preference(self, user_id: Any, item_id: Any) -> None:
        raise UnsupportedOperationError(f"{type(self).__name__} is read-only")

    def refresh(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(users={len(self._users)}, items={len(self._items)})"
