# domain/models.py - Core preference entities and the data model contract
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from domain.errors import InvalidArgumentError


@dataclass(frozen=True, order=True)
class Item:
    id: Any
    title: Optional[str] = field(default=None, compare=False)
    recommendable: bool = field(default=True, compare=False)

    def __post_init__(self):
        if self.id is None:
            raise InvalidArgumentError("Item id must not be None")


@dataclass(frozen=True)
class Preference:
    item: Item
    value: float
    user: Optional["User"] = field(default=None, compare=False, repr=False)
    timestamp: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self):
        if self.item is None:
            raise InvalidArgumentError("Preference item must not be None")
        try:
            value = float(self.value)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Invalid preference value: {self.value!r}")
        if not math.isfinite(value):
            raise InvalidArgumentError(f"Invalid preference value: {value}")
        object.__setattr__(self, "value", value)

    @property
    def user_id(self) -> Any:
        return None if self.user is None else self.user.id

    def __repr__(self) -> str:
        return f"Preference(user={self.user_id!r}, item={self.item.id!r}, value={self.value})"


@dataclass(frozen=True, order=True)
class User:
    id: Any
    preferences: Tuple[Preference, ...] = field(default=(), compare=False, repr=False)
    _by_item: Dict[Any, Preference] = field(default_factory=dict, init=False, compare=False, repr=False)

    def __post_init__(self):
        if self.id is None:
            raise InvalidArgumentError("User id must not be None")

        # One preference per item; a later entry for the same item wins
        by_item: Dict[Any, Preference] = {}
        for preference in self.preferences or ():
            if preference.user is not self:
                preference = replace(preference, user=self)
            by_item[preference.item.id] = preference

        object.__setattr__(self, "preferences", tuple(sorted(by_item.values(), key=lambda p: p.item)))
        object.__setattr__(self, "_by_item", by_item)

    def preference_for(self, item_id: Any) -> Optional[Preference]:
        return self._by_item.get(item_id)


class PreferenceRow(NamedTuple):
    """Raw user-enumeration row as delivered by a backend cursor"""
    item_id: Any
    value: float
    user_id: Any


def _build_preference(user: Optional[User], item: Item, value: float) -> Preference:
    return Preference(item=item, value=value, user=user)


@dataclass(frozen=True)
class EntityFactory:
    """Construction capabilities injected into every data model.

    ``user_key`` and ``item_key`` turn raw keys (database strings, URL path
    segments) into identifier values before any entity is built.
    """
    build_user: Callable[[Any, Sequence[Preference]], User] = User
    build_item: Callable[[Any], Item] = Item
    build_preference: Callable[[Optional[User], Item, float], Preference] = _build_preference
    user_key: Callable[[Any], Any] = str
    item_key: Callable[[Any], Any] = str

    @classmethod
    def with_key_types(cls, user_key: Callable[[Any], Any] = str,
                       item_key: Callable[[Any], Any] = str) -> "EntityFactory":
        return cls(user_key=user_key, item_key=item_key)

    def user(self, raw_id: Any, preferences: Sequence[Preference] = ()) -> User:
        return self.build_user(self.user_key(raw_id), preferences)

    def item(self, raw_id: Any) -> Item:
        return self.build_item(self.item_key(raw_id))

    def preference(self, user: Optional[User], item: Item, value: float) -> Preference:
        return self.build_preference(user, item, value)


DEFAULT_FACTORY = EntityFactory()


# Data model interface (Uncle Bob's dependency inversion)
class DataModel(ABC):
    factory: EntityFactory = DEFAULT_FACTORY

    @abstractmethod
    def list_users(self) -> Iterator[User]:
        """Enumerate all users; single pass"""
        pass

    @abstractmethod
    def get_user(self, user_id: Any) -> User:
        """Get user by ID, raising NotFoundError if absent"""
        pass

    @abstractmethod
    def list_items(self) -> Iterator[Item]:
        """Enumerate all items; single pass"""
        pass

    @abstractmethod
    def get_item(self, item_id: Any, assume_exists: bool = False) -> Item:
        """Get item by ID.

        With ``assume_exists`` the existence check is skipped and an item is
        built from the key alone, which may describe an item the backend
        does not have.
        """
        pass

    @abstractmethod
    def get_preferences_for_item(self, item_id: Any) -> Sequence[Preference]:
        """All preferences expressed for one item"""
        pass

    @abstractmethod
    def count_users(self) -> int:
        pass

    @abstractmethod
    def count_items(self) -> int:
        pass

    @abstractmethod
    def set_preference(self, user_id: Any, item_id: Any, value: float) -> None:
        """Insert or overwrite the preference of a user for an item"""
        pass

    @abstractmethod
    def remove_preference(self, user_id: Any, item_id: Any) -> None:
        pass

    @abstractmethod
    def refresh(self) -> None:
        """Pick up changes made to the backing store"""
        pass

    def close(self) -> None:
        """Release background resources held by the model"""
        pass


def group_rows(rows: Iterable[PreferenceRow], factory: EntityFactory = DEFAULT_FACTORY) -> List[User]:
    """Reference group-by over rows in any order; holds everything in memory"""
    items: Dict[Any, Item] = {}
    grouped: Dict[Any, List[Preference]] = {}
    for row in rows:
        item_id = factory.item_key(row.item_id)
        item = items.get(item_id)
        if item is None:
            item = items[item_id] = factory.build_item(item_id)
        grouped.setdefault(factory.user_key(row.user_id), []).append(factory.preference(None, item, row.value))
    return [factory.build_user(user_id, prefs) for user_id, prefs in grouped.items()]
