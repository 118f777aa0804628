# domain/iteration.py - Lazy iteration over ordered backend rows
"""
Streaming iterators that turn an ordered row cursor into entities without
reading the whole result into memory.

The grouping iterator relies on rows arriving sorted by user key: all rows of
one user must be contiguous. Rows are never re-sorted here.

Backend failures while reading close the underlying resource and are raised
as ``BackendError``; exhaustion is signalled with ``StopIteration`` as usual.
"""

import logging
from typing import Any, Callable, Iterable, Iterator, List, Optional

from domain.errors import BackendError, DataModelError, UnsupportedOperationError
from domain.models import DEFAULT_FACTORY, EntityFactory, Item, Preference, PreferenceRow, User

logger = logging.getLogger(__name__)

_EMPTY = object()


class PushbackCursor:
    """Forward cursor with a one-row pushback buffer"""

    def __init__(self, rows: Iterable[Any]):
        self._rows = iter(rows)
        self._pushed = _EMPTY

    def __iter__(self) -> "PushbackCursor":
        return self

    def __next__(self) -> Any:
        if self._pushed is not _EMPTY:
            row, self._pushed = self._pushed, _EMPTY
            return row
        return next(self._rows)

    def push_back(self, row: Any) -> None:
        if self._pushed is not _EMPTY:
            raise RuntimeError("Only one row can be pushed back")
        self._pushed = row

    def peek(self) -> Any:
        row = next(self)
        self._pushed = row
        return row

    def has_more(self) -> bool:
        if self._pushed is not _EMPTY:
            return True
        try:
            self.peek()
        except StopIteration:
            return False
        return True


class _RowIterator:
    """Owns a row cursor plus the backend resource behind it.

    The resource is released exactly once: when exhaustion is detected, when
    reading fails, or when the caller closes the iterator early.
    """

    kind = "rows"

    def __init__(self, rows: Iterable[Any], factory: Optional[EntityFactory] = None,
                 close: Optional[Callable[[], None]] = None):
        self._cursor = PushbackCursor(rows)
        self._factory = factory or DEFAULT_FACTORY
        self._release = close
        self._closed = False

    def __iter__(self):
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def has_next(self) -> bool:
        if self._closed:
            return False
        try:
            more = self._cursor.has_more()
        except Exception as e:
            raise self._failure(e) from e
        if not more:
            self.close()
        return more

    def __next__(self):
        if not self.has_next():
            raise StopIteration
        try:
            return self._read_next()
        except StopIteration:
            raise
        except Exception as e:
            raise self._failure(e) from e

    def _read_next(self):
        raise NotImplementedError

    def remove(self) -> None:
        raise UnsupportedOperationError(f"Cannot remove {self.kind} through an iterator")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._release is not None:
            try:
                self._release()
            except Exception:
                logger.warning(f"Error while releasing resources for {self.kind} iteration", exc_info=True)

    def _failure(self, error: Exception) -> DataModelError:
        logger.warning(f"Exception while iterating over {self.kind}", exc_info=True)
        self.close()
        if isinstance(error, DataModelError):
            return error
        return BackendError(f"Can't retrieve more {self.kind} due to exception", error)


class UserGroupingIterator(_RowIterator):
    """Yields one User per run of contiguous rows sharing a user key"""

    kind = "users"

    def _read_next(self) -> User:
        user_id: Any = None
        started = False
        prefs: List[Preference] = []

        for row in self._cursor:
            row_user_id = self._factory.user_key(row.user_id)
            if not started:
                user_id = row_user_id
                started = True
            elif row_user_id != user_id:
                # Start of the next user's rows; leave it for the next call
                self._cursor.push_back(row)
                break
            prefs.append(self._build_preference(row))

        if not started:
            raise StopIteration
        return self._factory.build_user(user_id, prefs)

    def _build_preference(self, row: PreferenceRow) -> Preference:
        item = self._factory.item(row.item_id)
        return self._factory.preference(None, item, row.value)


class ItemRowIterator(_RowIterator):
    """Yields one Item per row; rows are raw item keys"""

    kind = "items"

    def _read_next(self) -> Item:
        return self._factory.item(next(self._cursor))


def drain(iterator: Iterator[Any], limit: Optional[int] = None) -> List[Any]:
    """Read up to ``limit`` entities and release the iterator's resources"""
    results = []
    try:
        if limit is None or limit > 0:
            for entity in iterator:
                results.append(entity)
                if limit is not None and len(results) >= limit:
                    break
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    return results
