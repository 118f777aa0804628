# adapters/file.py - Delimited file backend with cached snapshot and auto reload
import logging
import math
import re
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union

from domain.errors import InvalidArgumentError, ParseError, UnsupportedOperationError
from domain.models import (
    DEFAULT_FACTORY, DataModel, EntityFactory, Item, Preference, PreferenceRow, User, group_rows
)
from domain.snapshot import SnapshotDataModel
from services.reload import DEFAULT_CHECK_INTERVAL_SECONDS, ReloadController

logger = logging.getLogger(__name__)

DELIMITER = ","
# Plain decimal or exponent notation; no padding, underscores or inf/nan
_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_line(line: str, source: Optional[str] = None, line_number: Optional[int] = None) -> PreferenceRow:
    """Parse ``<userKey>,<itemKey>,<value>``.

    The first two delimiters split the fields. Whitespace is kept as part of
    the keys.
    """
    first = line.find(DELIMITER)
    second = line.find(DELIMITER, first + 1) if first >= 0 else -1
    if first < 0 or second < 0:
        raise ParseError(f"Bad line: {line!r}", source, line_number)

    raw_value = line[second + 1:]
    if not _NUMBER.fullmatch(raw_value):
        raise ParseError(f"Bad preference value {raw_value!r} in line {line!r}", source, line_number)
    value = float(raw_value)
    if not math.isfinite(value):
        raise ParseError(f"Preference value must be finite in line {line!r}", source, line_number)

    return PreferenceRow(item_id=line[first + 1:second], value=value, user_id=line[:first])


class FileDataModel(DataModel):
    """Data model over a ``user,item,value`` file held in memory.

    The file is read on first access. A background check compares the file's
    modification time every ``check_interval_seconds`` and swaps in a freshly
    built snapshot when the file is newer. Mutations are not supported.
    """

    def __init__(
        self,
        data_file: Union[str, Path],
        auto_reload: bool = True,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        factory: Optional[EntityFactory] = None
    ):
        if not data_file:
            raise InvalidArgumentError("data_file must not be empty")
        self.data_file = Path(data_file)
        if not self.data_file.is_file():
            raise FileNotFoundError(f"Data file not found: {self.data_file}")

        self.factory = factory or DEFAULT_FACTORY
        logger.info(f"Creating FileDataModel for file {self.data_file}")

        self._controller = ReloadController(
            build_snapshot=self._build_snapshot,
            modification_marker=self._modified_at,
            check_interval_seconds=check_interval_seconds,
            name=f"data file {self.data_file}"
        )
        if auto_reload:
            self._controller.start()

    @property
    def reload_controller(self) -> ReloadController:
        return self._controller

    def read_rows(self) -> Iterator[PreferenceRow]:
        """Parse the file lazily; an empty line ends the data"""
        source = str(self.data_file)
        with open(self.data_file, "r", encoding="utf-8", newline="") as f:
            for line_number, raw_line in enumerate(f, start=1):
                line = raw_line.rstrip("\r\n")
                if not line:
                    break
                yield parse_line(line, source, line_number)

    def _build_snapshot(self) -> SnapshotDataModel:
        logger.info(f"Reading file {self.data_file}...")
        # The file need not be sorted by user, so group with an accumulating map
        users = group_rows(self.read_rows(), self.factory)
        return SnapshotDataModel(users, factory=self.factory)

    def _modified_at(self) -> int:
        return self.data_file.stat().st_mtime_ns

    def list_users(self) -> Iterator[User]:
        return self._controller.snapshot.list_users()

    def get_user(self, user_id: Any) -> User:
        return self._controller.snapshot.get_user(user_id)

    def list_items(self) -> Iterator[Item]:
        return self._controller.snapshot.list_items()

    def get_item(self, item_id: Any, assume_exists: bool = False) -> Item:
        return self._controller.snapshot.get_item(item_id, assume_exists=assume_exists)

    def get_preferences_for_item(self, item_id: Any) -> Sequence[Preference]:
        return self._controller.snapshot.get_preferences_for_item(item_id)

    def count_users(self) -> int:
        return self._controller.snapshot.count_users()

    def count_items(self) -> int:
        return self._controller.snapshot.count_items()

    def set_preference(self, user_id: Any, item_id: Any, value: float) -> None:
        raise UnsupportedOperationError("FileDataModel does not support setting preferences")

    def remove_preference(self, user_id: Any, item_id: Any) -> None:
        raise UnsupportedOperationError("FileDataModel does not support removing preferences")

    def refresh(self) -> None:
        self._controller.refresh()

    def close(self) -> None:
        self._controller.close()

    def __repr__(self) -> str:
        return f"FileDataModel(data_file={str(self.data_file)!r})"
