# adapters/corpus.py - One-shot bulk import of a multi-file rating corpus
"""
Static data model built from a directory laid out as::

    <data_dir>/movie_titles.txt        <id>,<year>,<title>   one line per item, ids 1..N in order
    <data_dir>/training_set/mv_*.txt   first line "<id>:", then <userKey>,<value>,<date> records

Ratings files are not sorted by user, so preferences are accumulated per
user in memory and turned into a snapshot once. There is no reload.
"""

import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Union

from domain.errors import BackendError, ParseError
from domain.models import EntityFactory, Item, Preference, User
from domain.snapshot import SnapshotDataModel

logger = logging.getLogger(__name__)

DEFAULT_TITLES_FILE = "movie_titles.txt"
DEFAULT_RATINGS_DIR = "training_set"
DEFAULT_RATINGS_PREFIX = "mv_"
DATE_FORMAT = "%Y-%m-%d"
PROGRESS_EVERY = 100_000
# Corpus files are Latin-1; every byte decodes
CORPUS_ENCODING = "latin-1"

CORPUS_FACTORY = EntityFactory.with_key_types(user_key=int, item_key=int)


def read_items(titles_path: Path) -> List[Item]:
    """Item index where item ``n`` sits at position ``n - 1``"""
    source = str(titles_path)
    items: List[Item] = []
    with open(titles_path, "r", encoding=CORPUS_ENCODING) as f:
        for line_number, raw_line in enumerate(f, start=1):
            line = raw_line.rstrip("\r\n")
            if not line:
                continue
            fields = line.split(",", 2)
            if len(fields) < 3:
                raise ParseError(f"Bad title line: {line!r}", source, line_number)
            try:
                item_id = int(fields[0])
            except ValueError:
                raise ParseError(f"Bad item ID {fields[0]!r}", source, line_number) from None
            expected = len(items) + 1
            if item_id != expected:
                raise ParseError(f"Item IDs must be dense and ordered; expected {expected}, got {item_id}",
                                 source, line_number)
            items.append(Item(id=item_id, title=fields[2]))
    return items


def read_ratings(ratings_path: Path, items: List[Item], prefs_by_user: Dict[int, List[Preference]]) -> int:
    """Add one item's ratings to ``prefs_by_user``; returns the number read"""
    source = str(ratings_path)
    count = 0
    with open(ratings_path, "r", encoding=CORPUS_ENCODING) as f:
        header = f.readline().rstrip("\r\n")
        if not header:
            raise ParseError("Can't read first line", source, 1)
        if not header.endswith(":"):
            raise ParseError(f"Bad header line: {header!r}", source, 1)
        try:
            item_id = int(header[:-1])
        except ValueError:
            raise ParseError(f"Bad item ID in header {header!r}", source, 1) from None
        if not 1 <= item_id <= len(items):
            raise ParseError(f"No such item: {item_id}", source, 1)
        item = items[item_id - 1]

        for line_number, raw_line in enumerate(f, start=2):
            line = raw_line.rstrip("\r\n")
            if not line:
                continue
            fields = line.split(",")
            if len(fields) != 3:
                raise ParseError(f"Bad rating line: {line!r}", source, line_number)
            try:
                user_id = int(fields[0])
                value = float(fields[1])
                timestamp = datetime.strptime(fields[2], DATE_FORMAT)
            except ValueError as e:
                raise ParseError(f"Bad rating line {line!r}: {e}", source, line_number) from None
            if not math.isfinite(value):
                raise ParseError(f"Rating must be finite: {line!r}", source, line_number)

            prefs_by_user.setdefault(user_id, []).append(
                Preference(item=item, value=value, timestamp=timestamp)
            )
            count += 1
    return count


def load_corpus(
    data_dir: Path,
    titles_file: str = DEFAULT_TITLES_FILE,
    ratings_dir: str = DEFAULT_RATINGS_DIR,
    ratings_prefix: str = DEFAULT_RATINGS_PREFIX
) -> List[User]:
    try:
        logger.info("Reading item data...")
        items = read_items(data_dir / titles_file)

        logger.info("Reading preference data...")
        prefs_by_user: Dict[int, List[Preference]] = {}
        total = 0
        next_report = PROGRESS_EVERY
        for ratings_path in sorted((data_dir / ratings_dir).glob(f"{ratings_prefix}*")):
            total += read_ratings(ratings_path, items, prefs_by_user)
            if total >= next_report:
                logger.info(f"Processed {total:,} prefs")
                next_report = (total // PROGRESS_EVERY + 1) * PROGRESS_EVERY
    except OSError as e:
        raise BackendError(f"Could not read corpus in {data_dir}", e) from e

    logger.info(f"Read {total:,} prefs from {len(prefs_by_user):,} users over {len(items):,} items")
    return [CORPUS_FACTORY.build_user(user_id, prefs) for user_id, prefs in prefs_by_user.items()]


class CorpusDataModel(SnapshotDataModel):
    """Read-only snapshot of a bulk corpus; integer user and item keys"""

    def __init__(
        self,
        data_dir: Union[str, Path],
        titles_file: str = DEFAULT_TITLES_FILE,
        ratings_dir: str = DEFAULT_RATINGS_DIR,
        ratings_prefix: str = DEFAULT_RATINGS_PREFIX
    ):
        data_dir = Path(data_dir)
        if not data_dir.is_dir():
            raise FileNotFoundError(f"Corpus directory not found: {data_dir}")

        logger.info(f"Creating CorpusDataModel for directory: {data_dir}")
        self.data_dir = data_dir
        users = load_corpus(data_dir, titles_file, ratings_dir, ratings_prefix)
        super().__init__(users, factory=CORPUS_FACTORY)
