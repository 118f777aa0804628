# services/reload.py - Staleness detection and snapshot reload for cached models
"""
Reload controller for models that cache an external source in memory.

Two independent locks guard the cache:

- the refresh lock is only ever try-acquired; a caller that finds a refresh
  already running returns immediately because that refresh covers its intent
- the reload lock is held while a snapshot is read and grouped; callers that
  need a snapshot on first access wait on it instead of starting a second build

Snapshots are published with a single reference assignment, so readers never
take a lock and keep whatever snapshot they already hold.
"""

import logging
import threading
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from domain.errors import BackendError, DataModelError
from domain.snapshot import SnapshotDataModel

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 60


class ReloadController:
    """Owns the current snapshot of a cached model and its reload protocol"""

    def __init__(
        self,
        build_snapshot: Callable[[], SnapshotDataModel],
        modification_marker: Callable[[], Any],
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        name: str = "data model"
    ):
        """
        Args:
            build_snapshot: Reads the whole source and returns a new snapshot
            modification_marker: Returns a comparable marker (e.g. mtime) of the source
            check_interval_seconds: Period of the background staleness check
            name: Used in log messages
        """
        if check_interval_seconds <= 0:
            raise ValueError(f"check_interval_seconds must be positive, got {check_interval_seconds}")

        self._build_snapshot = build_snapshot
        self._modification_marker = modification_marker
        self.check_interval_seconds = check_interval_seconds
        self.name = name

        self._refresh_lock = threading.Lock()
        self._reload_lock = threading.Lock()
        self._snapshot: Optional[SnapshotDataModel] = None
        self._last_marker: Any = None
        self._scheduler: Optional[BackgroundScheduler] = None

        self.reload_count = 0

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def last_marker(self) -> Any:
        return self._last_marker

    @property
    def snapshot(self) -> SnapshotDataModel:
        return self.ensure_loaded()

    def ensure_loaded(self) -> SnapshotDataModel:
        """Return the current snapshot, building it on first access"""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        with self._reload_lock:
            # Another thread may have finished the first load while we waited
            if self._snapshot is None:
                self._load()
            return self._snapshot

    def refresh(self) -> bool:
        """Rebuild the snapshot unconditionally.

        Returns False without doing any work when another refresh is already
        running. Errors are fatal only while nothing has been loaded yet.
        """
        seen = self._snapshot
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug(f"Refresh of {self.name} already in progress; skipping")
            return False
        try:
            with self._reload_lock:
                if self._snapshot is None:
                    self._load()
                elif seen is None:
                    # A first load finished while we waited and already read the current source
                    logger.debug(f"{self.name} was loaded while waiting; skipping rebuild")
                else:
                    self._reload(self._read_marker())
            return True
        finally:
            self._refresh_lock.release()

    def check_reload(self) -> bool:
        """Reload when the source marker is strictly newer than the last one seen"""
        if self._snapshot is None:
            return False

        marker = self._read_marker()
        if marker is None:
            return False
        if self._last_marker is not None and not marker > self._last_marker:
            return False

        if not self._refresh_lock.acquire(blocking=False):
            logger.debug(f"Refresh of {self.name} already in progress; skipping staleness reload")
            return False
        try:
            logger.info(f"{self.name} has changed; reloading...")
            with self._reload_lock:
                self._reload(marker)
            return True
        finally:
            self._refresh_lock.release()

    def start(self) -> None:
        """Start the periodic staleness check"""
        if self._scheduler is not None:
            return

        scheduler = BackgroundScheduler(daemon=True)
        scheduler.add_job(
            self.check_reload,
            trigger=IntervalTrigger(seconds=self.check_interval_seconds),
            id="check_reload",
            name=f"Staleness check for {self.name}",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Checking {self.name} for changes every {self.check_interval_seconds}s")

    def close(self) -> None:
        """Stop the periodic staleness check"""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    # Callers below hold the reload lock

    def _load(self) -> None:
        try:
            self._last_marker = self._modification_marker()
            logger.info(f"Loading {self.name}...")
            self._publish(self._build_snapshot())
        except DataModelError as e:
            logger.error(f"❌ Failed to load {self.name}: {e}")
            raise
        except Exception as e:
            logger.error(f"❌ Failed to load {self.name}: {e}")
            raise BackendError(f"Could not load {self.name}", e) from e

    def _reload(self, marker: Any) -> None:
        # Record the marker first so a failing build is not retried for the same change
        if marker is not None:
            self._last_marker = marker
        try:
            self._publish(self._build_snapshot())
        except Exception:
            logger.warning(f"Error while reloading {self.name}; keeping previous snapshot", exc_info=True)

    def _publish(self, snapshot: SnapshotDataModel) -> None:
        self._snapshot = snapshot
        self.reload_count += 1
        logger.info(f"✅ Loaded {self.name}: {snapshot.count_users()} users, {snapshot.count_items()} items")

    def _read_marker(self) -> Any:
        try:
            return self._modification_marker()
        except Exception:
            logger.warning(f"Could not read modification marker of {self.name}", exc_info=True)
            return None
