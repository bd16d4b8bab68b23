from __future__ import annotations

import fcntl
import logging
import threading
import weakref
from pathlib import Path
from typing import BinaryIO, Callable

from .errors import InitializationError, LockAnomaly

logger = logging.getLogger(__name__)

AnomalyHandler = Callable[[LockAnomaly], None]


class OpenDirectoryRegistry:
    """
    Tracks which store directories are open in this process; a directory may
    only be owned by one live handle at a time.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._owners: dict[str, weakref.ref] = {}

    def claim(self, directory: Path, owner: object) -> None:
        key = str(directory.resolve())
        with self._guard:
            ref = self._owners.get(key)
            current = ref() if ref is not None else None
            if current is not None and current is not owner:
                raise InitializationError(f"PersistentMap {directory} is already open in this process")
            self._owners[key] = weakref.ref(owner)

    def release(self, directory: Path, owner: object) -> None:
        key = str(directory.resolve())
        with self._guard:
            ref = self._owners.get(key)
            if ref is None:
                return
            current = ref()
            if current is None or current is owner:
                del self._owners[key]

    def is_open(self, directory: Path) -> bool:
        key = str(directory.resolve())
        with self._guard:
            ref = self._owners.get(key)
            return ref is not None and ref() is not None


GLOBAL_OPEN_DIRECTORIES = OpenDirectoryRegistry()


class DirectoryLock:
    """
    Exclusive advisory lock on a store's lock file (``flock``, whole file, blocking).

    Use as ``with lock: ...``. Not re-entrant. A failing acquire or release is
    reported as a ``LockAnomaly`` and the body still runs; the release that
    follows a failed acquire is not reported again.
    """

    def __init__(
        self,
        path: Path,
        *,
        on_anomaly: AnomalyHandler | None = None,
        log_events: bool = False,
    ):
        self._path = path
        self._on_anomaly = on_anomaly
        self._log_events = log_events
        self._file: BinaryIO | None = path.open("a+b")
        self._held = False
        self._acquire_failed = False
        self.anomalies: list[LockAnomaly] = []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file is None

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        if self._log_events:
            logger.debug("LOCK ACQUIRE: %s (thread=%s)", self._path, threading.current_thread().name)
        if self._file is None:
            self._acquire_failed = True
            self._report("acquire", None)
            return False
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            self._acquire_failed = True
            self._report("acquire", e)
            return False
        self._acquire_failed = False
        self._held = True
        return True

    def release(self) -> None:
        if self._log_events:
            logger.debug("LOCK RELEASE: %s (thread=%s)", self._path, threading.current_thread().name)
        if self._acquire_failed:
            # already reported when the acquire failed
            self._acquire_failed = False
            return
        if self._file is None or not self._held:
            self._report("release", None)
            return
        self._held = False
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            self._report("release", e)

    def close(self) -> None:
        if self._file is None:
            return
        file, self._file = self._file, None
        self._held = False
        # closing the descriptor drops any flock still held through it
        file.close()

    def __enter__(self) -> "DirectoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def _report(self, phase: str, cause: BaseException | None) -> None:
        anomaly = LockAnomaly(self._path.parent, phase, cause)
        self.anomalies.append(anomaly)
        logger.warning("LOCK ANOMALY: %s (thread=%s)", anomaly, threading.current_thread().name)
        if self._on_anomaly is None:
            return
        try:
            self._on_anomaly(anomaly)
        except Exception:
            logger.warning("LOCK ANOMALY: handler failed for %s", self._path, exc_info=True)
