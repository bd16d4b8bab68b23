from __future__ import annotations

from pathlib import Path


class PersistentMapError(Exception):
    """Base class for every error raised by a persistent map."""


class InitializationError(PersistentMapError):
    """The store directory or its data directory is unusable."""


class ClosedStoreError(PersistentMapError, RuntimeError):
    def __init__(self, directory: Path):
        super().__init__(f"PersistentMap {directory} is already closed")
        self.directory = directory


class InvalidKeyError(PersistentMapError, ValueError):
    def __init__(self, key: object):
        super().__init__(f"Invalid key {key!r}: keys must be non-empty file names")
        self.key = key


class StorageError(PersistentMapError, OSError):
    """A filesystem call failed while the lock was held."""


class DeleteError(StorageError):
    def __init__(self, path: Path):
        super().__init__(f"PersistentMap cannot delete entry {path}")
        self.path = path


class EncodeError(PersistentMapError):
    """The codec could not serialize a value."""


class DecodeError(PersistentMapError):
    """The codec could not turn stored bytes back into a value."""


class LockAnomaly(PersistentMapError):
    """
    The advisory lock misbehaved on acquire or release.

    Never raised out of a store operation: instances are logged, recorded on
    the lock and handed to the ``on_lock_anomaly`` callback.
    """

    def __init__(self, directory: Path, phase: str, cause: BaseException | None = None):
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"invalid lock on {phase} for {directory}{detail}")
        self.directory = directory
        self.phase = phase
        self.cause = cause
