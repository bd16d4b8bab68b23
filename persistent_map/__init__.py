from __future__ import annotations

from .aio import AsyncPersistentMap
from .cache import EntryCache
from .codec import JsonValueCodec
from .errors import (
    ClosedStoreError,
    DecodeError,
    DeleteError,
    EncodeError,
    InitializationError,
    InvalidKeyError,
    LockAnomaly,
    PersistentMapError,
    StorageError,
)
from .filesystem import LocalFilesystem
from .interfaces import Filesystem, ValueCodec
from .locks import DirectoryLock
from .settings import Settings, get_settings
from .store import Entry, EntryView, PersistentMap

open = PersistentMap.open

__all__ = [
    "PersistentMap",
    "AsyncPersistentMap",
    "Entry",
    "EntryView",
    "EntryCache",
    "DirectoryLock",
    "JsonValueCodec",
    "LocalFilesystem",
    "Filesystem",
    "ValueCodec",
    "Settings",
    "get_settings",
    "PersistentMapError",
    "InitializationError",
    "ClosedStoreError",
    "InvalidKeyError",
    "StorageError",
    "DeleteError",
    "EncodeError",
    "DecodeError",
    "LockAnomaly",
]
