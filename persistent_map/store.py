from __future__ import annotations

import io
import logging
import os
from collections.abc import ItemsView, Iterable, Iterator, KeysView, Mapping, MutableMapping
from pathlib import Path
from typing import Any, Generic, TypeVar

from .cache import EntryCache
from .codec import JsonValueCodec
from .errors import (
    ClosedStoreError,
    DeleteError,
    InitializationError,
    InvalidKeyError,
    StorageError,
)
from .filesystem import LocalFilesystem
from .interfaces import Filesystem, ValueCodec
from .locks import GLOBAL_OPEN_DIRECTORIES, AnomalyHandler, DirectoryLock
from .paths import StoreLayout
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

V = TypeVar("V")

# no entry file on disk (distinct from a stored None)
_MISSING = object()


def validate_key(key: object) -> str:
    if not isinstance(key, str) or key in ("", ".", ".."):
        raise InvalidKeyError(key)
    if "\0" in key or os.sep in key or (os.altsep and os.altsep in key):
        raise InvalidKeyError(key)
    return key


class PersistentMap(MutableMapping[str, V], Generic[V]):
    """
    A dict-like store backed by a directory: one file per key, JSON content.

    Every access to the directory happens under an advisory ``flock`` on
    ``<directory>/lock`` so that several processes can share the directory.
    The map is not thread-safe; one process must not open the same directory
    twice.

    Decoded values are cached (LRU, ``cache_size`` values). ``put`` reports the
    previous value only when it is still cached: after eviction it returns
    None even though an entry was overwritten.
    """

    def __init__(
        self,
        directory: Path | str,
        value_type: Any,
        entries: Mapping[str, V] | Iterable[tuple[str, V]] | None = None,
        *,
        codec: ValueCodec | None = None,
        filesystem: Filesystem | None = None,
        cache_size: int | None = None,
        on_lock_anomaly: AnomalyHandler | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._layout = StoreLayout.for_directory(directory)
        self._value_type = value_type
        self._codec: ValueCodec = codec or JsonValueCodec(indent=settings.json_indent)
        self._fs: Filesystem = filesystem or LocalFilesystem()
        self._cache: EntryCache[V] = EntryCache(settings.cache_size if cache_size is None else cache_size)
        self._inited = False
        self._closed = False

        root = self._layout.root
        try:
            self._fs.ensure_dir(root)
        except OSError as e:
            raise InitializationError(f"PersistentMap cannot create directory {root}") from e
        if not self._fs.is_dir(root):
            raise InitializationError(f"PersistentMap cannot create directory {root}")
        if not self._fs.is_writable(root):
            raise InitializationError(f"PersistentMap cannot write directory {root}")

        GLOBAL_OPEN_DIRECTORIES.claim(root, self)
        try:
            self._lock = DirectoryLock(
                self._layout.lock_file,
                on_anomaly=on_lock_anomaly,
                log_events=settings.log_lock_events,
            )
        except OSError as e:
            GLOBAL_OPEN_DIRECTORIES.release(root, self)
            raise InitializationError(f"PersistentMap cannot open lock file {self._layout.lock_file}") from e

        try:
            self._ensure_data_dir()
        except InitializationError:
            self._lock.close()
            GLOBAL_OPEN_DIRECTORIES.release(root, self)
            raise

        logger.debug("STORE OPEN: %s (type=%r)", root, value_type)
        if entries is not None:
            self.update(entries)

    @classmethod
    def open(
        cls,
        directory: Path | str,
        value_type: Any,
        entries: Mapping[str, V] | Iterable[tuple[str, V]] | None = None,
        **kwargs: Any,
    ) -> "PersistentMap[V]":
        return cls(directory, value_type, entries, **kwargs)

    def _ensure_data_dir(self) -> None:
        data = self._layout.data_dir
        with self._lock:
            try:
                self._fs.ensure_dir(data)
            except OSError as e:
                raise InitializationError(f"PersistentMap cannot create data directory {data}") from e
            if not self._fs.is_dir(data):
                raise InitializationError(f"PersistentMap cannot create data directory {data}")
            if not self._fs.is_writable(data):
                raise InitializationError(f"PersistentMap cannot write data directory {data}")

    # -------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------
    @property
    def directory(self) -> Path:
        return self._layout.root

    @property
    def value_type(self) -> Any:
        return self._value_type

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def lock(self) -> DirectoryLock:
        return self._lock

    def close(self) -> None:
        if self._closed:
            return
        self._lock.close()
        self._closed = True
        self._inited = False
        self._cache.clear()
        GLOBAL_OPEN_DIRECTORIES.release(self._layout.root, self)
        logger.debug("STORE CLOSE: %s", self._layout.root)

    def __enter__(self) -> "PersistentMap[V]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedStoreError(self._layout.root)

    def _init(self) -> None:
        self._check_open()
        if self._inited:
            return
        with self._lock:
            try:
                names = self._fs.list_names(self._layout.data_dir)
            except OSError as e:
                raise StorageError(f"PersistentMap cannot list {self._layout.data_dir}: {e}") from e
            for name in names:
                self._cache.add_unloaded(name)
        self._inited = True
        logger.debug("STORE INIT: %s (%d entries)", self._layout.root, len(names))

    # -------------------------------------------------------------------
    # disk access, always under the lock
    # -------------------------------------------------------------------
    def _read(self, key: str) -> Any:
        path = self._layout.entry(key)
        try:
            with self._fs.open_read(path) as f:
                return self._codec.decode(f, self._value_type)
        except FileNotFoundError:
            return _MISSING
        except OSError as e:
            raise StorageError(f"PersistentMap cannot read entry {path}: {e}") from e

    def _load(self, key: str) -> Any:
        if key not in self._cache:
            return _MISSING
        value = self._cache.get_loaded(key, _MISSING)
        if value is not _MISSING:
            return value
        with self._lock:
            value = self._read(key)
        if value is _MISSING:
            # removed behind our back by another process
            logger.info("STORE GET: entry %s vanished from %s", key, self._layout.data_dir)
            self._cache.discard(key)
            return _MISSING
        self._cache.store(key, value)
        return value

    # -------------------------------------------------------------------
    # operations
    # -------------------------------------------------------------------
    def get(self, key: str, default: Any = None) -> V | None:
        self._init()
        validate_key(key)
        value = self._load(key)
        return default if value is _MISSING else value

    def put(self, key: str, value: V) -> V | None:
        self._init()
        validate_key(key)
        old = self._cache.get_loaded(key)

        with self._lock:
            buf = io.BytesIO()
            self._codec.encode(value, buf, self._value_type)
            try:
                self._fs.write_atomic(self._layout.entry(key), buf.getvalue(), tmp_path=self._layout.write_tmp)
            except OSError as e:
                raise StorageError(f"PersistentMap cannot write entry {key}: {e}") from e
            self._cache.store(key, value)
        return old

    def remove(self, key: str) -> V | None:
        """
        Delete ``key`` and return its value.

        An entry whose value is not cached is decoded before it is deleted, so
        the returned value does not depend on cache state. Unknown keys return
        None.
        """
        self._init()
        validate_key(key)
        path = self._layout.entry(key)
        with self._lock:
            value = self._cache.get_loaded(key, _MISSING)
            if value is _MISSING and key in self._cache:
                value = self._read(key)
            self._delete(path)
            self._cache.discard(key)
        return None if value is _MISSING else value

    def discard(self, key: str) -> bool:
        """Delete ``key`` without decoding it. Returns whether it was known."""
        self._init()
        validate_key(key)
        with self._lock:
            self._delete(self._layout.entry(key))
            known = key in self._cache
            self._cache.discard(key)
        return known

    def _delete(self, path: Path) -> None:
        try:
            self._fs.delete_file(path)
        except OSError as e:
            raise StorageError(f"PersistentMap cannot delete entry {path}: {e}") from e
        if self._fs.exists(path):
            raise DeleteError(path)

    def clear(self) -> None:
        self._init()
        data = self._layout.data_dir
        with self._lock:
            try:
                self._fs.delete_tree(data)
                self._cache.clear()
                self._fs.ensure_dir(data)
            except OSError as e:
                raise StorageError(f"PersistentMap cannot clear {data}: {e}") from e
        logger.debug("STORE CLEAR: %s", self._layout.root)

    def keys(self) -> KeysView[str]:
        self._init()
        return self._cache.keys()

    def size(self) -> int:
        self._init()
        return len(self._cache)

    def entries(self) -> "EntryView[V]":
        self._init()
        return EntryView(self)

    def items(self) -> "EntryView[V]":  # type: ignore[override]
        return self.entries()

    def evict(self, key: str | None = None) -> None:
        """Drop cached values (one key, or all) so the next access rereads disk."""
        self._check_open()
        if key is None:
            self._cache.evict_all()
        else:
            self._cache.evict(key)

    # -------------------------------------------------------------------
    # MutableMapping
    # -------------------------------------------------------------------
    def __getitem__(self, key: str) -> V:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: V) -> None:
        self.put(key, value)

    def __delitem__(self, key: str) -> None:
        self._init()
        if key not in self._cache:
            raise KeyError(key)
        self.remove(key)

    def __contains__(self, key: object) -> bool:
        self._init()
        return key in self._cache

    def __iter__(self) -> Iterator[str]:
        self._init()
        return iter(self._cache)

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        if self._closed:
            state = "closed"
        elif self._inited:
            state = f"{len(self._cache)} keys"
        else:
            state = "not loaded"
        return f"PersistentMap[{self._layout.root}] ({state})"


class Entry(tuple):
    """
    A ``(key, value)`` pair yielded by ``PersistentMap.entries()``.

    Compares and unpacks like a plain tuple. ``set_value`` writes through to the
    store; the entry itself keeps the value it was created with.
    """

    def __new__(cls, store: PersistentMap[Any], key: str, value: Any) -> "Entry":
        entry = super().__new__(cls, (key, value))
        entry._store = store
        return entry

    @property
    def key(self) -> str:
        return self[0]

    @property
    def value(self) -> Any:
        return self[1]

    def set_value(self, value: Any) -> Any:
        return self._store.put(self.key, value)


class EntryIterator(Generic[V]):
    """
    Walks a snapshot of the key set, decoding values as they are reached.

    ``remove()`` deletes the entry last returned by ``next()``.
    """

    def __init__(self, store: PersistentMap[V]):
        self._store = store
        self._keys = iter(list(store._cache.keys()))
        self._current: str | None = None

    def __iter__(self) -> "EntryIterator[V]":
        return self

    def __next__(self) -> Entry:
        for key in self._keys:
            if key not in self._store._cache:
                continue
            value = self._store._load(key)
            if value is _MISSING:
                continue
            self._current = key
            return Entry(self._store, key, value)
        self._current = None
        raise StopIteration

    def remove(self) -> None:
        if self._current is None:
            raise RuntimeError("remove() called before next() or twice for the same entry")
        key, self._current = self._current, None
        self._store.remove(key)


class EntryView(ItemsView, Generic[V]):
    """Live (key, value) view of a PersistentMap."""

    _mapping: PersistentMap[V]

    def __init__(self, store: PersistentMap[V]):
        super().__init__(store)

    def __len__(self) -> int:
        return self._mapping.size()

    def __iter__(self) -> EntryIterator[V]:
        self._mapping._init()
        return EntryIterator(self._mapping)

    def __contains__(self, item: object) -> bool:
        try:
            key, value = item  # type: ignore[misc]
        except (TypeError, ValueError):
            return False
        if key not in self._mapping:
            return False
        stored = self._mapping.get(key, _MISSING)
        return stored is not _MISSING and stored == value
