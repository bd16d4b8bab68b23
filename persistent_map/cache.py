from __future__ import annotations

from collections import OrderedDict
from typing import Any, Generic, Iterator, KeysView, TypeVar

V = TypeVar("V")

_UNLOADED = object()


class EntryCache(Generic[V]):
    """
    Index of a store's entries.

    ``keys`` is the authoritative key set. Decoded values are kept for at most
    ``max_values`` keys, least recently used first out; a key whose value was
    evicted (or never loaded) stays in the key set and reports ``loaded`` False.
    """

    def __init__(self, max_values: int = 128):
        if max_values < 0:
            raise ValueError("max_values must be >= 0")
        self._max_values = max_values
        self._slots: dict[str, object] = {}
        self._lru: OrderedDict[str, None] = OrderedDict()

    @property
    def max_values(self) -> int:
        return self._max_values

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    def __iter__(self) -> Iterator[str]:
        return iter(self._slots)

    def keys(self) -> KeysView[str]:
        return self._slots.keys()

    def loaded(self, key: str) -> bool:
        return self._slots.get(key, _UNLOADED) is not _UNLOADED

    def loaded_count(self) -> int:
        return len(self._lru)

    def get_loaded(self, key: str, default: Any = None) -> Any:
        """Live cached value (which may itself be None), or ``default`` when absent or not loaded."""
        value = self._slots.get(key, _UNLOADED)
        if value is _UNLOADED:
            return default
        self._lru.move_to_end(key)
        return value  # type: ignore[return-value]

    def add_unloaded(self, key: str) -> None:
        if key not in self._slots:
            self._slots[key] = _UNLOADED

    def store(self, key: str, value: V) -> None:
        if self._max_values == 0:
            self._slots[key] = _UNLOADED
            return
        self._slots[key] = value
        self._lru[key] = None
        self._lru.move_to_end(key)
        while len(self._lru) > self._max_values:
            oldest, _ = self._lru.popitem(last=False)
            self._slots[oldest] = _UNLOADED

    def evict(self, key: str) -> None:
        """Drop the decoded value but keep the key."""
        if key in self._lru:
            del self._lru[key]
            self._slots[key] = _UNLOADED

    def evict_all(self) -> None:
        for key in self._lru:
            self._slots[key] = _UNLOADED
        self._lru.clear()

    def discard(self, key: str, default: Any = None) -> Any:
        """Forget the key entirely, returning its live value if it had one."""
        value = self._slots.pop(key, _UNLOADED)
        self._lru.pop(key, None)
        if value is _UNLOADED:
            return default
        return value  # type: ignore[return-value]

    def clear(self) -> None:
        self._slots.clear()
        self._lru.clear()
