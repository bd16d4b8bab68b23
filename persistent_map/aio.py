from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from .store import PersistentMap

V = TypeVar("V")
T = TypeVar("T")


class AsyncPersistentMap(Generic[V]):
    """
    Async wrapper around PersistentMap.
    Uses asyncio.to_thread to avoid blocking the event loop on file I/O; calls
    are serialized because the underlying map is not thread-safe.
    """

    def __init__(self, store: PersistentMap[V]) -> None:
        self._store = store
        self._guard = asyncio.Lock()

    @classmethod
    async def open(cls, directory: Path | str, value_type: Any, **kwargs: Any) -> "AsyncPersistentMap[V]":
        store = await asyncio.to_thread(PersistentMap, directory, value_type, **kwargs)
        return cls(store)

    @property
    def store(self) -> PersistentMap[V]:
        return self._store

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._guard:
            return await asyncio.to_thread(fn, *args)

    async def get(self, key: str) -> V | None:
        return await self._run(self._store.get, key)

    async def put(self, key: str, value: V) -> V | None:
        return await self._run(self._store.put, key, value)

    async def remove(self, key: str) -> V | None:
        return await self._run(self._store.remove, key)

    async def clear(self) -> None:
        await self._run(self._store.clear)

    async def keys(self) -> list[str]:
        return await self._run(lambda: list(self._store.keys()))

    async def size(self) -> int:
        return await self._run(self._store.size)

    async def entries(self) -> list[tuple[str, V]]:
        return await self._run(lambda: [(k, v) for k, v in self._store.entries()])

    async def close(self) -> None:
        await self._run(self._store.close)

    async def __aenter__(self) -> "AsyncPersistentMap[V]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
