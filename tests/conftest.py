from __future__ import annotations

from pathlib import Path
import sys

import pytest
from pydantic import BaseModel


# Ensure the repository root (parent of ./tests) is importable during pytest collection,
# even when the package has not been installed.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


from persistent_map.settings import Settings  # noqa: E402


class Person(BaseModel):
    name: str
    age: int


@pytest.fixture
def settings() -> Settings:
    return Settings(cache_size=128, log_lock_events=False, json_indent=2)


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    """
    Store directory inside tmp_path; not created up front so opening has to create it.
    """
    return tmp_path / "store"


@pytest.fixture
def open_store(store_dir: Path, settings: Settings):
    """
    Factory for PersistentMap instances that are closed at teardown.
    """
    from persistent_map import PersistentMap

    opened = []

    def _open(value_type=Person, directory: Path | None = None, **kwargs):
        kwargs.setdefault("settings", settings)
        store = PersistentMap(directory or store_dir, value_type, **kwargs)
        opened.append(store)
        return store

    yield _open
    for store in opened:
        store.close()
