from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

LOCK_FILE_NAME = "lock"
DATA_DIR_NAME = "data"
WRITE_TMP_NAME = "write.tmp"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass(frozen=True)
class StoreLayout:
    """
    On-disk shape of a store:

      <root>/lock       lock token, never parsed
      <root>/write.tmp  transient, only exists inside a put
      <root>/data/<key> one file per entry
    """

    root: Path

    @classmethod
    def for_directory(cls, directory: Path | str) -> "StoreLayout":
        return cls(Path(directory).absolute())

    @property
    def lock_file(self) -> Path:
        return self.root / LOCK_FILE_NAME

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_DIR_NAME

    @property
    def write_tmp(self) -> Path:
        return self.root / WRITE_TMP_NAME

    def entry(self, key: str) -> Path:
        return self.data_dir / key
