from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import BinaryIO

from .paths import ensure_dir


class LocalFilesystem:
    """
    ``Filesystem`` backed by the local disk via pathlib.
    """

    def ensure_dir(self, path: Path) -> Path:
        return ensure_dir(path)

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def is_writable(self, path: Path) -> bool:
        return os.access(path, os.W_OK)

    def list_names(self, path: Path) -> list[str]:
        return [p.name for p in path.iterdir() if p.is_file()]

    def exists(self, path: Path) -> bool:
        return path.exists()

    def delete_file(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def delete_tree(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)

    def open_read(self, path: Path) -> BinaryIO:
        return path.open("rb")

    def write_atomic(self, path: Path, payload: bytes, *, tmp_path: Path) -> None:
        """
        Write to a temp file then replace, so readers never see a partial entry.
        """
        with tmp_path.open("wb") as f:
            f.write(payload)
        tmp_path.replace(path)
