from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Protocol


class ValueCodec(Protocol):
    """
    Converts values to and from a byte stream. The store never looks at the bytes.
    """

    def encode(self, value: Any, destination: BinaryIO, value_type: Any) -> None:
        """Write ``value`` as a ``value_type`` to ``destination``; raise ``EncodeError`` on failure or mismatch."""
        ...

    def decode(self, source: BinaryIO, value_type: Any) -> Any:
        """Read one value of ``value_type``; raise ``DecodeError`` on failure."""
        ...


class Filesystem(Protocol):
    """
    The handful of directory operations a store needs. Failures surface as ``OSError``.
    """

    def ensure_dir(self, path: Path) -> Path: ...

    def is_dir(self, path: Path) -> bool: ...

    def is_writable(self, path: Path) -> bool: ...

    def list_names(self, path: Path) -> list[str]: ...

    def exists(self, path: Path) -> bool: ...

    def delete_file(self, path: Path) -> None: ...

    def delete_tree(self, path: Path) -> None: ...

    def open_read(self, path: Path) -> BinaryIO: ...

    def write_atomic(self, path: Path, payload: bytes, *, tmp_path: Path) -> None: ...
