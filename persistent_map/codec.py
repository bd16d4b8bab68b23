from __future__ import annotations

import json
from typing import Any, BinaryIO

from pydantic import PydanticUserError, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .errors import DecodeError, EncodeError


class JsonValueCodec:
    """
    JSON codec driven by pydantic.

    Values are checked against the declared value type, dumped in
    ``mode="json"`` and written with sorted keys; reads are validated against
    the same type, so a store declared with a ``BaseModel`` subclass hands back
    model instances.
    """

    def __init__(self, *, indent: int | None = 2, sort_keys: bool = True):
        self._indent = indent
        self._sort_keys = sort_keys
        self._adapters: dict[Any, TypeAdapter[Any]] = {}

    def adapter_for(self, value_type: Any) -> TypeAdapter[Any]:
        try:
            adapter = self._adapters.get(value_type)
        except TypeError:
            # unhashable type descriptor
            return TypeAdapter(value_type)
        if adapter is None:
            adapter = TypeAdapter(value_type)
            self._adapters[value_type] = adapter
        return adapter

    def encode(self, value: Any, destination: BinaryIO, value_type: Any) -> None:
        try:
            adapter = self.adapter_for(value_type)
            doc = adapter.dump_python(adapter.validate_python(value), mode="json")
            text = json.dumps(doc, indent=self._indent, sort_keys=self._sort_keys)
        except PydanticUserError as e:
            raise EncodeError(f"cannot describe {value_type!r}: {e}") from e
        except ValidationError as e:
            raise EncodeError(f"{type(value).__name__} value does not match {value_type!r}: {e}") from e
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise EncodeError(f"cannot encode {type(value).__name__}: {e}") from e
        destination.write(text.encode("utf-8"))
        destination.write(b"\n")

    def decode(self, source: BinaryIO, value_type: Any) -> Any:
        raw = source.read()
        try:
            doc = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"stored entry is not valid JSON: {e}") from e
        try:
            return self.adapter_for(value_type).validate_python(doc)
        except PydanticUserError as e:
            raise DecodeError(f"cannot describe {value_type!r}: {e}") from e
        except ValidationError as e:
            raise DecodeError(f"stored entry does not match {value_type!r}: {e}") from e
