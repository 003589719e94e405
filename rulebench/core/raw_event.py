"""
RawEvent - Loosely-structured collector record.

Wraps one decoded JSON object behind a read-only mapping and exposes strict
accessors. A value of the wrong type raises MalformedRecord instead of being
coerced; the only parsing performed is integer text, because Windows
Security logs report process ids as hexadecimal strings.
"""
import re
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from rulebench.core.exceptions import MalformedRecord

_MISSING = object()
_DECIMAL_RE = re.compile(r"^[+-]?\d+$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")


class RawEvent:
    """Immutable view over one raw telemetry record."""

    __slots__ = ("_data", "index", "decode_error")

    def __init__(self, data: Optional[Mapping[str, Any]] = None, index: int = 0,
                 decode_error: Optional[str] = None) -> None:
        object.__setattr__(self, "_data", MappingProxyType(dict(data or {})))
        object.__setattr__(self, "index", index)
        object.__setattr__(self, "decode_error", decode_error)

    def __setattr__(self, name, value):
        raise AttributeError("RawEvent is immutable")

    @classmethod
    def undecodable(cls, index: int, reason: str) -> "RawEvent":
        """Placeholder for input that never became a JSON object."""
        return cls(None, index=index, decode_error=reason)

    @property
    def data(self) -> Mapping[str, Any]:
        return self._data

    def __repr__(self) -> str:
        if self.decode_error:
            return f"RawEvent(#{self.index}, decode_error={self.decode_error!r})"
        return f"RawEvent(#{self.index}, keys={sorted(self._data)[:6]})"

    def __eq__(self, other):
        if not isinstance(other, RawEvent):
            return NotImplemented
        return (self.index, self.decode_error, dict(self._data)) == \
               (other.index, other.decode_error, dict(other._data))

    def __hash__(self):
        return hash((self.index, self.decode_error))

    # --- Resolution ---

    def _resolve(self, path: str) -> Any:
        # Flat key first (exports often keep dotted names), then nested walk
        if path in self._data:
            return self._data[path]
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get(self, path: str, default: Any = None) -> Any:
        value = self._resolve(path)
        if value is _MISSING or value is None:
            return default
        return value

    def has(self, path: str) -> bool:
        return self.get(path) is not None

    def first_present(self, paths: Tuple[str, ...]) -> Tuple[Optional[str], Any]:
        """Return (path, value) for the first candidate path holding a non-null value."""
        for path in paths:
            value = self.get(path)
            if value is not None:
                return path, value
        return None, None

    # --- Strict accessors ---

    def get_str(self, paths: Tuple[str, ...], required: bool = True, default: str = "") -> str:
        path, value = self.first_present(paths)
        if path is None:
            if required:
                raise MalformedRecord(f"missing required field {paths[0]}",
                                      record_index=self.index, field=paths[0])
            return default
        if not isinstance(value, str):
            raise MalformedRecord(
                f"field {path} should be a string, got {type(value).__name__}",
                record_index=self.index, field=path)
        return value

    def get_int(self, paths: Tuple[str, ...], required: bool = True,
                default: Optional[int] = None) -> Optional[int]:
        path, value = self.first_present(paths)
        if path is None:
            if required:
                raise MalformedRecord(f"missing required field {paths[0]}",
                                      record_index=self.index, field=paths[0])
            return default
        return parse_int(value, field=path, record_index=self.index)


def parse_int(value: Any, field: str = "value", record_index: Optional[int] = None) -> int:
    """Strict integer parsing: JSON ints, decimal text, or 0x-prefixed hex text."""
    if isinstance(value, bool):
        raise MalformedRecord(f"field {field} should be an integer, got bool",
                              record_index=record_index, field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if _DECIMAL_RE.match(text):
            return int(text, 10)
        if _HEX_RE.match(text):
            return int(text, 16)
        raise MalformedRecord(f"field {field} is not an integer: {value!r}",
                              record_index=record_index, field=field)
    raise MalformedRecord(f"field {field} should be an integer, got {type(value).__name__}",
                          record_index=record_index, field=field)
