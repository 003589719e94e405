"""
Raw Event Source - Lazy dataset decoding.

Turns an already-acquired dataset (file path, bytes or file handle) into a
stream of RawEvent values. Newline-delimited JSON and JSON arrays are both
decoded incrementally, so a large replay file is never materialized in
memory. Input that cannot be decoded becomes a RawEvent carrying
`decode_error`; the Schema Bridge reports it as malformed downstream.
"""
import gzip
import io
import json
from typing import IO, Iterator, Optional, Union

from rulebench.core.raw_event import RawEvent

CHUNK_SIZE = 64 * 1024


def _has_invalid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return True
    return False


class EventSource:
    """
    Pull-based reader over one dataset.

    Iterate it directly, or call next_record() until it returns None.
    A source can be consumed once.
    """

    def __init__(self, stream: IO, name: str = "<stream>", close_stream: bool = False) -> None:
        if isinstance(stream, io.TextIOBase):
            self._text = stream
        else:
            # Invalid bytes survive as lone surrogates and are flagged per record
            self._text = io.TextIOWrapper(stream, encoding="utf-8", errors="surrogateescape")
        self.name = name
        self._close_stream = close_stream
        self._iterator: Optional[Iterator[RawEvent]] = None
        self._pending = ""
        self.records_read = 0

    # --- Constructors ---

    @classmethod
    def from_path(cls, path: str) -> "EventSource":
        if str(path).endswith(".gz"):
            handle = gzip.open(path, "rb")
        else:
            handle = open(path, "rb")
        return cls(handle, name=str(path), close_stream=True)

    @classmethod
    def from_bytes(cls, data: Union[bytes, str], name: str = "<bytes>") -> "EventSource":
        if isinstance(data, str):
            return cls(io.StringIO(data), name=name)
        return cls(io.BytesIO(data), name=name)

    # --- Pull interface ---

    def __iter__(self) -> Iterator[RawEvent]:
        if self._iterator is None:
            self._iterator = self._generate()
        return self._iterator

    def next_record(self) -> Optional[RawEvent]:
        """Next RawEvent, or None once the dataset is exhausted."""
        return next(iter(self), None)

    def close(self) -> None:
        if self._close_stream:
            self._text.close()

    def __enter__(self) -> "EventSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- Decoding ---

    def _generate(self) -> Iterator[RawEvent]:
        try:
            first = self._peek_first_char()
            if first == "[":
                records = self._iter_array()
            else:
                records = self._iter_lines()
            for record in records:
                self.records_read += 1
                yield record
        finally:
            self.close()

    def _peek_first_char(self) -> str:
        # Skips leading whitespace and a UTF-8 BOM; keeps the rest buffered
        self._pending = ""
        while True:
            chunk = self._text.read(CHUNK_SIZE)
            if not chunk:
                return ""
            stripped = chunk.lstrip().lstrip("\ufeff").lstrip()
            if stripped:
                self._pending = stripped
                return stripped[0]

    def _iter_lines(self) -> Iterator[RawEvent]:
        index = 0
        buffer = self._pending
        while True:
            newline = buffer.find("\n")
            if newline == -1:
                chunk = self._text.read(CHUNK_SIZE)
                if chunk:
                    buffer += chunk
                    continue
                line, buffer = buffer, ""
            else:
                line, buffer = buffer[:newline], buffer[newline + 1:]
            line = line.strip()
            if line:
                yield self._decode_line(line, index)
                index += 1
            if not buffer and newline == -1:
                return

    @staticmethod
    def _decode_line(line: str, index: int) -> RawEvent:
        if _has_invalid_utf8(line):
            return RawEvent.undecodable(index, "invalid UTF-8 in record")
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            return RawEvent.undecodable(index, f"invalid JSON: {e.msg}")
        if not isinstance(obj, dict):
            return RawEvent.undecodable(index, f"expected a JSON object, got {type(obj).__name__}")
        return RawEvent(obj, index=index)

    def _iter_array(self) -> Iterator[RawEvent]:
        decoder = json.JSONDecoder()
        buffer = self._pending[1:]  # drop '['
        eof = False
        index = 0
        while True:
            buffer = buffer.lstrip().lstrip(",").lstrip()
            if not buffer:
                if eof:
                    yield RawEvent.undecodable(index, "truncated JSON array")
                    return
                chunk = self._text.read(CHUNK_SIZE)
                eof = not chunk
                buffer += chunk
                continue
            if buffer[0] == "]":
                return
            try:
                obj, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError as e:
                if not eof:
                    chunk = self._text.read(CHUNK_SIZE)
                    eof = not chunk
                    buffer += chunk
                    continue
                # No way to resynchronise inside a broken array
                yield RawEvent.undecodable(index, f"invalid JSON array element: {e.msg}")
                return
            if end == len(buffer) and not eof:
                # A number or literal may continue in the next chunk
                chunk = self._text.read(CHUNK_SIZE)
                if chunk:
                    buffer += chunk
                    continue
                eof = True
            element, buffer = buffer[:end], buffer[end:]
            if _has_invalid_utf8(element):
                yield RawEvent.undecodable(index, "invalid UTF-8 in record")
            elif isinstance(obj, dict):
                yield RawEvent(obj, index=index)
            else:
                yield RawEvent.undecodable(index, f"expected a JSON object, got {type(obj).__name__}")
            index += 1
