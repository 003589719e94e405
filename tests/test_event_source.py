import gzip
import io
import json

import pytest

from rulebench.core.raw_event import RawEvent
from rulebench.modules import event_source
from rulebench.modules.event_source import EventSource


# 1. SETUP
@pytest.fixture
def records():
    return [{"EventID": i, "Hostname": f"HOST{i}", "nested": {"value": i}} for i in range(5)]


# 2. NDJSON
def test_ndjson_decoding(records):
    data = "\n".join(json.dumps(r) for r in records) + "\n"
    events = list(EventSource.from_bytes(data.encode()))

    assert [e.index for e in events] == [0, 1, 2, 3, 4]
    assert events[3].get("Hostname") == "HOST3"
    assert events[3].get("nested.value") == 3


def test_ndjson_skips_blank_lines_and_flags_bad_lines():
    data = b'{"a": 1}\n\n   \nnot json\n[1, 2]\n{"a": 2}'
    events = list(EventSource.from_bytes(data))

    assert len(events) == 4
    assert events[0].decode_error is None
    assert "invalid JSON" in events[1].decode_error
    assert "expected a JSON object" in events[2].decode_error
    assert events[3].get("a") == 2


# 3. JSON ARRAY
def test_json_array_decoding(records):
    events = list(EventSource.from_bytes(json.dumps(records, indent=2)))
    assert len(events) == 5
    assert all(e.decode_error is None for e in events)
    assert events[4].get("EventID") == 4


def test_empty_array_and_empty_input():
    assert list(EventSource.from_bytes(b"[]")) == []
    assert list(EventSource.from_bytes(b"  \n ")) == []


def test_truncated_array_ends_with_one_malformed_record():
    events = list(EventSource.from_bytes(b'[{"a": 1}, {"a": 2}, {"a": '))
    assert len(events) == 3
    assert events[2].decode_error is not None


def test_small_chunks_do_not_change_results(monkeypatch, records):
    """Chunk boundaries inside objects and numbers must not alter decoding."""
    as_array = json.dumps(records).encode()
    as_lines = "\n".join(json.dumps(r) for r in records).encode()
    expected = [dict(r) for r in records]

    monkeypatch.setattr(event_source, "CHUNK_SIZE", 3)
    assert [dict(e.data) for e in EventSource.from_bytes(as_array)] == expected
    assert [dict(e.data) for e in EventSource.from_bytes(as_lines)] == expected


# 4. SOURCES
def test_from_path_plain_and_gzip(tmp_path, records):
    payload = "\n".join(json.dumps(r) for r in records).encode()
    plain = tmp_path / "events.jsonl"
    plain.write_bytes(payload)
    packed = tmp_path / "events.jsonl.gz"
    with gzip.open(packed, "wb") as f:
        f.write(payload)

    with EventSource.from_path(str(plain)) as source:
        assert len(list(source)) == 5
    with EventSource.from_path(str(packed)) as source:
        assert len(list(source)) == 5


def test_text_stream_and_bom():
    source = EventSource(io.StringIO('\ufeff{"a": 1}\n'))
    events = list(source)
    assert events[0].get("a") == 1


def test_pull_interface_is_lazy(records):
    source = EventSource.from_bytes("\n".join(json.dumps(r) for r in records))

    first = source.next_record()
    assert isinstance(first, RawEvent)
    assert source.records_read == 1

    rest = []
    while (record := source.next_record()) is not None:
        rest.append(record)
    assert len(rest) == 4
    assert source.next_record() is None


def test_invalid_utf8_is_flagged_not_replaced():
    bad = b'{"Image": "C:\\\\Temp\\\\\xff\xfeevil.exe"}'
    good = b'{"Image": "C:\\\\Windows\\\\caf\xc3\xa9.exe"}'

    lines = list(EventSource.from_bytes(good + b"\n" + bad + b"\n" + good))
    array = list(EventSource.from_bytes(b"[" + good + b"," + bad + b"," + good + b"]"))

    for events in (lines, array):
        assert [e.decode_error is None for e in events] == [True, False, True]
        assert "invalid UTF-8" in events[1].decode_error
        assert events[0].get("Image") == "C:\\Windows\\café.exe"
        assert events[2].index == 2
