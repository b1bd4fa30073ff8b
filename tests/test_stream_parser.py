"""
Tests for incremental parsing of streamed move suggestions.
"""
import json
import os

import pytest

from vibes_organizer.errors import IdenticalEndpointsError, OperationParseError, StreamReadError
from vibes_organizer.stream_parser import StreamingOperationParser, parse_operation_line

BASE = os.path.abspath("/base")


def sse(content: str) -> bytes:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def test_identical_endpoints_are_dropped():
    """Two lines in, one operation out: the no-op move is silently skipped."""
    delivered = []
    parser = StreamingOperationParser(BASE, on_operation=delivered.append)

    operations = parser.parse([
        sse('{"from":"a.txt","to":"b/a.txt"}\n{"from":"c.txt","to":"c.txt"}\n'),
        b"data: [DONE]\n\n",
    ])

    assert len(operations) == 1
    assert delivered == operations
    assert operations[0].from_path == os.path.join(BASE, "a.txt")
    assert operations[0].to_path == os.path.join(BASE, "b", "a.txt")


def test_lines_split_across_events_and_chunks():
    """Fragment boundaries inside JSON and inside SSE envelopes do not matter."""
    stream = (
        sse('{"from": "x.txt", ') + sse('"to": "docs/x.txt"}\n{"fr') + sse('om": "y.txt", "to": "docs/y.txt"}\n')
    )
    chunks = [stream[i:i + 7] for i in range(0, len(stream), 7)]

    operations = StreamingOperationParser(BASE).parse(chunks)

    assert [os.path.basename(op.from_path) for op in operations] == ["x.txt", "y.txt"]


def test_multibyte_character_split_between_chunks():
    """UTF-8 sequences cut in half by the transport decode correctly."""
    stream = sse('{"from": "café.txt", "to": "menus/café.txt"}\n')
    cut = stream.index("é".encode("utf-8")) + 1

    operations = StreamingOperationParser(BASE).parse([stream[:cut], stream[cut:]])

    assert operations[0].from_path == os.path.join(BASE, "café.txt")


def test_malformed_lines_are_skipped():
    """One bad line never aborts the stream."""
    operations = StreamingOperationParser(BASE).parse([
        sse('Here are the moves:\n{"from": "a.txt"}\n[1, 2]\n{"from": "b.txt", "to": "c/b.txt"}\n'),
        b": keep-alive comment\n\n",
        b"data: {not json}\n\n",
        sse('{"from": "d.txt", "to": "e/d.txt"}\n'),
    ])

    assert [os.path.basename(op.from_path) for op in operations] == ["b.txt", "d.txt"]


def test_code_fences_and_trailing_commas():
    """Markdown artifacts around the JSON lines are stripped."""
    operations = StreamingOperationParser(BASE).parse([
        sse('```json\n{"from": "a.txt", "to": "t/a.txt"},\n```\n'),
    ])

    assert len(operations) == 1


def test_done_marker_stops_reading():
    """Anything after the end marker is ignored."""
    operations = StreamingOperationParser(BASE).parse([
        sse('{"from": "a.txt", "to": "t/a.txt"}\n'),
        b"data: [DONE]\n\n",
        sse('{"from": "b.txt", "to": "t/b.txt"}\n'),
    ])

    assert len(operations) == 1


def test_unterminated_final_line_is_parsed():
    """The last object needs no trailing newline, and neither does the last SSE line."""
    payload = json.dumps({"choices": [{"delta": {"content": '{"from": "a.txt", "to": "t/a.txt"}'}}]})

    operations = StreamingOperationParser(BASE).parse([f"data: {payload}".encode("utf-8")])

    assert len(operations) == 1


def test_operations_are_yielded_before_stream_ends():
    """Each operation is available as soon as its line completes."""
    pulled = []

    def chunks():
        for i in range(3):
            pulled.append(i)
            yield sse(f'{{"from": "f{i}.txt", "to": "t/f{i}.txt"}}\n')

    iterator = StreamingOperationParser(BASE).iter_operations(chunks())
    first = next(iterator)

    assert os.path.basename(first.from_path) == "f0.txt"
    assert pulled == [0]
    assert len(list(iterator)) == 2


def test_broken_stream_keeps_delivered_operations():
    """A read error surfaces with everything parsed so far, pending line included."""
    delivered = []

    def chunks():
        yield sse('{"from": "a.txt", "to": "t/a.txt"}\n{"from": "b.txt", "to": "t/b.txt"}')
        raise ConnectionError("connection reset")

    parser = StreamingOperationParser(BASE, on_operation=delivered.append)
    with pytest.raises(StreamReadError) as excinfo:
        parser.parse(chunks())

    assert len(excinfo.value.operations) == 2
    assert len(delivered) == 2
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_feed_text_directly():
    """Plain model text can be fed without the transport envelope."""
    parser = StreamingOperationParser(BASE)

    assert parser.feed_text('{"from": "a.txt", ') == []
    assert len(parser.feed_text('"to": "b/a.txt"}\n{"from"')) == 1
    assert parser.finish() == []


def test_parse_operation_line_normalizes_paths():
    """Relative segments are resolved against the base directory."""
    operation = parse_operation_line('{"from": "./in/../a.txt", "to": "out/./a.txt"}', BASE)

    assert operation.from_path == os.path.join(BASE, "a.txt")
    assert operation.to_path == os.path.join(BASE, "out", "a.txt")

    with pytest.raises(IdenticalEndpointsError):
        parse_operation_line('{"from": "a.txt", "to": "x/../a.txt"}', BASE)
    with pytest.raises(OperationParseError):
        parse_operation_line('{"from": "a.txt", "to": 3}', BASE)


def test_absolute_model_paths_stay_under_base():
    """Absolute paths in model output are anchored at the base directory."""
    operation = parse_operation_line('{"from": "/etc/hosts", "to": "hosts"}', BASE)

    assert operation.from_path == os.path.join(BASE, "etc", "hosts")
    assert operation.to_path == os.path.join(BASE, "hosts")

    anchored = parse_operation_line('{"from": "a.txt", "to": "//docs/a.txt"}', BASE)
    assert anchored.to_path == os.path.join(BASE, "docs", "a.txt")
