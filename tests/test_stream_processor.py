"""Tests for NDJSON frame decoding and chunk reassembly."""

from __future__ import annotations

import json

import pytest

from ollama_chat.errors import ProtocolError
from ollama_chat.llm.stream import StreamProcessor, decode_frame
from ollama_chat.types import ContentDelta, Done, ServerFailure, TransportFailure


def _delta(text: str) -> bytes:
    frame = {"message": {"role": "assistant", "content": text}, "done": False}
    return (json.dumps(frame, ensure_ascii=False) + "\n").encode()


HELLO = _delta("Hel") + _delta("lo") + b'{"done":true}\n'


def _deltas(events) -> list[str]:
    return [e.text for e in events if isinstance(e, ContentDelta)]


def _feed_all(chunks: list[bytes]) -> list:
    proc = StreamProcessor()
    events = []
    for chunk in chunks:
        events.extend(proc.feed(chunk))
    events.extend(proc.finish())
    return events


# ---------------------------------------------------------------------------
# decode_frame
# ---------------------------------------------------------------------------

class TestDecodeFrame:
    def test_content_delta(self):
        assert decode_frame('{"message":{"content":"hi"},"done":false}') == ContentDelta("hi")

    def test_done_absent_counts_as_not_done(self):
        assert decode_frame('{"message":{"content":"hi"}}') == ContentDelta("hi")

    def test_done(self):
        event = decode_frame('{"done":true,"eval_count":3,"prompt_eval_count":5}')
        assert isinstance(event, Done)
        assert event.usage == {
            "prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8,
        }
        assert event.done_reason == "stop"

    def test_empty_content_is_nothing(self):
        assert decode_frame('{"message":{"role":"assistant","content":""},"done":false}') is None

    def test_error_field(self):
        assert decode_frame('{"error":"model not found"}') == ServerFailure("model not found")

    def test_error_object(self):
        event = decode_frame('{"error":{"message":"boom"}}')
        assert event == ServerFailure("boom")

    def test_malformed_json_raises(self):
        with pytest.raises(ProtocolError) as exc:
            decode_frame('{"message": ')
        assert exc.value.frame == '{"message": '

    def test_non_object_raises(self):
        with pytest.raises(ProtocolError):
            decode_frame("[1, 2, 3]")

    @pytest.mark.parametrize("line", [
        '{"foo":1}',
        '{"message":{"content":5},"done":false}',
        '{"message":"hi","done":false}',
        '{"done":false}',
    ])
    def test_wrong_shape_raises(self, line):
        with pytest.raises(ProtocolError):
            decode_frame(line)


# ---------------------------------------------------------------------------
# StreamProcessor
# ---------------------------------------------------------------------------

class TestSingleChunk:
    def test_whole_response(self):
        events = _feed_all([HELLO])
        assert _deltas(events) == ["Hel", "lo"]
        assert isinstance(events[-1], Done)
        assert len(events) == 3

    def test_done_only(self):
        events = _feed_all([b'{"done":true}\n'])
        assert len(events) == 1
        assert isinstance(events[0], Done)

    def test_crlf_and_blank_lines(self):
        body = b"\r\n" + _delta("a").replace(b"\n", b"\r\n") + b"\n\n" + b'{"done":true}\r\n'
        events = _feed_all([body])
        assert _deltas(events) == ["a"]
        assert isinstance(events[-1], Done)


class TestChunkBoundaries:
    def test_every_two_way_split(self):
        expected = _deltas(_feed_all([HELLO]))
        for i in range(1, len(HELLO)):
            events = _feed_all([HELLO[:i], HELLO[i:]])
            assert _deltas(events) == expected, f"split at {i}"
            assert isinstance(events[-1], Done)

    def test_byte_at_a_time(self):
        events = _feed_all([HELLO[i:i + 1] for i in range(len(HELLO))])
        assert "".join(_deltas(events)) == "Hello"
        assert isinstance(events[-1], Done)

    def test_multibyte_characters_split(self):
        body = _delta("héllo ") + _delta("wörld 🌍") + b'{"done":true}\n'
        for i in range(1, len(body)):
            events = _feed_all([body[:i], body[i:]])
            assert "".join(_deltas(events)) == "héllo wörld 🌍", f"split at {i}"

    def test_partial_line_is_held_back(self):
        proc = StreamProcessor()
        assert proc.feed(b'{"message":{"content":"Hel"},') == []
        assert proc.carry_buffer.startswith('{"message"')
        assert proc.feed(b'"done":false}\n') == [ContentDelta("Hel")]
        assert proc.carry_buffer == ""

    def test_str_chunks_accepted(self):
        proc = StreamProcessor()
        assert proc.feed(HELLO.decode()[:10]) == []
        events = proc.feed(HELLO.decode()[10:])
        assert _deltas(events) == ["Hel", "lo"]


class TestTerminalFrames:
    def test_frames_after_done_ignored(self):
        body = _delta("a") + b'{"done":true}\n' + _delta("late") + b'{"done":true}\n'
        events = _feed_all([body])
        assert _deltas(events) == ["a"]
        assert sum(isinstance(e, Done) for e in events) == 1

    def test_second_chunk_after_done_ignored(self):
        proc = StreamProcessor()
        proc.feed(b'{"done":true}\n')
        assert proc.finished
        assert proc.feed(_delta("late")) == []
        assert proc.finish() == []

    def test_server_error_stops_stream(self):
        body = _delta("par") + b'{"error":"model crashed"}\n' + _delta("tial")
        events = _feed_all([body])
        assert _deltas(events) == ["par"]
        assert events[-1] == ServerFailure("model crashed")


class TestMalformedFrames:
    def test_malformed_frame_skipped(self):
        body = _delta("Hel") + b"not json at all\n" + _delta("lo") + b'{"done":true}\n'
        proc = StreamProcessor()
        events = proc.feed(body) + proc.finish()
        assert _deltas(events) == ["Hel", "lo"]
        assert isinstance(events[-1], Done)
        assert proc.malformed_frames == 1

    def test_wrong_shape_frame_counted(self):
        body = _delta("Hel") + b'{"message":{"content":5}}\n' + _delta("lo") + b'{"done":true}\n'
        proc = StreamProcessor()
        events = proc.feed(body) + proc.finish()
        assert _deltas(events) == ["Hel", "lo"]
        assert isinstance(events[-1], Done)
        assert proc.malformed_frames == 1

    def test_malformed_final_frame_is_failure(self):
        events = _feed_all([_delta("Hel") + b'{"done":tru\n'])
        assert _deltas(events) == ["Hel"]
        assert isinstance(events[-1], TransportFailure)
        assert "malformed" in events[-1].message


class TestEndOfStream:
    def test_unterminated_data_is_one_failure(self):
        events = _feed_all([_delta("Hel") + b'{"message":{"content":"lo"}'])
        failures = [e for e in events if isinstance(e, TransportFailure)]
        assert len(failures) == 1
        assert "incomplete stream" in failures[0].message

    def test_no_terminal_frame_is_failure(self):
        events = _feed_all([_delta("Hel") + _delta("lo")])
        assert _deltas(events) == ["Hel", "lo"]
        assert isinstance(events[-1], TransportFailure)

    def test_empty_stream_is_failure(self):
        events = _feed_all([])
        assert len(events) == 1
        assert isinstance(events[0], TransportFailure)

    def test_finish_is_idempotent(self):
        proc = StreamProcessor()
        assert len(proc.finish()) == 1
        assert proc.finish() == []

    def test_reset(self):
        proc = StreamProcessor()
        proc.feed(b'{"done":true}\n')
        proc.reset()
        assert not proc.finished
        assert proc.feed(_delta("x")) == [ContentDelta("x")]
