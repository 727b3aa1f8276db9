import json

from meterproxy.proxy.stream import (
    Other,
    StreamDelta,
    StreamStart,
    StreamUsageCollector,
    extract_stream_usage,
    parse_event,
    split_events,
)
from meterproxy.proxy.usage import extract_buffered_usage


def sse(event: str, data: dict | str) -> str:
    payload = data if isinstance(data, str) else json.dumps(data)
    return f"event: {event}\ndata: {payload}\n\n"


MESSAGE_START = sse(
    "message_start",
    {
        "type": "message_start",
        "message": {"id": "msg_1", "model": "claude-opus-4-6", "usage": {"input_tokens": 100, "output_tokens": 1}},
    },
)
MESSAGE_DELTA = sse(
    "message_delta",
    {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 50}},
)
PING = sse("ping", {"type": "ping"})
CONTENT = sse(
    "content_block_delta",
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
)


class TestParseEvent:
    def test_message_start(self):
        event = parse_event(MESSAGE_START.strip())
        assert event == StreamStart(model="claude-opus-4-6", input_tokens=100)

    def test_message_delta(self):
        assert parse_event(MESSAGE_DELTA.strip()) == StreamDelta(output_tokens=50)

    def test_unrelated_events(self):
        assert parse_event(PING.strip()) == Other()
        assert parse_event(CONTENT.strip()) == Other()
        assert parse_event(": keep-alive") == Other()
        assert parse_event("data: {not json") == Other()
        assert parse_event("data: [1, 2]") == Other()

    def test_bad_token_count_is_ignored(self):
        record = 'data: {"type": "message_delta", "usage": {"output_tokens": "many"}}'
        assert parse_event(record) == Other()

    def test_data_without_space(self):
        assert parse_event('data:{"type":"message_delta","usage":{"output_tokens":3}}') == StreamDelta(3)


class TestExtractStreamUsage:
    def test_start_and_delta(self):
        result = extract_stream_usage(MESSAGE_START + PING + CONTENT + MESSAGE_DELTA)
        assert result.model == "claude-opus-4-6"
        assert result.usage.input_tokens == 100
        assert result.usage.output_tokens == 50

    def test_start_only(self):
        result = extract_stream_usage(MESSAGE_START + CONTENT)
        assert result.usage.input_tokens == 100
        assert result.usage.output_tokens == 0

    def test_delta_only(self):
        result = extract_stream_usage(MESSAGE_DELTA)
        assert result.model is None
        assert result.usage.input_tokens == 0
        assert result.usage.output_tokens == 50

    def test_last_delta_wins(self):
        second = sse("message_delta", {"type": "message_delta", "usage": {"output_tokens": 75}})
        result = extract_stream_usage(MESSAGE_START + MESSAGE_DELTA + second)
        assert result.usage.output_tokens == 75

    def test_unparsable_body_has_no_usage(self):
        result = extract_stream_usage("data: {oops\n\ngarbage\n\n")
        assert result.usage is None

    def test_empty_body_has_no_usage(self):
        assert extract_stream_usage("").usage is None

    def test_crlf_separated_events(self):
        body = (MESSAGE_START + MESSAGE_DELTA).replace("\n", "\r\n")
        assert len(split_events(body)) == 2
        result = extract_stream_usage(body)
        assert result.usage.output_tokens == 50


class TestStreamUsageCollector:
    def test_events_split_across_chunks(self):
        raw = (MESSAGE_START + CONTENT + MESSAGE_DELTA).encode()
        collector = StreamUsageCollector()
        for i in range(0, len(raw), 7):
            collector.feed(raw[i : i + 7])

        assert collector.bytes_seen == len(raw)
        result = collector.extract()
        assert result.usage.input_tokens == 100
        assert result.usage.output_tokens == 50

    def test_multibyte_character_split_across_chunks(self):
        text = sse("content_block_delta", '{"type": "content_block_delta", "delta": {"text": "héllo"}}')
        raw = (text + MESSAGE_DELTA).encode()
        split_at = raw.index("é".encode()) + 1
        collector = StreamUsageCollector()
        collector.feed(raw[:split_at])
        collector.feed(raw[split_at:])
        assert "héllo" in collector.text()


class TestExtractBufferedUsage:
    def test_reads_usage_and_model(self):
        body = json.dumps(
            {"model": "claude-sonnet-4-5-20250929", "usage": {"input_tokens": 12, "output_tokens": 34}}
        ).encode()
        result = extract_buffered_usage(body)
        assert result.model == "claude-sonnet-4-5-20250929"
        assert (result.usage.input_tokens, result.usage.output_tokens) == (12, 34)

    def test_error_body_has_no_usage(self):
        body = b'{"type": "error", "error": {"type": "overloaded_error"}}'
        assert extract_buffered_usage(body).usage is None

    def test_non_json_body(self):
        assert extract_buffered_usage(b"<html>bad gateway</html>").usage is None

    def test_request_model_fills_in_missing_model(self):
        body = b'{"usage": {"input_tokens": 5, "output_tokens": 6}}'
        result = extract_buffered_usage(body, "claude-sonnet-4-5-20250929")
        assert result.model == "claude-sonnet-4-5-20250929"
        assert result.usage.output_tokens == 6
