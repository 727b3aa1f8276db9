"""
Usage extraction from server-sent event streams.

Relayed chunks are copied into a collector as they pass through; nothing
here sits on the relay path. Once the stream ends the collected text is split
into events and folded into a single usage figure.
"""

import json
from dataclasses import dataclass

from meterproxy.proxy.usage import StreamUsage, TokenUsage


@dataclass(frozen=True)
class StreamStart:
    """``message_start``: model name and the prompt token count."""

    model: str | None
    input_tokens: int | None


@dataclass(frozen=True)
class StreamDelta:
    """``message_delta`` carrying a (possibly cumulative) output token count."""

    output_tokens: int


@dataclass(frozen=True)
class Other:
    """Any event without billing-relevant fields."""


StreamEvent = StreamStart | StreamDelta | Other


class StreamUsageCollector:
    """Accumulates raw stream bytes for parsing once the relay is over."""

    def __init__(self):
        self._chunks: list[bytes] = []
        self.bytes_seen = 0

    def feed(self, chunk: bytes):
        self._chunks.append(chunk)
        self.bytes_seen += len(chunk)

    def text(self) -> str:
        # Decoded once at the end so multi-byte characters split across chunks survive
        return b"".join(self._chunks).decode("utf-8", errors="replace")

    def extract(self) -> StreamUsage:
        return extract_stream_usage(self.text())


def split_events(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [block for block in normalized.split("\n\n") if block.strip()]


def event_data(record: str) -> str | None:
    """Join the ``data:`` lines of one event, or None if it has none."""
    lines = []
    for line in record.split("\n"):
        if line.startswith("data:"):
            value = line[5:]
            lines.append(value[1:] if value.startswith(" ") else value)
    if not lines:
        return None
    return "\n".join(lines)


def parse_event(record: str) -> StreamEvent:
    data = event_data(record)
    if data is None:
        return Other()
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        # Keep-alives and partial trailing records
        return Other()
    if not isinstance(payload, dict):
        return Other()

    try:
        return _classify(payload)
    except (TypeError, ValueError):
        return Other()


def _classify(payload: dict) -> StreamEvent:
    event_type = payload.get("type")
    if event_type == "message_start" and isinstance(payload.get("message"), dict):
        message = payload["message"]
        usage = message.get("usage")
        input_tokens = None
        if isinstance(usage, dict):
            input_tokens = int(usage.get("input_tokens") or 0)
        return StreamStart(model=message.get("model"), input_tokens=input_tokens)

    if event_type == "message_delta" and isinstance(payload.get("usage"), dict):
        return StreamDelta(output_tokens=int(payload["usage"].get("output_tokens") or 0))

    return Other()


def extract_stream_usage(text: str) -> StreamUsage:
    model = None
    input_tokens = None
    output_tokens = None

    for record in split_events(text):
        event = parse_event(record)
        if isinstance(event, StreamStart):
            model = event.model or model
            if event.input_tokens is not None:
                input_tokens = event.input_tokens
        elif isinstance(event, StreamDelta):
            output_tokens = event.output_tokens
        elif isinstance(event, Other):
            continue
        else:
            raise TypeError(f"Unhandled stream event: {event!r}")

    if input_tokens is None and output_tokens is None:
        return StreamUsage(model=model, usage=None)
    return StreamUsage(
        model=model,
        usage=TokenUsage(input_tokens=input_tokens or 0, output_tokens=output_tokens or 0),
    )
