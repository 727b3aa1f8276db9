import json

from pydantic import BaseModel


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class StreamUsage(BaseModel):
    """Usage observed on one response. ``usage`` is None when nothing billable was seen."""

    model: str | None = None
    usage: TokenUsage | None = None


def extract_buffered_usage(body: bytes | str, request_model: str | None = None) -> StreamUsage:
    """Read ``usage`` and ``model`` from a buffered JSON response body.

    The response usually echoes the model; ``request_model`` fills in when it does not.
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return StreamUsage()
    if not isinstance(data, dict) or not isinstance(data.get("usage"), dict):
        return StreamUsage()

    usage = data["usage"]
    try:
        tokens = TokenUsage(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )
    except (TypeError, ValueError):
        return StreamUsage()
    return StreamUsage(model=data.get("model") or request_model, usage=tokens)
