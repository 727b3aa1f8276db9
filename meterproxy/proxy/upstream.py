from collections.abc import Mapping

import httpx

from meterproxy.billing.cost import is_premium_model
from meterproxy.observability.logger import get_logger

log = get_logger("proxy.upstream")

METERED_PATH = "/v1/messages"

# Caller headers forwarded on the metered endpoint
FORWARDED_HEADERS = ("content-type", "anthropic-version", "anthropic-beta", "accept")

# Never forwarded on passthrough: hop-by-hop, recomputed, or caller credentials
DROPPED_REQUEST_HEADERS = {
    "host",
    "content-length",
    "connection",
    "keep-alive",
    "transfer-encoding",
    "te",
    "upgrade",
    "proxy-authorization",
    "proxy-connection",
    "accept-encoding",
    "x-api-key",
    "authorization",
}

# Stripped from upstream responses; httpx already decoded the body
DROPPED_RESPONSE_HEADERS = {
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "date",
    "server",
}


def build_upstream_headers(incoming: Mapping[str, str], api_key: str) -> dict[str, str]:
    headers = {}
    for key in FORWARDED_HEADERS:
        value = incoming.get(key)
        if value:
            headers[key] = value
    headers["x-api-key"] = api_key
    return headers


def build_passthrough_headers(incoming: Mapping[str, str], api_key: str) -> dict[str, str]:
    headers = {k: v for k, v in incoming.items() if k.lower() not in DROPPED_REQUEST_HEADERS}
    headers["x-api-key"] = api_key
    return headers


def relay_headers(upstream: httpx.Response) -> dict[str, str]:
    return {k: v for k, v in upstream.headers.items() if k.lower() not in DROPPED_RESPONSE_HEADERS}


def maybe_downgrade_model(body: dict, downgraded: bool, target_model: str) -> dict:
    if not downgraded:
        return body
    model = body.get("model") or ""
    if is_premium_model(model):
        log.info("model_downgraded", requested=model, substituted=target_model)
        return {**body, "model": target_model}
    return body


def create_upstream_client(
    base_url: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    # Generation can run for minutes, so only the connect phase is bounded
    timeout = httpx.Timeout(None, connect=10.0)
    return httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
