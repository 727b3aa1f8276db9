import json

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from meterproxy.budget.state import BudgetStateStore
from meterproxy.core.tasks import DetachedTasks
from meterproxy.errors import ClientRequestError, UpstreamError
from meterproxy.observability.logger import get_logger
from meterproxy.proxy.accounting import Accountant
from meterproxy.proxy.stream import StreamUsageCollector
from meterproxy.proxy.upstream import (
    METERED_PATH,
    build_passthrough_headers,
    build_upstream_headers,
    maybe_downgrade_model,
    relay_headers,
)

log = get_logger("proxy")

PAUSED_BODY = {"error": "Service paused due to budget limit exceeded"}


class MeteringProxy:
    """Relays requests to the upstream API and meters the metered endpoint.

    The response path only ever depends on the budget gate and the upstream
    call. Accounting is handed to detached tasks once the body has been
    relayed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        state_store: BudgetStateStore,
        accountant: Accountant,
        tasks: DetachedTasks,
        downgrade_model: str,
    ):
        self.client = client
        self.api_key = api_key
        self.state_store = state_store
        self.accountant = accountant
        self.tasks = tasks
        self.downgrade_model = downgrade_model

    async def handle_messages(self, request: Request) -> Response:
        state = await self.state_store.get_state()
        if state.is_paused:
            log.warning("request_rejected_paused", billing_cycle=state.billing_cycle)
            return JSONResponse(PAUSED_BODY, status_code=503)

        body = self._parse_body(await request.body())
        body = maybe_downgrade_model(body, state.downgraded, self.downgrade_model)
        request_model = body["model"]
        is_streaming = body.get("stream") is True

        upstream_request = self.client.build_request(
            "POST",
            METERED_PATH,
            headers=build_upstream_headers(request.headers, self.api_key),
            content=json.dumps(body).encode("utf-8"),
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            log.error("upstream_request_failed", error=str(e), model=request_model)
            raise UpstreamError("Failed to reach upstream API", detail=str(e)) from e

        if is_streaming:
            headers = relay_headers(upstream)
            headers.setdefault("content-type", "text/event-stream")
            headers["cache-control"] = "no-cache"
            return StreamingResponse(
                self._relay_stream(upstream, request_model),
                status_code=upstream.status_code,
                headers=headers,
            )

        try:
            content = await upstream.aread()
        except httpx.HTTPError as e:
            log.error("upstream_read_failed", error=str(e), model=request_model)
            raise UpstreamError("Failed to read upstream response", detail=str(e)) from e
        finally:
            await upstream.aclose()

        self.tasks.spawn(self.accountant.account_buffered(content, request_model), name="account_buffered")
        return Response(content=content, status_code=upstream.status_code, headers=relay_headers(upstream))

    async def _relay_stream(self, upstream: httpx.Response, request_model: str):
        collector = StreamUsageCollector()
        try:
            async for chunk in upstream.aiter_bytes():
                collector.feed(chunk)
                yield chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            log.error("stream_error", error=str(e), bytes_seen=collector.bytes_seen)
        finally:
            # Also reached when the caller disconnects. The generator is being
            # cancelled then, so nothing here may await.
            self.tasks.spawn(self.accountant.account_stream(collector, request_model), name="account_stream")
            self.tasks.spawn(upstream.aclose(), name="upstream_close")

    async def passthrough(self, request: Request, path: str) -> Response:
        url = f"/v1/{path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"

        content = None
        if request.method not in ("GET", "HEAD"):
            content = await request.body() or None

        try:
            upstream = await self.client.request(
                request.method,
                url,
                headers=build_passthrough_headers(request.headers, self.api_key),
                content=content,
            )
        except httpx.HTTPError as e:
            log.error("passthrough_failed", path=url, error=str(e))
            raise UpstreamError("Failed to reach upstream API", detail=str(e)) from e

        return Response(content=upstream.content, status_code=upstream.status_code, headers=relay_headers(upstream))

    @staticmethod
    def _parse_body(raw: bytes) -> dict:
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ClientRequestError("Invalid JSON body") from e
        if not isinstance(body, dict):
            raise ClientRequestError("Request body must be a JSON object")
        if not isinstance(body.get("model"), str) or not body["model"]:
            raise ClientRequestError("Request body must include a 'model' string")
        return body
