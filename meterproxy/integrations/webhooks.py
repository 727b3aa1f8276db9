"""Outbound webhook sinks: ops alerts, pause events and daily reports."""

import httpx

from meterproxy.errors import EnforcementSideEffectError
from meterproxy.observability.logger import get_logger

log = get_logger("integrations.webhooks")


class WebhookSink:
    """POSTs a JSON payload to a fixed URL with a bounded timeout."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def post(self, payload: dict) -> int:
        """Deliver ``payload``. Raises EnforcementSideEffectError on any failure."""
        if not self.url:
            raise EnforcementSideEffectError("Webhook URL not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise EnforcementSideEffectError(f"Webhook timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPError as e:
            raise EnforcementSideEffectError(f"Webhook request failed: {e}") from e

        if resp.status_code >= 400:
            raise EnforcementSideEffectError(f"Webhook returned {resp.status_code}: {resp.text[:200]}")
        return resp.status_code


class AlertNotifier:
    """Fire-and-forget text alerts to the ops channel (Discord-style ``content`` payload)."""

    def __init__(self, sink: WebhookSink):
        self.sink = sink

    async def send(self, message: str) -> bool:
        if not self.sink.configured:
            log.warning("alert_skipped", reason="ALERT_WEBHOOK_URL not set", message=message)
            return False
        try:
            await self.sink.post({"content": message})
        except EnforcementSideEffectError as e:
            log.error("alert_failed", error=str(e))
            return False
        log.info("alert_sent", message=message)
        return True
