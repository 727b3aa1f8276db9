import asyncio
import json

from meterproxy.billing.cycle import BillingCalendar
from meterproxy.errors import EnforcementSideEffectError
from meterproxy.integrations.webhooks import WebhookSink
from meterproxy.observability.logger import get_logger
from meterproxy.usage.store import UsageStore

log = get_logger("reporter")


class DailyReporter:
    """Pushes the previous day's usage to the report sink.

    Runs once at startup and then every ``interval_seconds``. A failed run is
    logged and not resent.
    """

    def __init__(
        self,
        store: UsageStore,
        sink: WebhookSink,
        calendar: BillingCalendar,
        tenant_id: str,
        interval_seconds: int = 24 * 60 * 60,
    ):
        self.store = store
        self.sink = sink
        self.calendar = calendar
        self.tenant_id = tenant_id
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    async def build_report(self, day: str | None = None) -> dict:
        report_date = day or self.calendar.yesterday()
        rows = await self.store.daily_summary(report_date)
        totals = await self.store.daily_total(report_date)

        models = {row["model"]: {"cost": row["cost"], "requests": row["requests"]} for row in rows}
        return {
            "tenant": self.tenant_id,
            "date": report_date,
            "spend": totals["spend"],
            "requests": totals["requests"],
            "models": models,
        }

    async def send_daily_report(self, day: str | None = None) -> dict:
        payload = await self.build_report(day)

        if not self.sink.configured:
            log.warning("report_sink_missing", reason="REPORT_WEBHOOK_URL not set")
            log.info("daily_report", payload=json.dumps(payload))
            return payload

        try:
            await self.sink.post(payload)
        except EnforcementSideEffectError as e:
            log.error("report_send_failed", date=payload["date"], error=str(e))
        else:
            log.info("report_sent", date=payload["date"], spend=round(payload["spend"], 4))
        return payload

    def start(self):
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="daily_reporter")
        log.info("reporter_started", interval_seconds=self.interval_seconds)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        while True:
            try:
                await self.send_daily_report()
            except Exception as e:
                log.error("scheduled_report_error", error=str(e))
            await asyncio.sleep(self.interval_seconds)
