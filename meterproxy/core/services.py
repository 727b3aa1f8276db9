from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from meterproxy.billing.cycle import BillingCalendar
from meterproxy.budget.enforcer import Enforcer
from meterproxy.budget.state import BudgetStateStore
from meterproxy.config import Settings
from meterproxy.core.tasks import DetachedTasks
from meterproxy.database import create_engine_and_sessions, init_db
from meterproxy.integrations.lifecycle import ComputeLifecycle
from meterproxy.integrations.webhooks import AlertNotifier, WebhookSink
from meterproxy.observability.logger import get_logger
from meterproxy.proxy.accounting import Accountant
from meterproxy.proxy.handler import MeteringProxy
from meterproxy.proxy.upstream import create_upstream_client
from meterproxy.reporter import DailyReporter
from meterproxy.usage.store import UsageStore

log = get_logger("services")

DRAIN_TIMEOUT_SECONDS = 10.0


@dataclass
class Services:
    """Every long-lived component, wired once from a Settings instance."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    calendar: BillingCalendar
    store: UsageStore
    state_store: BudgetStateStore
    enforcer: Enforcer
    tasks: DetachedTasks
    upstream_client: httpx.AsyncClient
    proxy: MeteringProxy
    reporter: DailyReporter

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        upstream_transport: httpx.AsyncBaseTransport | None = None,
        sink_transport: httpx.AsyncBaseTransport | None = None,
        lifecycle: ComputeLifecycle | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "Services":
        engine, session_factory = create_engine_and_sessions(settings.resolved_database_url)
        calendar = BillingCalendar(settings.billing_cycle_start, clock=clock)
        store = UsageStore(session_factory)
        state_store = BudgetStateStore(session_factory, calendar)

        alert_sink = WebhookSink(settings.alert_webhook_url, settings.notify_timeout_seconds, sink_transport)
        report_sink = WebhookSink(settings.report_webhook_url, settings.notify_timeout_seconds, sink_transport)
        enforcer = Enforcer(
            state_store=state_store,
            notifier=AlertNotifier(alert_sink),
            event_sink=report_sink,
            lifecycle=lifecycle
            or ComputeLifecycle(settings.manage_script, settings.tenant_id, settings.stop_timeout_seconds),
            budget_limit=settings.budget_limit,
            tenant_id=settings.tenant_id,
        )

        tasks = DetachedTasks()
        upstream_client = create_upstream_client(settings.upstream_base_url, transport=upstream_transport)
        proxy = MeteringProxy(
            client=upstream_client,
            api_key=settings.anthropic_api_key,
            state_store=state_store,
            accountant=Accountant(store, enforcer, calendar),
            tasks=tasks,
            downgrade_model=settings.downgrade_model,
        )
        reporter = DailyReporter(
            store, report_sink, calendar, settings.tenant_id, interval_seconds=settings.report_interval_seconds
        )

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            calendar=calendar,
            store=store,
            state_store=state_store,
            enforcer=enforcer,
            tasks=tasks,
            upstream_client=upstream_client,
            proxy=proxy,
            reporter=reporter,
        )

    async def startup(self):
        await init_db(self.engine)
        log.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))
        await self.state_store.get_state()

    async def shutdown(self):
        await self.reporter.stop()
        await self.tasks.drain(timeout=DRAIN_TIMEOUT_SECONDS)
        await self.upstream_client.aclose()
        await self.engine.dispose()
