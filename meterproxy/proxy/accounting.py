from sqlalchemy.exc import SQLAlchemyError

from meterproxy.billing.cost import compute_cost
from meterproxy.billing.cycle import BillingCalendar
from meterproxy.budget.enforcer import Enforcer
from meterproxy.errors import AccountingError
from meterproxy.observability.logger import get_logger
from meterproxy.proxy.stream import StreamUsageCollector
from meterproxy.proxy.usage import StreamUsage, extract_buffered_usage
from meterproxy.usage.store import UsageStore

log = get_logger("proxy.accounting")


class Accountant:
    """Post-relay tail: usage → cost → ledger → enforcement.

    Runs after the caller already has its response, so every failure is
    logged here and goes no further.
    """

    def __init__(self, store: UsageStore, enforcer: Enforcer, calendar: BillingCalendar):
        self.store = store
        self.enforcer = enforcer
        self.calendar = calendar

    async def account_stream(self, collector: StreamUsageCollector, request_model: str):
        try:
            observed = collector.extract()
        except Exception as e:
            log.error("stream_usage_parse_failed", error=str(e), bytes_seen=collector.bytes_seen)
            return
        await self.account(observed, request_model)

    async def account_buffered(self, body: bytes, request_model: str):
        await self.account(extract_buffered_usage(body, request_model), request_model)

    async def account(self, observed: StreamUsage, request_model: str):
        if observed.usage is None:
            log.info("usage_missing", model=request_model)
            return

        model = observed.model or request_model
        usage = observed.usage
        cycle = self.calendar.current_cycle()
        cost = compute_cost(model, usage.input_tokens, usage.output_tokens)

        try:
            await self.store.append(
                model, usage.input_tokens, usage.output_tokens, cost, cycle, timestamp=self.calendar.now()
            )
            spend = await self.store.monthly_spend(cycle)
        except (AccountingError, SQLAlchemyError) as e:
            log.error("accounting_failed", model=model, error=str(e))
            return

        try:
            await self.enforcer.enforce(spend)
        except Exception as e:
            log.error("budget_enforcement_error", spend=round(spend, 4), error=str(e))
