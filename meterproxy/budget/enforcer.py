import asyncio

from meterproxy.budget.state import BudgetAction, BudgetState, BudgetStateStore, budget_pct, classify
from meterproxy.integrations.lifecycle import ComputeLifecycle
from meterproxy.integrations.webhooks import AlertNotifier, WebhookSink
from meterproxy.observability.logger import get_logger

log = get_logger("budget.enforcer")


class Enforcer:
    """Applies the budget escalation ladder after every accounted request.

    warn, downgrade and throttle are one-shot latches per cycle. pause is
    re-attempted on every call while spend stays at or above the pause
    threshold, so a failed stop is retried by the next request.
    """

    def __init__(
        self,
        state_store: BudgetStateStore,
        notifier: AlertNotifier,
        event_sink: WebhookSink,
        lifecycle: ComputeLifecycle,
        budget_limit: float,
        tenant_id: str,
    ):
        self.state_store = state_store
        self.notifier = notifier
        self.event_sink = event_sink
        self.lifecycle = lifecycle
        self.budget_limit = budget_limit
        self.tenant_id = tenant_id

    async def enforce(self, spend: float) -> BudgetAction:
        state = await self.state_store.get_state()
        action = classify(spend, self.budget_limit)
        pct = round(budget_pct(spend, self.budget_limit), 1)

        if action == BudgetAction.NORMAL:
            if state.has_flags:
                await self.state_store.reset(state.billing_cycle)
                log.info("budget_back_to_normal", spend=round(spend, 4), pct=pct)
            return action

        if action == BudgetAction.WARN:
            if not state.warned_80:
                await self.notifier.send(
                    f"[meterproxy] Budget warning for `{self.tenant_id}`: spend is at {pct}% "
                    f"(${spend:.2f} / ${self.budget_limit:.2f})"
                )
                await self._transition(state, action, warned_80=True)
            return action

        if action == BudgetAction.DOWNGRADE:
            if not state.downgraded:
                await self.notifier.send(
                    f"[meterproxy] Budget limit reached for `{self.tenant_id}` ({pct}%). "
                    f"Downgrading premium models."
                )
                await self._transition(state, action, downgraded=True)
            return action

        if action == BudgetAction.THROTTLE:
            if not state.throttled:
                await self.notifier.send(
                    f"[meterproxy] Budget EXCEEDED for `{self.tenant_id}` ({pct}%). Throttling instance."
                )
                await self._transition(state, action, throttled=True)
            return action

        await self._pause(state, spend, pct)
        return action

    async def _pause(self, state: BudgetState, spend: float, pct: float):
        payload = {
            "type": "pause",
            "tenant": self.tenant_id,
            "spend": spend,
            "limit": self.budget_limit,
            "pct": pct,
        }
        effects = {
            "alert": self.notifier.send(
                f"[meterproxy] CRITICAL: Budget at {pct}% for `{self.tenant_id}`. Pausing instance."
            ),
            "pause_event": self.event_sink.post(payload),
            "stop": self.lifecycle.stop(),
        }
        results = await asyncio.gather(*effects.values(), return_exceptions=True)
        for name, result in zip(effects, results):
            if isinstance(result, Exception):
                log.error("pause_side_effect_failed", effect=name, error=str(result))

        await self._transition(state, BudgetAction.PAUSE)

    async def _transition(self, state: BudgetState, action: BudgetAction, **flags):
        await self.state_store.save(state.with_changes(last_action=action, **flags))
        log.warning("budget_action", action=action.value, billing_cycle=state.billing_cycle, **flags)
