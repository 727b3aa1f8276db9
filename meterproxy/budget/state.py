from dataclasses import dataclass, replace
from enum import Enum

from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from meterproxy.billing.cycle import BillingCalendar
from meterproxy.models import BudgetStateRecord, utcnow
from meterproxy.observability.logger import get_logger

log = get_logger("budget.state")

STATE_ID = 1

# Lower bounds as fractions of the budget limit
WARN_RATIO = 0.8
DOWNGRADE_RATIO = 1.0
THROTTLE_RATIO = 1.2
PAUSE_RATIO = 1.5


class BudgetAction(str, Enum):
    NORMAL = "normal"
    WARN = "warn"
    DOWNGRADE = "downgrade"
    THROTTLE = "throttle"
    PAUSE = "pause"


def budget_pct(spend: float, limit: float) -> float:
    return (spend / limit) * 100


def classify(spend: float, limit: float) -> BudgetAction:
    # spend == ratio * limit must classify into the higher band
    if spend >= limit * PAUSE_RATIO:
        return BudgetAction.PAUSE
    if spend >= limit * THROTTLE_RATIO:
        return BudgetAction.THROTTLE
    if spend >= limit * DOWNGRADE_RATIO:
        return BudgetAction.DOWNGRADE
    if spend >= limit * WARN_RATIO:
        return BudgetAction.WARN
    return BudgetAction.NORMAL


@dataclass(frozen=True)
class BudgetState:
    billing_cycle: str
    last_action: BudgetAction = BudgetAction.NORMAL
    downgraded: bool = False
    throttled: bool = False
    warned_80: bool = False

    @classmethod
    def fresh(cls, billing_cycle: str) -> "BudgetState":
        return cls(billing_cycle=billing_cycle)

    @property
    def is_paused(self) -> bool:
        return self.last_action == BudgetAction.PAUSE

    @property
    def has_flags(self) -> bool:
        return (
            self.warned_80
            or self.downgraded
            or self.throttled
            or self.last_action != BudgetAction.NORMAL
        )

    def with_changes(self, **changes) -> "BudgetState":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "billing_cycle": self.billing_cycle,
            "last_action": self.last_action.value,
            "downgraded": self.downgraded,
            "throttled": self.throttled,
            "warned_80": self.warned_80,
        }


class BudgetStateStore:
    """Persisted enforcement state for the tenant, scoped to a billing cycle.

    Reads are unlocked on purpose: money lives in the usage ledger, so a race
    here can at worst duplicate a one-shot alert.
    """

    def __init__(self, session_factory, calendar: BillingCalendar):
        self.session_factory = session_factory
        self.calendar = calendar

    async def get_state(self) -> BudgetState:
        cycle = self.calendar.current_cycle()
        async with self.session_factory() as session:
            row = await session.get(BudgetStateRecord, STATE_ID)
            if row is not None and row.billing_cycle == cycle:
                return BudgetState(
                    billing_cycle=row.billing_cycle,
                    last_action=BudgetAction(row.last_action),
                    downgraded=row.downgraded,
                    throttled=row.throttled,
                    warned_80=row.warned_80,
                )

        previous = row.billing_cycle if row is not None else None
        fresh = BudgetState.fresh(cycle)
        await self.save(fresh)
        log.info("budget_cycle_rollover", previous=previous, billing_cycle=cycle)
        return fresh

    async def save(self, state: BudgetState):
        values = {
            "billing_cycle": state.billing_cycle,
            "last_action": state.last_action.value,
            "downgraded": state.downgraded,
            "throttled": state.throttled,
            "warned_80": state.warned_80,
            "updated_at": utcnow(),
        }
        # Concurrent first reads all try to create the singleton row
        stmt = sqlite_insert(BudgetStateRecord).values(id=STATE_ID, **values)
        stmt = stmt.on_conflict_do_update(index_elements=[BudgetStateRecord.id], set_=values)
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def reset(self, billing_cycle: str) -> BudgetState:
        fresh = BudgetState.fresh(billing_cycle)
        await self.save(fresh)
        log.info("budget_state_reset", billing_cycle=billing_cycle)
        return fresh

    async def is_downgraded(self) -> bool:
        return (await self.get_state()).downgraded
