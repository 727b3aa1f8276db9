import asyncio
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from meterproxy.budget.state import BudgetAction, BudgetState, BudgetStateStore, classify
from meterproxy.database import create_engine_and_sessions, init_db
from meterproxy.models import BudgetStateRecord
from meterproxy.usage.store import UsageStore


class TestClassify:
    @pytest.mark.parametrize("limit", [0.01, 1.0, 3.0, 40.0, 123.45, 10_000.0])
    def test_breakpoints(self, limit):
        assert classify(0, limit) == BudgetAction.NORMAL
        assert classify(0.79999 * limit, limit) == BudgetAction.NORMAL
        assert classify(0.8 * limit, limit) == BudgetAction.WARN
        assert classify(0.99 * limit, limit) == BudgetAction.WARN
        assert classify(1.0 * limit, limit) == BudgetAction.DOWNGRADE
        assert classify(1.19 * limit, limit) == BudgetAction.DOWNGRADE
        assert classify(1.2 * limit, limit) == BudgetAction.THROTTLE
        assert classify(1.49 * limit, limit) == BudgetAction.THROTTLE
        assert classify(1.5 * limit, limit) == BudgetAction.PAUSE
        assert classify(10 * limit, limit) == BudgetAction.PAUSE


class TestBudgetState:
    def test_fresh_state_has_no_flags(self):
        state = BudgetState.fresh("2026-10")
        assert not state.has_flags
        assert not state.is_paused
        assert state.last_action == BudgetAction.NORMAL

    def test_with_changes_keeps_cycle(self):
        state = BudgetState.fresh("2026-10").with_changes(downgraded=True, last_action=BudgetAction.DOWNGRADE)
        assert state.has_flags
        assert state.billing_cycle == "2026-10"
        assert state.to_dict()["last_action"] == "downgrade"


@pytest.mark.asyncio
class TestBudgetStateStore:
    @pytest_asyncio.fixture
    async def state_store(self, session_factory, calendar):
        return BudgetStateStore(session_factory, calendar)

    async def test_first_read_creates_default_state(self, state_store):
        state = await state_store.get_state()
        assert state == BudgetState.fresh("2026-10")

    async def test_save_round_trip(self, state_store):
        state = await state_store.get_state()
        await state_store.save(state.with_changes(warned_80=True, last_action=BudgetAction.WARN))

        loaded = await state_store.get_state()
        assert loaded.warned_80 is True
        assert loaded.last_action == BudgetAction.WARN
        assert await state_store.is_downgraded() is False

    async def test_cycle_rollover_resets_state(self, state_store, session_factory, clock):
        store = UsageStore(session_factory)
        await store.append("claude-opus-4-6", 1, 1, 12.5, "2026-10")

        state = await state_store.get_state()
        await state_store.save(
            state.with_changes(downgraded=True, throttled=True, warned_80=True, last_action=BudgetAction.PAUSE)
        )

        clock.set(datetime(2026, 11, 2, 0, 0, tzinfo=UTC))
        rolled = await state_store.get_state()
        assert rolled == BudgetState.fresh("2026-11")

        # Ledger rows keep their original label
        assert await store.monthly_spend("2026-10") == pytest.approx(12.5)
        assert await store.monthly_spend("2026-11") == 0.0

    async def test_reset_keeps_cycle_label(self, state_store):
        state = await state_store.get_state()
        await state_store.save(state.with_changes(downgraded=True, last_action=BudgetAction.DOWNGRADE))

        reset = await state_store.reset("2026-10")
        assert reset == BudgetState.fresh("2026-10")
        assert await state_store.get_state() == BudgetState.fresh("2026-10")

    async def test_concurrent_first_reads_share_one_row(self, tmp_path, calendar):
        engine, factory = create_engine_and_sessions(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
        await init_db(engine)
        try:
            state_store = BudgetStateStore(factory, calendar)
            states = await asyncio.gather(*(state_store.get_state() for _ in range(5)))

            assert all(state == BudgetState.fresh("2026-10") for state in states)
            async with factory() as session:
                assert await session.scalar(select(func.count(BudgetStateRecord.id))) == 1
        finally:
            await engine.dispose()
