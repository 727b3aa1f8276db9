from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from meterproxy.errors import AccountingError
from meterproxy.models import UsageRecord
from meterproxy.observability.logger import get_logger

log = get_logger("usage")


class UsageStore:
    """Append-only ledger of proxied requests.

    Every read goes to the database; spend is never cached in memory so the
    ledger stays the single source of truth for money.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def append(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        billing_cycle: str,
        timestamp: datetime | None = None,
    ) -> UsageRecord:
        record = UsageRecord(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=cost,
            billing_cycle=billing_cycle,
        )
        if timestamp is not None:
            record.timestamp = timestamp

        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            raise AccountingError(f"Failed to persist usage for {model}: {e}") from e

        log.info(
            "usage_logged",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=round(cost, 6),
            billing_cycle=billing_cycle,
        )
        return record

    async def monthly_spend(self, billing_cycle: str) -> float:
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.coalesce(func.sum(UsageRecord.cost_estimate), 0.0)).where(
                    UsageRecord.billing_cycle == billing_cycle
                )
            )
            return float(total or 0.0)

    async def daily_breakdown(self, billing_cycle: str) -> list[dict]:
        day = func.date(UsageRecord.timestamp).label("date")
        stmt = (
            select(
                day,
                func.sum(UsageRecord.cost_estimate).label("spend"),
                func.count(UsageRecord.id).label("requests"),
                func.sum(UsageRecord.input_tokens).label("input_tokens"),
                func.sum(UsageRecord.output_tokens).label("output_tokens"),
            )
            .where(UsageRecord.billing_cycle == billing_cycle)
            .group_by(day)
            .order_by(day)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    async def model_breakdown(self, billing_cycle: str) -> list[dict]:
        stmt = (
            select(
                UsageRecord.model,
                func.sum(UsageRecord.cost_estimate).label("cost"),
                func.count(UsageRecord.id).label("requests"),
                func.sum(UsageRecord.input_tokens).label("input_tokens"),
                func.sum(UsageRecord.output_tokens).label("output_tokens"),
            )
            .where(UsageRecord.billing_cycle == billing_cycle)
            .group_by(UsageRecord.model)
            .order_by(UsageRecord.model)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    async def daily_summary(self, day: str) -> list[dict]:
        """Per-model cost and request count for a calendar date (YYYY-MM-DD)."""
        stmt = (
            select(
                UsageRecord.model,
                func.sum(UsageRecord.cost_estimate).label("cost"),
                func.count(UsageRecord.id).label("requests"),
            )
            .where(func.date(UsageRecord.timestamp) == day)
            .group_by(UsageRecord.model)
            .order_by(UsageRecord.model)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    async def daily_total(self, day: str) -> dict:
        stmt = select(
            func.coalesce(func.sum(UsageRecord.cost_estimate), 0.0).label("spend"),
            func.count(UsageRecord.id).label("requests"),
        ).where(func.date(UsageRecord.timestamp) == day)
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).mappings().one()
            return {"spend": float(row["spend"]), "requests": int(row["requests"])}

    async def get_stats(self, billing_cycle: str) -> dict:
        return {
            "monthly_spend": await self.monthly_spend(billing_cycle),
            "daily_breakdown": await self.daily_breakdown(billing_cycle),
            "model_breakdown": await self.model_breakdown(billing_cycle),
        }
