from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, func

from meterproxy.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class UsageRecord(Base):
    __tablename__ = "usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    model = Column(String(100), nullable=False)
    input_tokens = Column(Integer, nullable=False)
    output_tokens = Column(Integer, nullable=False)
    cost_estimate = Column(Float, nullable=False)
    billing_cycle = Column(String(7), nullable=False, index=True)  # YYYY-MM


class BudgetStateRecord(Base):
    __tablename__ = "budget_state"

    id = Column(Integer, primary_key=True, default=1)
    last_action = Column(String(20), nullable=False, default="normal")
    downgraded = Column(Boolean, nullable=False, default=False)
    throttled = Column(Boolean, nullable=False, default=False)
    warned_80 = Column(Boolean, nullable=False, default=False)
    billing_cycle = Column(String(7), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
