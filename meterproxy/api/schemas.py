from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    monthly_spend: float
    budget_limit: float
    budget_pct: float
    last_action: str
    throttled: bool
    downgraded: bool


class DailyBreakdown(BaseModel):
    date: str
    spend: float
    requests: int
    input_tokens: int
    output_tokens: int


class ModelBreakdown(BaseModel):
    model: str
    cost: float
    requests: int
    input_tokens: int
    output_tokens: int


class StatsResponse(BaseModel):
    monthly_spend: float
    daily_breakdown: list[DailyBreakdown]
    model_breakdown: list[ModelBreakdown]
    budget_limit: float
    budget_pct: float
    billing_cycle: str
    billing_cycle_start: int
    last_action: str
    throttled: bool
    downgraded: bool


class ReportResponse(BaseModel):
    status: str
    payload: dict
