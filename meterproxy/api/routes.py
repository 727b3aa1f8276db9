from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from meterproxy.api.schemas import HealthResponse, ReportResponse, StatsResponse
from meterproxy.budget.state import budget_pct
from meterproxy.core.services import Services
from meterproxy.observability.logger import get_logger

log = get_logger("api")

router = APIRouter()


def get_services(request: Request) -> Services:
    """Services wired by create_app."""
    return request.app.state.services


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    services = get_services(request)
    limit = services.settings.budget_limit
    spend = await services.store.monthly_spend(services.calendar.current_cycle())
    state = await services.state_store.get_state()
    return HealthResponse(
        status="ok",
        monthly_spend=spend,
        budget_limit=limit,
        budget_pct=round(budget_pct(spend, limit), 1),
        last_action=state.last_action.value,
        throttled=state.throttled,
        downgraded=state.downgraded,
    )


@router.get("/stats", response_model=StatsResponse)
async def stats(request: Request):
    services = get_services(request)
    limit = services.settings.budget_limit
    cycle = services.calendar.current_cycle()
    usage = await services.store.get_stats(cycle)
    state = await services.state_store.get_state()
    return StatsResponse(
        **usage,
        budget_limit=limit,
        budget_pct=round(budget_pct(usage["monthly_spend"], limit), 1),
        billing_cycle=cycle,
        billing_cycle_start=services.settings.billing_cycle_start,
        last_action=state.last_action.value,
        throttled=state.throttled,
        downgraded=state.downgraded,
    )


@router.post("/report", response_model=ReportResponse)
async def report(request: Request, date: str | None = None):
    """Send a daily report now, for ``date`` or yesterday."""
    services = get_services(request)
    try:
        payload = await services.reporter.send_daily_report(date)
    except Exception as e:
        log.error("report_endpoint_failed", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    return ReportResponse(status="sent", payload=payload)


@router.post("/v1/messages")
async def messages(request: Request) -> Response:
    return await get_services(request).proxy.handle_messages(request)


@router.api_route("/v1/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def passthrough(request: Request, path: str) -> Response:
    return await get_services(request).proxy.passthrough(request, path)
