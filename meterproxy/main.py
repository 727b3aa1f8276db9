from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from meterproxy import __version__
from meterproxy.api.routes import router
from meterproxy.config import Settings
from meterproxy.core.services import Services
from meterproxy.errors import ClientRequestError, ConfigurationError, UpstreamError
from meterproxy.integrations.lifecycle import ComputeLifecycle
from meterproxy.observability.logger import get_logger, setup_logging

log = get_logger("main")


def create_app(
    settings: Settings | None = None,
    *,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
    sink_transport: httpx.AsyncBaseTransport | None = None,
    lifecycle: ComputeLifecycle | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Build the proxy application.

    Raises ConfigurationError before anything is wired when the upstream
    credential is missing, so the process never serves traffic without it.
    """
    settings = settings or Settings()
    settings.require_credentials()

    services = Services.build(
        settings,
        upstream_transport=upstream_transport,
        sink_transport=sink_transport,
        lifecycle=lifecycle,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("meterproxy_starting", tenant=settings.tenant_id)
        await services.startup()
        if settings.reporter_enabled:
            services.reporter.start()
        log.info(
            "meterproxy_ready",
            billing_cycle=services.calendar.current_cycle(),
            budget_limit=settings.budget_limit,
            upstream=settings.upstream_base_url,
        )

        yield

        log.info("meterproxy_shutting_down")
        await services.shutdown()

    app = FastAPI(title="meterproxy", version=__version__, lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(ClientRequestError)
    async def client_error_handler(request: Request, exc: ClientRequestError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        return JSONResponse({"error": str(exc), "detail": exc.detail}, status_code=exc.status_code)

    app.include_router(router)
    return app


def run():
    import uvicorn

    settings = Settings()
    setup_logging(settings.log_level, tenant_id=settings.tenant_id)
    try:
        app = create_app(settings)
    except ConfigurationError as e:
        log.error("fatal_configuration", error=str(e))
        raise SystemExit(1) from e
    uvicorn.run(app, host=settings.proxy_host, port=settings.proxy_port, log_config=None)


if __name__ == "__main__":
    run()
