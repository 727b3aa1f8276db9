import logging
import sys

import structlog


def _tenant_stamper(tenant_id: str | None):
    def stamp(logger, method_name, event_dict):
        if tenant_id:
            event_dict.setdefault("tenant", tenant_id)
        return event_dict

    return stamp


def setup_logging(level: str = "INFO", tenant_id: str | None = None):
    """JSON logs on stdout. Every line carries the tenant the proxy meters."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _tenant_stamper(tenant_id),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and sqlalchemy log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)


def get_logger(name: str = "meterproxy"):
    return structlog.get_logger(name)
