"""Error taxonomy.

Callers of the metered endpoint only ever see ``ClientRequestError`` and
``UpstreamError``. Accounting and enforcement failures are logged where they
happen and never reach the response path.
"""


class MeterProxyError(Exception):
    """Base class for all proxy errors."""


class ClientRequestError(MeterProxyError):
    """Malformed inbound request, rejected before forwarding."""

    status_code = 400


class UpstreamError(MeterProxyError):
    """The upstream API could not be reached."""

    status_code = 502

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.detail = detail


class AccountingError(MeterProxyError):
    """Usage could not be parsed or persisted after a successful relay."""


class EnforcementSideEffectError(MeterProxyError):
    """An alert, pause notification, stop action or report delivery failed."""


class ConfigurationError(MeterProxyError):
    """Required configuration is missing at startup."""
