import os

from pydantic import Field
from pydantic_settings import BaseSettings

from meterproxy.errors import ConfigurationError


class Settings(BaseSettings):
    # Upstream API
    anthropic_api_key: str | None = None
    upstream_base_url: str = "https://api.anthropic.com"

    # Budget
    budget_limit: float = Field(default=40.0, gt=0)
    billing_cycle_start: int = Field(default=1, ge=1, le=31)
    downgrade_model: str = "claude-sonnet-4-5-20250929"

    # Storage
    data_dir: str = "/var/lib/meterproxy"
    database_url: str | None = None  # Falls back to sqlite under data_dir

    # Collaborators
    tenant_id: str = "unknown"
    alert_webhook_url: str = ""  # Ops channel for budget alerts
    report_webhook_url: str = ""  # Daily reports and pause events
    manage_script: str = "/opt/meterproxy/manage.sh"
    notify_timeout_seconds: float = 10.0
    stop_timeout_seconds: float = 30.0

    # Reporter
    reporter_enabled: bool = True
    report_interval_seconds: int = 24 * 60 * 60

    # Server
    proxy_host: str = "0.0.0.0"
    proxy_port: int = 3141
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{os.path.join(self.data_dir, 'usage.db')}"

    def require_credentials(self):
        """Refuse to serve traffic without an upstream credential."""
        if not self.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is required")
