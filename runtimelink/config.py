import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Control plane credentials - MUST be set via environment
    pvn_org_slug: str = ""
    pvn_api_token: str = ""

    # Full base URL override for the control plane API
    # Default is https://api.<org_slug>.prodvana.io
    pvn_api_url: str = ""

    # Per-request transport timeout for control plane calls
    control_plane_timeout_seconds: float = 30.0

    # ==========================================================================
    # Agent bootstrap
    # ==========================================================================

    # Well-known namespace the agent objects are created in
    agent_namespace: str = "prodvana"

    # Linking timeout used when a runtime declaration does not set one
    # Go-style duration string (e.g. "10m", "1h30m")
    default_link_timeout: str = "10m"

    # Heartbeat polling
    readiness_poll_interval_seconds: float = 1.0
    readiness_freshness_minutes: int = 10  # Heartbeat within X minutes counts as linked

    # Teardown waits for the namespace to disappear before recreating it
    namespace_delete_timeout_seconds: int = 300
    namespace_delete_poll_interval_seconds: float = 1.0

    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    @property
    def control_plane_url(self) -> str:
        """Get the base URL of the control plane API."""
        if self.pvn_api_url:
            return self.pvn_api_url.rstrip("/")
        return f"https://api.{self.pvn_org_slug}.prodvana.io"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False  # Allow lowercase env vars to match uppercase field names


@lru_cache()
def get_settings():
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging the way the service entrypoint does."""
    level_name = level or get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
