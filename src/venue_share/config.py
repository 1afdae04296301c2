"""Application configuration."""

import os
import socket

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from venue_share.services.share_manager import PendingSharePolicy

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    device_name: str = Field(default_factory=socket.gethostname)
    app_version: str = "1.0"
    service_type: str = "_flickvenue._tcp.local."
    listen_port: int = 8765
    advertise_host: str | None = None
    connect_timeout_seconds: float = 15.0
    send_timeout_seconds: float = 30.0
    discovery_resolve_timeout_ms: int = 3000
    max_payload_bytes: int = 64 * 1024 * 1024
    pending_share_policy: str = "replace"
    accept_inbound_sessions: bool = True
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_pending_share_policy(raw: str | None) -> PendingSharePolicy:
    """Parse the pending-share policy from env, defaulting to replace."""
    if raw is None:
        return PendingSharePolicy.REPLACE
    cleaned = raw.strip().lower()
    if not cleaned:
        return PendingSharePolicy.REPLACE
    try:
        return PendingSharePolicy(cleaned)
    except ValueError:
        valid = ", ".join(policy.value for policy in PendingSharePolicy)
        raise ValueError(
            f"Unknown pending share policy {raw!r}; expected one of {valid}"
        ) from None
