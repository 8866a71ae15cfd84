# app/core/config.py
"""
Application configuration - single source of truth for all settings.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class SupabaseSettings:
    """Identity provider and record store (Supabase) configuration."""
    url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", "").rstrip("/"))
    service_role_key: str = field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""))
    anon_key: str = field(default_factory=lambda: os.getenv("SUPABASE_ANON_KEY", ""))
    # Upper bound on a single token verification round-trip
    auth_timeout: float = field(default_factory=lambda: float(os.getenv("SUPABASE_AUTH_TIMEOUT", "5.0")))


@dataclass
class RealtimeSettings:
    """WebSocket relay configuration."""
    path: str = field(default_factory=lambda: os.getenv("WS_PATH", "/ws"))
    heartbeat_interval: float = field(default_factory=lambda: float(os.getenv("WS_HEARTBEAT_INTERVAL", "30")))


@dataclass
class WebhookSettings:
    """Inbound webhook configuration."""
    eas_secret: Optional[str] = field(default_factory=lambda: os.getenv("EAS_WEBHOOK_SECRET") or None)


@dataclass
class Settings:
    """Main application settings."""
    supabase: SupabaseSettings = field(default_factory=SupabaseSettings)
    realtime: RealtimeSettings = field(default_factory=RealtimeSettings)
    webhooks: WebhookSettings = field(default_factory=WebhookSettings)
    port: int = field(default_factory=lambda: int(os.getenv("PORT", 3001)))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    cors_origins: List[str] = field(default_factory=lambda: _split_origins(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,https://codevibe.app")
    ))
    rate_limit: str = field(default_factory=lambda: os.getenv("RATE_LIMIT", "100/minute"))


# Singleton instance
settings = Settings()
