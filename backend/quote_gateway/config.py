"""Gateway settings read from environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_AUTH_URL = "https://api.dnse.com.vn/user-service/api/auth"

DEFAULT_BROKER_HOST = "datafeed-lts-krx.dnse.com.vn"


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _optional(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    """Runtime configuration. Defaults match the production DNSE deployment."""

    port: int = 8080
    broker_host: str = DEFAULT_BROKER_HOST
    broker_port: int = 443
    broker_path: str = "/wss"
    dnse_username: str | None = None
    dnse_password: str | None = None
    target_user_id: str = ""
    mongodb_uri: str | None = None
    auth_url: str = DEFAULT_AUTH_URL
    subscribe_timeout: float = 10.0
    data_timeout: float = 5.0
    batch_size: int = 10
    batch_delay: float = 2.0
    stats_interval: float = 60.0
    debug: bool = False

    @property
    def auto_refresh_enabled(self) -> bool:
        return bool(self.dnse_username and self.dnse_password)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        """Build settings from the environment.

        Raises ValueError on malformed numbers so misconfiguration fails at startup.
        """
        env = os.environ if environ is None else environ
        settings = cls(
            port=int(env.get("WSS_PORT", "8080")),
            broker_host=env.get("BROKER_HOST", "").strip() or DEFAULT_BROKER_HOST,
            broker_port=int(env.get("BROKER_PORT", "443")),
            dnse_username=_optional(env.get("DNSE_USERNAME")),
            dnse_password=_optional(env.get("DNSE_PASSWORD")),
            target_user_id=env.get("TARGET_USER_ID", "").strip(),
            mongodb_uri=_optional(env.get("MONGODB_URI")),
            auth_url=env.get("DNSE_AUTH_URL", "").strip() or DEFAULT_AUTH_URL,
            subscribe_timeout=float(env.get("SUBSCRIBE_TIMEOUT", "10")),
            data_timeout=float(env.get("DATA_TIMEOUT", "5")),
            batch_size=int(env.get("BATCH_SIZE", "10")),
            batch_delay=float(env.get("BATCH_DELAY", "2")),
            stats_interval=float(env.get("STATS_INTERVAL", "60")),
            debug=_flag(env.get("DEBUG")),
        )
        if settings.batch_size < 1:
            raise ValueError(f"BATCH_SIZE must be >= 1, got {settings.batch_size}")
        if settings.subscribe_timeout <= 0 or settings.data_timeout <= 0:
            raise ValueError("SUBSCRIBE_TIMEOUT and DATA_TIMEOUT must be positive")
        return settings
