import logging
import os
from dataclasses import dataclass, field

from gateway.config import env_int, env_list

_logger = logging.getLogger("config")


@dataclass
class AppConfig:
    """Application configuration loaded from the environment."""

    db_path: str
    api_key: str | None = None
    auth_tokens: list[str] = field(default_factory=list)
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    port: int = 8080


def get_app_config() -> AppConfig:
    """Load application configuration from environment variables."""

    db_path = os.getenv("GATEWAY_DB_PATH", "gateway.sqlite3")
    api_key = (os.getenv("GATEWAY_API_KEY") or "").strip() or None
    auth_tokens = env_list("API_AUTH_TOKENS", [])
    cors_origins = env_list("CORS_ALLOW_ORIGINS", ["*"])
    port = env_int("PORT", 8080)

    _logger.info("GATEWAY_DB_PATH=%s", db_path)
    _logger.info("GATEWAY_API_KEY present=%s", bool(api_key))
    _logger.info("API_AUTH_TOKENS count=%s", len(auth_tokens))

    if not api_key and not auth_tokens:
        _logger.warning("No GATEWAY_API_KEY or API_AUTH_TOKENS configured; /api/eccairs is closed")

    return AppConfig(
        db_path=db_path,
        api_key=api_key,
        auth_tokens=auth_tokens,
        cors_origins=cors_origins,
        port=port,
    )
