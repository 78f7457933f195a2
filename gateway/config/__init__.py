import json
import logging
import os
from dataclasses import dataclass

from environs import Env

env = Env()
env.read_env()

logger = logging.getLogger(__name__)

DEFAULT_TAXONOMY_CODE = "24"
SHARED_CREDENTIALS_KEY = "__shared__"

_WARNED_DEFAULT_KEYS: set[str] = set()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    val = os.getenv(name)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    """Parse an int environment variable."""
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def env_list(name: str, default: list[str]) -> list[str]:
    """Parse a comma-separated list environment variable."""
    val = os.getenv(name)
    if val is None:
        return default
    parts = [p.strip() for p in val.split(",") if p.strip()]
    return parts or default


def _warn_default(key: str, raw: object, default: object, reason: str) -> None:
    """Emit a structured warning when falling back to a default value."""

    if key in _WARNED_DEFAULT_KEYS:
        return

    _WARNED_DEFAULT_KEYS.add(key)
    payload = {
        "key": key,
        "value": "" if raw is None else str(raw),
        "default": default,
        "reason": reason,
    }
    logger.warning("GATEWAY_CONFIG_DEFAULT %s", json.dumps(payload, sort_keys=True))


def _coerce_positive_float(key: str, default: float, *, min_value: float) -> float:
    """Return a float parsed from the environment that is at least ``min_value``."""

    raw = os.getenv(key)
    if raw is None:
        return default

    try:
        value = float(str(raw).strip())
    except ValueError:
        _warn_default(key, raw, default, "invalid_float")
        return default

    if value < min_value:
        _warn_default(key, raw, default, f"min_{min_value}")
        return default

    return value


def _coerce_positive_int(key: str, default: int, *, min_value: int) -> int:
    """Return a positive integer parsed from the environment."""

    raw = os.getenv(key)
    if raw is None:
        return default

    try:
        value = int(str(raw).strip())
    except ValueError:
        _warn_default(key, raw, default, "invalid_int")
        return default

    if value < min_value:
        _warn_default(key, raw, default, f"min_{min_value}")
        return default

    return value


@dataclass(frozen=True)
class RegistryConfig:
    """Environment-backed configuration for the registry and its identity provider."""

    base_url: str | None
    client_id: str | None
    client_secret: str | None
    scope: str | None
    token_timeout: float
    request_timeout: float
    token_skew_seconds: int
    default_token_lifetime: int

    @property
    def has_shared_credentials(self) -> bool:
        return bool(self.base_url and self.client_id and self.client_secret)


def load_registry_config() -> RegistryConfig:
    """Parse registry configuration from the environment."""

    base_url = env.str("E2_BASE_URL", "").strip().rstrip("/") or None
    client_id = env.str("E2_CLIENT_ID", "").strip() or None
    client_secret = env.str("E2_CLIENT_SECRET", "").strip() or None

    # An explicitly empty E2_SCOPE disables the scope parameter.
    raw_scope = os.getenv("E2_SCOPE")
    scope = "openid" if raw_scope is None else (raw_scope.strip() or None)

    config = RegistryConfig(
        base_url=base_url,
        client_id=client_id,
        client_secret=client_secret,
        scope=scope,
        token_timeout=_coerce_positive_float("E2_TOKEN_TIMEOUT_S", 15.0, min_value=1.0),
        request_timeout=_coerce_positive_float("E2_REQUEST_TIMEOUT_S", 30.0, min_value=1.0),
        token_skew_seconds=_coerce_positive_int("E2_TOKEN_SKEW_S", 60, min_value=0),
        default_token_lifetime=_coerce_positive_int("E2_DEFAULT_TOKEN_LIFETIME_S", 300, min_value=1),
    )

    if not config.has_shared_credentials:
        logger.warning("E2_CONFIG_INCOMPLETE missing E2_BASE_URL / E2_CLIENT_ID / E2_CLIENT_SECRET")

    return config


__all__ = [
    "DEFAULT_TAXONOMY_CODE",
    "SHARED_CREDENTIALS_KEY",
    "RegistryConfig",
    "env",
    "env_bool",
    "env_int",
    "env_list",
    "load_registry_config",
]
