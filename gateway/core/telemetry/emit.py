import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

logger = logging.getLogger("telemetry")

REDACTED = "***"
_SECRET_KEYS = frozenset({"access_token", "client_secret", "e2_client_secret", "authorization"})


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in _SECRET_KEYS else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    return value


def emit(event: str, payload: Mapping[str, Any] | None = None) -> None:
    """Emit a structured telemetry event.

    Events are logged as a single JSON line with an ISO timestamp. Credential
    fields anywhere in ``payload`` are masked. Serialization failures are
    logged and never reach the caller.
    """
    record: dict[str, Any] = {"event": event, "ts": datetime.now(timezone.utc).isoformat()}
    if payload:
        record.update(_redact(dict(payload)))
    try:
        logger.info(json.dumps(record, sort_keys=True, default=str))
    except (TypeError, ValueError):
        logger.exception("telemetry_emit_failed event=%s", event)
