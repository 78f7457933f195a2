"""Lightweight authentication helpers for API endpoints.

Requests must carry either the server-to-server key in ``X-API-Key`` or a
``Bearer`` token listed in ``API_AUTH_TOKENS``.
"""

from __future__ import annotations

import hmac
from functools import wraps

from flask import Request, current_app, jsonify, request

from gateway.api.config import AppConfig


def _config() -> AppConfig:
    return current_app.config["GATEWAY_APP_CONFIG"]


def _has_api_key(req: Request) -> bool:
    expected = _config().api_key
    provided = req.headers.get("X-API-Key")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)


def _has_bearer_token(req: Request) -> bool:
    tokens = _config().auth_tokens
    if not tokens:
        return False
    auth_header = req.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else None
    return token in tokens


def require_api_key(func):
    """Decorator enforcing an API key or a configured bearer token."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        if _has_api_key(request) or _has_bearer_token(request):
            return func(*args, **kwargs)
        return (
            jsonify({"ok": False, "error": "Missing or invalid credentials"}),
            401,
        )

    return wrapper


__all__ = ["require_api_key"]
