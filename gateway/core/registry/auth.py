"""Bearer tokens for the registry's identity provider.

The identity provider's token path and the way it expects client credentials
(form body vs. HTTP Basic) have not been stable, so tokens are requested
against an ordered list of ``(path, mode)`` attempts and the first success is
cached per tenant.
"""

from __future__ import annotations

import base64
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import requests

from gateway.config import SHARED_CREDENTIALS_KEY, RegistryConfig

from .token_cache import TokenCache

log = logging.getLogger(__name__)

TOKEN_ATTEMPTS: tuple[tuple[str, str], ...] = (
    ("/oauth2/token", "basic"),
    ("/oauth2/token", "body"),
    ("/idp/oauth2/token", "basic"),
    ("/idp/oauth2/token", "body"),
)


class TokenAttemptFailed(Exception):
    """One (path, mode) attempt did not yield a usable token."""


class TokenAcquisitionError(RuntimeError):
    """Every token attempt failed; ``errors`` lists them in order."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        detail = self.errors[-1] if self.errors else "E2 token request failed"
        super().__init__(f"E2 token request failed after {len(self.errors)} attempt(s): {detail}")


@dataclass(frozen=True)
class TenantCredentials:
    client_id: str
    client_secret: str
    base_url: str | None = None
    scope: str | None = None
    tenant_id: str | None = None

    @classmethod
    def from_integration(cls, integration: Mapping[str, Any] | None) -> "TenantCredentials | None":
        """Per-tenant override from an integration row, if it carries credentials."""

        if not integration:
            return None
        client_id = (integration.get("e2_client_id") or "").strip()
        client_secret = (integration.get("e2_client_secret") or "").strip()
        if not client_id or not client_secret:
            return None
        base_url = (integration.get("e2_base_url") or "").strip().rstrip("/") or None
        scope = integration.get("e2_scope")
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            base_url=base_url,
            scope=scope.strip() if isinstance(scope, str) else None,
            tenant_id=str(integration.get("company_id") or "") or None,
        )


@dataclass(frozen=True)
class _Effective:
    key: str
    client_id: str
    client_secret: str
    base_url: str
    scope: str | None


def basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _truncate(text: str, limit: int = 200) -> str:
    snippet = text.strip()
    if len(snippet) > limit:
        return snippet[:limit]
    return snippet


class AccessTokenManager:
    def __init__(
        self,
        config: RegistryConfig,
        *,
        session: requests.Session | None = None,
        cache: TokenCache | None = None,
        attempts: Sequence[tuple[str, str]] = TOKEN_ATTEMPTS,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.cache = cache or TokenCache()
        self.attempts = tuple(attempts)

    def _effective(self, credentials: TenantCredentials | None) -> _Effective:
        if credentials is not None:
            base_url = credentials.base_url or self.config.base_url
            if not base_url:
                raise TokenAcquisitionError(["E2_BASE_URL is not configured"])
            return _Effective(
                key=credentials.tenant_id or f"client:{credentials.client_id}",
                client_id=credentials.client_id,
                client_secret=credentials.client_secret,
                base_url=base_url,
                scope=credentials.scope if credentials.scope is not None else self.config.scope,
            )

        base_url = self.config.base_url
        client_id = self.config.client_id
        client_secret = self.config.client_secret
        if not (base_url and client_id and client_secret):
            raise TokenAcquisitionError(
                ["E2 credentials are not configured (E2_BASE_URL / E2_CLIENT_ID / E2_CLIENT_SECRET)"]
            )
        return _Effective(
            key=SHARED_CREDENTIALS_KEY,
            client_id=client_id,
            client_secret=client_secret,
            base_url=base_url,
            scope=self.config.scope,
        )

    def cache_key(self, credentials: TenantCredentials | None = None) -> str:
        return self._effective(credentials).key

    def base_url_for(self, credentials: TenantCredentials | None = None) -> str:
        return self._effective(credentials).base_url

    def get_token(self, credentials: TenantCredentials | None = None) -> str:
        eff = self._effective(credentials)
        cached = self.cache.get(eff.key)
        if cached:
            return cached

        with self.cache.lock(eff.key):
            # Another request may have refreshed while this one waited.
            cached = self.cache.get(eff.key)
            if cached:
                return cached

            errors: list[str] = []
            for path, mode in self.attempts:
                try:
                    data = self._request_token(eff, path, mode)
                except TokenAttemptFailed as exc:
                    errors.append(str(exc))
                    log.warning(
                        "E2_TOKEN_ATTEMPT_FAILED key=%s path=%s mode=%s error=%s",
                        eff.key,
                        path,
                        mode,
                        exc,
                    )
                    continue

                lifetime = self._lifetime(data.get("expires_in"))
                self.cache.set(
                    eff.key,
                    data["access_token"],
                    lifetime,
                    skew_seconds=self.config.token_skew_seconds,
                )
                log.info(
                    "E2_TOKEN_ACQUIRED key=%s path=%s mode=%s expires_in=%s",
                    eff.key,
                    path,
                    mode,
                    lifetime,
                )
                return data["access_token"]

        raise TokenAcquisitionError(errors)

    def invalidate(
        self, credentials: TenantCredentials | None = None, *, token: str | None = None
    ) -> bool:
        key = self._effective(credentials).key
        dropped = self.cache.invalidate(key, token=token)
        if dropped:
            log.info("E2_TOKEN_INVALIDATED key=%s", key)
        return dropped

    def _lifetime(self, raw: Any) -> float:
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return float(self.config.default_token_lifetime)
        if not math.isfinite(value) or value <= 0:
            return float(self.config.default_token_lifetime)
        return value

    def _request_token(self, eff: _Effective, path: str, mode: str) -> dict[str, Any]:
        body: dict[str, str] = {"grant_type": "client_credentials"}
        if eff.scope:
            body["scope"] = eff.scope

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        if mode == "body":
            body["client_id"] = eff.client_id
            body["client_secret"] = eff.client_secret
        elif mode == "basic":
            headers["Authorization"] = basic_auth_header(eff.client_id, eff.client_secret)
        else:
            raise TokenAttemptFailed(f"E2 token {path} ({mode}): unknown credential mode")

        url = f"{eff.base_url}{path}"
        try:
            response = self.session.post(
                url, data=body, headers=headers, timeout=self.config.token_timeout
            )
        except requests.RequestException as exc:
            raise TokenAttemptFailed(f"E2 token {path} ({mode}) error: {exc}") from exc

        text = response.text or ""
        if not 200 <= response.status_code < 300:
            raise TokenAttemptFailed(
                f"E2 token {path} ({mode}) {response.status_code}: {_truncate(text)}"
            )

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TokenAttemptFailed(
                f"E2 token {path} ({mode}) returned a non-JSON body: {_truncate(text)}"
            ) from exc

        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenAttemptFailed(f"E2 token {path} ({mode}) response has no access_token")
        return data


__all__ = [
    "AccessTokenManager",
    "TenantCredentials",
    "TokenAcquisitionError",
    "TOKEN_ATTEMPTS",
    "basic_auth_header",
]
