"""HTTP client for the registry's occurrence endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from gateway.core.payload.models import DeleteRequest

from .auth import AccessTokenManager, TenantCredentials

log = logging.getLogger(__name__)


class RegistryUnavailable(RuntimeError):
    """Transport-level failure talking to the registry."""


@dataclass(frozen=True)
class RegistryResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def error_message(self, fallback: str) -> str:
        for key in ("errorDetails", "message", "error"):
            value = self.body.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value, sort_keys=True)
        return fallback

    def data_field(self, name: str) -> Any:
        data = self.body.get("data")
        if isinstance(data, Mapping) and data.get(name) is not None:
            return data.get(name)
        return self.body.get(name)


def read_response_body(response: httpx.Response) -> dict[str, Any]:
    """Parse the body as JSON when possible, keeping non-JSON text under ``_nonJsonBody``."""

    raw_text = response.text
    if not raw_text:
        return {}
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError:
        return {"_nonJsonBody": raw_text}
    if isinstance(parsed, dict):
        return parsed
    return {"data": parsed}


class RegistryClient:
    def __init__(
        self,
        token_manager: AccessTokenManager,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token_manager = token_manager
        self.timeout = timeout if timeout is not None else token_manager.config.request_timeout
        self.transport = transport

    def _send(
        self,
        method: str,
        url: str,
        token: str,
        json_body: Any = None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json", "Authorization": f"Bearer {token}"}
        kwargs: dict[str, Any] = {"headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body
        with httpx.Client(timeout=self.timeout, transport=self.transport) as cli:
            return cli.request(method, url, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        *,
        credentials: TenantCredentials | None = None,
        json_body: Any = None,
    ) -> RegistryResponse:
        """Call the registry; a 401 refreshes the token and retries exactly once."""

        url = f"{self.token_manager.base_url_for(credentials)}{path}"
        token = self.token_manager.get_token(credentials)
        try:
            response = self._send(method, url, token, json_body)
            if response.status_code == 401:
                log.info("E2_AUTH_REJECTED method=%s path=%s retrying=1", method, path)
                self.token_manager.invalidate(credentials, token=token)
                token = self.token_manager.get_token(credentials)
                response = self._send(method, url, token, json_body)
        except httpx.HTTPError as exc:
            log.error("E2_REQUEST_FAILED method=%s path=%s error=%s", method, path, exc)
            raise RegistryUnavailable(f"E2 {method} {path} failed: {exc}") from exc

        result = RegistryResponse(response.status_code, read_response_body(response))
        log.info(
            "E2_RESPONSE method=%s path=%s status=%s ok=%s",
            method,
            path,
            result.status_code,
            result.ok,
        )
        return result

    def create_occurrence(
        self, document: Mapping[str, Any], credentials: TenantCredentials | None = None
    ) -> RegistryResponse:
        return self.request(
            "POST", "/occurrences/create", credentials=credentials, json_body=document
        )

    def edit_occurrence(
        self, document: Mapping[str, Any], credentials: TenantCredentials | None = None
    ) -> RegistryResponse:
        return self.request(
            "PUT", "/occurrences/edit", credentials=credentials, json_body=document
        )

    def change_status(
        self,
        e2_id: str,
        status: str = "SENT",
        credentials: TenantCredentials | None = None,
    ) -> RegistryResponse:
        return self.request(
            "POST",
            "/occurrences/change-status",
            credentials=credentials,
            json_body={"e2Id": e2_id, "status": status},
        )

    def get_url(
        self, e2_id: str, credentials: TenantCredentials | None = None
    ) -> RegistryResponse:
        return self.request(
            "GET", f"/occurrences/get-URL/{quote(e2_id, safe='')}", credentials=credentials
        )

    def delete_occurrence(
        self, delete_request: DeleteRequest, credentials: TenantCredentials | None = None
    ) -> RegistryResponse:
        return self.request(delete_request.method, delete_request.path, credentials=credentials)


__all__ = [
    "RegistryClient",
    "RegistryResponse",
    "RegistryUnavailable",
    "read_response_body",
]
