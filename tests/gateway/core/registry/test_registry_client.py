import json

import httpx
import pytest

from gateway.config import RegistryConfig
from gateway.core.payload import build_delete_request
from gateway.core.registry import (
    AccessTokenManager,
    RegistryClient,
    RegistryResponse,
    RegistryUnavailable,
)


class StubTokenManager(AccessTokenManager):
    """Hands out ``tok-1``, ``tok-2``... and records invalidations."""

    def __init__(self):
        super().__init__(
            RegistryConfig(
                base_url="https://e2.test",
                client_id="cid",
                client_secret="secret",
                scope=None,
                token_timeout=5.0,
                request_timeout=5.0,
                token_skew_seconds=60,
                default_token_lifetime=300,
            )
        )
        self.issued = 0
        self.current = None
        self.invalidated = []

    def get_token(self, credentials=None):
        if self.current is None:
            self.issued += 1
            self.current = f"tok-{self.issued}"
        return self.current

    def invalidate(self, credentials=None, *, token=None):
        self.invalidated.append(token)
        if token == self.current:
            self.current = None
            return True
        return False


def make_client(handler):
    seen = []

    def record(request):
        seen.append(request)
        return handler(request, len(seen))

    manager = StubTokenManager()
    client = RegistryClient(manager, transport=httpx.MockTransport(record))
    return client, manager, seen


def test_create_posts_document_with_bearer_token():
    client, _, seen = make_client(
        lambda request, n: httpx.Response(200, json={"data": {"e2Id": "OR-1", "version": 1}})
    )

    response = client.create_occurrence({"type": "REPORT"})

    assert response.ok
    assert response.data_field("e2Id") == "OR-1"
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://e2.test/occurrences/create"
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert json.loads(request.content) == {"type": "REPORT"}


def test_401_refreshes_token_and_retries_once():
    def handler(request, n):
        if n == 1:
            return httpx.Response(401, json={"message": "expired"})
        return httpx.Response(200, json={"url": "https://e2.test/view/OR-1"})

    client, manager, seen = make_client(handler)
    response = client.get_url("OR-1")

    assert response.ok
    assert response.data_field("url") == "https://e2.test/view/OR-1"
    assert [r.headers["Authorization"] for r in seen] == ["Bearer tok-1", "Bearer tok-2"]
    assert manager.invalidated == ["tok-1"]


def test_second_401_is_returned_to_caller():
    client, manager, seen = make_client(
        lambda request, n: httpx.Response(401, json={"errorDetails": "client not allowed"})
    )

    response = client.change_status("OR-1", "SENT")

    assert response.status_code == 401
    assert response.error_message("fallback") == "client not allowed"
    assert len(seen) == 2
    assert manager.invalidated == ["tok-1"]


def test_non_json_body_is_preserved():
    client, _, _ = make_client(lambda request, n: httpx.Response(502, text="<html>Bad gateway</html>"))
    response = client.edit_occurrence({"e2Id": "OR-1"})
    assert response.body == {"_nonJsonBody": "<html>Bad gateway</html>"}
    assert response.error_message("E2 edit failed (502)") == "E2 edit failed (502)"


def test_delete_uses_built_path_without_body():
    client, _, seen = make_client(lambda request, n: httpx.Response(204))
    response = client.delete_occurrence(build_delete_request("OR-0000000000000007"))
    assert response.ok
    assert response.body == {}
    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/occurrences/OR/0000000000000007"
    assert seen[0].content == b""


def test_get_url_quotes_the_id():
    client, _, seen = make_client(lambda request, n: httpx.Response(200, json={}))
    client.get_url("OR/1 2")
    assert seen[0].url.raw_path == b"/occurrences/get-URL/OR%2F1%202"


def test_transport_errors_become_registry_unavailable():
    def handler(request, n):
        raise httpx.ConnectError("connection refused", request=request)

    client, _, _ = make_client(handler)
    with pytest.raises(RegistryUnavailable):
        client.create_occurrence({})


def test_error_message_prefers_error_details():
    body = {"errorDetails": {"field": "431"}, "message": "bad"}
    assert RegistryResponse(400, body).error_message("x") == '{"field": "431"}'
    assert RegistryResponse(400, {"error": "nope"}).error_message("x") == "nope"
    assert RegistryResponse(400, {}).error_message("x") == "x"
