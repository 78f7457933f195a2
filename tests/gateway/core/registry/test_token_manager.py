import json
import threading
import time

import pytest
import requests

from gateway.config import SHARED_CREDENTIALS_KEY, RegistryConfig
from gateway.core.registry import (
    AccessTokenManager,
    TenantCredentials,
    TokenAcquisitionError,
    TokenCache,
)


class FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Replays queued responses for token requests and records each call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": dict(data or {}), "headers": dict(headers or {})})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def token_body(token, expires_in=3600):
    return FakeResponse(200, json.dumps({"access_token": token, "expires_in": expires_in}))


def make_config(**overrides):
    values = dict(
        base_url="https://e2.test",
        client_id="cid",
        client_secret="secret",
        scope="openid",
        token_timeout=5.0,
        request_timeout=5.0,
        token_skew_seconds=60,
        default_token_lifetime=300,
    )
    values.update(overrides)
    return RegistryConfig(**values)


def test_first_attempt_uses_basic_auth():
    session = FakeSession(token_body("tok-1"))
    manager = AccessTokenManager(make_config(), session=session)

    assert manager.get_token() == "tok-1"
    call = session.calls[0]
    assert call["url"] == "https://e2.test/oauth2/token"
    assert call["headers"]["Authorization"].startswith("Basic ")
    assert call["data"] == {"grant_type": "client_credentials", "scope": "openid"}


def test_html_error_page_falls_through_to_next_attempt():
    session = FakeSession(
        FakeResponse(200, "<html>login</html>"),
        token_body("tok-2"),
    )
    manager = AccessTokenManager(make_config(), session=session)

    assert manager.get_token() == "tok-2"
    second = session.calls[1]
    assert second["data"]["client_id"] == "cid"
    assert second["data"]["client_secret"] == "secret"
    assert "Authorization" not in second["headers"]


def test_empty_scope_is_not_sent():
    session = FakeSession(token_body("tok"))
    AccessTokenManager(make_config(scope=None), session=session).get_token()
    assert "scope" not in session.calls[0]["data"]


def test_token_is_cached_until_skewed_expiry():
    clock = FakeClock()
    session = FakeSession(token_body("tok-a", 120), token_body("tok-b", 120))
    manager = AccessTokenManager(make_config(), session=session, cache=TokenCache(clock))

    assert manager.get_token() == "tok-a"
    clock.now += 59
    assert manager.get_token() == "tok-a"
    assert len(session.calls) == 1

    clock.now += 1
    assert manager.get_token() == "tok-b"
    assert len(session.calls) == 2


@pytest.mark.parametrize("expires_in", [None, "soon", 0, -5, "nan"])
def test_bad_expires_in_uses_default_lifetime(expires_in):
    clock = FakeClock()
    body = {"access_token": "tok"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    session = FakeSession(FakeResponse(200, json.dumps(body)))
    cache = TokenCache(clock)
    AccessTokenManager(make_config(), session=session, cache=cache).get_token()

    assert cache._entries[SHARED_CREDENTIALS_KEY].expires_at == clock.now + 300 - 60


def test_all_attempts_failing_reports_every_error():
    session = FakeSession(
        FakeResponse(401, "bad client"),
        FakeResponse(200, json.dumps({"token_type": "bearer"})),
        requests.ConnectionError("refused"),
        FakeResponse(500, "x" * 500),
    )
    manager = AccessTokenManager(make_config(), session=session)

    with pytest.raises(TokenAcquisitionError) as excinfo:
        manager.get_token()

    errors = excinfo.value.errors
    assert len(errors) == 4
    assert "/oauth2/token (basic) 401" in errors[0]
    assert "no access_token" in errors[1]
    assert "refused" in errors[2]
    assert "/idp/oauth2/token (body) 500" in errors[3]
    assert len(errors[3]) < 300


def test_missing_shared_credentials():
    manager = AccessTokenManager(make_config(client_secret=None), session=FakeSession())
    with pytest.raises(TokenAcquisitionError):
        manager.get_token()


def test_tenant_credentials_have_their_own_cache_entry():
    session = FakeSession(token_body("shared"), token_body("tenant"))
    manager = AccessTokenManager(make_config(), session=session)
    creds = TenantCredentials.from_integration(
        {
            "company_id": "acme",
            "e2_client_id": "acme-id",
            "e2_client_secret": "acme-secret",
            "e2_base_url": "https://acme.e2.test/",
        }
    )

    assert manager.get_token() == "shared"
    assert manager.get_token(creds) == "tenant"
    assert session.calls[1]["url"] == "https://acme.e2.test/oauth2/token"
    assert manager.cache_key(creds) == "acme"
    assert manager.cache_key() == SHARED_CREDENTIALS_KEY
    assert manager.get_token() == "shared"


def test_integration_without_credentials_uses_shared():
    assert TenantCredentials.from_integration({"company_id": "acme", "e2_client_id": "x"}) is None
    assert TenantCredentials.from_integration(None) is None


def test_invalidate_only_drops_matching_token():
    session = FakeSession(token_body("old"), token_body("new"))
    manager = AccessTokenManager(make_config(), session=session)

    manager.get_token()
    assert manager.invalidate(token="stale") is False
    assert manager.get_token() == "old"
    assert manager.invalidate(token="old") is True
    assert manager.get_token() == "new"


def test_concurrent_refresh_of_expired_key_requests_once():
    clock = FakeClock()
    cache = TokenCache(clock)
    cache.set(SHARED_CREDENTIALS_KEY, "expired", 10, skew_seconds=60)

    class SlowSession:
        def __init__(self):
            self.calls = 0
            self._lock = threading.Lock()

        def post(self, url, data=None, headers=None, timeout=None):
            with self._lock:
                self.calls += 1
                n = self.calls
            time.sleep(0.05)
            return token_body(f"fresh-{n}")

    session = SlowSession()
    manager = AccessTokenManager(make_config(), session=session, cache=cache)
    start = threading.Barrier(8)
    results = []

    def worker():
        start.wait()
        results.append(manager.get_token())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert session.calls == 1
    assert results == ["fresh-1"] * 8
    assert cache.get(SHARED_CREDENTIALS_KEY) == "fresh-1"
