import json

import httpx
import pytest

from gateway.config import SHARED_CREDENTIALS_KEY, RegistryConfig
from gateway.core.orchestrators import ExportError, ExportService
from gateway.core.payload import (
    CompilationAborted,
    DocumentShapeError,
    PayloadCompiler,
    SelectionLoader,
    TaxonomyValidator,
)
from gateway.core.registry import AccessTokenManager, RegistryClient, RegistryUnavailable
from gateway.core.store import IO_ERROR, StoreError

INCIDENT = "33333333-3333-3333-3333-333333333333"


class FakeRegistry:
    """Routes registry calls to canned responses keyed by ``(method, path)``."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status=200, body=None):
        self.routes[(method, path)] = (status, body)

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.routes.get((request.method, request.url.path), (404, {"message": "no route"}))
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


def make_manager():
    config = RegistryConfig(
        base_url="https://e2.test",
        client_id="cid",
        client_secret="secret",
        scope="openid",
        token_timeout=5.0,
        request_timeout=5.0,
        token_skew_seconds=60,
        default_token_lifetime=300,
    )
    manager = AccessTokenManager(config)
    manager.cache.set(SHARED_CREDENTIALS_KEY, "cached-token", 3600)
    return manager


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def service(store, registry):
    store.insert_rows("incidents", [{"id": INCIDENT, "company_id": "acme"}])
    store.insert_rows("eccairs_integrations", [{"company_id": "acme", "environment": "sandbox"}])
    store.insert_rows("value_list_items", [{"value_list_key": "VL431", "value_id": "100"}])
    store.insert_rows(
        "incident_eccairs_attributes",
        [{"incident_id": INCIDENT, "attribute_code": "431", "value_id": "100"}],
    )
    compiler = PayloadCompiler(SelectionLoader(store), TaxonomyValidator(store))
    client = RegistryClient(make_manager(), transport=httpx.MockTransport(registry))
    return ExportService(store, compiler, client)


def test_create_draft_records_e2_id(service, registry, store):
    registry.on("POST", "/occurrences/create", body={"data": {"e2Id": "OR-0000000000000101", "version": 1}})

    outcome = service.create_draft(INCIDENT, "sandbox")

    assert outcome.ok and outcome.status_code == 200
    assert outcome.body["e2_id"] == "OR-0000000000000101"
    assert outcome.body["meta"]["usedCount"] == 1
    sent = json.loads(registry.requests[0].content)
    assert sent["taxonomyCodes"]["24"]["ATTRIBUTES"] == {"431": [100]}
    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "draft_created"
    assert export["e2_version"] == "1"
    assert export["payload"] == sent


def test_registry_rejection_is_recorded(service, registry, store):
    registry.on("POST", "/occurrences/create", status=422, body={"errorDetails": "attribute 431 invalid"})

    outcome = service.create_draft(INCIDENT, "sandbox")

    assert outcome.status_code == 422
    assert outcome.body["ok"] is False
    assert outcome.body["message"] == "attribute 431 invalid"
    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "failed"
    assert export["last_error"] == "attribute 431 invalid"


def test_unknown_incident_and_missing_integration(service, store):
    with pytest.raises(ExportError) as excinfo:
        service.create_draft("44444444-4444-4444-4444-444444444444", "sandbox")
    assert excinfo.value.status_code == 404

    with pytest.raises(ExportError) as excinfo:
        service.create_draft(INCIDENT, "prod")
    assert excinfo.value.status_code == 400
    assert store.get_export(INCIDENT, "prod") is None


def test_update_submit_and_delete_flow(service, registry, store):
    registry.on("POST", "/occurrences/create", body={"data": {"e2Id": "OR-0000000000000101", "version": 1}})
    registry.on("PUT", "/occurrences/edit", body={"data": {"version": 2}})
    registry.on("POST", "/occurrences/change-status", body={"status": "SENT"})
    registry.on("DELETE", "/occurrences/OR/0000000000000101", status=204)

    service.create_draft(INCIDENT, "sandbox")

    updated = service.update_draft(INCIDENT, "sandbox", "MINOR")
    assert updated.ok
    assert updated.body["e2_version"] == "2"
    edit_body = json.loads(registry.requests[1].content)
    assert edit_body["e2Id"] == "OR-0000000000000101"
    assert edit_body["version"] == "1"
    assert edit_body["versionType"] == "MINOR"

    submitted = service.submit(INCIDENT, "sandbox")
    assert submitted.ok
    assert json.loads(registry.requests[2].content) == {"e2Id": "OR-0000000000000101", "status": "SENT"}

    deleted = service.delete_draft(INCIDENT, "sandbox")
    assert deleted.ok
    assert deleted.body["meta"]["numericId"] == "0000000000000101"
    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "deleted"
    assert export["attempts"] == 4


def test_operations_before_create_are_refused(service):
    for op in (service.update_draft, service.submit, service.delete_draft):
        with pytest.raises(ExportError) as excinfo:
            op(INCIDENT, "sandbox")
        assert excinfo.value.status_code == 400
        assert "Create a draft first" in excinfo.value.message


def test_transport_failure_marks_export_failed(store, service, registry):
    def down(request):
        raise httpx.ConnectError("unreachable", request=request)

    service.client.transport = httpx.MockTransport(down)
    with pytest.raises(RegistryUnavailable):
        service.create_draft(INCIDENT, "sandbox")
    assert store.get_export(INCIDENT, "sandbox")["status"] == "failed"


def test_catalog_failure_marks_export_failed(store, service, monkeypatch):
    def broken(value_list_key, value_ids):
        raise StoreError(IO_ERROR, "database is locked")

    monkeypatch.setattr(store, "fetch_value_list_items", broken)
    with pytest.raises(CompilationAborted):
        service.create_draft(INCIDENT, "sandbox")
    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "failed"
    assert "database is locked" in export["last_error"]


def test_get_url(service, registry):
    registry.on("GET", "/occurrences/get-URL/OR-9", body={"data": {"url": "https://e2.test/r/OR-9"}})
    outcome = service.get_url("OR-9", "sandbox")
    assert outcome.ok
    assert outcome.body["url"] == "https://e2.test/r/OR-9"

    missing = service.get_url("OR-10", "sandbox")
    assert missing.status_code == 404
    assert missing.body["error"] == "get-URL failed"


def test_token_test_uses_cached_token(service):
    assert service.token_test() == {"ok": True, "token_present": True}


def test_malformed_entity_path_still_creates_draft(service, registry, store):
    store.insert_rows("value_list_items", [{"value_list_key": "VL32", "value_id": "5"}])
    store.insert_rows(
        "incident_eccairs_attributes",
        [{"incident_id": INCIDENT, "attribute_code": "32", "value_id": "5", "entity_path": "4-1"}],
    )
    registry.on("POST", "/occurrences/create", body={"data": {"e2Id": "OR-0000000000000102", "version": 1}})

    outcome = service.create_draft(INCIDENT, "sandbox")

    assert outcome.ok
    assert outcome.body["meta"]["rejected"] == [
        {"attribute_code": "32", "reason": "invalid entity path", "value_id": "5"}
    ]
    assert store.get_export(INCIDENT, "sandbox")["status"] == "draft_created"


def test_selection_read_failure_marks_export_failed(store, service, registry, monkeypatch):
    def broken(incident_id):
        raise StoreError(IO_ERROR, "disk I/O error")

    monkeypatch.setattr(store, "load_generic_attributes", broken)
    with pytest.raises(StoreError):
        service.create_draft(INCIDENT, "sandbox")

    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "failed"
    assert export["last_error"] == "disk I/O error"
    assert registry.requests == []


def test_shape_failure_marks_export_failed(store, service, registry, monkeypatch):
    real_compile = service.compiler.compile

    def compile_without_root_id(*args, **kwargs):
        result = real_compile(*args, **kwargs)
        del result.document["taxonomyCodes"]["24"]["ID"]
        return result

    monkeypatch.setattr(service.compiler, "compile", compile_without_root_id)
    with pytest.raises(DocumentShapeError):
        service.create_draft(INCIDENT, "sandbox")

    export = store.get_export(INCIDENT, "sandbox")
    assert export["status"] == "failed"
    assert "'ID' is a required property" in export["last_error"]
    assert registry.requests == []
