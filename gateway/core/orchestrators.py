"""Export workflows: compile an incident, talk to the registry, record the outcome.

Each public method covers one gateway operation. Registry rejections are
not retried here; they are written to ``eccairs_exports`` and handed back to
the caller together with the registry's status code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from gateway.core.payload import (
    CompilationAborted,
    CompileMode,
    DocumentShapeError,
    EditTarget,
    PayloadCompiler,
    SelectionLoader,
    TaxonomyValidator,
    build_delete_request,
    validate_document,
)
from gateway.core.registry import (
    AccessTokenManager,
    RegistryClient,
    RegistryResponse,
    RegistryUnavailable,
    TenantCredentials,
    TokenAcquisitionError,
)
from gateway.core.store import IncidentStore, StoreError
from gateway.core.store.storage import utc_now_iso
from gateway.core.telemetry.emit import emit

log = logging.getLogger(__name__)


@dataclass
class ExportError(Exception):
    status_code: int
    message: str
    details: Any = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ok": False, "error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


@dataclass(frozen=True)
class ExportOutcome:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.body.get("ok"))


class ExportService:
    def __init__(self, store: IncidentStore, compiler: PayloadCompiler, client: RegistryClient):
        self.store = store
        self.compiler = compiler
        self.client = client

    @property
    def token_manager(self) -> AccessTokenManager:
        return self.client.token_manager

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _incident(self, incident_id: str) -> dict[str, Any]:
        incident = self.store.get_incident(incident_id)
        if not incident:
            raise ExportError(404, "Incident not found")
        return incident

    def _integration(self, company_id: str | None, environment: str) -> dict[str, Any]:
        integration = self.store.load_integration(company_id, environment) if company_id else None
        if not integration:
            raise ExportError(
                400, "ECCAIRS integration is not configured for this company/environment"
            )
        return integration

    def _existing_export(
        self, incident_id: str, environment: str, *, require_version: bool = False
    ) -> dict[str, Any]:
        export = self.store.get_export(incident_id, environment)
        if not export or not export.get("e2_id"):
            raise ExportError(400, "No e2_id found. Create a draft first.")
        if require_version and not export.get("e2_version"):
            raise ExportError(
                400, "No e2_version found. Create the draft again or fetch the current version."
            )
        return export

    def _mark_pending(self, export: Mapping[str, Any]) -> None:
        self.store.update_export(
            export["id"],
            status="pending",
            attempts=int(export.get("attempts") or 0) + 1,
            last_attempt_at=utc_now_iso(),
            last_error=None,
        )

    # ------------------------------------------------------------------
    # Registry call with failure bookkeeping
    # ------------------------------------------------------------------
    def _call_registry(
        self,
        operation: str,
        export_id: int,
        payload: Any,
        call: Callable[[], RegistryResponse],
    ) -> RegistryResponse:
        try:
            response = call()
        except (TokenAcquisitionError, RegistryUnavailable) as exc:
            self.store.update_export(
                export_id,
                status="failed",
                last_error=str(exc),
                payload=payload,
                last_attempt_at=utc_now_iso(),
            )
            emit("e2_export_failed", {"operation": operation, "export_id": export_id, "error": str(exc)})
            raise

        if not response.ok:
            message = response.error_message(f"E2 {operation} failed ({response.status_code})")
            self.store.update_export(
                export_id,
                status="failed",
                last_error=message,
                response=response.body,
                payload=payload,
                last_attempt_at=utc_now_iso(),
            )
            emit(
                "e2_export_failed",
                {"operation": operation, "export_id": export_id, "status": response.status_code},
            )
        return response

    def _compile(
        self,
        export_id: int,
        incident_id: str,
        company_id: str | None,
        *,
        mode: CompileMode,
        edit_target: EditTarget | None = None,
    ):
        try:
            result = self.compiler.compile(
                incident_id, company_id, mode=mode, edit_target=edit_target
            )
            validate_document(result.document)
        except (CompilationAborted, DocumentShapeError, StoreError) as exc:
            message = exc.message if isinstance(exc, StoreError) else str(exc)
            self.store.update_export(
                export_id,
                status="failed",
                last_error=message,
                last_attempt_at=utc_now_iso(),
            )
            emit("e2_export_failed", {"operation": mode.value, "export_id": export_id, "error": message})
            raise
        emit("e2_payload_compiled", {"incident_id": incident_id, **result.diagnostics.to_dict()})
        return result

    @staticmethod
    def _failure(operation: str, response: RegistryResponse) -> ExportOutcome:
        return ExportOutcome(
            response.status_code,
            {
                "ok": False,
                "error": f"E2 {operation} failed",
                "status": response.status_code,
                "message": response.error_message(f"E2 {operation} failed ({response.status_code})"),
                "details": response.body,
            },
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def token_test(self) -> dict[str, Any]:
        token = self.token_manager.get_token()
        return {"ok": True, "token_present": bool(token)}

    def create_draft(self, incident_id: str, environment: str) -> ExportOutcome:
        incident = self._incident(incident_id)
        company_id = incident.get("company_id")
        integration = self._integration(company_id, environment)
        credentials = TenantCredentials.from_integration(integration)

        export = self.store.upsert_pending_export(incident_id, company_id, environment)
        result = self._compile(export["id"], incident_id, company_id, mode=CompileMode.CREATE)
        document = result.document

        response = self._call_registry(
            "create",
            export["id"],
            document,
            lambda: self.client.create_occurrence(document, credentials),
        )
        if not response.ok:
            return self._failure("create", response)

        e2_id = response.data_field("e2Id")
        e2_version = response.data_field("version")
        updated = self.store.update_export(
            export["id"],
            status="draft_created",
            e2_id=e2_id,
            e2_version=None if e2_version is None else str(e2_version),
            payload=document,
            response=response.body,
            last_error=None,
            last_attempt_at=utc_now_iso(),
        )
        log.info("E2_DRAFT_CREATED incident_id=%s e2_id=%s", incident_id, e2_id)
        return ExportOutcome(
            200,
            {
                "ok": True,
                "incident_id": incident_id,
                "environment": environment,
                "e2_id": e2_id,
                "e2_version": e2_version,
                "export": updated,
                "meta": result.diagnostics.to_dict(),
                "raw": response.body,
            },
        )

    def update_draft(
        self, incident_id: str, environment: str, version_type: str = "DRAFT"
    ) -> ExportOutcome:
        incident = self._incident(incident_id)
        export = self._existing_export(incident_id, environment, require_version=True)
        company_id = export.get("company_id") or incident.get("company_id")
        integration = self._integration(company_id, environment)
        credentials = TenantCredentials.from_integration(integration)

        self._mark_pending(export)
        target = EditTarget(
            e2_id=export["e2_id"], version=export["e2_version"], version_type=version_type
        )
        result = self._compile(
            export["id"], incident_id, company_id, mode=CompileMode.EDIT, edit_target=target
        )
        document = result.document

        response = self._call_registry(
            "edit",
            export["id"],
            document,
            lambda: self.client.edit_occurrence(document, credentials),
        )
        if not response.ok:
            return self._failure("edit", response)

        new_version = response.data_field("version")
        if new_version is None:
            new_version = export["e2_version"]
        updated = self.store.update_export(
            export["id"],
            status="draft_updated",
            e2_version=str(new_version),
            payload=document,
            response=response.body,
            last_error=None,
            last_attempt_at=utc_now_iso(),
        )
        return ExportOutcome(
            200,
            {
                "ok": True,
                "incident_id": incident_id,
                "environment": environment,
                "e2_id": export["e2_id"],
                "e2_version": (updated or {}).get("e2_version"),
                "export": updated,
                "meta": result.diagnostics.to_dict(),
                "raw": response.body,
            },
        )

    def submit(self, incident_id: str, environment: str) -> ExportOutcome:
        incident = self._incident(incident_id)
        export = self._existing_export(incident_id, environment)
        company_id = export.get("company_id") or incident.get("company_id")
        credentials = TenantCredentials.from_integration(
            self._integration(company_id, environment)
        )

        self._mark_pending(export)
        payload = {"e2Id": export["e2_id"], "status": "SENT"}
        response = self._call_registry(
            "change-status",
            export["id"],
            payload,
            lambda: self.client.change_status(export["e2_id"], "SENT", credentials),
        )
        if not response.ok:
            return self._failure("change-status", response)

        updated = self.store.update_export(
            export["id"],
            status="submitted",
            last_error=None,
            response=response.body,
            payload=payload,
            last_attempt_at=utc_now_iso(),
        )
        return ExportOutcome(
            200,
            {
                "ok": True,
                "incident_id": incident_id,
                "environment": environment,
                "e2_id": export["e2_id"],
                "export": updated,
                "raw": response.body,
            },
        )

    def delete_draft(self, incident_id: str, environment: str) -> ExportOutcome:
        incident = self._incident(incident_id)
        export = self._existing_export(incident_id, environment)
        company_id = export.get("company_id") or incident.get("company_id")
        credentials = TenantCredentials.from_integration(
            self._integration(company_id, environment)
        )

        delete_request = build_delete_request(export["e2_id"], environment)
        self._mark_pending(export)
        response = self._call_registry(
            "delete",
            export["id"],
            delete_request.to_meta(),
            lambda: self.client.delete_occurrence(delete_request, credentials),
        )
        if not response.ok:
            return self._failure("delete", response)

        updated = self.store.update_export(
            export["id"],
            status="deleted",
            last_error=None,
            response=response.body,
            payload=delete_request.to_meta(),
            last_attempt_at=utc_now_iso(),
        )
        return ExportOutcome(
            200,
            {
                "ok": True,
                "incident_id": incident_id,
                "environment": environment,
                "e2_id": export["e2_id"],
                "export": updated,
                "meta": delete_request.to_meta(),
                "raw": response.body,
            },
        )

    def get_url(self, e2_id: str, environment: str) -> ExportOutcome:
        credentials = None
        export = self.store.get_export_by_e2_id(e2_id, environment)
        if export and export.get("company_id"):
            integration = self.store.load_integration(export["company_id"], environment)
            credentials = TenantCredentials.from_integration(integration)

        response = self.client.get_url(e2_id, credentials)
        if not response.ok:
            return ExportOutcome(
                response.status_code,
                {
                    "ok": False,
                    "error": "get-URL failed",
                    "environment": environment,
                    "status": response.status_code,
                    "details": response.body,
                },
            )
        return ExportOutcome(
            200,
            {
                "ok": True,
                "e2_id": e2_id,
                "environment": environment,
                "url": response.data_field("url"),
                "raw": response.body,
            },
        )


def build_export_service(store: IncidentStore, token_manager: AccessTokenManager) -> ExportService:
    compiler = PayloadCompiler(SelectionLoader(store), TaxonomyValidator(store))
    return ExportService(store, compiler, RegistryClient(token_manager))


__all__ = ["ExportError", "ExportOutcome", "ExportService", "build_export_service"]
