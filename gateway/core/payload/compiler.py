"""Compile stored attribute selections into a registry document.

The compiler runs ``LOADING -> VALIDATING -> CONVERTING -> ASSEMBLED``.
Problems with individual selections are recorded on the diagnostics and never
stop compilation; a catalog failure while validating moves the compilation to
``ABORTED`` and raises :class:`CompilationAborted`.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from gateway.config import DEFAULT_TAXONOMY_CODE
from gateway.core.store.errors import StoreError

from .assembler import CREATE_DOCUMENT_ID, EntityAssembler, is_valid_entity_path
from .converter import convert, raw_override
from .loader import SelectionLoader
from .models import (
    AttributeSelection,
    CompilationDiagnostics,
    CompilationResult,
    CompileMode,
    CompileState,
    ConvertedAttribute,
    DeleteRequest,
    EditTarget,
)
from .validator import TaxonomyValidator

log = logging.getLogger(__name__)

REASON_WRONG_TAXONOMY = "wrong taxonomy"
REASON_NOT_IN_CATALOG = "Not found in value list catalog"
REASON_INVALID_ENTITY_PATH = "invalid entity path"

_REPORT_PREFIX_RE = re.compile(r"^(OR|VR|OC)-")


class CompilationAborted(Exception):
    """Raised when an infrastructure failure stops a compilation."""

    def __init__(self, diagnostics: CompilationDiagnostics, cause: Exception):
        detail = getattr(cause, "message", None) or str(cause)
        super().__init__(f"compilation aborted in {CompileState.VALIDATING.value}: {detail}")
        self.diagnostics = diagnostics
        self.cause = cause


def get_report_type(e2_id: str | None) -> str:
    if not e2_id:
        return "OR"
    if e2_id.startswith("VR-"):
        return "VR"
    if e2_id.startswith("OC-"):
        return "OC"
    return "OR"


def get_e2_id_numeric_part(e2_id: str) -> str:
    """``"OR-0000000000073873"`` -> ``"0000000000073873"``."""

    return _REPORT_PREFIX_RE.sub("", e2_id)


def build_delete_request(e2_id: str | None, environment: str | None = None) -> DeleteRequest:
    """Describe ``DELETE /occurrences/{type}/{numericId}``; the body stays empty."""

    if not e2_id:
        raise ValueError("e2_id is required for delete operation")
    report_type = get_report_type(e2_id)
    numeric_id = get_e2_id_numeric_part(e2_id)
    return DeleteRequest(
        method="DELETE",
        path=f"/occurrences/{report_type}/{numeric_id}",
        e2_id=e2_id,
        numeric_id=numeric_id,
        report_type=report_type,
        environment=environment,
    )


class PayloadCompiler:
    def __init__(
        self,
        loader: SelectionLoader,
        validator: TaxonomyValidator,
        *,
        taxonomy_code: str = DEFAULT_TAXONOMY_CODE,
        assembler: EntityAssembler | None = None,
    ):
        self.loader = loader
        self.validator = validator
        self.taxonomy_code = taxonomy_code
        self.assembler = assembler or EntityAssembler()

    def compile(
        self,
        incident_id: str,
        company_id: str | None,
        *,
        mode: CompileMode | str = CompileMode.CREATE,
        edit_target: EditTarget | None = None,
    ) -> CompilationResult:
        mode = CompileMode.parse(mode)
        if mode is CompileMode.DELETE:
            raise ValueError("delete requests carry no document; use build_delete_request")
        if mode is CompileMode.EDIT and (edit_target is None or not edit_target.e2_id):
            raise ValueError("e2_id is required for edit mode")

        diagnostics = CompilationDiagnostics(mode=mode, taxonomy_code=self.taxonomy_code)

        # LOADING
        loaded = self.loader.load(incident_id, company_id)
        diagnostics.source = loaded.source
        diagnostics.selections_count = len(loaded.selections)
        candidates: list[AttributeSelection] = []
        for sel in loaded.selections:
            if sel.taxonomy_code != self.taxonomy_code:
                diagnostics.reject(sel.code, REASON_WRONG_TAXONOMY, sel.value_id)
                continue
            if sel.entity_path is not None and not is_valid_entity_path(sel.entity_path):
                diagnostics.reject(sel.code, REASON_INVALID_ENTITY_PATH, sel.value_id)
                continue
            candidates.append(sel)
        diagnostics.considered_count = len(candidates)

        # VALIDATING
        diagnostics.state = CompileState.VALIDATING
        pairs = [
            (sel.code, sel.value_id)
            for sel in candidates
            if sel.format.requires_catalog and sel.value_id is not None
        ]
        try:
            valid = self.validator.validate(pairs)
        except Exception as exc:
            diagnostics.state = CompileState.ABORTED
            diagnostics.error = exc.message if isinstance(exc, StoreError) else str(exc)
            log.error(
                "PAYLOAD_COMPILE_ABORTED incident_id=%s code=%s error=%s",
                incident_id,
                getattr(exc, "code", type(exc).__name__),
                diagnostics.error,
            )
            raise CompilationAborted(diagnostics, exc) from exc

        # CONVERTING
        diagnostics.state = CompileState.CONVERTING
        converted: list[ConvertedAttribute] = []
        for sel in candidates:
            value = self._convert_one(sel, valid, diagnostics)
            if value is not None:
                converted.append(ConvertedAttribute(sel.code, value, sel.entity_path))

        # ASSEMBLED
        top_level, by_path = self.assembler.group(converted)
        diagnostics.top_level_attributes = top_level
        diagnostics.entity_attributes = by_path
        document = self._document(mode, top_level, by_path, edit_target)
        diagnostics.state = CompileState.ASSEMBLED

        log.info(
            "PAYLOAD_COMPILED incident_id=%s mode=%s source=%s selections=%d used=%d rejected=%d",
            incident_id,
            mode.value,
            diagnostics.source,
            diagnostics.selections_count,
            diagnostics.used_count,
            len(diagnostics.rejected),
        )
        return CompilationResult(document=document, diagnostics=diagnostics)

    def _convert_one(
        self,
        sel: AttributeSelection,
        valid: set[str],
        diagnostics: CompilationDiagnostics,
    ) -> Any:
        # Raw overrides take precedence over every other rule, catalog included.
        override = raw_override(sel)
        if override is not None:
            return override.value

        if sel.format.requires_catalog and sel.value_id is not None:
            if sel.catalog_key not in valid:
                diagnostics.reject(sel.code, REASON_NOT_IN_CATALOG, sel.value_id)
                return None

        value = convert(sel)
        if value is None:
            diagnostics.reject(sel.code, f"No value for format={sel.format_label}", sel.value_id)
        return value

    def _document(
        self,
        mode: CompileMode,
        top_level: dict[str, Any],
        by_path: dict[str, dict[str, Any]],
        edit_target: EditTarget | None,
    ) -> dict[str, Any]:
        if mode is CompileMode.EDIT:
            if edit_target is None:
                raise ValueError("e2_id is required for edit mode")
            block = self.assembler.taxonomy_block(top_level, by_path)
            return {
                "e2Id": edit_target.e2_id,
                "version": edit_target.version,
                "versionType": edit_target.version_type or "DRAFT",
                "taxonomyCodes": {self.taxonomy_code: block},
            }

        block = self.assembler.taxonomy_block(
            top_level, by_path, document_id=CREATE_DOCUMENT_ID
        )
        return {
            "type": "REPORT",
            "status": "DRAFT",
            "taxonomyCodes": {self.taxonomy_code: block},
        }


__all__ = [
    "CompilationAborted",
    "PayloadCompiler",
    "build_delete_request",
    "get_e2_id_numeric_part",
    "get_report_type",
    "REASON_INVALID_ENTITY_PATH",
    "REASON_NOT_IN_CATALOG",
    "REASON_WRONG_TAXONOMY",
]
