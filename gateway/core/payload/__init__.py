"""Attribute payload compiler: selections in, registry document out."""

from .assembler import CREATE_DOCUMENT_ID, EntityAssembler, generate_entity_id
from .codes import as_int, ensure_string, to_attribute_code
from .compiler import (
    CompilationAborted,
    PayloadCompiler,
    build_delete_request,
    get_e2_id_numeric_part,
    get_report_type,
)
from .converter import convert
from .loader import SelectionLoader, occurrence_class_policy, responsible_entity_policy
from .models import (
    AttributeFormat,
    AttributeSelection,
    CompilationDiagnostics,
    CompilationResult,
    CompileMode,
    CompileState,
    DeleteRequest,
    EditTarget,
    RejectedAttribute,
)
from .schema import DocumentShapeError, validate_document
from .validator import TaxonomyValidator

__all__ = [
    "AttributeFormat",
    "AttributeSelection",
    "CREATE_DOCUMENT_ID",
    "CompilationAborted",
    "CompilationDiagnostics",
    "CompilationResult",
    "CompileMode",
    "CompileState",
    "DeleteRequest",
    "DocumentShapeError",
    "EditTarget",
    "EntityAssembler",
    "PayloadCompiler",
    "RejectedAttribute",
    "SelectionLoader",
    "TaxonomyValidator",
    "as_int",
    "build_delete_request",
    "convert",
    "ensure_string",
    "generate_entity_id",
    "get_e2_id_numeric_part",
    "get_report_type",
    "occurrence_class_policy",
    "responsible_entity_policy",
    "to_attribute_code",
    "validate_document",
]
