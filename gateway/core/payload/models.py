"""Data model for the attribute payload compiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final

from gateway.config import DEFAULT_TAXONOMY_CODE


class AttributeFormat(str, Enum):
    """Wire shape families accepted by the registry."""

    RAW_JSON = "raw_json"
    VALUE_LIST_INT_ARRAY = "value_list_int_array"
    CONTENT_OBJECT_ARRAY = "content_object_array"
    TEXT_CONTENT_ARRAY = "text_content_array"
    STRING_ARRAY = "string_array"
    LOCAL_DATE = "local_date"
    DATE_ARRAY = "date_array"
    TIME_ARRAY = "time_array"
    OBJECT_ARRAY = "object_array"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, label: str | None) -> "AttributeFormat":
        """Map a stored format label onto a member.

        Blank labels resolve to the value-list default; anything unknown maps
        to ``UNRECOGNIZED`` so the converter can apply its fallback order.
        """

        normalized = (label or "").strip().lower()
        if not normalized:
            return DEFAULT_FORMAT
        for member in cls:
            if member is not cls.UNRECOGNIZED and normalized == member.value:
                return member
        return cls.UNRECOGNIZED

    @property
    def requires_catalog(self) -> bool:
        return self is AttributeFormat.VALUE_LIST_INT_ARRAY


DEFAULT_FORMAT: Final[AttributeFormat] = AttributeFormat.VALUE_LIST_INT_ARRAY


class CompileMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: "str | CompileMode | None") -> "CompileMode":
        if isinstance(value, CompileMode):
            return value
        normalized = (value or "").strip().lower()
        if not normalized:
            return cls.CREATE
        if normalized == "update":
            return cls.EDIT
        return cls(normalized)


class CompileState(str, Enum):
    LOADING = "loading"
    VALIDATING = "validating"
    CONVERTING = "converting"
    ASSEMBLED = "assembled"
    ABORTED = "aborted"


@dataclass(frozen=True)
class AttributeSelection:
    """One candidate attribute to report, before validation."""

    code: str
    taxonomy_code: str = DEFAULT_TAXONOMY_CODE
    format: AttributeFormat = DEFAULT_FORMAT
    value_id: str | None = None
    text: str | None = None
    raw: Any = None
    entity_path: str | None = None
    declared_format: str | None = None

    @property
    def format_label(self) -> str:
        return self.declared_format or self.format.value

    @property
    def catalog_key(self) -> str:
        return f"VL{self.code}:{self.value_id}"


@dataclass(frozen=True)
class RawOverride:
    """Pre-shaped value emitted verbatim, bypassing catalog validation."""

    value: Any


@dataclass(frozen=True)
class LoadedSelections:
    source: str
    selections: list[AttributeSelection]


@dataclass(frozen=True)
class RejectedAttribute:
    code: str
    reason: str
    value_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"attribute_code": self.code, "reason": self.reason}
        if self.value_id is not None:
            data["value_id"] = self.value_id
        return data


@dataclass(frozen=True)
class ConvertedAttribute:
    code: str
    value: Any
    entity_path: str | None = None


@dataclass(frozen=True)
class EditTarget:
    """Registry-issued identity of a previously created draft."""

    e2_id: str
    version: Any = None
    version_type: str = "DRAFT"


@dataclass
class CompilationDiagnostics:
    mode: CompileMode
    taxonomy_code: str = DEFAULT_TAXONOMY_CODE
    source: str = "none"
    state: CompileState = CompileState.LOADING
    selections_count: int = 0
    considered_count: int = 0
    rejected: list[RejectedAttribute] = field(default_factory=list)
    top_level_attributes: dict[str, Any] = field(default_factory=dict)
    entity_attributes: dict[str, dict[str, Any]] = field(default_factory=dict)
    error: str | None = None

    @property
    def used_count(self) -> int:
        return len(self.top_level_attributes) + sum(
            len(attrs) for attrs in self.entity_attributes.values()
        )

    def reject(self, code: str, reason: str, value_id: str | None = None) -> None:
        self.rejected.append(RejectedAttribute(code=code, reason=reason, value_id=value_id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "taxonomy_code": self.taxonomy_code,
            "source": self.source,
            "state": self.state.value,
            "selectionsCount": self.selections_count,
            "consideredCount": self.considered_count,
            "usedCount": self.used_count,
            "rejected": [r.to_dict() for r in self.rejected],
            "topLevelAttributes": self.top_level_attributes,
            "entityAttributes": self.entity_attributes,
            "error": self.error,
        }


@dataclass(frozen=True)
class CompilationResult:
    document: dict[str, Any]
    diagnostics: CompilationDiagnostics


@dataclass(frozen=True)
class DeleteRequest:
    method: str
    path: str
    e2_id: str
    numeric_id: str
    report_type: str
    environment: str | None = None

    def to_meta(self) -> dict[str, Any]:
        return {
            "e2Id": self.e2_id,
            "numericId": self.numeric_id,
            "type": self.report_type,
            "environment": self.environment,
            "operation": CompileMode.DELETE.value,
        }


__all__ = [
    "AttributeFormat",
    "AttributeSelection",
    "CompilationDiagnostics",
    "CompilationResult",
    "CompileMode",
    "CompileState",
    "ConvertedAttribute",
    "DEFAULT_FORMAT",
    "DeleteRequest",
    "EditTarget",
    "LoadedSelections",
    "RawOverride",
    "RejectedAttribute",
]
