"""Load attribute selections for one incident.

Selections come from the generic per-attribute table when it has rows for the
incident. Otherwise a fixed legacy mapping turns a handful of wide-row incident
fields into hard-coded attribute codes, filling gaps from the tenant's
integration defaults.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from gateway.config import DEFAULT_TAXONOMY_CODE

from .codes import as_int, ensure_string, to_attribute_code
from .models import AttributeFormat, AttributeSelection, LoadedSelections

log = logging.getLogger(__name__)

SOURCE_GENERIC = "incident_eccairs_attributes"
SOURCE_LEGACY = "incident_eccairs_mappings"
SOURCE_NONE = "none"

OCCURRENCE_CLASS_CODE = "431"
RESPONSIBLE_ENTITY_CODE = "453"
DETECTION_PHASE_CODE = "1072"
AIRCRAFT_CATEGORY_CODE = "32"
AIRCRAFT_ENTITY_PATH = "4"

VALID_OCCURRENCE_CLASSES = frozenset({100, 200, 300, 301, 302, 400, 500, 501, 502})
DEFAULT_OCCURRENCE_CLASS = 100
DEFAULT_RESPONSIBLE_ENTITY = 133


class SelectionSource(Protocol):
    def load_generic_attributes(self, incident_id: str) -> list[Mapping[str, Any]] | None:
        ...

    def load_legacy_mapping(self, incident_id: str) -> Mapping[str, Any] | None:
        ...

    def load_integration_settings(self, company_id: str | None) -> Mapping[str, Any] | None:
        ...


def occurrence_class_policy(raw: Any) -> int:
    """Clamp a stored occurrence class to a valid value.

    Values outside ``VALID_OCCURRENCE_CLASSES`` resolve to
    ``DEFAULT_OCCURRENCE_CLASS`` instead of being rejected.
    """

    value = as_int(raw)
    if value in VALID_OCCURRENCE_CLASSES:
        return value
    return DEFAULT_OCCURRENCE_CLASS


def responsible_entity_policy(integration: Mapping[str, Any] | None) -> int | str:
    """Responsible entity from the tenant integration, else the fixed country code."""

    configured = (integration or {}).get("responsible_entity_id")
    if configured in (None, "", 0):
        return DEFAULT_RESPONSIBLE_ENTITY
    return configured


def selection_from_row(row: Mapping[str, Any]) -> AttributeSelection | None:
    code = to_attribute_code(row.get("attribute_code"))
    if not code:
        return None
    declared = ensure_string(row.get("format"))
    return AttributeSelection(
        code=code,
        taxonomy_code=ensure_string(row.get("taxonomy_code")) or DEFAULT_TAXONOMY_CODE,
        format=AttributeFormat.parse(declared),
        value_id=ensure_string(row.get("value_id")),
        text=ensure_string(row.get("text_value")),
        raw=row.get("payload_json"),
        entity_path=ensure_string(row.get("entity_path")),
        declared_format=declared,
    )


def legacy_selections(
    wide: Mapping[str, Any], integration: Mapping[str, Any] | None
) -> list[AttributeSelection]:
    selections = [
        AttributeSelection(
            code=OCCURRENCE_CLASS_CODE,
            value_id=str(occurrence_class_policy(wide.get("occurrence_class"))),
        ),
        AttributeSelection(
            code=RESPONSIBLE_ENTITY_CODE,
            value_id=str(responsible_entity_policy(integration)),
        ),
    ]

    # Falsy stored values (None, "", 0) mean "not recorded".
    phase = wide.get("phase_of_flight")
    if phase:
        selections.append(
            AttributeSelection(
                code=DETECTION_PHASE_CODE,
                format=AttributeFormat.CONTENT_OBJECT_ARRAY,
                value_id=ensure_string(phase),
            )
        )

    category = wide.get("aircraft_category")
    if category:
        selections.append(
            AttributeSelection(
                code=AIRCRAFT_CATEGORY_CODE,
                value_id=ensure_string(category),
                entity_path=AIRCRAFT_ENTITY_PATH,
            )
        )
    return selections


class SelectionLoader:
    def __init__(self, source: SelectionSource):
        self.source = source

    def load(self, incident_id: str, company_id: str | None) -> LoadedSelections:
        rows = self.source.load_generic_attributes(incident_id)
        if rows:
            selections = []
            for row in rows:
                sel = selection_from_row(row)
                if sel is None:
                    log.debug(
                        "SELECTION_DROPPED incident_id=%s attribute_code=%r",
                        incident_id,
                        row.get("attribute_code"),
                    )
                    continue
                selections.append(sel)
            return LoadedSelections(SOURCE_GENERIC, selections)

        wide = self.source.load_legacy_mapping(incident_id)
        if not wide:
            return LoadedSelections(SOURCE_NONE, [])

        integration = self.source.load_integration_settings(company_id)
        return LoadedSelections(SOURCE_LEGACY, legacy_selections(wide, integration))


__all__ = [
    "SelectionLoader",
    "SelectionSource",
    "legacy_selections",
    "occurrence_class_policy",
    "responsible_entity_policy",
    "selection_from_row",
    "SOURCE_GENERIC",
    "SOURCE_LEGACY",
    "SOURCE_NONE",
    "DEFAULT_OCCURRENCE_CLASS",
    "DEFAULT_RESPONSIBLE_ENTITY",
    "VALID_OCCURRENCE_CLASSES",
]
