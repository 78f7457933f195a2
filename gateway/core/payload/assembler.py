from __future__ import annotations

import re
from typing import Any, Iterable

from .models import ConvertedAttribute

ENTITY_ID_PREFIX = "ID"
ENTITY_ID_WIDTH = 32
CREATE_DOCUMENT_ID = "ID00000000000000000000000000000001"

_ENTITY_PATH_RE = re.compile(r"^[0-9A-Za-z]{1,32}$")


def generate_entity_id(entity_path: str | int = "1") -> str:
    """Deterministic 34-character entity id derived from the entity path."""

    entity_id = ENTITY_ID_PREFIX + str(entity_path).rjust(ENTITY_ID_WIDTH, "0")
    return entity_id[: len(ENTITY_ID_PREFIX) + ENTITY_ID_WIDTH]


def is_valid_entity_path(entity_path: str | None) -> bool:
    """Paths must be alphanumeric and fit the 32-character id body untruncated."""

    return bool(entity_path) and bool(_ENTITY_PATH_RE.match(entity_path))


class EntityAssembler:
    """Split converted attributes into the top-level bag and per-path entities."""

    def group(
        self, converted: Iterable[ConvertedAttribute]
    ) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
        top_level: dict[str, Any] = {}
        by_path: dict[str, dict[str, Any]] = {}
        for item in converted:
            if item.entity_path:
                by_path.setdefault(item.entity_path, {})[item.code] = item.value
            else:
                top_level[item.code] = item.value
        return top_level, by_path

    def build_entities(self, by_path: dict[str, dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
        entities: dict[str, list[dict[str, Any]]] = {}
        for entity_path, attrs in by_path.items():
            if not attrs:
                continue
            entities[entity_path] = [
                {"ID": generate_entity_id(entity_path), "ATTRIBUTES": attrs}
            ]
        return entities

    def taxonomy_block(
        self,
        top_level: dict[str, Any],
        by_path: dict[str, dict[str, Any]],
        *,
        document_id: str | None = None,
    ) -> dict[str, Any]:
        block: dict[str, Any] = {}
        if document_id is not None:
            block["ID"] = document_id
        block["ATTRIBUTES"] = top_level
        entities = self.build_entities(by_path)
        if entities:
            block["ENTITIES"] = entities
        return block


__all__ = ["EntityAssembler", "generate_entity_id", "is_valid_entity_path", "CREATE_DOCUMENT_ID"]
