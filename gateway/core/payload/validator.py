"""Value-list validation against the registry's taxonomy catalog."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

log = logging.getLogger(__name__)


class ValueListCatalog(Protocol):
    def fetch_value_list_items(
        self, value_list_key: str, value_ids: Iterable[str]
    ) -> list[Mapping[str, Any]]:
        ...


class TaxonomyValidator:
    """Check ``(code, value_id)`` pairs against the value-list catalog.

    Lookups are batched per attribute code, so the number of catalog queries
    is bounded by the number of distinct codes. Catalog failures propagate to
    the caller unchanged.
    """

    def __init__(self, catalog: ValueListCatalog):
        self.catalog = catalog

    def validate(self, pairs: Iterable[tuple[str, Any]]) -> set[str]:
        by_code: dict[str, list[str]] = {}
        for code, value_id in pairs:
            if not code or value_id is None:
                continue
            values = by_code.setdefault(str(code), [])
            value = str(value_id)
            if value not in values:
                values.append(value)

        valid: set[str] = set()
        for code, values in by_code.items():
            vl_key = f"VL{code}"
            rows = self.catalog.fetch_value_list_items(vl_key, values)
            for row in rows or []:
                valid.add(f"{row['value_list_key']}:{row['value_id']}")
            log.debug(
                "TAXONOMY_VALIDATE key=%s requested=%d matched=%d",
                vl_key,
                len(values),
                sum(1 for v in values if f"{vl_key}:{v}" in valid),
            )
        return valid


__all__ = ["TaxonomyValidator", "ValueListCatalog"]
