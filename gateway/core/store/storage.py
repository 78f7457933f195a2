"""sqlite3-backed access to the incident, integration and catalog tables.

The gateway only reads the incident side of the schema. The one table it
writes is ``eccairs_exports``, which records every registry interaction for an
incident and environment.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from .errors import IO_ERROR, MISSING_TABLE, MissingTableError, StoreError

log = logging.getLogger(__name__)

GENERIC_ATTRIBUTES_TABLE = "incident_eccairs_attributes"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS incidents (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS incident_eccairs_mappings (
    incident_id TEXT PRIMARY KEY,
    occurrence_class INTEGER,
    phase_of_flight INTEGER,
    aircraft_category INTEGER
);
CREATE TABLE IF NOT EXISTS eccairs_integrations (
    company_id TEXT NOT NULL,
    environment TEXT NOT NULL DEFAULT 'sandbox',
    enabled INTEGER NOT NULL DEFAULT 1,
    responsible_entity_id INTEGER,
    responsible_entity_value_id TEXT,
    reporting_entity_id INTEGER,
    e2_client_id TEXT,
    e2_client_secret TEXT,
    e2_base_url TEXT,
    e2_scope TEXT,
    PRIMARY KEY (company_id, environment)
);
CREATE TABLE IF NOT EXISTS value_list_items (
    value_list_key TEXT NOT NULL,
    value_id TEXT NOT NULL,
    description TEXT,
    PRIMARY KEY (value_list_key, value_id)
);
CREATE TABLE IF NOT EXISTS eccairs_exports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    incident_id TEXT NOT NULL,
    company_id TEXT,
    environment TEXT NOT NULL,
    status TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_attempt_at TEXT,
    last_error TEXT,
    payload TEXT,
    response TEXT,
    e2_id TEXT,
    e2_version TEXT,
    UNIQUE (incident_id, environment)
);
"""

GENERIC_ATTRIBUTES_SQL = """
CREATE TABLE IF NOT EXISTS incident_eccairs_attributes (
    incident_id TEXT NOT NULL,
    attribute_code TEXT,
    value_id TEXT,
    taxonomy_code TEXT,
    format TEXT,
    payload_json TEXT,
    text_value TEXT,
    entity_path TEXT
);
"""

_EXPORT_JSON_FIELDS = ("payload", "response")
_EXPORT_COLUMNS = frozenset(
    {
        "company_id",
        "status",
        "attempts",
        "last_attempt_at",
        "last_error",
        "payload",
        "response",
        "e2_id",
        "e2_version",
    }
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_json(value: Any, *, column: str) -> Any:
    if value is None or not isinstance(value, (str, bytes)):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        log.warning("STORE_JSON_DECODE_FAILED column=%s", column)
        return None


def _encode_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True)


class IncidentStore:
    """Thin repository over the gateway's relational tables."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreError(IO_ERROR, f"cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as exc:
            message = str(exc)
            if message.startswith("no such table"):
                table = message.rsplit(":", 1)[-1].strip()
                raise MissingTableError(MISSING_TABLE, message, table) from exc
            raise StoreError(IO_ERROR, message) from exc
        except sqlite3.Error as exc:
            raise StoreError(IO_ERROR, str(exc)) from exc
        finally:
            conn.close()

    def create_schema(self, *, include_generic_attributes: bool = True) -> None:
        """Create every table the gateway touches (development and tests)."""

        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            if include_generic_attributes:
                conn.executescript(GENERIC_ATTRIBUTES_SQL)

    # ------------------------------------------------------------------
    # Incident side (read-only)
    # ------------------------------------------------------------------
    def get_incident(self, incident_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, company_id FROM incidents WHERE id = ?", (incident_id,)
            ).fetchone()
        return dict(row) if row else None

    def load_generic_attributes(self, incident_id: str) -> list[dict[str, Any]] | None:
        """Return generic attribute rows, or ``None`` when the table is not provisioned."""

        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT attribute_code, value_id, taxonomy_code, format, payload_json, "
                    "text_value, entity_path FROM incident_eccairs_attributes "
                    "WHERE incident_id = ? ORDER BY rowid",
                    (incident_id,),
                ).fetchall()
        except MissingTableError as exc:
            if exc.table != GENERIC_ATTRIBUTES_TABLE:
                raise
            log.info("STORE_GENERIC_ATTRIBUTES_MISSING incident_id=%s", incident_id)
            return None

        result = []
        for row in rows:
            item = dict(row)
            item["payload_json"] = _decode_json(item.get("payload_json"), column="payload_json")
            result.append(item)
        return result

    def load_legacy_mapping(self, incident_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM incident_eccairs_mappings WHERE incident_id = ?",
                (incident_id,),
            ).fetchone()
        return dict(row) if row else None

    def load_integration_settings(self, company_id: str | None) -> dict[str, Any] | None:
        """Return responsible/reporting entity defaults for a company, any environment."""

        if not company_id:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT responsible_entity_id, responsible_entity_value_id, reporting_entity_id "
                "FROM eccairs_integrations WHERE company_id = ? "
                "ORDER BY enabled DESC, environment LIMIT 1",
                (company_id,),
            ).fetchone()
        return dict(row) if row else None

    def load_integration(self, company_id: str, environment: str) -> dict[str, Any] | None:
        """Return the enabled integration row for ``company_id`` in ``environment``."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM eccairs_integrations "
                "WHERE company_id = ? AND environment = ? AND enabled = 1",
                (company_id, environment),
            ).fetchone()
        return dict(row) if row else None

    def fetch_value_list_items(
        self, value_list_key: str, value_ids: Iterable[str]
    ) -> list[dict[str, Any]]:
        ids = list(value_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT value_list_key, value_id FROM value_list_items "
                f"WHERE value_list_key = ? AND value_id IN ({placeholders})",
                (value_list_key, *ids),
            ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Export bookkeeping
    # ------------------------------------------------------------------
    def _export_from_row(self, row: sqlite3.Row | None) -> dict[str, Any] | None:
        if row is None:
            return None
        data = dict(row)
        for column in _EXPORT_JSON_FIELDS:
            data[column] = _decode_json(data.get(column), column=column)
        return data

    def get_export(self, incident_id: str, environment: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM eccairs_exports WHERE incident_id = ? AND environment = ?",
                (incident_id, environment),
            ).fetchone()
        return self._export_from_row(row)

    def get_export_by_e2_id(self, e2_id: str, environment: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM eccairs_exports WHERE e2_id = ? AND environment = ?",
                (e2_id, environment),
            ).fetchone()
        return self._export_from_row(row)

    def upsert_pending_export(
        self, incident_id: str, company_id: str | None, environment: str
    ) -> dict[str, Any]:
        """Mark the export for ``incident_id``/``environment`` pending and bump attempts."""

        now = utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO eccairs_exports "
                "(incident_id, company_id, environment, status, attempts, last_attempt_at, last_error) "
                "VALUES (?, ?, ?, 'pending', 1, ?, NULL) "
                "ON CONFLICT (incident_id, environment) DO UPDATE SET "
                "company_id = excluded.company_id, status = 'pending', "
                "attempts = eccairs_exports.attempts + 1, "
                "last_attempt_at = excluded.last_attempt_at, last_error = NULL",
                (incident_id, company_id, environment, now),
            )
            row = conn.execute(
                "SELECT * FROM eccairs_exports WHERE incident_id = ? AND environment = ?",
                (incident_id, environment),
            ).fetchone()
        export = self._export_from_row(row)
        if export is None:
            raise StoreError(IO_ERROR, f"export row for {incident_id}/{environment} vanished after upsert")
        return export

    def update_export(self, export_id: int, **fields: Any) -> dict[str, Any] | None:
        unknown = set(fields) - _EXPORT_COLUMNS
        if unknown:
            raise ValueError(f"unknown export columns: {sorted(unknown)}")
        values: dict[str, Any] = {}
        for key, value in fields.items():
            values[key] = _encode_json(value) if key in _EXPORT_JSON_FIELDS else value
        if not values:
            return self._get_export_by_id(export_id)
        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE eccairs_exports SET {assignments} WHERE id = ?",
                (*values.values(), export_id),
            )
        return self._get_export_by_id(export_id)

    def _get_export_by_id(self, export_id: int) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM eccairs_exports WHERE id = ?", (export_id,)
            ).fetchone()
        return self._export_from_row(row)

    # ------------------------------------------------------------------
    # Seeding helpers (development and tests)
    # ------------------------------------------------------------------
    def insert_rows(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        with self._connect() as conn:
            for row in rows:
                columns = list(row)
                values = [
                    _encode_json(v) if isinstance(v, (dict, list)) else v
                    for v in row.values()
                ]
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)})",
                    values,
                )


__all__ = ["IncidentStore", "SCHEMA_SQL", "GENERIC_ATTRIBUTES_TABLE", "utc_now_iso"]
