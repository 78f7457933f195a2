"""Shape guard for compiled documents before they leave the gateway."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

SCHEMA_DIR = Path(__file__).resolve().parent.parent.parent / "schemas"
with open(SCHEMA_DIR / "e2_document.json", encoding="utf-8") as _f:
    _document_validator = Draft7Validator(json.load(_f))

# Position of each document shape inside the root ``oneOf``.
_CREATE_BRANCH = 0
_EDIT_BRANCH = 1


class DocumentShapeError(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("compiled document does not match the registry shape: " + "; ".join(errors))
        self.errors = errors


def _branch_errors(document: Mapping[str, Any], error: ValidationError) -> Iterable[ValidationError]:
    """Replace a root ``oneOf`` failure by the errors of the branch the document aims at."""

    if error.validator != "oneOf" or not error.context:
        return [error]
    branch = _EDIT_BRANCH if isinstance(document, Mapping) and "e2Id" in document else _CREATE_BRANCH
    picked = [e for e in error.context if e.schema_path and e.schema_path[0] == branch]
    return picked or [error]


def document_errors(document: Mapping[str, Any]) -> list[str]:
    errors = [
        leaf
        for err in _document_validator.iter_errors(document)
        for leaf in _branch_errors(document, err)
    ]
    errors.sort(key=lambda e: [str(p) for p in e.absolute_path])
    return [
        f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
        for err in errors
    ]


def validate_document(document: Mapping[str, Any]) -> None:
    """Raise :class:`DocumentShapeError` when ``document`` is malformed."""

    errors = document_errors(document)
    if errors:
        raise DocumentShapeError(errors)
