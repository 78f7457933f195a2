"""Convert one attribute selection to the registry's wire shape.

The registry's attribute encoding is not uniform: some codes take a flat
integer array, others a list of single-key wrapper objects. The selection's
``format`` decides which shape is emitted, so the compiler never special-cases
attribute codes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Mapping

from .codes import as_int
from .models import AttributeFormat, AttributeSelection, RawOverride

Converter = Callable[[AttributeSelection], Any]


def raw_override(sel: AttributeSelection) -> RawOverride | None:
    """Return the verbatim override carried by a ``raw_json`` selection."""

    if sel.format is not AttributeFormat.RAW_JSON or sel.raw is None:
        return None
    return RawOverride(sel.raw)


def _int_array(sel: AttributeSelection) -> list[int] | None:
    n = as_int(sel.value_id)
    if n is None:
        return None
    return [n]


def _raw_json(sel: AttributeSelection) -> Any:
    override = raw_override(sel)
    return None if override is None else override.value


def _content_object_array(sel: AttributeSelection) -> list[dict[str, list[int]]] | None:
    n = as_int(sel.value_id)
    if n is None:
        return None
    return [{"content": [n]}]


def _text_content_array(sel: AttributeSelection) -> list[dict[str, str]] | None:
    if not sel.text:
        return None
    return [{"text": sel.text}]


def _string_array(sel: AttributeSelection) -> list[str] | None:
    if not sel.text:
        return None
    return [sel.text]


def _date_array(sel: AttributeSelection) -> list[str] | None:
    if not sel.text:
        return None
    try:
        date.fromisoformat(sel.text)
    except ValueError:
        return None
    return [sel.text]


def _time_array(sel: AttributeSelection) -> list[str] | None:
    if not sel.text or len(sel.text) != 8:
        return None
    try:
        datetime.strptime(sel.text, "%H:%M:%S")
    except ValueError:
        return None
    return [sel.text]


def _object_array(sel: AttributeSelection) -> list[Any] | None:
    if isinstance(sel.raw, list):
        return sel.raw
    if isinstance(sel.raw, Mapping):
        return [sel.raw]
    return _int_array(sel)


def _unrecognized(sel: AttributeSelection) -> Any:
    if sel.raw is not None:
        return sel.raw
    return _int_array(sel)


_CONVERTERS: dict[AttributeFormat, Converter] = {
    AttributeFormat.RAW_JSON: _raw_json,
    AttributeFormat.VALUE_LIST_INT_ARRAY: _int_array,
    AttributeFormat.CONTENT_OBJECT_ARRAY: _content_object_array,
    AttributeFormat.TEXT_CONTENT_ARRAY: _text_content_array,
    AttributeFormat.STRING_ARRAY: _string_array,
    AttributeFormat.LOCAL_DATE: _date_array,
    AttributeFormat.DATE_ARRAY: _date_array,
    AttributeFormat.TIME_ARRAY: _time_array,
    AttributeFormat.OBJECT_ARRAY: _object_array,
    AttributeFormat.UNRECOGNIZED: _unrecognized,
}

_MISSING = set(AttributeFormat) - set(_CONVERTERS)
if _MISSING:
    raise RuntimeError(
        "no converter registered for formats: "
        + ", ".join(sorted(f.value for f in _MISSING))
    )


def convert(sel: AttributeSelection) -> Any:
    """Return the wire value for ``sel`` or ``None`` when none can be produced."""

    return _CONVERTERS[sel.format](sel)


__all__ = ["convert", "raw_override"]
