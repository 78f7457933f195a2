"""Normalization helpers shared by the loader and the converter."""

from __future__ import annotations

import math
import re
from typing import Any

_NUMERIC_RE = re.compile(r"^\d+$")
_VL_ALIAS_RE = re.compile(r"^vl(\d+)$", re.IGNORECASE)


def to_attribute_code(code_or_vl_key: Any) -> str | None:
    """Canonicalize ``"431"`` or ``"VL431"`` (any case) to ``"431"``.

    Anything else yields ``None``.
    """

    if code_or_vl_key is None or isinstance(code_or_vl_key, bool):
        return None
    text = str(code_or_vl_key).strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return text
    match = _VL_ALIAS_RE.match(text)
    if match:
        return match.group(1)
    return None


def ensure_string(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_int(value: Any) -> int | None:
    """Return ``value`` as an integer when it denotes a finite whole number."""

    if isinstance(value, bool):
        return None
    text = ensure_string(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


__all__ = ["to_attribute_code", "ensure_string", "as_int"]
