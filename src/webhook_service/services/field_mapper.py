"""Nested-field extraction and transforms for inbound payload mapping."""
from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from typing import Any, Iterable

from webhook_service.domain.enums import FieldTransform
from webhook_service.domain.webhooks import FieldMapping

_NON_DIGITS = re.compile(r"[^0-9]")


def extract(payload: Any, path: str, default: Any = None) -> Any:
    """Walk ``path`` (dot separated) through nested mappings.

    Returns ``default`` as soon as a segment is missing or the current value is
    not a mapping. Lists are never indexed.
    """
    value = payload
    for key in path.split("."):
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        else:
            return default
    return value


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def format_phone(text: str) -> str:
    """Normalize Brazilian numbers to E.164; anything else is returned untouched."""
    digits = _NON_DIGITS.sub("", text)
    if len(digits) == 11:
        return f"+55{digits}"
    if len(digits) == 13 and digits.startswith("55"):
        return f"+{digits}"
    return text


def transform(value: Any, kind: FieldTransform | str | None = None) -> str:
    text = stringify(value)
    try:
        kind = FieldTransform(kind) if kind is not None else None
    except ValueError:
        return text
    if kind is FieldTransform.UPPERCASE:
        return text.upper()
    if kind is FieldTransform.LOWERCASE:
        return text.lower()
    if kind is FieldTransform.TRIM:
        return text.strip()
    if kind is FieldTransform.FORMAT_PHONE:
        return format_phone(text)
    return text


def apply_mappings(payload: Any, mappings: Iterable[FieldMapping]) -> dict[str, str]:
    """Apply mappings in order; a later mapping overwrites an earlier one for the same target."""
    mapped: dict[str, str] = {}
    for mapping in mappings:
        target = getattr(mapping.target, "value", mapping.target)
        mapped[target] = transform(extract(payload, mapping.source), mapping.transform)
    return mapped
