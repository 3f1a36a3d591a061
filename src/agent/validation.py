"""Check a resolved step input against the agent's declared input schema."""
from __future__ import annotations

import math
from typing import Any

from src.core.contracts.agent import SchemaField


def _matches(field_type: str, value: Any) -> bool:
    if field_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type == "boolean":
        return isinstance(value, bool)
    if field_type == "json":
        return isinstance(value, dict)
    if field_type == "array":
        return isinstance(value, list)
    # string, image and file travel as text (URL, data URI or plain text)
    return isinstance(value, str)


def check_input(schema: list[SchemaField], payload: dict[str, Any]) -> list[str]:
    """Human-readable problems with payload; an empty list means it fits the schema."""
    problems = []
    for f in schema:
        value = payload.get(f.name)
        if value is None:
            if f.required:
                problems.append(f"missing required input '{f.name}'")
            continue
        if not _matches(f.type, value):
            problems.append(f"input '{f.name}' should be {f.type}, got {type(value).__name__}")
    return problems


def coerce_number(value: Any, default: float) -> float:
    """value as a finite number, or default when missing/non-numeric."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(num) or math.isinf(num):
        return default
    return num
