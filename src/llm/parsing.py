"""Helpers for pulling JSON out of model replies."""
from __future__ import annotations

import json
import re
from typing import Any

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


def parse_json_reply(text: str) -> Any:
    """json.loads after stripping markdown fences; raises json.JSONDecodeError."""
    return json.loads(strip_code_fences(text))


def extract_json_object(text: str) -> str | None:
    """The outermost ``{...}`` span of text, or None."""
    m = _JSON_OBJECT.search(text)
    return m.group(0) if m else None
