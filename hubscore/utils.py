"""Small helpers shared by the services and persistence layers."""
from __future__ import annotations

import json
from typing import Any


def load_json_column(text: str | None, fallback: Any) -> Any:
    """Decode a ``*_json`` column. Empty or malformed text yields *fallback*."""
    if not text:
        return fallback
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return fallback


def round2(value: float) -> float:
    """Round a score to two decimals (the precision scores are reported at)."""
    return round(value, 2)
