"""Shared helpers for serialising scan objects to JSON."""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


def prepare_for_json(value: Any) -> Any:
    """Recursively normalise objects into JSON-serialisable primitives."""

    if hasattr(value, "to_dict") and callable(value.to_dict):
        return prepare_for_json(value.to_dict())

    if isinstance(value, dict):
        return {str(key): prepare_for_json(val) for key, val in value.items()}

    if isinstance(value, (set, frozenset)):
        return [prepare_for_json(item) for item in sorted(value, key=str)]

    if isinstance(value, (list, tuple)):
        return [prepare_for_json(item) for item in value]

    if isinstance(value, Path):
        return str(value)

    if isinstance(value, Decimal):
        return float(value)

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if is_dataclass(value) and not isinstance(value, type):
        return prepare_for_json(asdict(value))

    return value


def json_dumps(
    value: Any,
    *,
    ensure_ascii: bool = False,
    sort_keys: bool = False,
    indent: int | None = None,
) -> str:
    """Serialise ``value`` to JSON after normalisation."""

    normalised = prepare_for_json(value)
    return json.dumps(normalised, ensure_ascii=ensure_ascii, sort_keys=sort_keys, indent=indent)


__all__ = ["prepare_for_json", "json_dumps"]
