"""JSON encoding shared by the CLI and the HTTP service."""

from __future__ import annotations

import json
import math
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


def to_serializable(value: Any) -> Any:
    """Recursively turn models into plain JSON values.

    Non-finite floats become ``None``; strict JSON encoders (including the one
    behind FastAPI's ``JSONResponse``) reject ``NaN`` and ``Infinity``.
    """

    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_serializable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_serializable(key)): to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_serializable(item) for item in value]
    return value


def dumps(value: Any, indent: Optional[int] = None) -> str:
    return json.dumps(to_serializable(value), indent=indent, allow_nan=False, default=str)


__all__ = ["dumps", "to_serializable"]
