"""Turn decoded upstream records into canonical pool models."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..datalake.schemas import PoolDetail, PoolSummary
from ..utils.constants import DEFAULT_TOKEN_DECIMALS, utc_now
from .fields import MISSING, FieldTable, resolve_all

# Epoch values above this are taken to be milliseconds (year 33658 in seconds).
_MILLISECOND_THRESHOLD = 1e12
_TRUE_STRINGS = {"true", "1", "yes", "y", "t"}


def to_float(value: Any) -> float:
    """Parse ``value`` as a finite float, returning ``0.0`` on absence or failure."""

    parsed = to_optional_float(value)
    return 0.0 if parsed is None else parsed


def to_optional_float(value: Any) -> Optional[float]:
    if value is None or value is MISSING or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = float(value)
        else:
            text = str(value).strip()
            if not text:
                return None
            parsed = float(text)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def to_int(value: Any, default: int = 0) -> int:
    parsed = to_optional_float(value)
    if parsed is None:
        return default
    return int(parsed)


def to_decimals(value: Any) -> int:
    parsed = to_optional_float(value)
    if parsed is None or parsed < 0:
        return DEFAULT_TOKEN_DECIMALS
    return int(parsed)


def to_text(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def to_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    parsed = to_optional_float(value)
    return bool(parsed)


def parse_timestamp(value: Any, *, now: Optional[float] = None) -> float:
    """Return unix seconds for ``value``, or ``now`` when it cannot be read.

    Numeric epochs (or numeric strings) in milliseconds are scaled down. ISO-8601
    strings, including the upstream ``YYYY-MM-DD HH:MM:SS`` form, are read as UTC
    when they carry no offset.
    """

    fallback = now if now is not None else utc_now().timestamp()
    if value is None or value is MISSING or isinstance(value, bool):
        return fallback
    if isinstance(value, datetime):
        return _datetime_seconds(value)
    numeric = to_optional_float(value)
    if numeric is not None:
        if numeric <= 0:
            return fallback
        return numeric / 1000.0 if numeric > _MILLISECOND_THRESHOLD else numeric
    text = str(value).strip()
    if not text:
        return fallback
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return fallback
    return _datetime_seconds(parsed)


def _datetime_seconds(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _pool_type(values: Mapping[str, Any], default: Optional[str]) -> Optional[str]:
    raw = values.get("pool_type", MISSING)
    if isinstance(raw, str) and raw.strip():
        return raw.strip().lower()
    stable = values.get("stable", MISSING)
    if stable is not MISSING:
        return "stable" if to_flag(stable) else "volatile"
    return default


def _fields(values: Mapping[str, Any], default_pool_type: Optional[str], now: Optional[float]) -> dict:
    return {
        "token0_address": to_text(values.get("token0_address")),
        "token0_symbol": to_text(values.get("token0_symbol")),
        "token1_address": to_text(values.get("token1_address")),
        "token1_symbol": to_text(values.get("token1_symbol")),
        "token0_decimals": to_decimals(values.get("token0_decimals")),
        "token1_decimals": to_decimals(values.get("token1_decimals")),
        "pool_type": _pool_type(values, default_pool_type),
        "fee_tier": to_int(values.get("fee_tier")),
        "tvl_usd": to_float(values.get("tvl_usd")),
        "volume_1h": to_float(values.get("volume_1h")),
        "volume_24h": to_float(values.get("volume_24h")),
        "volume_7d": to_float(values.get("volume_7d")),
        "swap_count_24h": to_int(values.get("swap_count_24h")),
        "unique_users_24h": to_int(values.get("unique_users_24h")),
        "fee_apr": to_optional_float(values.get("fee_apr")),
        "created_timestamp": parse_timestamp(values.get("created_timestamp"), now=now),
    }


def normalize_summary(
    record: Mapping[str, Any],
    fields: FieldTable,
    *,
    default_pool_type: Optional[str] = None,
    now: Optional[float] = None,
) -> PoolSummary:
    """Build a :class:`PoolSummary` from one decoded listing row. Never raises."""

    values = resolve_all(record, fields)
    return PoolSummary(
        pool_address=to_text(values.get("pool_address")),
        **_fields(values, default_pool_type, now),
    )


def normalize_detail(
    record: Mapping[str, Any],
    fields: FieldTable,
    fallback_address: str = "",
    *,
    now: Optional[float] = None,
) -> PoolDetail:
    """Build a :class:`PoolDetail` from a single-pool detail row.

    The detail endpoints do not always echo the pool address, so the address that
    was requested is used when the row lacks one.
    """

    values = resolve_all(record, fields)
    address = to_text(values.get("pool_address")) or fallback_address
    return PoolDetail(pool_address=address, **_fields(values, None, now))


__all__ = [
    "normalize_detail",
    "normalize_summary",
    "parse_timestamp",
    "to_decimals",
    "to_flag",
    "to_float",
    "to_int",
    "to_optional_float",
    "to_text",
]
