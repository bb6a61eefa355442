"""Shared constants for Base chain pool analysis."""

from datetime import datetime, timezone

# Utility function to get timezone-aware UTC datetime
def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)

BASE_CHAIN_ID = 8453

# EVM tokens overwhelmingly use 18 decimals.
DEFAULT_TOKEN_DECIMALS = 18

# Bucket names used by the upstream for time-windowed metrics.
BUCKET_1_HOUR = "1 hour"
BUCKET_1_DAY = "1 day"
BUCKET_1_WEEK = "1 week"

EVM_ADDRESS_LENGTH = 42

__all__ = [
    "utc_now",
    "BASE_CHAIN_ID",
    "DEFAULT_TOKEN_DECIMALS",
    "BUCKET_1_HOUR",
    "BUCKET_1_DAY",
    "BUCKET_1_WEEK",
    "EVM_ADDRESS_LENGTH",
]
