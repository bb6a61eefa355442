"""Field-name reconciliation across upstream producers.

Each DEX integration behind the upstream API names the same column differently
(``poolId`` vs ``pool_address``, ``tvlUSD`` vs ``poolTvlUSD``...), and some
metrics arrive either flat or as a mapping keyed by a time bucket such as
``"1 day"``. Rather than chaining fallbacks at every call site, each entity type
gets a declarative table of :class:`FieldSpec` entries that the generic
resolvers below walk in priority order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..utils.constants import BUCKET_1_DAY, BUCKET_1_HOUR, BUCKET_1_WEEK


class _Missing:
    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve(record: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    """Return the value of the first candidate present with a non-null value.

    ``0``, ``False`` and ``""`` are real values and stop the search; only absent
    keys and ``None`` fall through. Returns :data:`MISSING` when nothing matches.
    """

    for name in candidates:
        value = record.get(name)
        if value is not None:
            return value
    return MISSING


def resolve_bucketed(
    record: Mapping[str, Any],
    bucket_fields: Sequence[str],
    bucket_key: str,
    flat_candidates: Sequence[str] = (),
) -> Any:
    """Resolve a time-bucketed metric, falling back to flat field names.

    The first mapping found under ``bucket_fields`` that holds a non-null value
    for ``bucket_key`` wins. When no bucketed form carries the key, the flat
    candidates are tried in order.
    """

    for name in bucket_fields:
        buckets = record.get(name)
        if isinstance(buckets, Mapping):
            value = buckets.get(bucket_key)
            if value is not None:
                return value
    return resolve(record, flat_candidates)


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Where to find one canonical field in an upstream record."""

    candidates: Tuple[str, ...] = ()
    bucket_fields: Tuple[str, ...] = ()
    bucket_key: Optional[str] = None

    def resolve(self, record: Mapping[str, Any]) -> Any:
        if self.bucket_key is not None and self.bucket_fields:
            return resolve_bucketed(record, self.bucket_fields, self.bucket_key, self.candidates)
        return resolve(record, self.candidates)


FieldTable = Mapping[str, FieldSpec]


def flat(*candidates: str) -> FieldSpec:
    return FieldSpec(candidates=tuple(candidates))


def bucketed(bucket_field: str, bucket_key: str, *flat_candidates: str) -> FieldSpec:
    return FieldSpec(
        candidates=tuple(flat_candidates),
        bucket_fields=(bucket_field,),
        bucket_key=bucket_key,
    )


def resolve_all(record: Mapping[str, Any], table: FieldTable) -> Dict[str, Any]:
    """Resolve every field of ``table``; unresolved fields map to :data:`MISSING`."""

    return {name: spec.resolve(record) for name, spec in table.items()}


_POOL_IDENTITY: Dict[str, FieldSpec] = {
    "pool_address": flat("poolId", "poolAddress", "pool_address", "address"),
    "token0_address": flat("token0", "token0Address", "token0_address"),
    "token0_symbol": flat("token0Symbol", "token0_symbol"),
    "token0_decimals": flat("token0Decimals", "token0_decimals"),
    "token1_address": flat("token1", "token1Address", "token1_address"),
    "token1_symbol": flat("token1Symbol", "token1_symbol"),
    "token1_decimals": flat("token1Decimals", "token1_decimals"),
    "fee_tier": flat("feeTier", "fee_tier", "fee"),
    "tvl_usd": flat("poolTvlUSD", "tvlUSD", "tvl_usd", "tvl"),
    "created_timestamp": flat("createdAt", "createdTimestamp", "created_timestamp"),
}

# UniV3-style listings (Uniswap, PancakeSwap, Sushi, Alien, Aerodrome V3).
UNIV3_LISTING_FIELDS: FieldTable = {
    **_POOL_IDENTITY,
    "volume_1h": flat("volume1hUSD", "volume1h", "volume_1h"),
    "volume_24h": flat("volume24hUSD", "volume24h", "volume_24h"),
    "volume_7d": flat("volume7dUSD", "volume7d", "volume_7d"),
}

# Single-pool detail responses: volumes, counts and APR come as bucket maps.
UNIV3_DETAIL_FIELDS: FieldTable = {
    **_POOL_IDENTITY,
    "volume_1h": bucketed("swapVolumeUSD", BUCKET_1_HOUR, "volumeUSD1h", "volume1hUSD", "volume_1h"),
    "volume_24h": bucketed("swapVolumeUSD", BUCKET_1_DAY, "volumeUSD1d", "volume24hUSD", "volume_24h"),
    "volume_7d": bucketed("swapVolumeUSD", BUCKET_1_WEEK, "volumeUSD7d", "volume7dUSD", "volume_7d"),
    "swap_count_24h": bucketed("swapCount", BUCKET_1_DAY, "swapCount1d", "swap_count_24h"),
    "unique_users_24h": bucketed("uniqueUserCount", BUCKET_1_DAY, "uniqueUsers1d", "unique_users_24h"),
    "fee_apr": bucketed("feeApr", BUCKET_1_DAY, "feeAPR1d", "fee_apr", "feeAPR"),
}

# The Aerodrome V3 detail endpoint reports flat 24h metrics and no APR.
AERODROME_V3_DETAIL_FIELDS: FieldTable = {
    **_POOL_IDENTITY,
    "volume_1h": flat("volume1hUSD", "volume1h", "volume_1h"),
    "volume_24h": flat("volume24hUSD", "volume24h", "volume_24h"),
    "volume_7d": flat("volume7dUSD", "volume7d", "volume_7d"),
    "swap_count_24h": flat("swapCount24h", "swap_count_24h"),
    "unique_users_24h": flat("uniqueUsers24h", "unique_users_24h"),
}

AERODROME_V2_LISTING_FIELDS: FieldTable = {
    "pool_address": flat("poolId", "poolAddress", "pool_address"),
    "token0_address": flat("token0", "token0Address", "token0_address"),
    "token0_symbol": flat("token0Symbol", "token0_symbol"),
    "token1_address": flat("token1", "token1Address", "token1_address"),
    "token1_symbol": flat("token1Symbol", "token1_symbol"),
    "pool_type": flat("poolType", "pool_type"),
    "stable": flat("stable", "isStable"),
    "tvl_usd": flat("poolTvlUSD", "tvlUSD", "tvl_usd"),
    "volume_24h": flat("volume24hUSD", "volume24h", "volume_24h"),
    "volume_7d": flat("volume7dUSD", "volume7d", "volume_7d"),
    "fee_apr": flat("swapFeeApr7d", "feeApr", "fee_apr"),
    "created_timestamp": flat("createdAt", "created_at"),
}

TOKEN_FIELDS: FieldTable = {
    "address": flat("address", "tokenAddress", "token_address"),
    "symbol": flat("symbol", "tokenSymbol"),
    "name": flat("name", "tokenName"),
    "decimals": flat("decimals", "tokenDecimals"),
    "chain_id": flat("chainId", "chain_id"),
}

PRICE_CURRENT_FIELDS: FieldTable = {
    "token_address": flat("tokenAddress", "token_address"),
    "price_usd": flat("priceUSD", "price_usd"),
    "timestamp": flat("updatedAt", "updated_at"),
}

PRICE_HOUR_FIELDS: FieldTable = {
    "token_address": flat("tokenAddress", "token_address"),
    "price_usd": flat("priceUSD", "price_usd", "price"),
    "timestamp": flat("timestamp", "updatedAt", "hour"),
}

HOLDER_FIELDS: FieldTable = {
    "holder_address": flat("owner", "holderAddress", "holder_address"),
    "balance": flat("tokenAmount", "balance", "token_amount"),
    "balance_usd": flat("valueUSD", "balanceUSD", "balance_usd"),
}


__all__ = [
    "AERODROME_V2_LISTING_FIELDS",
    "AERODROME_V3_DETAIL_FIELDS",
    "FieldSpec",
    "FieldTable",
    "HOLDER_FIELDS",
    "MISSING",
    "PRICE_CURRENT_FIELDS",
    "PRICE_HOUR_FIELDS",
    "TOKEN_FIELDS",
    "UNIV3_DETAIL_FIELDS",
    "UNIV3_LISTING_FIELDS",
    "bucketed",
    "flat",
    "resolve",
    "resolve_all",
    "resolve_bucketed",
]
