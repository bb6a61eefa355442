"""Data models shared by ingestion, the pool pipeline and the JSON surfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class DexTag(str, Enum):
    """Source DEX a pool was listed from."""

    AERODROME = "aerodrome"
    AERODROME_V3 = "aerodrome_v3"
    UNISWAP = "uniswap"
    PANCAKE = "pancake"
    SUSHI = "sushi"
    ALIEN = "alien"

    @property
    def display_name(self) -> str:
        return _DEX_DISPLAY_NAMES[self]


_DEX_DISPLAY_NAMES = {
    DexTag.AERODROME: "Aerodrome V2",
    DexTag.AERODROME_V3: "Aerodrome V3",
    DexTag.UNISWAP: "Uniswap V3",
    DexTag.PANCAKE: "PancakeSwap V3",
    DexTag.SUSHI: "Sushi V3",
    DexTag.ALIEN: "Alien V3",
}


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """Name and declared type of one upstream column."""

    name: str
    type: str = ""


@dataclass(frozen=True, slots=True)
class ColumnarTable:
    """Column descriptors plus positional row arrays, as returned upstream."""

    columns: Sequence[ColumnDescriptor] = ()
    rows: Sequence[Sequence[Any]] = ()

    @property
    def is_empty(self) -> bool:
        return not self.columns or not self.rows

    @classmethod
    def from_payload(cls, payload: Any) -> "ColumnarTable":
        """Build a table from the wire shape; anything malformed becomes empty."""

        if not isinstance(payload, dict):
            return cls()
        raw_columns = payload.get("columns")
        raw_rows = payload.get("data")
        if not isinstance(raw_columns, list) or not isinstance(raw_rows, list):
            return cls()
        columns: List[ColumnDescriptor] = []
        for column in raw_columns:
            if isinstance(column, dict):
                columns.append(
                    ColumnDescriptor(name=str(column.get("name", "")), type=str(column.get("type") or ""))
                )
            else:
                columns.append(ColumnDescriptor(name=str(column)))
        rows = [row for row in raw_rows if isinstance(row, (list, tuple))]
        return cls(columns=tuple(columns), rows=tuple(rows))


@dataclass(frozen=True, slots=True)
class PoolSummary:
    """Canonical description of a liquidity pool prior to enrichment."""

    pool_address: str
    token0_address: str = ""
    token0_symbol: str = ""
    token1_address: str = ""
    token1_symbol: str = ""
    token0_decimals: int = 18
    token1_decimals: int = 18
    pool_type: Optional[str] = None
    fee_tier: int = 0
    tvl_usd: float = 0.0
    volume_1h: float = 0.0
    volume_24h: float = 0.0
    volume_7d: float = 0.0
    swap_count_24h: int = 0
    unique_users_24h: int = 0
    fee_apr: Optional[float] = None
    created_timestamp: float = 0.0

    @property
    def pair_label(self) -> str:
        return f"{self.token0_symbol}/{self.token1_symbol}"

    @property
    def has_signal(self) -> bool:
        """Whether the listing carried any known-good liquidity data."""

        return self.tvl_usd > 0 or self.volume_24h > 0


@dataclass(frozen=True, slots=True)
class PoolDetail(PoolSummary):
    """Single-pool record from a detail endpoint; TVL and APR are authoritative."""

    @property
    def has_signal(self) -> bool:
        return self.tvl_usd > 0 or (self.fee_apr is not None and self.fee_apr > 0)


@dataclass(frozen=True, slots=True)
class EnrichedPool(PoolSummary):
    """A summary with its detail record merged on top."""


@dataclass(frozen=True, slots=True)
class RankedPool:
    """A pool tagged with the DEX it came from."""

    pool: PoolSummary
    dex: DexTag


@dataclass(slots=True)
class PoolListing:
    """Result of listing one DEX: the first ``limit`` matches and the full match count."""

    pools: List[PoolSummary] = field(default_factory=list)
    total_count: int = 0


@dataclass(frozen=True, slots=True)
class Token:
    """An ERC-20 token known to the upstream token list."""

    address: str
    symbol: str
    name: str
    decimals: int = 18
    chain_id: int = 8453


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """Latest USD price for a token."""

    token_address: str
    price_usd: float
    timestamp: float


@dataclass(frozen=True, slots=True)
class PricePoint:
    """One hourly price observation."""

    token_address: str
    timestamp: float
    price_usd: float
    interval: str = "1h"


@dataclass(frozen=True, slots=True)
class TopHolder:
    holder_address: str
    balance: float
    balance_usd: float
    percentage: float


@dataclass(slots=True)
class HolderDistribution:
    """Largest holders and their share of the summed holder balance."""

    token_address: str
    holders: List[TopHolder] = field(default_factory=list)
    total_holders: int = 0
    top_10_concentration: float = 0.0


@dataclass(slots=True)
class TokenReport:
    """Everything a single token search produced."""

    token: Token
    pools: List[RankedPool] = field(default_factory=list)
    price: Optional[PriceQuote] = None
    price_history: Optional[List[PricePoint]] = None
    holders: Optional[HolderDistribution] = None
    source_counts: Dict[str, int] = field(default_factory=dict)
    correlation_id: Optional[str] = None


__all__ = [
    "ColumnDescriptor",
    "ColumnarTable",
    "DexTag",
    "EnrichedPool",
    "HolderDistribution",
    "PoolDetail",
    "PoolListing",
    "PoolSummary",
    "PricePoint",
    "PriceQuote",
    "RankedPool",
    "Token",
    "TokenReport",
    "TopHolder",
]
