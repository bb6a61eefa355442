"""Merge per-DEX pool sets into one TVL-ranked list."""

from __future__ import annotations

from typing import List, Mapping, Sequence

from ..datalake.schemas import DexTag, PoolSummary, RankedPool
from ..monitoring.event_bus import NULL_SINK, EventSink, EventType
from ..monitoring.logger import current_correlation_id


def aggregate(
    per_dex: Mapping[DexTag, Sequence[PoolSummary]],
    *,
    sink: EventSink = NULL_SINK,
) -> List[RankedPool]:
    """Tag every pool with its DEX and sort by TVL, highest first.

    Pools are concatenated in mapping order before a stable sort, so equal TVLs
    keep that order.
    """

    tagged = [RankedPool(pool=pool, dex=dex) for dex, pools in per_dex.items() for pool in pools]
    ranked = sorted(tagged, key=lambda item: item.pool.tvl_usd, reverse=True)
    sink.publish(
        EventType.AGGREGATION,
        {
            "total": len(ranked),
            "per_source": {dex.value: len(pools) for dex, pools in per_dex.items()},
        },
        correlation_id=current_correlation_id(),
    )
    return ranked


__all__ = ["aggregate"]
