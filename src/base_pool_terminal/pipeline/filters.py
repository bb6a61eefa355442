"""Completeness and token-membership filters for pool summaries."""

from __future__ import annotations

from typing import List, Optional, Sequence, TypeVar

from ..datalake.schemas import PoolSummary
from ..monitoring.event_bus import NULL_SINK, EventSeverity, EventSink, EventType
from ..monitoring.logger import current_correlation_id, get_logger

PoolT = TypeVar("PoolT", bound=PoolSummary)

STAGE_COMPLETENESS = "completeness"
STAGE_MEMBERSHIP = "membership"
STAGE_POST_ENRICHMENT = "membership_post_enrichment"

logger = get_logger(__name__)


def is_complete(pool: PoolSummary) -> bool:
    return bool(pool.token0_symbol.strip()) and bool(pool.token1_symbol.strip())


def contains_token(pool: PoolSummary, token_address: str) -> bool:
    target = token_address.strip().lower()
    if not target:
        return False
    return pool.token0_address.lower() == target or pool.token1_address.lower() == target


def filter_complete(
    pools: Sequence[PoolT],
    *,
    sink: EventSink = NULL_SINK,
    source: Optional[str] = None,
) -> List[PoolT]:
    """Drop pools missing either token symbol. Idempotent."""

    kept = [pool for pool in pools if is_complete(pool)]
    _report(sink, STAGE_COMPLETENESS, source, len(pools), len(kept))
    return kept


def filter_by_token(
    pools: Sequence[PoolT],
    token_address: str,
    *,
    sink: EventSink = NULL_SINK,
    source: Optional[str] = None,
    stage: str = STAGE_MEMBERSHIP,
) -> List[PoolT]:
    """Keep pools where either side of the pair is ``token_address`` (case-insensitive)."""

    kept = [pool for pool in pools if contains_token(pool, token_address)]
    _report(sink, stage, source, len(pools), len(kept))
    return kept


def _report(sink: EventSink, stage: str, source: Optional[str], count_in: int, count_out: int) -> None:
    if count_in != count_out:
        logger.debug(
            "%s filter dropped %d of %d pools",
            stage,
            count_in - count_out,
            count_in,
            extra={"source": source, "stage": stage},
        )
    sink.publish(
        EventType.FILTER,
        {"stage": stage, "source": source, "count_in": count_in, "count_out": count_out},
        severity=EventSeverity.DEBUG,
        correlation_id=current_correlation_id(),
    )


__all__ = [
    "STAGE_COMPLETENESS",
    "STAGE_MEMBERSHIP",
    "STAGE_POST_ENRICHMENT",
    "contains_token",
    "filter_by_token",
    "filter_complete",
    "is_complete",
]
