"""Batched, bounded-concurrency detail enrichment for pool summaries."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..datalake.schemas import EnrichedPool, PoolDetail, PoolSummary
from ..monitoring.event_bus import NULL_SINK, EventSeverity, EventSink, EventType
from ..monitoring.logger import current_correlation_id, get_logger
from ..utils.constants import DEFAULT_TOKEN_DECIMALS

DEFAULT_MAX_TO_ENRICH = 30
DEFAULT_BATCH_SIZE = 10
DEFAULT_DETAIL_TIMEOUT = 15.0

DetailFetcher = Callable[[str], Awaitable[Optional[PoolDetail]]]

_NUMERIC_FIELDS = (
    "fee_tier",
    "tvl_usd",
    "volume_1h",
    "volume_24h",
    "volume_7d",
    "swap_count_24h",
    "unique_users_24h",
)
_TEXT_FIELDS = ("token0_address", "token0_symbol", "token1_address", "token1_symbol")
_DECIMAL_FIELDS = ("token0_decimals", "token1_decimals")

logger = get_logger(__name__)


class EnrichmentOutcome(str, Enum):
    """What happened to one pool during enrichment, in policy priority order."""

    ENRICHED = "enriched"
    KEPT_WEAK_DETAIL = "kept_weak_detail"
    DROPPED_NO_SIGNAL = "dropped_no_signal"
    KEPT_ON_FAILURE = "kept_on_failure"
    DROPPED_ON_FAILURE = "dropped_on_failure"

    @property
    def keeps_pool(self) -> bool:
        return self in (
            EnrichmentOutcome.ENRICHED,
            EnrichmentOutcome.KEPT_WEAK_DETAIL,
            EnrichmentOutcome.KEPT_ON_FAILURE,
        )

    @property
    def is_failure(self) -> bool:
        return self in (EnrichmentOutcome.KEPT_ON_FAILURE, EnrichmentOutcome.DROPPED_ON_FAILURE)


@dataclass(slots=True)
class EnrichmentReport:
    """Surviving pools plus the per-pool outcome for every pool considered."""

    pools: List[PoolSummary] = field(default_factory=list)
    outcomes: List[Tuple[str, EnrichmentOutcome]] = field(default_factory=list)
    skipped: int = 0

    def count(self, outcome: EnrichmentOutcome) -> int:
        return sum(1 for _, item in self.outcomes if item is outcome)

    def summary(self) -> Dict[str, int]:
        return {outcome.value: self.count(outcome) for outcome in EnrichmentOutcome}


def merge_detail(summary: PoolSummary, detail: PoolDetail) -> EnrichedPool:
    """Overlay ``detail`` on ``summary`` without letting empty detail values win.

    The summary's pool address is kept as the pool's identity. Numeric fields take
    the detail value when it is non-zero, text fields when it is non-blank, and
    ``fee_apr`` when it is present and non-zero. Creation time stays with the
    summary because detail rows default it to "now".
    """

    merged = {item.name: getattr(summary, item.name) for item in fields(summary)}
    for name in _NUMERIC_FIELDS:
        value = getattr(detail, name)
        if value:
            merged[name] = value
    for name in _TEXT_FIELDS:
        value = getattr(detail, name)
        if value and value.strip():
            merged[name] = value
    for name in _DECIMAL_FIELDS:
        value = getattr(detail, name)
        if merged[name] == DEFAULT_TOKEN_DECIMALS and value != DEFAULT_TOKEN_DECIMALS:
            merged[name] = value
    if detail.fee_apr:
        merged["fee_apr"] = detail.fee_apr
    if detail.pool_type:
        merged["pool_type"] = detail.pool_type
    return EnrichedPool(**merged)


def decide(
    summary: PoolSummary,
    detail: Optional[PoolDetail],
    *,
    failed: bool = False,
) -> Tuple[EnrichmentOutcome, Optional[PoolSummary]]:
    """Apply the fallback-or-drop policy to one pool.

    Whether a weak or failed detail fetch keeps the pool depends only on the
    original summary's own TVL and volume, never on the detail alone. A detail
    fetch that returned nothing is a success with no signal.
    """

    if failed:
        if summary.has_signal:
            return EnrichmentOutcome.KEPT_ON_FAILURE, summary
        return EnrichmentOutcome.DROPPED_ON_FAILURE, None
    if detail is not None and detail.has_signal:
        return EnrichmentOutcome.ENRICHED, merge_detail(summary, detail)
    if summary.has_signal:
        return EnrichmentOutcome.KEPT_WEAK_DETAIL, summary
    return EnrichmentOutcome.DROPPED_NO_SIGNAL, None


class DetailEnricher:
    """Fetch per-pool detail for the first ``max_to_enrich`` summaries.

    Batches run strictly one after another. Inside a batch every fetch is its own
    task, gated by a semaphore sized to the batch and bounded by ``timeout``, so
    at most ``batch_size`` detail requests are ever in flight. A failing or slow
    fetch never cancels its siblings.

    The bound holds only if a cancelled fetcher returns once its request has
    actually stopped; thread-backed fetchers must wait for their worker.
    """

    def __init__(
        self,
        fetcher: DetailFetcher,
        *,
        max_to_enrich: int = DEFAULT_MAX_TO_ENRICH,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float = DEFAULT_DETAIL_TIMEOUT,
        sink: EventSink = NULL_SINK,
        source: Optional[str] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_to_enrich < 0:
            raise ValueError("max_to_enrich must not be negative")
        self._fetcher = fetcher
        self._max_to_enrich = max_to_enrich
        self._batch_size = batch_size
        self._timeout = timeout
        self._sink = sink
        self._source = source

    async def enrich(self, summaries: Sequence[PoolSummary]) -> List[PoolSummary]:
        report = await self.run(summaries)
        return report.pools

    async def run(self, summaries: Sequence[PoolSummary]) -> EnrichmentReport:
        started = time.perf_counter()
        considered = list(summaries[: self._max_to_enrich])
        report = EnrichmentReport(skipped=max(len(summaries) - len(considered), 0))
        for offset in range(0, len(considered), self._batch_size):
            batch = considered[offset : offset + self._batch_size]
            for summary, (outcome, pool) in zip(batch, await self._run_batch(batch)):
                report.outcomes.append((summary.pool_address, outcome))
                if pool is not None:
                    report.pools.append(pool)
        self._publish(report, time.perf_counter() - started)
        return report

    async def _run_batch(
        self, batch: Sequence[PoolSummary]
    ) -> List[Tuple[EnrichmentOutcome, Optional[PoolSummary]]]:
        semaphore = asyncio.Semaphore(self._batch_size)
        tasks = [asyncio.ensure_future(self._enrich_one(semaphore, summary)) for summary in batch]
        # gather keeps submission order regardless of completion order.
        return list(await asyncio.gather(*tasks))

    async def _enrich_one(
        self, semaphore: asyncio.Semaphore, summary: PoolSummary
    ) -> Tuple[EnrichmentOutcome, Optional[PoolSummary]]:
        async with semaphore:
            try:
                detail = await asyncio.wait_for(self._fetcher(summary.pool_address), self._timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Detail fetch for %s timed out after %.1fs",
                    summary.pool_address,
                    self._timeout,
                    extra={"source": self._source},
                )
                return decide(summary, None, failed=True)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Detail fetch for %s failed: %s",
                    summary.pool_address,
                    exc,
                    extra={"source": self._source},
                )
                return decide(summary, None, failed=True)
        return decide(summary, detail)

    def _publish(self, report: EnrichmentReport, duration: float) -> None:
        counts = report.summary()
        enriched = counts[EnrichmentOutcome.ENRICHED.value]
        failed = sum(report.count(outcome) for outcome in EnrichmentOutcome if outcome.is_failure)
        dropped = sum(report.count(outcome) for outcome in EnrichmentOutcome if not outcome.keeps_pool)
        payload = {
            "source": self._source,
            "considered": len(report.outcomes),
            "skipped": report.skipped,
            "returned": len(report.pools),
            "enriched": enriched,
            "failed": failed,
            "dropped": dropped,
            "outcomes": counts,
            "duration_seconds": duration,
        }
        severity = EventSeverity.WARNING if failed else EventSeverity.INFO
        self._sink.publish(
            EventType.ENRICHMENT,
            payload,
            severity=severity,
            correlation_id=current_correlation_id(),
        )
        logger.info(
            "Enriched %d/%d pools (%d dropped, %d failed fetches)",
            enriched,
            len(report.outcomes),
            dropped,
            failed,
            extra={"source": self._source},
        )


async def enrich(
    summaries: Sequence[PoolSummary],
    fetcher: DetailFetcher,
    max_to_enrich: int = DEFAULT_MAX_TO_ENRICH,
    batch_size: int = DEFAULT_BATCH_SIZE,
    timeout: float = DEFAULT_DETAIL_TIMEOUT,
    *,
    sink: EventSink = NULL_SINK,
    source: Optional[str] = None,
) -> List[PoolSummary]:
    """Convenience wrapper around :class:`DetailEnricher`."""

    enricher = DetailEnricher(
        fetcher,
        max_to_enrich=max_to_enrich,
        batch_size=batch_size,
        timeout=timeout,
        sink=sink,
        source=source,
    )
    return await enricher.enrich(summaries)


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_DETAIL_TIMEOUT",
    "DEFAULT_MAX_TO_ENRICH",
    "DetailEnricher",
    "DetailFetcher",
    "EnrichmentOutcome",
    "EnrichmentReport",
    "decide",
    "enrich",
    "merge_detail",
]
