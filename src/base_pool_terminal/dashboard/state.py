"""Shared service state and data access helpers."""

from __future__ import annotations

from typing import Any, Dict, List

from ..config.settings import AppConfig
from ..datalake.schemas import EnrichedPool, RankedPool, TokenReport
from ..monitoring.event_bus import EventBus
from ..monitoring.metrics import MetricsRegistry
from ..monitoring.logger import get_logger
from ..ingestion.cambrian_api import UpstreamRequestError
from ..pipeline.search import PoolSearchService, TokenNotFoundError
from .utils import to_serializable


def ranked_pool_to_dict(item: RankedPool) -> Dict[str, Any]:
    payload = to_serializable(item.pool)
    payload["dex"] = item.dex.value
    payload["dex_name"] = item.dex.display_name
    payload["pair"] = item.pool.pair_label
    payload["enriched"] = isinstance(item.pool, EnrichedPool)
    return payload


def report_to_dict(report: TokenReport) -> Dict[str, Any]:
    """JSON shape shared by the CLI and the HTTP service."""

    return {
        "token": to_serializable(report.token),
        "price": to_serializable(report.price),
        "price_history": to_serializable(report.price_history),
        "holders": to_serializable(report.holders),
        "pools": [ranked_pool_to_dict(item) for item in report.pools],
        "source_counts": dict(report.source_counts),
        "correlation_id": report.correlation_id,
    }


class DashboardState:
    """Lightweight wrapper around the search service, metrics, and the event bus."""

    def __init__(
        self,
        *,
        config: AppConfig,
        service: PoolSearchService,
        metrics: MetricsRegistry,
        event_bus: EventBus,
    ) -> None:
        self.config = config
        self.service = service
        self.metrics = metrics
        self.event_bus = event_bus
        self._logger = get_logger(__name__)

    def metrics_snapshot(self) -> Dict[str, object]:
        return {
            "metrics": self.metrics.snapshot(),
            "sources": [dex.value for dex in self.service.sources],
        }

    def event_history(self, limit: int = 200) -> List[Dict[str, object]]:
        return [to_serializable(event.to_dict()) for event in self.event_bus.history(limit)]

    async def search(self, query: str) -> Dict[str, Any]:
        self.metrics.increment("search.requests")
        try:
            with self.metrics.timer("search.duration_seconds"):
                report = await self.service.search(query)
        except TokenNotFoundError:
            self.metrics.increment("search.not_found")
            raise
        except UpstreamRequestError:
            self.metrics.increment("search.upstream_errors")
            raise
        self._logger.info(
            "Search %r returned %d pools", query, len(report.pools), extra={"token": report.token.address}
        )
        return report_to_dict(report)


__all__ = ["DashboardState", "ranked_pool_to_dict", "report_to_dict"]
