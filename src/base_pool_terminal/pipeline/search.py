"""End-to-end token search: resolve, list, enrich, aggregate."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.settings import AppConfig, get_app_config
from ..datalake.schemas import DexTag, PoolListing, PoolSummary, RankedPool, Token, TokenReport
from ..ingestion.cambrian_api import CambrianClient, UpstreamRequestError
from ..ingestion.market_data import MarketDataClient
from ..ingestion.pool_sources import PoolSource, build_sources
from ..monitoring.event_bus import NULL_SINK, EventSeverity, EventSink, EventType
from ..monitoring.logger import correlation_scope, current_correlation_id, get_logger
from .aggregator import aggregate


class TokenNotFoundError(LookupError):
    """No token in the upstream token list matches the query."""

    def __init__(self, query: str) -> None:
        super().__init__(
            f'No token found matching "{query}". Please check the symbol or contract address.'
        )
        self.query = query


class PoolSearchService:
    """Coordinates one search across every enabled DEX source.

    Only token resolution can fail the search. Listing or enrichment problems in
    one source leave that source empty. Price, history and holder failures leave
    the matching report field ``None``.
    """

    def __init__(
        self,
        client: Optional[CambrianClient] = None,
        *,
        config: Optional[AppConfig] = None,
        sink: EventSink = NULL_SINK,
        sources: Optional[Mapping[DexTag, PoolSource]] = None,
        market: Optional[MarketDataClient] = None,
    ) -> None:
        self._config = config or get_app_config()
        self._sink = sink
        self._client = client or CambrianClient(self._config.upstream, sink=sink)
        self._market = market or MarketDataClient(self._client)
        if sources is None:
            sources = build_sources(
                self._client,
                self._config.search.enabled_sources,
                enrichment=self._config.enrichment,
                sink=sink,
            )
        self._sources: Dict[DexTag, PoolSource] = dict(sources)
        self._logger = get_logger(__name__)

    @property
    def sources(self) -> Dict[DexTag, PoolSource]:
        return dict(self._sources)

    async def resolve_token(self, query: str) -> Token:
        """Return the best-ranked token for ``query``.

        Raises :class:`TokenNotFoundError` when nothing matches and lets
        :class:`UpstreamRequestError` through when the token list is unavailable.
        """

        if not query or not query.strip():
            raise TokenNotFoundError(query or "")
        matches = await asyncio.to_thread(self._market.search_token, query)
        if not matches:
            raise TokenNotFoundError(query)
        return matches[0]

    async def search(self, query: str) -> TokenReport:
        with correlation_scope() as correlation_id:
            token = await self.resolve_token(query)
            self._logger.info("Resolved %r to %s (%s)", query, token.symbol, token.address)
            (price, history, holders), (ranked, counts) = await asyncio.gather(
                self._market_snapshot(token),
                self.find_pools(token.address),
            )
            return TokenReport(
                token=token,
                pools=ranked,
                price=price,
                price_history=history,
                holders=holders,
                source_counts=counts,
                correlation_id=correlation_id,
            )

    def search_sync(self, query: str) -> TokenReport:
        return asyncio.run(self.search(query))

    async def find_pools(self, token_address: str) -> Tuple[List[RankedPool], Dict[str, int]]:
        """List every source in parallel, enrich each source in parallel, then rank."""

        dexes = list(self._sources)
        limit = self._config.search.listing_limit
        listing_results = await asyncio.gather(
            *(
                asyncio.to_thread(self._sources[dex].list_pools, token_address, limit)
                for dex in dexes
            ),
            return_exceptions=True,
        )
        listings: Dict[DexTag, PoolListing] = {}
        for dex, result in zip(dexes, listing_results):
            listings[dex] = self._unwrap(dex, "listing", result, PoolListing())

        enrich_results = await asyncio.gather(
            *(self._sources[dex].enrich_pools(listings[dex].pools, token_address) for dex in dexes),
            return_exceptions=True,
        )
        per_dex: Dict[DexTag, Sequence[PoolSummary]] = {}
        for dex, result in zip(dexes, enrich_results):
            per_dex[dex] = self._unwrap(dex, "enrichment", result, [])

        ranked = aggregate(per_dex, sink=self._sink)
        counts = {dex.value: listings[dex].total_count for dex in dexes}
        return ranked, counts

    async def _market_snapshot(self, token: Token) -> Tuple[Any, Any, Any]:
        search = self._config.search
        tasks: List[Awaitable[Any]] = [
            self._optional("price", self._market.get_current_price, token.address, enabled=search.include_price),
            self._optional(
                "price_history",
                self._market.get_price_history,
                token.address,
                search.price_history_hours,
                enabled=search.include_price and search.price_history_hours > 0,
            ),
            self._optional(
                "holders",
                self._market.get_top_holders,
                token.address,
                search.top_holders_limit,
                enabled=search.include_holders,
            ),
        ]
        price, history, holders = await asyncio.gather(*tasks)
        return price, history, holders

    async def _optional(
        self, label: str, func: Callable[..., Any], *args: Any, enabled: bool = True
    ) -> Any:
        if not enabled:
            return None
        try:
            return await asyncio.to_thread(func, *args)
        except UpstreamRequestError as exc:
            self._logger.warning("Fetching %s failed: %s", label, exc)
            return None

    def _unwrap(self, dex: DexTag, stage: str, result: Any, empty: Any) -> Any:
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            self._logger.error(
                "%s %s failed: %s", dex.display_name, stage, result, exc_info=result
            )
            self._sink.publish(
                EventType.LISTING if stage == "listing" else EventType.ENRICHMENT,
                {"source": dex.value, "failed": True, "stage": stage, "message": str(result)},
                severity=EventSeverity.ERROR,
                correlation_id=current_correlation_id(),
            )
            return empty
        return result


__all__ = ["PoolSearchService", "TokenNotFoundError"]
