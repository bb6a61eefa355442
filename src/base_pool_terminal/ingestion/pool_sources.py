"""Per-DEX pool listing, detail lookup and enrichment on top of the Cambrian client."""

from __future__ import annotations

import asyncio
import functools
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from ..config.settings import EnrichmentConfig, get_app_config
from ..datalake.schemas import DexTag, PoolDetail, PoolListing, PoolSummary
from ..monitoring.event_bus import NULL_SINK, EventSeverity, EventSink, EventType
from ..monitoring.logger import current_correlation_id, get_logger
from ..pipeline.enrichment import DetailEnricher
from ..pipeline.fields import (
    AERODROME_V2_LISTING_FIELDS,
    AERODROME_V3_DETAIL_FIELDS,
    UNIV3_DETAIL_FIELDS,
    UNIV3_LISTING_FIELDS,
    FieldTable,
)
from ..pipeline.filters import STAGE_POST_ENRICHMENT, filter_by_token, filter_complete
from ..pipeline.normalizer import normalize_detail, normalize_summary
from .cambrian_api import CambrianClient, UpstreamRequestError


@dataclass(frozen=True, slots=True)
class SourceDefinition:
    """Endpoints and field tables for one DEX."""

    dex: DexTag
    list_endpoint: str
    listing_fields: FieldTable
    detail_endpoint: Optional[str] = None
    detail_fields: Optional[FieldTable] = None
    # Aerodrome V2 rejects chain_id/token_address, so filtering happens client-side only.
    server_side_filter: bool = True
    default_pool_type: Optional[str] = None

    @property
    def supports_detail(self) -> bool:
        return self.detail_endpoint is not None and self.detail_fields is not None


def _univ3(dex: DexTag, slug: str, detail_fields: FieldTable = UNIV3_DETAIL_FIELDS) -> SourceDefinition:
    return SourceDefinition(
        dex=dex,
        list_endpoint=f"/evm/{slug}/v3/pools",
        listing_fields=UNIV3_LISTING_FIELDS,
        detail_endpoint=f"/evm/{slug}/v3/pool",
        detail_fields=detail_fields,
    )


SOURCE_DEFINITIONS: Dict[DexTag, SourceDefinition] = {
    DexTag.AERODROME: SourceDefinition(
        dex=DexTag.AERODROME,
        list_endpoint="/evm/aero/v2/pools",
        listing_fields=AERODROME_V2_LISTING_FIELDS,
        server_side_filter=False,
        default_pool_type="volatile",
    ),
    DexTag.AERODROME_V3: _univ3(DexTag.AERODROME_V3, "aero", AERODROME_V3_DETAIL_FIELDS),
    DexTag.UNISWAP: _univ3(DexTag.UNISWAP, "uniswap"),
    DexTag.PANCAKE: _univ3(DexTag.PANCAKE, "pancake"),
    DexTag.SUSHI: _univ3(DexTag.SUSHI, "sushi"),
    DexTag.ALIEN: _univ3(DexTag.ALIEN, "alien"),
}


class PoolSource:
    """Lists, inspects and enriches pools for a single DEX."""

    def __init__(
        self,
        definition: SourceDefinition,
        client: CambrianClient,
        *,
        enrichment: Optional[EnrichmentConfig] = None,
        sink: EventSink = NULL_SINK,
    ) -> None:
        self._definition = definition
        self._client = client
        self._enrichment = enrichment or get_app_config().enrichment
        self._sink = sink
        self._logger = get_logger(__name__)

    @property
    def dex(self) -> DexTag:
        return self._definition.dex

    @property
    def definition(self) -> SourceDefinition:
        return self._definition

    def list_pools(self, token_address: Optional[str] = None, limit: int = 100) -> PoolListing:
        """List pools, optionally restricted to those containing ``token_address``.

        ``total_count`` is the number of matches; ``pools`` holds the first ``limit``.
        An upstream failure yields an empty listing for this DEX only.
        """

        source = self.dex.value
        params: Dict[str, object] = {}
        if self._definition.server_side_filter:
            params["chain_id"] = self._client.chain_id
            if token_address:
                params["token_address"] = token_address
        try:
            records = self._client.get_records(self._definition.list_endpoint, params)
        except UpstreamRequestError as exc:
            self._logger.warning("Listing %s pools failed: %s", self.dex.display_name, exc)
            self._sink.publish(
                EventType.LISTING,
                {"source": source, "failed": True, "status": exc.status, "message": exc.message},
                severity=EventSeverity.WARNING,
                correlation_id=current_correlation_id(),
            )
            return PoolListing()

        summaries = [
            normalize_summary(
                record,
                self._definition.listing_fields,
                default_pool_type=self._definition.default_pool_type,
            )
            for record in records
        ]
        matches = filter_complete(summaries, sink=self._sink, source=source)
        if token_address:
            matches = filter_by_token(matches, token_address, sink=self._sink, source=source)
        listing = PoolListing(pools=list(matches[: max(limit, 0)]), total_count=len(matches))
        self._sink.publish(
            EventType.LISTING,
            {
                "source": source,
                "fetched": len(records),
                "total_count": listing.total_count,
                "returned": len(listing.pools),
            },
            correlation_id=current_correlation_id(),
        )
        self._logger.info(
            "Listed %d of %d %s pools", len(listing.pools), listing.total_count, self.dex.display_name
        )
        return listing

    def get_pool_detail(
        self, pool_address: str, *, deadline: Optional[float] = None
    ) -> Optional[PoolDetail]:
        """Fetch one pool's detail record; ``None`` when the upstream has no row for it.

        Transport failures raise :class:`UpstreamRequestError` so the enricher can
        tell a failed fetch from an empty one. ``deadline`` is handed to the client
        so retries end with it.
        """

        if not self._definition.supports_detail:
            return None
        params = {"chain_id": self._client.chain_id, "pool_address": pool_address}
        records = self._client.get_records(self._definition.detail_endpoint, params, deadline=deadline)
        if not records:
            return None
        return normalize_detail(records[0], self._definition.detail_fields, pool_address)

    async def fetch_detail(
        self, pool_address: str, executor: Optional[Executor] = None
    ) -> Optional[PoolDetail]:
        """Run :meth:`get_pool_detail` on ``executor`` under the detail timeout.

        When the awaiting task is cancelled the worker is still waited for before
        the cancellation propagates, so a caller holding a concurrency slot keeps
        it until the request really ended. The deadline bounds that wait.
        """

        loop = asyncio.get_running_loop()
        deadline = time.monotonic() + self._enrichment.detail_timeout_seconds
        future = loop.run_in_executor(
            executor, functools.partial(self.get_pool_detail, pool_address, deadline=deadline)
        )
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            await asyncio.wait({future})
            raise

    async def enrich_pools(
        self, pools: Sequence[PoolSummary], token_address: Optional[str] = None
    ) -> List[PoolSummary]:
        """Enrich ``pools`` with detail data, then re-check token membership.

        Each call gets its own worker pool sized to the batch, so detail fetches
        never queue behind another DEX's and the timeout only measures the
        request itself.

        Detail responses have been seen to describe a different pair than the one
        requested, so membership is checked again on the merged result.
        """

        if self._definition.supports_detail:
            settings = self._enrichment
            with ThreadPoolExecutor(
                max_workers=settings.batch_size, thread_name_prefix=f"detail-{self.dex.value}"
            ) as executor:
                enricher = DetailEnricher(
                    functools.partial(self.fetch_detail, executor=executor),
                    max_to_enrich=settings.max_to_enrich,
                    batch_size=settings.batch_size,
                    timeout=settings.detail_timeout_seconds,
                    sink=self._sink,
                    source=self.dex.value,
                )
                enriched = await enricher.enrich(pools)
        else:
            enriched = list(pools)
        if not token_address:
            return enriched
        return filter_by_token(
            enriched,
            token_address,
            sink=self._sink,
            source=self.dex.value,
            stage=STAGE_POST_ENRICHMENT,
        )


def build_sources(
    client: CambrianClient,
    names: Iterable[str],
    *,
    enrichment: Optional[EnrichmentConfig] = None,
    sink: EventSink = NULL_SINK,
) -> Dict[DexTag, PoolSource]:
    """Instantiate sources for the DEX names given, in the order given.

    Unknown names raise ``ValueError``.
    """

    sources: Dict[DexTag, PoolSource] = {}
    for name in names:
        try:
            dex = DexTag(name.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown pool source: {name}") from exc
        sources[dex] = PoolSource(SOURCE_DEFINITIONS[dex], client, enrichment=enrichment, sink=sink)
    return sources


__all__ = ["PoolSource", "SOURCE_DEFINITIONS", "SourceDefinition", "build_sources"]
