from __future__ import annotations

import asyncio
import threading
import time

import pytest

from base_pool_terminal.config.settings import EnrichmentConfig
from base_pool_terminal.datalake.schemas import DexTag, PoolSummary
from base_pool_terminal.ingestion.pool_sources import SOURCE_DEFINITIONS, PoolSource, build_sources
from base_pool_terminal.monitoring.event_bus import EventType
from base_pool_terminal.pipeline.filters import STAGE_POST_ENRICHMENT

TOKEN = "0xAbC0000000000000000000000000000000000001"
WETH = "0x4200000000000000000000000000000000000006"

LISTING_COLUMNS = ["poolAddress", "token0", "token0Symbol", "token1", "token1Symbol", "feeTier", "tvlUSD"]


def _source(client, dex: DexTag, sink=None, **enrichment) -> PoolSource:
    config = EnrichmentConfig(**enrichment) if enrichment else EnrichmentConfig()
    if sink is None:
        return PoolSource(SOURCE_DEFINITIONS[dex], client, enrichment=config)
    return PoolSource(SOURCE_DEFINITIONS[dex], client, enrichment=config, sink=sink)


def test_univ3_listing_filters_and_limits(client, session, make_table) -> None:
    session.route(
        "/evm/uniswap/v3/pools",
        make_table(
            LISTING_COLUMNS,
            [
                ["0xp1", TOKEN.lower(), "ABC", WETH, "WETH", 3000, 900.0],
                ["0xp2", WETH, "WETH", TOKEN.upper().replace("0X", "0x"), "ABC", 500, 100.0],
                ["0xp3", WETH, "", TOKEN, "ABC", 500, 50.0],
                ["0xp4", WETH, "WETH", "0xdead", "DEAD", 500, 5_000.0],
                ["0xp5", TOKEN, "ABC", "0xbeef", "BEEF", 100, 1.0],
            ],
        ),
    )

    listing = _source(client, DexTag.UNISWAP).list_pools(TOKEN, limit=2)

    assert listing.total_count == 3
    assert [pool.pool_address for pool in listing.pools] == ["0xp1", "0xp2"]
    assert listing.pools[0].fee_tier == 3000
    assert session.calls_to("/evm/uniswap/v3/pools") == [{"chain_id": 8453, "token_address": TOKEN}]


def test_aerodrome_v2_listing_filters_client_side(client, session, make_table, sink) -> None:
    session.route(
        "/evm/aero/v2/pools",
        make_table(
            ["poolId", "token0", "token0Symbol", "token1", "token1Symbol", "poolTvlUSD", "swapFeeApr7d"],
            [
                ["0xa1", TOKEN, "ABC", WETH, "WETH", 1_000.0, 12.0],
                ["0xa2", WETH, "WETH", "0xdead", "DEAD", 9_000.0, 1.0],
            ],
        ),
    )

    listing = _source(client, DexTag.AERODROME, sink=sink).list_pools(TOKEN, limit=100)

    assert [pool.pool_address for pool in listing.pools] == ["0xa1"]
    assert listing.pools[0].pool_type == "volatile"
    assert listing.pools[0].fee_apr == 12.0
    assert session.calls_to("/evm/aero/v2/pools") == [{}]
    (event,) = sink.of_type(EventType.LISTING)
    assert event["source"] == "aerodrome"
    assert event["fetched"] == 2
    assert event["returned"] == 1


def test_listing_failure_yields_empty_listing(client, session, fake_response, sink) -> None:
    session.route("/evm/sushi/v3/pools", fake_response(500, {"error": "boom"}))

    listing = _source(client, DexTag.SUSHI, sink=sink).list_pools(TOKEN)

    assert listing.pools == []
    assert listing.total_count == 0
    failures = [event for event in sink.of_type(EventType.LISTING) if event.get("failed")]
    assert failures and failures[0]["status"] == 500


def test_pool_detail_requests_single_pool(client, session, make_table) -> None:
    session.route(
        "/evm/pancake/v3/pool",
        lambda params: make_table(
            ["poolTvlUSD", "feeApr", "token0Symbol"],
            [[1234.0, {"1 day": 8.0}, "CAKE"]],
        ),
    )

    detail = _source(client, DexTag.PANCAKE).get_pool_detail("0xpool")

    assert detail is not None
    assert detail.pool_address == "0xpool"
    assert detail.tvl_usd == 1234.0
    assert detail.fee_apr == 8.0
    assert session.calls_to("/evm/pancake/v3/pool") == [{"chain_id": 8453, "pool_address": "0xpool"}]


def test_pool_detail_without_rows_is_absent(client, session, make_table) -> None:
    session.route("/evm/alien/v3/pool", make_table(["poolTvlUSD"], []))

    assert _source(client, DexTag.ALIEN).get_pool_detail("0xpool") is None
    assert _source(client, DexTag.AERODROME).get_pool_detail("0xpool") is None


def test_enrich_pools_rechecks_membership_after_merge(client, session, make_table, sink) -> None:
    pools = [
        PoolSummary(pool_address="0xgood", token0_address=TOKEN, token0_symbol="ABC", token1_address=WETH, token1_symbol="WETH"),
        PoolSummary(pool_address="0xswapped", token0_address=TOKEN, token0_symbol="ABC", token1_address=WETH, token1_symbol="WETH"),
    ]

    def detail(params):
        if params["pool_address"] == "0xswapped":
            return make_table(
                ["token0", "token0Symbol", "token1", "token1Symbol", "poolTvlUSD"],
                [["0xdead", "DEAD", WETH, "WETH", 5_000.0]],
            )
        return make_table(["poolTvlUSD"], [[2_000.0]])

    session.route("/evm/uniswap/v3/pool", detail)

    result = asyncio.run(_source(client, DexTag.UNISWAP, sink=sink).enrich_pools(pools, TOKEN))

    assert [pool.pool_address for pool in result] == ["0xgood"]
    assert result[0].tvl_usd == 2_000.0
    post = [event for event in sink.of_type(EventType.FILTER) if event["stage"] == STAGE_POST_ENRICHMENT]
    assert post == [
        {"stage": STAGE_POST_ENRICHMENT, "source": "uniswap", "count_in": 2, "count_out": 1}
    ]


def test_enrich_pools_uses_configured_bounds(client, session, make_table) -> None:
    pools = [
        PoolSummary(pool_address=f"0x{index}", token0_address=TOKEN, token0_symbol="ABC", token1_symbol="X", tvl_usd=1.0)
        for index in range(5)
    ]
    session.route("/evm/sushi/v3/pool", make_table(["poolTvlUSD"], [[10.0]]))

    result = asyncio.run(_source(client, DexTag.SUSHI, max_to_enrich=2, batch_size=1).enrich_pools(pools, TOKEN))

    assert [pool.pool_address for pool in result] == ["0x0", "0x1"]


def test_sources_without_detail_pass_pools_through(client, session) -> None:
    pools = [
        PoolSummary(pool_address="0xa", token0_address=TOKEN, token0_symbol="ABC", token1_symbol="X"),
        PoolSummary(pool_address="0xb", token0_address="0xother", token0_symbol="O", token1_symbol="X"),
    ]

    result = asyncio.run(_source(client, DexTag.AERODROME).enrich_pools(pools, TOKEN))

    assert [pool.pool_address for pool in result] == ["0xa"]
    assert session.calls == []


def test_build_sources_keeps_order_and_rejects_unknown_names(client) -> None:
    sources = build_sources(client, ["sushi", "Aerodrome", "aerodrome_v3"])

    assert list(sources) == [DexTag.SUSHI, DexTag.AERODROME, DexTag.AERODROME_V3]
    assert sources[DexTag.AERODROME_V3].definition.detail_endpoint == "/evm/aero/v3/pool"
    with pytest.raises(ValueError):
        build_sources(client, ["curve"])


class SlowDetailClient:
    """Blocking client whose calls cannot be interrupted once started."""

    chain_id = 8453

    def __init__(self, latency: float, tvl: float = 1_000.0) -> None:
        self.latency = latency
        self.tvl = tvl
        self.in_flight = 0
        self.peak = 0
        self.deadlines = []
        self._lock = threading.Lock()

    def get_records(self, endpoint, params=None, *, deadline=None):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            self.deadlines.append((deadline, time.monotonic()))
        try:
            time.sleep(self.latency)
            return [{"poolTvlUSD": self.tvl}]
        finally:
            with self._lock:
                self.in_flight -= 1


def _token_pools(count: int, tvl: float = 1.0):
    return [
        PoolSummary(pool_address=f"0x{index}", token0_address=TOKEN, token0_symbol="ABC", token1_symbol="X", tvl_usd=tvl)
        for index in range(count)
    ]


def test_timed_out_detail_fetches_hold_their_slot_until_the_worker_ends() -> None:
    client = SlowDetailClient(latency=0.3)
    source = _source(client, DexTag.UNISWAP, max_to_enrich=30, batch_size=2, detail_timeout_seconds=0.05)

    result = asyncio.run(source.enrich_pools(_token_pools(6), TOKEN))

    assert client.peak <= 2
    assert client.in_flight == 0
    # Every fetch timed out, so each pool falls back to its own listing values.
    assert [pool.tvl_usd for pool in result] == [1.0] * 6
    assert all(deadline is not None and deadline - called <= 0.05 for deadline, called in client.deadlines)


def test_parallel_sources_do_not_starve_each_other() -> None:
    client = SlowDetailClient(latency=0.3)
    dexes = [DexTag.UNISWAP, DexTag.PANCAKE, DexTag.SUSHI, DexTag.ALIEN]
    sources = [
        _source(client, dex, max_to_enrich=30, batch_size=10, detail_timeout_seconds=1.0) for dex in dexes
    ]

    async def run_all():
        return await asyncio.gather(*(source.enrich_pools(_token_pools(10), TOKEN) for source in sources))

    results = asyncio.run(run_all())

    assert [len(pools) for pools in results] == [10, 10, 10, 10]
    assert all(pool.tvl_usd == 1_000.0 for pools in results for pool in pools)
    assert client.peak > 10
