from __future__ import annotations

import json

import pytest

from base_pool_terminal import main as cli
from base_pool_terminal.datalake.schemas import DexTag, PoolSummary, RankedPool, Token, TokenReport
from base_pool_terminal.ingestion.cambrian_api import UpstreamRequestError
from base_pool_terminal.pipeline.search import TokenNotFoundError

TOKEN = Token(address="0xabc", symbol="ABC", name="Alphabet")


class StubService:
    instances = []

    def __init__(self, client, *, config, sink) -> None:
        self.config = config
        StubService.instances.append(self)

    async def search(self, query: str) -> TokenReport:
        if query == "missing":
            raise TokenNotFoundError(query)
        if query == "broken":
            raise UpstreamRequestError("API error: Bad Gateway", 502, {}, endpoint="/evm/tokens")
        pool = PoolSummary(pool_address="0xpool", token0_symbol="ABC", token1_symbol="WETH", tvl_usd=5.0)
        return TokenReport(
            token=TOKEN,
            pools=[RankedPool(pool=pool, dex=DexTag.SUSHI)],
            source_counts={"sushi": 1},
            correlation_id="cid",
        )


@pytest.fixture(autouse=True)
def stub_service(monkeypatch: pytest.MonkeyPatch, app_config):
    StubService.instances = []
    monkeypatch.setattr(cli, "PoolSearchService", StubService)
    monkeypatch.setattr(cli, "get_app_config", lambda: app_config)
    return StubService


def test_search_prints_report_json(capsys) -> None:
    assert cli.main(["--indent", "0", "search", "abc"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["token"]["symbol"] == "ABC"
    assert payload["pools"][0]["pair"] == "ABC/WETH"
    assert payload["pools"][0]["dex"] == "sushi"
    assert payload["correlation_id"] == "cid"


def test_search_flags_override_config(stub_service) -> None:
    cli.main(["search", "abc", "--limit", "5", "--sources", "Uniswap, alien", "--no-price", "--no-holders"])

    (service,) = stub_service.instances
    search = service.config.search
    assert search.listing_limit == 5
    assert search.enabled_sources == ["uniswap", "alien"]
    assert search.include_price is False
    assert search.include_holders is False


def test_unknown_token_exits_with_not_found(capsys) -> None:
    assert cli.main(["search", "missing"]) == cli.EXIT_NOT_FOUND

    captured = capsys.readouterr()
    assert captured.out == ""
    assert 'No token found matching "missing"' in captured.err


def test_upstream_failure_exits_with_error_json(capsys) -> None:
    assert cli.main(["search", "broken"]) == cli.EXIT_UPSTREAM

    captured = capsys.readouterr()
    error = json.loads(captured.err.strip().splitlines()[-1])
    assert error["status"] == 502
    assert error["endpoint"] == "/evm/tokens"


def test_tokens_command_lists_ranked_matches(capsys, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.MarketDataClient, "search_token", lambda self, query: [TOKEN])

    assert cli.main(["tokens", "abc"]) == 0

    (token,) = json.loads(capsys.readouterr().out)
    assert token == {"address": "0xabc", "symbol": "ABC", "name": "Alphabet", "decimals": 18, "chain_id": 8453}
