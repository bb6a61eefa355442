from __future__ import annotations

import pytest

from base_pool_terminal.datalake.schemas import Token
from base_pool_terminal.ingestion.cambrian_api import UpstreamRequestError
from base_pool_terminal.ingestion.market_data import MarketDataClient, looks_like_address, rank_tokens

TOKEN = "0xAbC0000000000000000000000000000000000001"


def _token(symbol: str, name: str, address: str = "0x0") -> Token:
    return Token(address=address, symbol=symbol, name=name)


def test_rank_tokens_orders_exact_symbol_then_name_then_prefix() -> None:
    tokens = [
        _token("XAERO", "Wrapped aero"),
        _token("AEROX", "Aero extension"),
        _token("VEL", "aero"),
        _token("AERO", "Aerodrome"),
        _token("ZZZ", "unrelated"),
    ]

    ranked = rank_tokens(tokens, " Aero ")

    assert [token.symbol for token in ranked] == ["AERO", "VEL", "AEROX", "XAERO"]


def test_rank_tokens_matches_full_addresses_exactly() -> None:
    tokens = [_token("ABC", "Alphabet", TOKEN), _token("ABD", "Other", TOKEN[:-1] + "2")]

    assert looks_like_address(TOKEN.upper().replace("0X", "0x"))
    assert rank_tokens(tokens, TOKEN.lower()) == [tokens[0]]
    assert rank_tokens(tokens, "") == []


def test_search_token_reads_token_list(client, session, make_table) -> None:
    session.route(
        "/evm/tokens",
        make_table(
            ["address", "symbol", "name", "decimals", "chainId"],
            [
                [TOKEN, "ABC", "Alphabet", "6", 8453],
                ["", "NOADDR", "Dropped", 18, 8453],
                ["0x2", "ABCD", "Another", None, None],
            ],
        ),
    )

    matches = MarketDataClient(client).search_token("abc")

    assert [token.symbol for token in matches] == ["ABC", "ABCD"]
    assert matches[0].decimals == 6
    assert matches[1].decimals == 18
    assert matches[1].chain_id == 8453
    assert session.calls_to("/evm/tokens") == [{"chain_id": 8453}]


def test_current_price_and_history(client, session, make_table) -> None:
    session.route(
        "/evm/price-current",
        make_table(["tokenAddress", "priceUSD", "updatedAt"], [[TOKEN, "1.25", "2024-01-01T00:00:00Z"]]),
    )
    session.route(
        "/evm/price-hour",
        make_table(["timestamp", "priceUSD"], [["2024-01-01 00:00:00", 1.0], ["2024-01-01 01:00:00", 1.1]]),
    )
    market = MarketDataClient(client)

    quote = market.get_current_price(TOKEN)
    history = market.get_price_history(TOKEN, hours=24)

    assert quote is not None
    assert quote.price_usd == 1.25
    assert quote.timestamp == 1_704_067_200.0
    assert [point.price_usd for point in history] == [1.0, 1.1]
    assert history[1].timestamp - history[0].timestamp == 3600
    assert history[0].token_address == TOKEN
    assert session.calls_to("/evm/price-hour")[0]["hours"] == 24


def test_current_price_without_rows_is_none(client, session, make_table) -> None:
    session.route("/evm/price-current", make_table(["priceUSD"], []))

    assert MarketDataClient(client).get_current_price(TOKEN) is None


def test_top_holders_percentages_use_all_returned_rows(client, session, make_table) -> None:
    session.route(
        "/evm/tvl/top-owners",
        make_table(
            ["owner", "tokenAmount", "valueUSD"],
            [["0xa", 50, 500.0], ["0xb", 30, 300.0], ["0xc", 20, 200.0]],
        ),
    )

    distribution = MarketDataClient(client).get_top_holders(TOKEN, limit=2)

    assert distribution.total_holders == 3
    assert [holder.holder_address for holder in distribution.holders] == ["0xa", "0xb"]
    assert [holder.percentage for holder in distribution.holders] == pytest.approx([50.0, 30.0])
    assert distribution.top_10_concentration == pytest.approx(80.0)
    assert distribution.holders[0].balance_usd == 500.0


def test_market_errors_propagate(client, session, fake_response) -> None:
    session.route("/evm/tvl/top-owners", fake_response(403, {}))

    with pytest.raises(UpstreamRequestError):
        MarketDataClient(client).get_top_holders(TOKEN)
