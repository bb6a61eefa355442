"""Token lookup, prices and holder distribution from the Cambrian API."""

from __future__ import annotations

from typing import List, Optional

from ..datalake.schemas import HolderDistribution, PricePoint, PriceQuote, Token, TopHolder
from ..monitoring.logger import get_logger
from ..pipeline.fields import (
    HOLDER_FIELDS,
    PRICE_CURRENT_FIELDS,
    PRICE_HOUR_FIELDS,
    TOKEN_FIELDS,
    resolve_all,
)
from ..pipeline.normalizer import parse_timestamp, to_decimals, to_float, to_int, to_text
from ..utils.constants import EVM_ADDRESS_LENGTH
from .cambrian_api import CambrianClient

TOKENS_ENDPOINT = "/evm/tokens"
PRICE_CURRENT_ENDPOINT = "/evm/price-current"
PRICE_HOUR_ENDPOINT = "/evm/price-hour"
TOP_OWNERS_ENDPOINT = "/evm/tvl/top-owners"


def looks_like_address(query: str) -> bool:
    text = query.strip().lower()
    return text.startswith("0x") and len(text) == EVM_ADDRESS_LENGTH


def rank_tokens(tokens: List[Token], query: str) -> List[Token]:
    """Filter ``tokens`` against ``query`` and order the matches.

    A full address matches exactly. Otherwise symbol or name must contain the
    query; exact symbol matches come first, then exact name matches, then symbol
    prefixes, each group keeping the upstream order.
    """

    needle = query.strip().lower()
    if not needle:
        return []
    if looks_like_address(needle):
        return [token for token in tokens if token.address.lower() == needle]
    matches = [
        token
        for token in tokens
        if needle in token.symbol.lower() or needle in token.name.lower()
    ]
    return sorted(
        matches,
        key=lambda token: (
            token.symbol.lower() != needle,
            token.name.lower() != needle,
            not token.symbol.lower().startswith(needle),
        ),
    )


class MarketDataClient:
    """Token list, price and holder queries.

    Every method lets :class:`~.cambrian_api.UpstreamRequestError` propagate; the
    search service decides which failures are fatal.
    """

    def __init__(self, client: CambrianClient) -> None:
        self._client = client
        self._logger = get_logger(__name__)

    def list_tokens(self, chain_id: Optional[int] = None) -> List[Token]:
        chain = chain_id or self._client.chain_id
        tokens: List[Token] = []
        for record in self._client.get_records(TOKENS_ENDPOINT, {"chain_id": chain}):
            values = resolve_all(record, TOKEN_FIELDS)
            address = to_text(values["address"])
            if not address:
                continue
            tokens.append(
                Token(
                    address=address,
                    symbol=to_text(values["symbol"]),
                    name=to_text(values["name"]),
                    decimals=to_decimals(values["decimals"]),
                    chain_id=to_int(values["chain_id"], default=chain),
                )
            )
        return tokens

    def search_token(self, query: str) -> List[Token]:
        ranked = rank_tokens(self.list_tokens(), query)
        self._logger.info("Token search %r matched %d tokens", query, len(ranked))
        return ranked

    def get_current_price(self, token_address: str) -> Optional[PriceQuote]:
        records = self._client.get_records(
            PRICE_CURRENT_ENDPOINT,
            {"token_address": token_address, "chain_id": self._client.chain_id},
        )
        if not records:
            return None
        values = resolve_all(records[0], PRICE_CURRENT_FIELDS)
        return PriceQuote(
            token_address=to_text(values["token_address"]) or token_address,
            price_usd=to_float(values["price_usd"]),
            timestamp=parse_timestamp(values["timestamp"]),
        )

    def get_price_history(self, token_address: str, hours: int = 24) -> List[PricePoint]:
        records = self._client.get_records(
            PRICE_HOUR_ENDPOINT,
            {"token_address": token_address, "chain_id": self._client.chain_id, "hours": hours},
        )
        points: List[PricePoint] = []
        for record in records:
            values = resolve_all(record, PRICE_HOUR_FIELDS)
            points.append(
                PricePoint(
                    token_address=to_text(values["token_address"]) or token_address,
                    timestamp=parse_timestamp(values["timestamp"]),
                    price_usd=to_float(values["price_usd"]),
                )
            )
        return points

    def get_top_holders(self, token_address: str, limit: int = 10) -> HolderDistribution:
        """Largest holders with each one's share of the summed balance of all rows returned."""

        records = self._client.get_records(
            TOP_OWNERS_ENDPOINT,
            {"token_address": token_address, "chain_id": self._client.chain_id},
        )
        rows = [resolve_all(record, HOLDER_FIELDS) for record in records]
        total_balance = sum(to_float(row["balance"]) for row in rows)
        holders: List[TopHolder] = []
        for row in rows[: max(limit, 0)]:
            balance = to_float(row["balance"])
            holders.append(
                TopHolder(
                    holder_address=to_text(row["holder_address"]),
                    balance=balance,
                    balance_usd=to_float(row["balance_usd"]),
                    percentage=(balance / total_balance) * 100 if total_balance > 0 else 0.0,
                )
            )
        return HolderDistribution(
            token_address=token_address,
            holders=holders,
            total_holders=len(rows),
            top_10_concentration=sum(holder.percentage for holder in holders[:10]),
        )


__all__ = ["MarketDataClient", "looks_like_address", "rank_tokens"]
