"""Command line entrypoint for the Base pool terminal."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from .config.settings import AppConfig, get_app_config
from .ingestion.cambrian_api import CambrianClient, UpstreamRequestError
from .ingestion.market_data import MarketDataClient
from .monitoring import bootstrap_observability
from .monitoring.logger import configure_logging, get_logger
from .pipeline.search import PoolSearchService, TokenNotFoundError
from .dashboard.state import report_to_dict
from .dashboard.utils import dumps, to_serializable

EXIT_NOT_FOUND = 1
EXIT_UPSTREAM = 2

logger = get_logger(__name__)


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    search_updates = {}
    if getattr(args, "limit", None) is not None:
        search_updates["listing_limit"] = args.limit
    if getattr(args, "sources", None):
        search_updates["enabled_sources"] = [
            item.strip().lower() for item in args.sources.split(",") if item.strip()
        ]
    if getattr(args, "no_price", False):
        search_updates["include_price"] = False
    if getattr(args, "no_holders", False):
        search_updates["include_holders"] = False
    updates = {}
    if search_updates:
        updates["search"] = config.search.model_copy(update=search_updates)
    if args.log_level:
        updates["monitoring"] = config.monitoring.model_copy(update={"log_level": args.log_level})
    return config.model_copy(update=updates) if updates else config


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="base-pool-terminal",
        description="Find and rank DEX liquidity pools for a Base token",
    )
    parser.add_argument("--log-level", default=None, help="Override monitoring.log_level")
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (default: 2)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Search pools for a token symbol, name or address")
    search.add_argument("query", help="Token symbol, name, or 0x address")
    search.add_argument("--limit", type=int, default=None, help="Pools to keep per DEX listing")
    search.add_argument(
        "--sources",
        default=None,
        help="Comma separated DEX sources (aerodrome, aerodrome_v3, uniswap, pancake, sushi, alien)",
    )
    search.add_argument("--no-price", action="store_true", help="Skip price and price history")
    search.add_argument("--no-holders", action="store_true", help="Skip top holders")

    tokens = subparsers.add_parser("tokens", help="List tokens matching a query, best match first")
    tokens.add_argument("query", help="Token symbol, name, or 0x address")
    return parser


async def _run(config: AppConfig, args: argparse.Namespace) -> object:
    event_bus, _ = bootstrap_observability(config=config)
    client = CambrianClient(config.upstream, sink=event_bus)
    if args.command == "tokens":
        matches = await asyncio.to_thread(MarketDataClient(client).search_token, args.query)
        return to_serializable(matches)
    service = PoolSearchService(client, config=config, sink=event_bus)
    report = await service.search(args.query)
    event_bus.flush()
    return report_to_dict(report)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = _apply_overrides(get_app_config(), args)
    if args.log_level:
        configure_logging(config.monitoring, force=True)
    try:
        payload = asyncio.run(_run(config, args))
    except TokenNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_NOT_FOUND
    except UpstreamRequestError as exc:
        logger.error("Upstream request failed: %s", exc, extra={"status": exc.status})
        print(dumps(exc.to_dict()), file=sys.stderr)
        return EXIT_UPSTREAM
    print(dumps(payload, indent=args.indent))
    return 0


if __name__ == "__main__":
    sys.exit(main())
