"""Entry point for launching the JSON service."""

from __future__ import annotations

import argparse

import uvicorn

from ..config.settings import get_app_config
from ..monitoring import bootstrap_observability
from ..pipeline.search import PoolSearchService
from .app import create_dashboard_app
from .state import DashboardState


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Base pool terminal JSON service")
    parser.add_argument("--host", help="Override service host")
    parser.add_argument("--port", type=int, help="Override service port")
    args = parser.parse_args()

    config = get_app_config()
    event_bus, metrics = bootstrap_observability(config=config)
    service = PoolSearchService(config=config, sink=event_bus)
    state = DashboardState(config=config, service=service, metrics=metrics, event_bus=event_bus)
    app = create_dashboard_app(state)
    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port
    uvicorn.run(app, host=host, port=port, log_level=config.monitoring.log_level.lower())


if __name__ == "__main__":
    main()
