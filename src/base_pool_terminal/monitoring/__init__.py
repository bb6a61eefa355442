"""Monitoring package exports and helpers."""

from __future__ import annotations

from typing import Optional, Tuple

from ..config.settings import AppConfig, get_app_config
from .event_bus import EventBus
from .logger import configure_logging
from .metrics import MetricsRegistry


def bootstrap_observability(
    *,
    config: Optional[AppConfig] = None,
    metrics: Optional[MetricsRegistry] = None,
) -> Tuple[EventBus, MetricsRegistry]:
    """Configure logging and build the event bus and metrics registry for one process."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    registry = metrics or MetricsRegistry()
    bus = EventBus(history_size=app_config.monitoring.event_history_size, metrics=registry)
    return bus, registry


__all__ = ["bootstrap_observability", "EventBus", "MetricsRegistry"]
