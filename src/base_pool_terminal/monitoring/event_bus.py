"""Event bus for structured pipeline observability events."""

from __future__ import annotations

import asyncio
import inspect
import logging
import queue
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Union

from .metrics import MetricsRegistry


class EventType(str, Enum):
    """Event categories emitted by the pool pipeline."""

    LISTING = "listing"
    FILTER = "filter"
    ENRICHMENT = "enrichment"
    AGGREGATION = "aggregation"
    UPSTREAM = "upstream"
    HEALTH = "health"


class EventSeverity(str, Enum):
    """Severity levels associated with events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(slots=True)
class Event:
    """Normalized representation of an observability event."""

    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: EventSeverity = EventSeverity.INFO
    correlation_id: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the event to a JSON-serialisable dictionary."""

        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "labels": self.labels,
        }


class EventSink(Protocol):
    """Anything the pipeline can hand structured events to."""

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        ...


class NullSink:
    """Sink that discards every event."""

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        return None


NULL_SINK = NullSink()


Subscriber = Callable[[Event], Union[None, Any]]


class EventBus:
    """Threaded event bus that fans out structured events to subscribers."""

    def __init__(self, history_size: int = 500, *, metrics: Optional[MetricsRegistry] = None) -> None:
        self._queue: "queue.Queue[Event]" = queue.Queue()
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._metrics: Optional[MetricsRegistry] = metrics
        self._worker = threading.Thread(target=self._run, name="event-bus", daemon=True)
        self._worker.start()

    def subscribe(self, event_type: Optional[EventType], handler: Subscriber) -> None:
        """Register a subscriber for a specific event type or all events."""

        with self._lock:
            self._subscribers[event_type].append(handler)

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Publish a new event onto the bus."""

        if isinstance(event_type, str) and not isinstance(event_type, EventType):
            try:
                event_type = EventType(event_type)
            except ValueError as exc:
                raise ValueError(f"Unsupported event type: {event_type}") from exc
        event = Event(
            type=event_type,
            payload=dict(payload or {}),
            severity=severity,
            correlation_id=correlation_id,
            labels=dict(labels or {}),
        )
        self._queue.put(event)

    def history(self, limit: int = 100) -> List[Event]:
        with self._lock:
            return list(self._history)[-limit:]

    def flush(self, timeout: float = 1.0) -> bool:
        """Best-effort wait for the queue to drain."""

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self._queue.unfinished_tasks == 0

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._dispatch(event)
            except Exception:  # pragma: no cover
                self._logger.exception("Failed to dispatch event %s", event.type.value)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Event) -> None:
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(event.type, [])) + list(
                self._subscribers.get(None, [])
            )
        self._update_metrics(event)
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    asyncio.run(result)
            except Exception:  # pragma: no cover
                self._logger.exception(
                    "Event handler %s failed for %s", getattr(handler, "__name__", handler), event.type.value
                )

    def _update_metrics(self, event: Event) -> None:
        if not self._metrics:
            return
        payload = event.payload
        self._metrics.increment(f"events.{event.type.value}", 1.0)
        source = str(payload.get("source") or "all")
        if event.type == EventType.FILTER:
            stage = str(payload.get("stage") or "unknown")
            self._metrics.increment(f"filter.{stage}.in", float(payload.get("count_in", 0) or 0))
            self._metrics.increment(f"filter.{stage}.out", float(payload.get("count_out", 0) or 0))
        elif event.type == EventType.ENRICHMENT:
            self._metrics.increment("enrichment.success", float(payload.get("enriched", 0) or 0))
            self._metrics.increment("enrichment.failed", float(payload.get("failed", 0) or 0))
            self._metrics.increment("enrichment.dropped", float(payload.get("dropped", 0) or 0))
            duration = payload.get("duration_seconds")
            if duration is not None:
                self._metrics.observe(f"enrichment.{source}.duration_seconds", float(duration))
        elif event.type == EventType.LISTING:
            if payload.get("failed"):
                self._metrics.increment(f"listing.{source}.failures", 1.0)
            else:
                self._metrics.gauge(f"listing.{source}.pools", float(payload.get("returned", 0) or 0))
        elif event.type == EventType.AGGREGATION:
            self._metrics.gauge("aggregation.pools", float(payload.get("total", 0) or 0))
        elif event.type == EventType.UPSTREAM:
            status = payload.get("status") or "network"
            self._metrics.increment(f"upstream.errors.{status}", 1.0)


__all__ = [
    "EventBus",
    "Event",
    "EventSink",
    "EventSeverity",
    "EventType",
    "NULL_SINK",
    "NullSink",
]
