"""In-process metrics: counters, gauges and sampled histograms."""

from __future__ import annotations

import math
import re
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator, List, MutableMapping

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_QUANTILES = (("p50", 0.5), ("p90", 0.9), ("p99", 0.99))


def prometheus_name(name: str) -> str:
    """Map a dotted metric name such as ``listing.uniswap.pools`` onto Prometheus' charset."""

    sanitized = _INVALID_NAME_CHARS.sub("_", name) or "_"
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def _quantile(ordered: List[float], q: float) -> float:
    # Nearest-rank on an already sorted sample.
    rank = max(int(math.ceil(q * len(ordered))) - 1, 0)
    return ordered[min(rank, len(ordered) - 1)]


class MetricsRegistry:
    """Thread-safe store fed by the event bus and the JSON service.

    Histograms keep the most recent ``max_samples`` observations per name, so
    quantiles describe recent searches rather than the whole process lifetime.
    """

    def __init__(self, *, max_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._samples: MutableMapping[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_samples))

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._samples[name].append(float(value))

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Observe the wall-clock seconds spent inside the block, even when it raises."""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - started)

    def histogram(self, name: str) -> Dict[str, float]:
        with self._lock:
            ordered = sorted(self._samples.get(name, ()))
        if not ordered:
            return {}
        stats = {
            "count": float(len(ordered)),
            "sum": math.fsum(ordered),
            "min": ordered[0],
            "max": ordered[-1],
        }
        stats["avg"] = stats["sum"] / len(ordered)
        for label, q in _QUANTILES:
            stats[label] = _quantile(ordered, q)
        return stats

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            names = list(self._samples)
        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {name: self.histogram(name) for name in names},
        }

    def export_prometheus(self) -> str:
        """Render the registry in the Prometheus text exposition format."""

        snap = self.snapshot()
        lines: List[str] = []
        for kind, values in (("counter", snap["counters"]), ("gauge", snap["gauges"])):
            for name in sorted(values):
                metric = prometheus_name(name)
                lines.append(f"# TYPE {metric} {kind}")
                lines.append(f"{metric} {values[name]}")
        for name in sorted(snap["histograms"]):
            stats = snap["histograms"][name]
            if not stats:
                continue
            metric = prometheus_name(name)
            lines.append(f"# TYPE {metric} summary")
            for label, q in _QUANTILES:
                lines.append(f'{metric}{{quantile="{q}"}} {stats[label]}')
            lines.append(f"{metric}_sum {stats['sum']}")
            lines.append(f"{metric}_count {int(stats['count'])}")
        return "\n".join(lines) + "\n"


__all__ = ["MetricsRegistry", "prometheus_name"]
