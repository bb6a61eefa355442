from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from base_pool_terminal.config.settings import (
    AppConfig,
    DashboardConfig,
    EnrichmentConfig,
    MonitoringConfig,
    SearchConfig,
    UpstreamConfig,
)
from base_pool_terminal.ingestion.cambrian_api import CambrianClient
from base_pool_terminal.monitoring.event_bus import EventSeverity, EventType

BASE_URL = "https://cambrian.test/api/v1"
TOKEN = "0xAbC0000000000000000000000000000000000001"
WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


def columnar(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "columns": [{"name": name, "type": "String"} for name in columns],
            "data": [list(row) for row in rows],
            "rows": len(rows),
        }
    ]


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, reason: str = "OK") -> None:
        self.status_code = status_code
        self._payload = payload
        self.reason = reason

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


Handler = Callable[[Dict[str, Any]], Any]


class FakeSession:
    """Stands in for ``requests.Session``; routes by URL path."""

    def __init__(self) -> None:
        self.routes: Dict[str, Any] = {}
        self.calls: List[Tuple[str, Dict[str, Any], Dict[str, str]]] = []
        self.timeouts: List[Optional[float]] = []

    def route(self, path: str, handler: Any) -> None:
        self.routes[path] = handler

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        return [params for called, params, _ in self.calls if called == path]

    def get(self, url: str, params=None, headers=None, timeout=None) -> FakeResponse:
        path = url[len(BASE_URL):] if url.startswith(BASE_URL) else url
        params = dict(params or {})
        self.calls.append((path, params, dict(headers or {})))
        self.timeouts.append(timeout)
        handler = self.routes.get(path)
        if handler is None:
            return FakeResponse(404, {"message": f"no route for {path}"}, reason="Not Found")
        result = handler(params) if callable(handler) else handler
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse(200, result)


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Tuple[EventType, Dict[str, Any], EventSeverity]] = []

    def publish(
        self,
        event_type,
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        self.events.append((EventType(event_type), dict(payload or {}), severity))

    def of_type(self, event_type: EventType) -> List[Dict[str, Any]]:
        return [payload for kind, payload, _ in self.events if kind == event_type]


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(
        base_url=BASE_URL,
        api_key="test-key",
        retry_attempts=2,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client(upstream_config: UpstreamConfig, session: FakeSession, sink: RecordingSink) -> CambrianClient:
    return CambrianClient(upstream_config, session=session, sink=sink)


@pytest.fixture
def app_config(upstream_config: UpstreamConfig) -> AppConfig:
    return AppConfig(
        upstream=upstream_config,
        enrichment=EnrichmentConfig(max_to_enrich=30, batch_size=10, detail_timeout_seconds=2.0),
        search=SearchConfig(
            listing_limit=100,
            enabled_sources=["aerodrome", "uniswap", "pancake", "sushi", "alien"],
        ),
        monitoring=MonitoringConfig(log_level="WARNING"),
        dashboard=DashboardConfig(),
    )


@pytest.fixture
def make_table() -> Callable[[Sequence[str], Sequence[Sequence[Any]]], List[Dict[str, Any]]]:
    return columnar


@pytest.fixture
def fake_response() -> type:
    return FakeResponse
