"""HTTP client for the Cambrian on-chain analytics API."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests
from cachetools import TTLCache
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from ..config.settings import UpstreamConfig, get_app_config
from ..monitoring.event_bus import NULL_SINK, EventSeverity, EventSink, EventType
from ..monitoring.logger import current_correlation_id, get_logger
from ..pipeline.columnar import Record, decode_response

DEFAULT_HEADERS = {"User-Agent": "base-pool-terminal/1.0", "Accept": "application/json"}
INVALID_API_KEY_MESSAGE = (
    "Invalid API key. Please get a new API key from https://www.cambrian.org/dashboard"
)

CacheKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class UpstreamRequestError(RuntimeError):
    """A network failure or non-2xx response from the upstream API.

    ``status`` is ``None`` for network-level failures. ``payload`` carries whatever
    error body the upstream returned.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Optional[Any] = None,
        *,
        endpoint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload if payload is not None else {}
        self.endpoint = endpoint

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "status": self.status,
            "endpoint": self.endpoint,
            "details": self.payload,
        }


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamRequestError) and exc.retryable


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(deadline - time.monotonic(), 0.0)


def _wait_until(wait: Callable[[RetryCallState], float], deadline: float) -> Callable[[RetryCallState], float]:
    # Never back off past the deadline.
    def clipped(retry_state: RetryCallState) -> float:
        return min(wait(retry_state), _remaining(deadline))

    return clipped


class CambrianClient:
    """Thin wrapper around the Cambrian REST API with caching and retries.

    Responses are cached per ``(endpoint, sorted params)`` for a short TTL; price
    endpoints get a shorter one. The cache is shared by the worker threads the
    async pipeline runs requests on, so access to it is locked.
    """

    def __init__(
        self,
        config: Optional[UpstreamConfig] = None,
        session: Optional[requests.Session] = None,
        *,
        sink: EventSink = NULL_SINK,
    ) -> None:
        self._config = config or get_app_config().upstream
        self._session = session or requests.Session()
        self._sink = sink
        self._base_url = str(self._config.base_url).rstrip("/")
        self._cache: TTLCache[CacheKey, Any] = TTLCache(
            maxsize=self._config.cache_max_entries, ttl=self._config.cache_ttl_seconds
        )
        self._price_cache: TTLCache[CacheKey, Any] = TTLCache(
            maxsize=self._config.cache_max_entries, ttl=self._config.price_cache_ttl_seconds
        )
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    def get(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        deadline: Optional[float] = None,
    ) -> Any:
        """GET ``endpoint`` and return the decoded JSON body.

        ``deadline`` is a :func:`time.monotonic` instant. When given, every socket
        wait is capped by the time left, backoff never sleeps past it and no
        attempt starts after it, so the call returns shortly after the deadline
        even with retries configured.

        Raises :class:`UpstreamRequestError` once retries are exhausted.
        """

        clean = {key: value for key, value in (params or {}).items() if value is not None}
        key = self._cache_key(endpoint, clean)
        cache = self._cache_for(endpoint)
        with self._lock:
            if key in cache:
                return cache[key]
        try:
            payload = self._request(endpoint, clean, deadline)
        except UpstreamRequestError as exc:
            self._report_failure(exc)
            raise
        with self._lock:
            cache[key] = payload
        return payload

    def get_records(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        deadline: Optional[float] = None,
    ) -> List[Record]:
        """GET a columnar endpoint and reassemble its first table into records."""

        return decode_response(self.get(endpoint, params, deadline=deadline))

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._price_cache.clear()

    def _cache_for(self, endpoint: str) -> TTLCache:
        return self._price_cache if "price" in endpoint else self._cache

    @staticmethod
    def _cache_key(endpoint: str, params: Mapping[str, Any]) -> CacheKey:
        return endpoint, tuple(sorted((str(key), str(value)) for key, value in params.items()))

    def _request(self, endpoint: str, params: Dict[str, Any], deadline: Optional[float] = None) -> Any:
        stop = stop_after_attempt(self._config.retry_attempts)
        wait = wait_exponential(multiplier=self._config.retry_backoff_seconds, max=10)
        if deadline is not None:
            stop = stop | stop_after_delay(_remaining(deadline))
            wait = _wait_until(wait, deadline)
        retrying = Retrying(
            stop=stop,
            wait=wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        return retrying(self._send, endpoint, params, deadline)

    def _send(self, endpoint: str, params: Dict[str, Any], deadline: Optional[float] = None) -> Any:
        if not self._config.api_key:
            raise UpstreamRequestError(
                "Cambrian API key not configured", 401, {"error": "missing api key"}, endpoint=endpoint
            )
        timeout = self._config.http_timeout
        remaining = _remaining(deadline)
        if remaining is not None:
            if remaining <= 0:
                raise UpstreamRequestError(f"Deadline exceeded before calling {endpoint}", endpoint=endpoint)
            timeout = min(timeout, remaining)
        url = f"{self._base_url}{endpoint}"
        headers = dict(DEFAULT_HEADERS)
        headers["X-API-Key"] = self._config.api_key
        try:
            response = self._session.get(
                url,
                params=params,
                headers=headers,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            self._logger.warning("Network error calling %s: %s", endpoint, exc)
            raise UpstreamRequestError(f"Network error: {exc}", endpoint=endpoint) from exc

        status = response.status_code
        if status < 200 or status >= 300:
            payload = self._error_payload(response)
            if status in (401, 403):
                message = INVALID_API_KEY_MESSAGE
            else:
                message = (
                    payload.get("message")
                    or payload.get("error")
                    or f"API error: {getattr(response, 'reason', '') or status}"
                )
            self._logger.warning("Upstream %s returned %s: %s", endpoint, status, message)
            raise UpstreamRequestError(str(message), status, payload, endpoint=endpoint)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRequestError(
                "Upstream returned a non-JSON body", status, endpoint=endpoint
            ) from exc

    @staticmethod
    def _error_payload(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {"details": payload}

    def _report_failure(self, exc: UpstreamRequestError) -> None:
        self._sink.publish(
            EventType.UPSTREAM,
            {"endpoint": exc.endpoint, "status": exc.status, "message": exc.message},
            severity=EventSeverity.WARNING,
            correlation_id=current_correlation_id(),
        )


__all__ = [
    "CambrianClient",
    "INVALID_API_KEY_MESSAGE",
    "UpstreamRequestError",
]
