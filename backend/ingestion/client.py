from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any, Callable, Iterator

import httpx
from loguru import logger

from app.core.config import settings

PAYLOAD_LIST_KEYS = ("data", "events", "markets", "result")


class UpstreamError(RuntimeError):
    """Raised when a catalog page keeps failing after all retries."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PolymarketClient:
    """Paginated reader for the Polymarket Gamma events catalog."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        events_path: str | None = None,
        page_size: int | None = None,
        filters: dict[str, Any] | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        page_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url or str(settings.polymarket_base_url)
        self.events_path = events_path or settings.polymarket_events_path
        self.page_size = page_size or settings.ingestion_page_size
        self.filters = dict(settings.ingestion_filters if filters is None else filters)
        self.max_retries = settings.ingestion_max_retries if max_retries is None else max_retries
        self.retry_base_delay = (
            settings.ingestion_retry_base_delay_seconds
            if retry_base_delay is None
            else retry_base_delay
        )
        self.page_delay = (
            settings.ingestion_page_delay_seconds if page_delay is None else page_delay
        )
        self.timeout = timeout or settings.ingestion_timeout_seconds
        self._sleep = sleep
        self.client = httpx.Client(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    def _build_params(self, *, offset: int) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": self.page_size, "offset": offset}
        for key, value in self.filters.items():
            serialized = self._serialize_filter_value(value)
            if serialized is not None:
                params[key] = serialized
        return params

    @staticmethod
    def _serialize_filter_value(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            parts: list[str] = []
            for item in value:
                serialized = PolymarketClient._serialize_filter_value(item)
                if serialized is not None:
                    parts.append(serialized)
            return ",".join(parts) if parts else None
        return str(value)

    def retry_delay(self, attempt: int) -> float:
        return self.retry_base_delay * (2**attempt)

    def fetch_page(self, *, offset: int) -> Any:
        params = self._build_params(offset=offset)
        url = str(self.client.build_request("GET", self.events_path, params=params).url)
        attempt = 0
        while True:
            logger.info("Polymarket GET {} params={}", self.events_path, params)
            status_code: int | None = None
            try:
                response = self.client.get(self.events_path, params=params)
            except httpx.TransportError as exc:
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if response.is_success:
                    return response.json()
                status_code = response.status_code
                reason = f"status {status_code}"

            if attempt >= self.max_retries:
                raise UpstreamError(
                    f"Gamma API error {status_code if status_code is not None else reason} for {url}",
                    url=url,
                    status_code=status_code,
                )
            delay = self.retry_delay(attempt)
            logger.warning(
                "Polymarket request failed ({}); retry {}/{} in {:.2f}s",
                reason,
                attempt + 1,
                self.max_retries,
                delay,
            )
            self._sleep(delay)
            attempt += 1

    @staticmethod
    def extract_items(payload: Any) -> list[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            candidates = tuple(payload.get(key) for key in PAYLOAD_LIST_KEYS)
            return next((value for value in candidates if isinstance(value, list)), [])
        return []

    def iter_events(self) -> Iterator[dict[str, Any]]:
        offset = 0
        while True:
            raw_events = self.extract_items(self.fetch_page(offset=offset))
            if not raw_events:
                break

            for event in raw_events:
                yield event

            offset += len(raw_events)
            if len(raw_events) < self.page_size:
                break
            self._sleep(self.page_delay)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PolymarketClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
