"""Loki push-API log handler.

Each record is POSTed to ``/loki/api/v1/push`` as a single-line stream entry.
Timeouts, transport errors and 429/5xx responses are retried with exponential
backoff and full jitter. A record that still cannot be delivered is reported to
a console-only fallback logger; nothing is ever raised back to the caller.

The handler blocks while it retries, so it sits behind a bounded queue drained by
a listener thread. Records from the HTTP transport itself never enter that
queue, otherwise every push would produce another record to push.
"""

from __future__ import annotations

import logging
import queue
import random
import time
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Mapping

import httpx


FALLBACK_LOGGER_NAME = "app.observability.loki"
PUSH_PATH = "/loki/api/v1/push"

# Loggers whose records come from the push itself; shipping them would feed back.
TRANSPORT_LOGGER_NAMES = ("httpx", "httpcore", FALLBACK_LOGGER_NAME)

# Status codes eligible for automatic retry.
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 0.5  # seconds
_DEFAULT_MAX_DELAY = 10.0  # seconds


class LokiPushError(Exception):
    """A log line could not be delivered to Loki."""

    def __init__(self, message: str, *, status_code: int = 0) -> None:
        self.status_code = status_code
        super().__init__(message)


class LokiHandler(logging.Handler):
    def __init__(
        self,
        url: str,
        labels: Mapping[str, str],
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = 5.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        backoff_seconds: float = _DEFAULT_BASE_DELAY,
        max_backoff_seconds: float = _DEFAULT_MAX_DELAY,
        level: int = logging.NOTSET,
    ) -> None:
        super().__init__(level=level)
        self.push_url = f"{url.rstrip('/')}{PUSH_PATH}"
        self.labels = dict(labels)
        self._owns_client = client is None
        self._client = client or httpx.Client()
        self._timeout = float(timeout_seconds)
        self._max_retries = max_retries
        self._base_delay = backoff_seconds
        self._max_delay = max_backoff_seconds
        self._sleep = time.sleep

    def build_payload(self, record: logging.LogRecord, line: str) -> dict[str, Any]:
        stream = {**self.labels, "level": record.levelname.lower()}
        timestamp_ns = str(int(record.created * 1_000_000_000))
        return {"streams": [{"stream": stream, "values": [[timestamp_ns, line]]}]}

    def emit(self, record: logging.LogRecord) -> None:
        try:
            payload = self.build_payload(record, self.format(record))
            self._push(payload)
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        # Route delivery failures to the console sink instead of stderr tracebacks.
        fallback = logging.getLogger(FALLBACK_LOGGER_NAME)
        fallback.warning(
            "Loki push failed, dropped %s record from %s",
            record.levelname,
            record.name,
            exc_info=True,
        )

    def close(self) -> None:
        try:
            if self._owns_client:
                self._client.close()
        finally:
            super().close()

    def _push(self, payload: dict[str, Any]) -> None:
        for attempt in range(self._max_retries + 1):
            last_attempt = attempt >= self._max_retries
            try:
                resp = self._client.post(self.push_url, json=payload, timeout=self._timeout)
            except httpx.TransportError as exc:
                if last_attempt:
                    raise LokiPushError(f"Loki push failed: {exc}") from exc
                self._sleep(self._backoff_delay(attempt))
                continue

            if resp.status_code < 400:
                return

            if resp.status_code not in _RETRYABLE_STATUS_CODES or last_attempt:
                raise LokiPushError(
                    f"Loki push returned {resp.status_code}: {resp.text[:200]}",
                    status_code=resp.status_code,
                )
            self._sleep(self._backoff_delay(attempt))

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return random.uniform(0, delay)


class TransportRecordFilter(logging.Filter):
    """Rejects records emitted by the Loki transport or its fallback logger."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(
            record.name == name or record.name.startswith(f"{name}.") for name in TRANSPORT_LOGGER_NAMES
        )


class BoundedQueueHandler(QueueHandler):
    """QueueHandler that drops records instead of growing once the queue is full."""

    def __init__(self, maxsize: int) -> None:
        super().__init__(queue.Queue(maxsize=maxsize))
        self.dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class DrainingQueueListener(QueueListener):
    """QueueListener whose stop sentinel waits for room in a bounded queue."""

    def enqueue_sentinel(self) -> None:
        self.queue.put(self._sentinel)
