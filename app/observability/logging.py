from __future__ import annotations

import logging
import sys
from typing import Any

import httpx
import structlog

from app.config import Settings, get_settings
from app.observability.loki import (
    FALLBACK_LOGGER_NAME,
    BoundedQueueHandler,
    DrainingQueueListener,
    LokiHandler,
    TransportRecordFilter,
)


_CONFIGURED = False
_LISTENER: DrainingQueueListener | None = None
_QUEUE_HANDLER: BoundedQueueHandler | None = None


def configure_logging(settings: Settings | None = None, *, loki_client: httpx.Client | None = None) -> None:
    """Configure structlog + stdlib logging for JSON output.

    Console output always goes to stdout; when Loki is enabled every record is
    also queued for the Loki push handler, which runs on its own thread.
    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED, _LISTENER, _QUEUE_HANDLER
    if _CONFIGURED:
        return

    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            # Let ProcessorFormatter render JSON for stdlib log records too.
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if settings.loki_enabled:
        loki = LokiHandler(
            settings.loki_url,
            settings.loki_labels,
            client=loki_client,
            timeout_seconds=settings.loki_timeout_seconds,
            max_retries=settings.loki_max_retries,
            backoff_seconds=settings.loki_backoff_seconds,
        )
        # Records are rendered to JSON before they cross the queue.
        queued = BoundedQueueHandler(maxsize=settings.loki_queue_size)
        queued.setFormatter(formatter)
        queued.addFilter(TransportRecordFilter())
        handlers.append(queued)
        _QUEUE_HANDLER = queued
        _LISTENER = DrainingQueueListener(queued.queue, loki, respect_handler_level=True)
        _LISTENER.start()

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    # Loki failures and the push client's own chatter only ever reach the console.
    fallback = logging.getLogger(FALLBACK_LOGGER_NAME)
    fallback.handlers = [console]
    fallback.propagate = False
    for name in ("httpx", "httpcore"):
        logger = logging.getLogger(name)
        logger.handlers = [console]
        logger.propagate = False
        logger.setLevel(logging.WARNING)

    # Keep uvicorn's own loggers consistent with our handlers.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = list(handlers)
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True


def shutdown_logging() -> None:
    """Flush queued records to Loki and stop the listener thread."""

    global _LISTENER, _QUEUE_HANDLER
    if _LISTENER is None:
        return

    listener, _LISTENER = _LISTENER, None
    queued, _QUEUE_HANDLER = _QUEUE_HANDLER, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()

    if queued is not None and queued.dropped:
        logging.getLogger(FALLBACK_LOGGER_NAME).warning(
            "Loki queue was full, dropped %d records",
            queued.dropped,
        )
