from __future__ import annotations

import uuid
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders

from app.observability.metrics import HTTP_REQUESTS_TOTAL, MetricsRegistry
from app.observability.recorder import CompletionHandle, RequestObservation, RequestTimer


def _access_logger() -> Any:
    return structlog.get_logger("access")


def _resolve_route(scope: dict[str, Any]) -> str:
    # Unmatched requests keep their literal path as the route label.
    route = scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return str(template)
    return str(scope.get("path", ""))


def _original_url(scope: dict[str, Any]) -> str:
    path = str(scope.get("path", ""))
    query = scope.get("query_string") or b""
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


class InstrumentationMiddleware:
    """Adds request_id context and records one metric/log observation per response."""

    def __init__(self, app: Callable[..., Any], registry: MetricsRegistry) -> None:
        self.app = app
        self.registry = registry
        self._timer = RequestTimer(registry)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        method = str(scope.get("method", ""))
        path = _original_url(scope)

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        handle = self._timer.start()
        handle.subscribe(self._count_request)
        handle.subscribe(self._log_request)
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

            if message.get("type") == "http.response.body" and not message.get("more_body", False):
                self._finish(handle, scope, method, path, status_code)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            # No response went out through us; ServerErrorMiddleware will answer 500.
            self._finish(handle, scope, method, path, 500)
            raise
        finally:
            structlog.contextvars.clear_contextvars()

    def _finish(self, handle: CompletionHandle, scope: dict[str, Any], method: str, path: str, status_code: int) -> None:
        handle.complete(
            method=method,
            route=_resolve_route(scope),
            path=path,
            status_code=status_code,
        )

    def _count_request(self, observation: RequestObservation) -> None:
        self.registry.increment_counter(HTTP_REQUESTS_TOTAL, observation.labels)

    def _log_request(self, observation: RequestObservation) -> None:
        log = getattr(_access_logger(), observation.level)
        log(
            "http_request",
            method=observation.method,
            path=observation.path,
            route=observation.route,
            status=observation.status_code,
            duration_ms=round(observation.duration_seconds * 1000.0, 2),
        )
