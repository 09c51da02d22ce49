from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from time import perf_counter
from typing import Callable

from app.observability.metrics import HTTP_REQUEST_DURATION_SECONDS, MetricsRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestObservation:
    method: str
    route: str
    path: str
    status_code: int
    duration_seconds: float

    @property
    def labels(self) -> dict[str, str]:
        return {
            "method": self.method,
            "route": self.route,
            "status_code": str(self.status_code),
        }

    @property
    def level(self) -> str:
        return "error" if self.status_code >= 500 else "info"


class RequestState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


Observer = Callable[[RequestObservation], None]


class CompletionHandle:
    """One-shot completion signal for a single request.

    The first ``complete()`` records the duration histogram and notifies every
    subscriber; later calls are no-ops and return None.
    """

    def __init__(self, registry: MetricsRegistry, started_at: float, clock: Callable[[], float]) -> None:
        self._registry = registry
        self._started_at = started_at
        self._clock = clock
        self._observers: list[Observer] = []
        self.state = RequestState.PENDING

    @property
    def completed(self) -> bool:
        return self.state is RequestState.COMPLETED

    def subscribe(self, observer: Observer) -> None:
        if self.completed:
            raise RuntimeError("cannot subscribe to a completed request")
        self._observers.append(observer)

    def complete(self, *, method: str, route: str, path: str, status_code: int) -> RequestObservation | None:
        if self.completed:
            return None
        self.state = RequestState.COMPLETED

        observation = RequestObservation(
            method=method,
            route=route,
            path=path,
            status_code=int(status_code),
            duration_seconds=max(self._clock() - self._started_at, 0.0),
        )

        try:
            self._registry.observe_histogram(
                HTTP_REQUEST_DURATION_SECONDS,
                observation.labels,
                observation.duration_seconds,
            )
        except Exception:
            logger.exception("request duration could not be recorded")

        # Each observer is independent: one failing must not starve the rest.
        for observer in self._observers:
            try:
                observer(observation)
            except Exception:
                logger.exception("request observer %r failed", observer)

        self._observers.clear()
        return observation


class RequestTimer:
    """Starts per-request completion handles bound to a metrics registry."""

    def __init__(self, registry: MetricsRegistry, clock: Callable[[], float] = perf_counter) -> None:
        self._registry = registry
        self._clock = clock

    def start(self) -> CompletionHandle:
        return CompletionHandle(self._registry, self._clock(), self._clock)
