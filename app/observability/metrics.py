from __future__ import annotations

from typing import Mapping

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


HTTP_REQUESTS_TOTAL = "http_requests_total"
HTTP_REQUEST_DURATION_SECONDS = "http_request_duration_seconds"

REQUEST_LABELS = ("method", "route", "status_code")
DURATION_BUCKETS = (0.01, 0.1, 0.5, 1, 2.5, 5)


class MetricsRegistry:
    """Process-wide request metrics backed by a private prometheus registry.

    Constructed once when the app is built and handed to whoever records into it.
    Counter and histogram values are lock-guarded by prometheus_client itself.
    """

    def __init__(self, *, collect_process_metrics: bool = True) -> None:
        self.registry = CollectorRegistry(auto_describe=True)

        if collect_process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        self._counters: dict[str, Counter] = {
            HTTP_REQUESTS_TOTAL: Counter(
                HTTP_REQUESTS_TOTAL,
                "Total number of HTTP requests",
                labelnames=REQUEST_LABELS,
                registry=self.registry,
            ),
        }
        self._histograms: dict[str, Histogram] = {
            HTTP_REQUEST_DURATION_SECONDS: Histogram(
                HTTP_REQUEST_DURATION_SECONDS,
                "Duration of HTTP requests in seconds",
                labelnames=REQUEST_LABELS,
                buckets=DURATION_BUCKETS,
                registry=self.registry,
            ),
        }

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def increment_counter(self, name: str, labels: Mapping[str, object]) -> None:
        self._counters[name].labels(**_label_values(labels)).inc()

    def observe_histogram(self, name: str, labels: Mapping[str, object], value: float) -> None:
        self._histograms[name].labels(**_label_values(labels)).observe(float(value))

    def render(self) -> bytes:
        """Serialize every registered series in the text exposition format."""

        return generate_latest(self.registry)


def _label_values(labels: Mapping[str, object]) -> dict[str, str]:
    return {key: str(value) for key, value in labels.items()}
