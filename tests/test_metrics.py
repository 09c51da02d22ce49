import pytest
from httpx import ASGITransport, AsyncClient
from prometheus_client.parser import text_string_to_metric_families

from app.main import create_app
from app.observability.metrics import (
    DURATION_BUCKETS,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_TOTAL,
    MetricsRegistry,
)


def _samples(text: str, sample_name: str, **labels: str) -> list:
    found = []
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name == sample_name and all(sample.labels.get(k) == v for k, v in labels.items()):
                found.append(sample)
    return found


def _value(text: str, sample_name: str, **labels: str) -> float | None:
    samples = _samples(text, sample_name, **labels)
    return samples[0].value if samples else None


async def test_metrics_endpoint_uses_exposition_content_type(api_client, registry) -> None:
    resp = await api_client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == registry.content_type
    assert "text/plain" in resp.headers["content-type"]

    # Must parse cleanly.
    families = list(text_string_to_metric_families(resp.text))
    assert families
    assert "# TYPE http_requests_total counter" in resp.text
    assert "# TYPE http_request_duration_seconds histogram" in resp.text


async def test_metrics_include_baseline_process_metrics(api_client) -> None:
    resp = await api_client.get("/metrics")
    assert "python_info" in resp.text
    assert "python_gc_objects_collected_total" in resp.text


async def test_counter_matches_number_of_completed_requests(api_client) -> None:
    for _ in range(5):
        resp = await api_client.get("/")
        assert resp.status_code == 200

    text = (await api_client.get("/metrics")).text
    assert _value(text, "http_requests_total", method="GET", route="/", status_code="200") == 5.0


async def test_metrics_requests_are_counted_too(api_client) -> None:
    await api_client.get("/metrics")
    text = (await api_client.get("/metrics")).text
    # The first scrape has completed; the second is still in flight while rendering.
    assert _value(text, "http_requests_total", method="GET", route="/metrics", status_code="200") == 1.0


async def test_histogram_buckets_are_cumulative_and_complete(api_client) -> None:
    for _ in range(3):
        await api_client.get("/")

    text = (await api_client.get("/metrics")).text
    labels = {"method": "GET", "route": "/", "status_code": "200"}

    buckets = _samples(text, "http_request_duration_seconds_bucket", **labels)
    by_bound = {sample.labels["le"]: sample.value for sample in buckets}
    assert len(by_bound) == len(DURATION_BUCKETS) + 1

    ordered = [by_bound[bound] for bound in ("0.01", "0.1", "0.5", "1.0", "2.5", "5.0", "+Inf")]
    assert ordered == sorted(ordered)
    assert by_bound["5.0"] == 3.0
    assert _value(text, "http_request_duration_seconds_count", **labels) == 3.0


async def test_histogram_counts_never_decrease(api_client) -> None:
    labels = {"method": "GET", "route": "/", "status_code": "200"}
    previous: dict[str, float] = {}

    for _ in range(3):
        await api_client.get("/")
        text = (await api_client.get("/metrics")).text
        current = {
            sample.labels["le"]: sample.value
            for sample in _samples(text, "http_request_duration_seconds_bucket", **labels)
        }
        for bound, value in previous.items():
            assert current[bound] >= value
        previous = current


async def test_unmatched_paths_keep_their_raw_path(api_client) -> None:
    await api_client.get("/missing/one")
    await api_client.get("/missing/two")

    text = (await api_client.get("/metrics")).text
    assert _value(text, "http_requests_total", method="GET", route="/missing/one", status_code="404") == 1.0
    assert _value(text, "http_requests_total", method="GET", route="/missing/two", status_code="404") == 1.0


async def test_slow_outcomes_are_counted_per_status(api_client) -> None:
    statuses = []
    for _ in range(8):
        statuses.append((await api_client.get("/slow")).status_code)

    text = (await api_client.get("/metrics")).text
    for status in set(statuses):
        expected = float(statuses.count(status))
        assert _value(text, "http_requests_total", method="GET", route="/slow", status_code=str(status)) == expected
        assert (
            _value(text, "http_request_duration_seconds_count", method="GET", route="/slow", status_code=str(status))
            == expected
        )


def test_render_is_a_pure_read() -> None:
    registry = MetricsRegistry(collect_process_metrics=False)
    labels = {"method": "GET", "route": "/", "status_code": 200}
    registry.increment_counter(HTTP_REQUESTS_TOTAL, labels)
    registry.observe_histogram(HTTP_REQUEST_DURATION_SECONDS, labels, 0.2)

    assert registry.render() == registry.render()


def test_unknown_series_name_raises() -> None:
    registry = MetricsRegistry(collect_process_metrics=False)
    with pytest.raises(KeyError):
        registry.increment_counter("nope_total", {"method": "GET", "route": "/", "status_code": "200"})


class _BrokenRenderRegistry(MetricsRegistry):
    def render(self) -> bytes:
        raise RuntimeError("render failed")


async def test_render_failure_is_not_fatal() -> None:
    registry = _BrokenRenderRegistry(collect_process_metrics=False)
    transport = ASGITransport(app=create_app(registry=registry))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/metrics")
        assert resp.status_code == 500

        ok = await client.get("/")
        assert ok.status_code == 200
