import math

import pytest

from servicekit.metrics import (
    Counter,
    DuplicateRegistrationError,
    Histogram,
    Metrics,
    MetricsError,
    Registry,
    Timer,
)


def test_bump_count_accumulates_per_label_set():
    registry = Registry()
    metrics = Metrics("svc", registry)
    metrics.bump_count("requests", 2, "path", "/a")
    metrics.bump_count("requests", 3, "path", "/a")
    metrics.bump_count("requests", 1, "path", "/b")
    counter = registry.get("svc_requests")
    assert counter.value({"path": "/a"}) == 5
    assert counter.value({"path": "/b"}) == 1


def test_bump_count_odd_tags_rejected():
    metrics = Metrics("svc", Registry())
    with pytest.raises(MetricsError, match="tags must be a multiplier of 2"):
        metrics.bump_count("requests", 1, "path")


def test_bump_time_odd_tags_rejected():
    metrics = Metrics("svc", Registry())
    with pytest.raises(MetricsError, match="tags must be a multiplier of 2"):
        metrics.bump_time("latency", "path")


def test_bump_time_records_one_observation():
    registry = Registry()
    metrics = Metrics("svc", registry)
    timer = metrics.bump_time("latency", "path", "/a")
    elapsed = timer.end()
    snapshot = registry.get("svc_latency").samples({"path": "/a"})
    assert snapshot.count == 1
    assert snapshot.sum == elapsed
    assert elapsed >= 0
    assert snapshot.buckets[-1] == (math.inf, 1)


def test_timer_as_context_manager():
    registry = Registry()
    metrics = Metrics("svc", registry)
    with metrics.bump_time("latency"):
        pass
    with metrics.bump_time("latency"):
        pass
    assert registry.get("svc_latency").samples({}).count == 2


def test_same_name_in_second_service_instance_is_duplicate():
    registry = Registry()
    Metrics("svc", registry).bump_count("requests", 1)
    with pytest.raises(DuplicateRegistrationError):
        Metrics("svc", registry).bump_count("requests", 1)


def test_histogram_and_counter_share_namespace():
    registry = Registry()
    metrics = Metrics("svc", registry)
    metrics.bump_count("calls", 1)
    with pytest.raises(DuplicateRegistrationError):
        metrics.bump_time("calls")


def test_mismatched_labels_rejected():
    metrics = Metrics("svc", Registry())
    metrics.bump_count("requests", 1, "path", "/a")
    with pytest.raises(MetricsError):
        metrics.bump_count("requests", 1, "method", "GET")
    with pytest.raises(MetricsError):
        metrics.bump_count("requests", 1)


def test_invalid_metric_name_rejected():
    metrics = Metrics("svc", Registry())
    with pytest.raises(MetricsError):
        metrics.bump_count("bad-name", 1)


def test_negative_counter_increment_rejected():
    metrics = Metrics("svc", Registry())
    with pytest.raises(MetricsError):
        metrics.bump_count("requests", -1)


def test_histogram_buckets_are_cumulative():
    histogram = Histogram("svc", "size", ["kind"])
    labels = {"kind": "x"}
    histogram.observe(labels, 0.003)
    histogram.observe(labels, 7)
    histogram.observe(labels, 100)
    snapshot = histogram.samples(labels)
    counts = [count for _, count in snapshot.buckets]
    assert counts == sorted(counts)
    assert snapshot.count == 3
    assert snapshot.buckets[0] == (0.005, 1)
    assert dict(snapshot.buckets)[10.0] == 2
    assert snapshot.buckets[-1] == (math.inf, 3)
    assert snapshot.sum == pytest.approx(107.003)


def test_histogram_rejects_le_label():
    with pytest.raises(MetricsError):
        Histogram("svc", "size", ["le"])


def test_registry_rejects_duplicate_label_names():
    with pytest.raises(MetricsError):
        Registry().register(Counter("svc", "hits", ["a", "a"]))


def test_registry_get_unknown_raises():
    with pytest.raises(MetricsError):
        Registry().get("svc_missing")


def test_counter_without_namespace_uses_bare_name():
    registry = Registry()
    Metrics("", registry).bump_count("hits", 4)
    assert registry.get("hits").value({}) == 4


def test_timer_rejects_wrong_labels():
    histogram = Histogram("svc", "latency", ["path"])
    with pytest.raises(MetricsError):
        Timer(histogram, {"method": "GET"})