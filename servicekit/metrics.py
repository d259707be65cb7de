"""Labelled histograms and counters registered per service."""

from __future__ import annotations

import bisect
import math
import re
import threading
import time
from dataclasses import dataclass
from typing import Union

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*\Z")
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*\Z")


class MetricsError(ValueError):
    """Raised for invalid metric names, labels or values."""


class DuplicateRegistrationError(MetricsError):
    """Raised when a metric with the same full name is already registered."""


def _full_name(namespace: str, name: str) -> str:
    if not name:
        return ""
    return "_".join(part for part in (namespace, name) if part)


@dataclass(frozen=True)
class HistogramSnapshot:
    count: int
    sum: float
    buckets: tuple[tuple[float, int], ...]


class _Vector:
    def __init__(self, namespace: str, name: str, label_names) -> None:
        self.namespace = namespace
        self.name = name
        self.full_name = _full_name(namespace, name)
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def validate(self) -> None:
        if not _METRIC_NAME.match(self.full_name):
            raise MetricsError(f"{self.full_name!r} is not a valid metric name")
        seen = set()
        for label in self.label_names:
            if not _LABEL_NAME.match(label) or label.startswith("__"):
                raise MetricsError(f"{label!r} is not a valid label name")
            if label in seen:
                raise MetricsError(f"duplicate label name {label!r}")
            seen.add(label)

    def _key(self, labels: dict[str, str]) -> tuple[str, ...]:
        if len(labels) != len(self.label_names) or set(labels) != set(self.label_names):
            raise MetricsError(
                f"labels {sorted(labels)} do not match {list(self.label_names)} "
                f"for {self.full_name}"
            )
        return tuple(labels[name] for name in self.label_names)


class Histogram(_Vector):
    """A histogram of observations partitioned by label values."""

    def __init__(self, namespace: str, name: str, label_names) -> None:
        super().__init__(namespace, name, label_names)
        if "le" in self.label_names:
            raise MetricsError("'le' is not allowed as a histogram label")
        self.bounds = DEFAULT_BUCKETS
        self._children: dict[tuple[str, ...], list] = {}

    def _child(self, key):
        return self._children.setdefault(key, [[0] * len(self.bounds), 0, 0.0])

    def observe(self, labels: dict[str, str], value: float) -> None:
        key = self._key(labels)
        with self._lock:
            child = self._child(key)
            index = bisect.bisect_left(self.bounds, value)
            if index < len(self.bounds):
                child[0][index] += 1
            child[1] += 1
            child[2] += value

    def samples(self, labels: dict[str, str]) -> HistogramSnapshot:
        """Return count, sum and cumulative bucket counts for one label set."""
        key = self._key(labels)
        with self._lock:
            counts, count, total = self._child(key)
            cumulative = []
            running = 0
            for bound, hits in zip(self.bounds, counts):
                running += hits
                cumulative.append((bound, running))
            cumulative.append((math.inf, count))
            return HistogramSnapshot(count=count, sum=total, buckets=tuple(cumulative))


class Counter(_Vector):
    """A monotonically increasing counter partitioned by label values."""

    def __init__(self, namespace: str, name: str, label_names) -> None:
        super().__init__(namespace, name, label_names)
        self._values: dict[tuple[str, ...], float] = {}

    def add(self, labels: dict[str, str], value: float) -> None:
        if value < 0:
            raise MetricsError("counter cannot decrease in value")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def value(self, labels: dict[str, str]) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)


Collector = Union[Histogram, Counter]


class Registry:
    """Holds registered collectors by full metric name."""

    def __init__(self) -> None:
        self._collectors: dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, collector: Collector) -> None:
        collector.validate()
        with self._lock:
            if collector.full_name in self._collectors:
                raise DuplicateRegistrationError(
                    f"duplicate metrics collector registration attempted: "
                    f"{collector.full_name}"
                )
            self._collectors[collector.full_name] = collector

    def get(self, full_name: str) -> Collector:
        with self._lock:
            try:
                return self._collectors[full_name]
            except KeyError:
                raise MetricsError(f"no collector named {full_name!r}") from None


DEFAULT_REGISTRY = Registry()


class Timer:
    """Measures time from creation and records it in a histogram on end()."""

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        histogram._key(labels)
        self._histogram = histogram
        self._labels = dict(labels)
        self._start = time.perf_counter()

    def end(self) -> float:
        """Record and return the seconds elapsed since the timer started."""
        elapsed = time.perf_counter() - self._start
        self._histogram.observe(self._labels, elapsed)
        return elapsed

    def __enter__(self) -> Timer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.end()


def _check_tags(tags) -> None:
    if len(tags) % 2:
        raise MetricsError("tags must be a multiplier of 2")


def _tags_to_labels(tags) -> dict[str, str]:
    return dict(zip(tags[::2], tags[1::2]))


class Metrics:
    """Creates per-service histograms and counters on first use, keyed by name."""

    def __init__(self, service_name: str, registry: Registry | None = None) -> None:
        self.service = service_name
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self._histograms: dict[str, Histogram] = {}
        self._counters: dict[str, Counter] = {}
        self._lock = threading.Lock()

    def _collector(self, store, factory, key, tags):
        metric_id = self.service + key
        with self._lock:
            collector = store.get(metric_id)
            if collector is None:
                collector = factory(self.service, key, tags[::2])
                self.registry.register(collector)
                store[metric_id] = collector
            return collector

    def bump_time(self, key: str, *tags: str) -> Timer:
        """Start a timer for histogram *key*; tags are alternating label names and values."""
        _check_tags(tags)
        histogram = self._collector(self._histograms, Histogram, key, tags)
        return Timer(histogram, _tags_to_labels(tags))

    def bump_count(self, key: str, val: float, *tags: str) -> None:
        """Add *val* to counter *key*; tags are alternating label names and values."""
        _check_tags(tags)
        counter = self._collector(self._counters, Counter, key, tags)
        counter.add(_tags_to_labels(tags), val)