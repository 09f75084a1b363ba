"""In-process metric registry rendered in the Prometheus text exposition format.

One `Registry` is built by the application factory and handed to every
component that records or exposes metrics; there is no module-level registry.
"""

from __future__ import annotations

import math
import re
from bisect import bisect_left
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Union


CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"

DEFAULT_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

LabelKey = tuple[str, ...]


class MetricsError(Exception):
    """Base class for metric registration and recording errors."""


class InvalidDescriptorError(MetricsError, ValueError):
    pass


class DuplicateNameError(MetricsError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Metric already registered: {name}")
        self.name = name


class NegativeDeltaError(MetricsError, ValueError):
    def __init__(self, name: str, delta: float) -> None:
        super().__init__(f"Counter {name} cannot be incremented by {delta!r}")
        self.name = name
        self.delta = delta


class LabelMismatchError(MetricsError, ValueError):
    def __init__(self, name: str, expected: tuple[str, ...], got: tuple[str, ...]) -> None:
        super().__init__(f"Metric {name} expects labels {list(expected)}, got {list(got)}")
        self.name = name
        self.expected = expected
        self.got = got


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    help: str
    kind: MetricKind
    label_names: tuple[str, ...] = ()
    buckets: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if not _METRIC_NAME_RE.match(self.name):
            raise InvalidDescriptorError(f"Invalid metric name: {self.name!r}")

        labels = tuple(self.label_names)
        for label in labels:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise InvalidDescriptorError(f"Invalid label name {label!r} for {self.name}")
        if len(set(labels)) != len(labels):
            raise InvalidDescriptorError(f"Duplicate label names for {self.name}: {list(labels)}")
        object.__setattr__(self, "label_names", labels)

        if self.kind is not MetricKind.HISTOGRAM:
            if self.buckets:
                raise InvalidDescriptorError(f"Only histograms take buckets ({self.name})")
            return

        if "le" in labels:
            raise InvalidDescriptorError(f"Histogram {self.name} cannot use the reserved label 'le'")
        bounds = [float(b) for b in (self.buckets or DEFAULT_BUCKETS)]
        if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
            # +Inf is always implied.
            bounds.pop()
        if not bounds:
            raise InvalidDescriptorError(f"Histogram {self.name} needs at least one finite bucket")
        if any(math.isnan(b) for b in bounds) or any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise InvalidDescriptorError(f"Histogram {self.name} buckets must be strictly ascending")
        object.__setattr__(self, "buckets", tuple(bounds))


@dataclass(frozen=True)
class HistogramSnapshot:
    # (upper bound, cumulative count), ending with the +Inf bucket.
    buckets: tuple[tuple[float, int], ...]
    sum: float
    count: int


SampleValue = Union[float, HistogramSnapshot]


@dataclass(frozen=True)
class Sample:
    descriptor: MetricDescriptor
    labels: dict[str, str] = field(hash=False)
    value: SampleValue = field(hash=False)


class _ValueSeries:
    __slots__ = ("lock", "value")

    def __init__(self) -> None:
        self.lock = Lock()
        self.value = 0.0

    def snapshot(self) -> float:
        with self.lock:
            return self.value


class _HistogramSeries:
    __slots__ = ("lock", "counts", "sum", "count")

    def __init__(self, n_buckets: int) -> None:
        self.lock = Lock()
        # Non-cumulative per-bucket counts; the last slot is +Inf.
        self.counts = [0] * (n_buckets + 1)
        self.sum = 0.0
        self.count = 0

    def snapshot(self, bounds: tuple[float, ...]) -> HistogramSnapshot:
        with self.lock:
            counts = list(self.counts)
            total = self.sum
            count = self.count
        cumulative: list[tuple[float, int]] = []
        running = 0
        for bound, n in zip((*bounds, math.inf), counts):
            running += n
            cumulative.append((bound, running))
        return HistogramSnapshot(buckets=tuple(cumulative), sum=total, count=count)


class _Metric:
    """Shared series bookkeeping for the three instrument kinds."""

    kind: MetricKind

    def __init__(self, descriptor: MetricDescriptor) -> None:
        self.descriptor = descriptor
        self._series: dict[LabelKey, Any] = {}
        # Guards series creation only; updates lock the individual series.
        self._create_lock = Lock()
        if not descriptor.label_names:
            self._series_for(())

    @property
    def name(self) -> str:
        return self.descriptor.name

    def _new_series(self) -> Any:
        return _ValueSeries()

    def _label_key(self, labels: Mapping[str, Any] | None) -> LabelKey:
        expected = self.descriptor.label_names
        labels = labels or {}
        if len(labels) != len(expected) or any(name not in labels for name in expected):
            raise LabelMismatchError(self.name, expected, tuple(labels))
        return tuple(str(labels[name]) for name in expected)

    def _series_for(self, key: LabelKey) -> Any:
        series = self._series.get(key)
        if series is None:
            with self._create_lock:
                series = self._series.get(key)
                if series is None:
                    series = self._new_series()
                    self._series[key] = series
        return series

    def _snapshot_value(self, series: Any) -> SampleValue:
        return series.snapshot()

    def collect(self) -> Iterator[Sample]:
        with self._create_lock:
            items = list(self._series.items())
        names = self.descriptor.label_names
        for key, series in items:
            yield Sample(self.descriptor, dict(zip(names, key)), self._snapshot_value(series))


class Counter(_Metric):
    kind = MetricKind.COUNTER

    def increment(self, labels: Mapping[str, Any] | None = None, delta: float = 1.0) -> None:
        self._increment(self._label_key(labels), delta)

    def _increment(self, key: LabelKey, delta: float) -> None:
        # Also rejects NaN.
        if not delta >= 0:
            raise NegativeDeltaError(self.name, delta)
        series = self._series_for(key)
        with series.lock:
            series.value += float(delta)

    def labels(self, **values: Any) -> BoundCounter:
        return BoundCounter(self, self._label_key(values))


class Gauge(_Metric):
    kind = MetricKind.GAUGE

    def set(self, labels: Mapping[str, Any] | None = None, value: float = 0.0) -> None:
        self._set(self._label_key(labels), value)

    def _set(self, key: LabelKey, value: float) -> None:
        series = self._series_for(key)
        with series.lock:
            series.value = float(value)

    def labels(self, **values: Any) -> BoundGauge:
        return BoundGauge(self, self._label_key(values))


class Histogram(_Metric):
    kind = MetricKind.HISTOGRAM

    @property
    def bounds(self) -> tuple[float, ...]:
        return self.descriptor.buckets

    def _new_series(self) -> _HistogramSeries:
        return _HistogramSeries(len(self.descriptor.buckets))

    def _snapshot_value(self, series: _HistogramSeries) -> HistogramSnapshot:
        return series.snapshot(self.descriptor.buckets)

    def observe(self, labels: Mapping[str, Any] | None = None, value: float = 0.0) -> None:
        self._observe(self._label_key(labels), value)

    def _observe(self, key: LabelKey, value: float) -> None:
        value = float(value)
        # First bucket whose upper bound is >= value; len(bounds) is +Inf.
        index = bisect_left(self.descriptor.buckets, value)
        series = self._series_for(key)
        with series.lock:
            series.counts[index] += 1
            series.sum += value
            series.count += 1

    def labels(self, **values: Any) -> BoundHistogram:
        return BoundHistogram(self, self._label_key(values))


class BoundCounter:
    __slots__ = ("_metric", "_key")

    def __init__(self, metric: Counter, key: LabelKey) -> None:
        self._metric = metric
        self._key = key

    def increment(self, delta: float = 1.0) -> None:
        self._metric._increment(self._key, delta)


class BoundGauge:
    __slots__ = ("_metric", "_key")

    def __init__(self, metric: Gauge, key: LabelKey) -> None:
        self._metric = metric
        self._key = key

    def set(self, value: float) -> None:
        self._metric._set(self._key, value)


class BoundHistogram:
    __slots__ = ("_metric", "_key")

    def __init__(self, metric: Histogram, key: LabelKey) -> None:
        self._metric = metric
        self._key = key

    def observe(self, value: float) -> None:
        self._metric._observe(self._key, value)


_KIND_TO_CLASS: dict[MetricKind, type[_Metric]] = {
    MetricKind.COUNTER: Counter,
    MetricKind.GAUGE: Gauge,
    MetricKind.HISTOGRAM: Histogram,
}


class _Collection:
    """Restartable view over a registry: every iteration takes fresh snapshots."""

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def __iter__(self) -> Iterator[Sample]:
        for metric in self._registry._metrics_in_order():
            yield from metric.collect()


class Registry:
    """Named metric instruments, kept in registration order."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._metrics: dict[str, _Metric] = {}

    def register(self, descriptor: MetricDescriptor) -> Any:
        metric = _KIND_TO_CLASS[descriptor.kind](descriptor)
        with self._lock:
            if descriptor.name in self._metrics:
                raise DuplicateNameError(descriptor.name)
            self._metrics[descriptor.name] = metric
        return metric

    def counter(self, name: str, help: str, label_names: tuple[str, ...] = ()) -> Counter:
        return self.register(MetricDescriptor(name, help, MetricKind.COUNTER, tuple(label_names)))

    def gauge(self, name: str, help: str, label_names: tuple[str, ...] = ()) -> Gauge:
        return self.register(MetricDescriptor(name, help, MetricKind.GAUGE, tuple(label_names)))

    def histogram(
        self,
        name: str,
        help: str,
        label_names: tuple[str, ...] = (),
        buckets: tuple[float, ...] = DEFAULT_BUCKETS,
    ) -> Histogram:
        return self.register(MetricDescriptor(name, help, MetricKind.HISTOGRAM, tuple(label_names), tuple(buckets)))

    def get(self, name: str) -> Any | None:
        with self._lock:
            return self._metrics.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._metrics)

    def _metrics_in_order(self) -> list[_Metric]:
        with self._lock:
            return list(self._metrics.values())

    def collect_all(self) -> _Collection:
        return _Collection(self)

    def render_exposition(self) -> str:
        lines: list[str] = []
        for metric in self._metrics_in_order():
            descriptor = metric.descriptor
            lines.append(f"# HELP {descriptor.name} {_escape_help(descriptor.help)}")
            lines.append(f"# TYPE {descriptor.name} {descriptor.kind.value}")
            for sample in metric.collect():
                lines.extend(_sample_lines(sample))
        return "\n".join(lines) + "\n" if lines else ""


def _sample_lines(sample: Sample) -> list[str]:
    name = sample.descriptor.name
    value = sample.value
    if not isinstance(value, HistogramSnapshot):
        return [f"{name}{_format_labels(sample.labels)} {format_number(value)}"]

    lines = []
    for bound, cumulative in value.buckets:
        labels = {"le": format_number(bound), **sample.labels}
        lines.append(f"{name}_bucket{_format_labels(labels)} {cumulative}")
    lines.append(f"{name}_sum{_format_labels(sample.labels)} {format_number(value.sum)}")
    lines.append(f"{name}_count{_format_labels(sample.labels)} {value.count}")
    return lines


def format_number(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _format_labels(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{name}="{_escape_label_value(value)}"' for name, value in labels.items())
    return "{" + pairs + "}"


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
