"""Metric registry shared by the sampler and the exposition endpoint.

:class:`ExporterContext` owns a :class:`prometheus_client.CollectorRegistry`
and the lock guarding it. Every write into the registry and every render of
it happens while that lock is held, so a scrape never sees a metric halfway
through an update. Different metrics in one scrape may still come from
slightly different instants.
"""
from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Iterable, Mapping, NamedTuple, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, generate_latest
from prometheus_client.core import CounterMetricFamily

from .errors import RegistrationFailure

logger = logging.getLogger(__name__)

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

GAUGE = "gauge"
COUNTER = "counter"


class MetricSpec(NamedTuple):
    name: str
    kind: str
    documentation: str
    label: Optional[str] = None


METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec("cpu_usage_percentage", GAUGE, "CPU busy time over the last sampling interval, in percent"),
    MetricSpec("cpu_user_ticks_total", COUNTER, "CPU time spent in user mode, in clock ticks"),
    MetricSpec("cpu_system_ticks_total", COUNTER, "CPU time spent in kernel mode, in clock ticks"),
    MetricSpec("cpu_idle_ticks_total", COUNTER, "CPU time spent idle, in clock ticks"),
    MetricSpec("cpu_iowait_ticks_total", COUNTER, "CPU time spent waiting for I/O, in clock ticks"),
    MetricSpec("memory_total_bytes", GAUGE, "Total usable memory"),
    MetricSpec("memory_used_bytes", GAUGE, "Memory in use (total minus available)"),
    MetricSpec("memory_free_bytes", GAUGE, "Memory available for new allocations"),
    MetricSpec("memory_usage_percentage", GAUGE, "Memory in use, in percent of total"),
    MetricSpec("disk_read_sectors_total", COUNTER, "Sectors read from physical block devices", "device"),
    MetricSpec("disk_written_sectors_total", COUNTER, "Sectors written to physical block devices", "device"),
    MetricSpec("disk_reads_completed_total", COUNTER, "Reads completed on physical block devices", "device"),
    MetricSpec("disk_writes_completed_total", COUNTER, "Writes completed on physical block devices", "device"),
    MetricSpec("disk_read_time_ms_total", COUNTER, "Milliseconds spent reading from physical block devices", "device"),
    MetricSpec("disk_write_time_ms_total", COUNTER, "Milliseconds spent writing to physical block devices", "device"),
    MetricSpec("disk_io_time_ms_total", COUNTER, "Milliseconds physical block devices spent doing I/O", "device"),
    MetricSpec("disk_io_in_progress", GAUGE, "I/O operations currently in flight on physical block devices", "device"),
    MetricSpec("loop_read_sectors_total", COUNTER, "Sectors read from loop devices", "device"),
    MetricSpec("loop_written_sectors_total", COUNTER, "Sectors written to loop devices", "device"),
    MetricSpec("network_receive_bytes_total", COUNTER, "Bytes received per interface", "interface"),
    MetricSpec("network_transmit_bytes_total", COUNTER, "Bytes sent per interface", "interface"),
    MetricSpec("network_receive_packets_total", COUNTER, "Packets received per interface", "interface"),
    MetricSpec("network_transmit_packets_total", COUNTER, "Packets sent per interface", "interface"),
    MetricSpec("network_receive_errors_total", COUNTER, "Receive errors per interface", "interface"),
    MetricSpec("network_transmit_errors_total", COUNTER, "Transmit errors per interface", "interface"),
    MetricSpec("processes_running", GAUGE, "Processes currently runnable"),
    MetricSpec("processes_blocked", GAUGE, "Processes blocked waiting for I/O"),
)


class RawCounter:
    """Counter collector whose value is copied from a kernel counter.

    prometheus_client counters can only be incremented; kernel counters are
    already cumulative, so the latest reading is stored and exposed as-is.
    """

    def __init__(self, name: str, documentation: str, label: Optional[str] = None) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames = [label] if label else []
        self._values: Dict[Tuple[str, ...], float] = {}
        if not label:
            self._values[()] = 0.0

    def set(self, value: float, label_value: Optional[str] = None) -> None:
        key = (label_value,) if self.labelnames else ()
        self._values[key] = float(value)

    def remove(self, label_value: str) -> None:
        self._values.pop((label_value,), None)

    def _family(self) -> CounterMetricFamily:
        return CounterMetricFamily(self.name, self.documentation, labels=self.labelnames)

    def describe(self) -> Iterable[CounterMetricFamily]:
        yield self._family()

    def collect(self) -> Iterable[CounterMetricFamily]:
        family = self._family()
        for key, value in sorted(self._values.items()):
            family.add_metric(list(key), value)
        yield family


class ExporterContext:
    """The registry, its descriptors and the lock that serialises access to them."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry(auto_describe=True)
        self.lock = threading.Lock()
        self._metrics: Dict[str, object] = {}
        self._specs: Dict[str, MetricSpec] = {}

    @property
    def specs(self) -> Mapping[str, MetricSpec]:
        return self._specs

    def register_metrics(self, specs: Iterable[MetricSpec] = METRICS) -> None:
        """Create every descriptor once; any failure is fatal for startup."""
        if self._metrics:
            raise RegistrationFailure("metrics are already registered")
        for spec in specs:
            if not METRIC_NAME_RE.match(spec.name):
                raise RegistrationFailure(f"invalid metric name {spec.name!r}")
            if spec.label and (not LABEL_NAME_RE.match(spec.label) or spec.label.startswith("__")):
                raise RegistrationFailure(f"invalid label name {spec.label!r} for {spec.name}")
            if spec.name in self._specs:
                raise RegistrationFailure(f"duplicate metric name {spec.name!r}")
            try:
                if spec.kind == GAUGE:
                    labelnames = [spec.label] if spec.label else []
                    metric: object = Gauge(spec.name, spec.documentation, labelnames, registry=self.registry)
                elif spec.kind == COUNTER:
                    metric = RawCounter(spec.name, spec.documentation, spec.label)
                    self.registry.register(metric)
                else:
                    raise ValueError(f"unknown metric kind {spec.kind!r}")
            except ValueError as exc:
                raise RegistrationFailure(f"cannot register {spec.name}: {exc}") from exc
            self._metrics[spec.name] = metric
            self._specs[spec.name] = spec
        logger.info("Registered %d metrics", len(self._metrics))

    def _lookup(self, name: str):
        try:
            return self._metrics[name]
        except KeyError:
            raise KeyError(f"metric {name!r} is not registered") from None

    @staticmethod
    def _check(name: str, value: float) -> None:
        if value < 0:
            raise ValueError(f"negative value {value!r} for {name}")

    @staticmethod
    def _write(metric, value: float, label_value: Optional[str]) -> None:
        if isinstance(metric, RawCounter):
            metric.set(value, label_value)
        elif label_value is None:
            metric.set(value)
        else:
            metric.labels(label_value).set(value)

    def publish(self, name: str, value: float) -> None:
        """Set one unlabelled metric inside its own critical section."""
        metric = self._lookup(name)
        self._check(name, value)
        with self.lock:
            self._write(metric, value, None)

    def publish_family(self, name: str, values: Mapping[str, float]) -> None:
        """Set every given series of one labelled metric inside one critical section."""
        metric = self._lookup(name)
        for value in values.values():
            self._check(name, value)
        with self.lock:
            for label_value, value in values.items():
                self._write(metric, value, label_value)

    def remove_series(self, name: str, label_value: str) -> None:
        metric = self._lookup(name)
        with self.lock:
            try:
                metric.remove(label_value)
            except KeyError:
                pass

    def render(self) -> bytes:
        """Serialise the registry in the text exposition format."""
        with self.lock:
            return generate_latest(self.registry)
