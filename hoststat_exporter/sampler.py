"""Periodic sample-and-publish cycle."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Mapping, Optional, Set, Union

from .config import DEVICE_EVICTION_TICKS, SAMPLE_INTERVAL_SECONDS
from .errors import ParseError, SourceUnavailable
from .registry import ExporterContext
from .sources import BlockDeviceStats, CounterSource, CpuTimes, InterfaceStats

logger = logging.getLogger(__name__)

DOMAINS = ("cpu", "memory", "disk", "network", "processes")

PHYSICAL_DISK_FIELDS = {
    "disk_read_sectors_total": "sectors_read",
    "disk_written_sectors_total": "sectors_written",
    "disk_reads_completed_total": "reads_completed",
    "disk_writes_completed_total": "writes_completed",
    "disk_read_time_ms_total": "read_time_ms",
    "disk_write_time_ms_total": "write_time_ms",
    "disk_io_time_ms_total": "io_time_ms",
    "disk_io_in_progress": "io_in_progress",
}
LOOP_DISK_FIELDS = {
    "loop_read_sectors_total": "sectors_read",
    "loop_written_sectors_total": "sectors_written",
}
NETWORK_FIELDS = {
    "network_receive_bytes_total": "rx_bytes",
    "network_transmit_bytes_total": "tx_bytes",
    "network_receive_packets_total": "rx_packets",
    "network_transmit_packets_total": "tx_packets",
    "network_receive_errors_total": "rx_errors",
    "network_transmit_errors_total": "tx_errors",
}


def cpu_usage_percent(previous: Optional[CpuTimes], current: CpuTimes) -> float:
    """Busy share of the ticks elapsed between two snapshots, in [0, 100]."""
    if previous is None:
        return 0.0
    total = current.total - previous.total
    if total <= 0:
        return 0.0
    busy = current.busy - previous.busy
    return min(100.0, max(0.0, 100.0 * busy / total))


class Sampler:
    """Reads every domain from a :class:`CounterSource` and publishes it.

    Sources are read before the registry lock is taken; each metric is then
    written in its own critical section. A domain whose read fails keeps its
    previously published values until a later tick succeeds.
    """

    def __init__(
        self,
        context: ExporterContext,
        source: CounterSource,
        interval: float = SAMPLE_INTERVAL_SECONDS,
        eviction_ticks: int = DEVICE_EVICTION_TICKS,
    ) -> None:
        self.context = context
        self.source = source
        self.interval = interval
        self.eviction_ticks = eviction_ticks
        self.ticks = 0
        self._previous_cpu: Optional[CpuTimes] = None
        self._total_memory_published = False
        # metric name -> label value -> consecutive reads without that series
        self._missed: Dict[str, Dict[str, int]] = {}
        self._handlers: Dict[str, Callable[[], None]] = {
            "cpu": self.sample_cpu,
            "memory": self.sample_memory,
            "disk": self.sample_disks,
            "network": self.sample_network,
            "processes": self.sample_processes,
        }

    def publish_total_memory(self) -> bool:
        """Publish total memory once; later ticks retry until it succeeds."""
        if self._total_memory_published:
            return True
        try:
            memory = self.source.read_memory()
        except (SourceUnavailable, ParseError) as exc:
            logger.warning("Total memory not published yet: %s", exc)
            return False
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error while reading total memory")
            return False
        self.context.publish("memory_total_bytes", memory.total)
        self._total_memory_published = True
        return True

    def sample_cpu(self) -> None:
        current = self.source.read_cpu()
        usage = cpu_usage_percent(self._previous_cpu, current)
        self._previous_cpu = current
        self.context.publish("cpu_usage_percentage", usage)
        self.context.publish("cpu_user_ticks_total", current.user)
        self.context.publish("cpu_system_ticks_total", current.system)
        self.context.publish("cpu_idle_ticks_total", current.idle)
        self.context.publish("cpu_iowait_ticks_total", current.iowait)

    def sample_memory(self) -> None:
        memory = self.source.read_memory()
        usage = 100.0 * memory.used / memory.total if memory.total else 0.0
        self.context.publish("memory_used_bytes", memory.used)
        self.context.publish("memory_free_bytes", memory.available)
        self.context.publish("memory_usage_percentage", usage)

    def sample_disks(self) -> None:
        disks = self.source.read_disks()
        self._publish_devices(PHYSICAL_DISK_FIELDS, disks.physical)
        self._publish_devices(LOOP_DISK_FIELDS, disks.loop)

    def sample_network(self) -> None:
        self._publish_devices(NETWORK_FIELDS, self.source.read_network())

    def sample_processes(self) -> None:
        counts = self.source.read_processes()
        self.context.publish("processes_running", counts.running)
        self.context.publish("processes_blocked", counts.blocked)

    def _publish_devices(
        self,
        fields: Mapping[str, str],
        devices: Mapping[str, Union[BlockDeviceStats, InterfaceStats]],
    ) -> None:
        for metric, attribute in fields.items():
            values = {name: getattr(stats, attribute) for name, stats in devices.items()}
            self.context.publish_family(metric, values)
            self._evict_missing(metric, set(values))

    def _evict_missing(self, metric: str, present: Set[str]) -> None:
        missed = self._missed.setdefault(metric, {})
        for name in present:
            missed[name] = 0
        for name in [name for name in missed if name not in present]:
            missed[name] += 1
            if missed[name] >= self.eviction_ticks:
                logger.info("Evicting %s{%s} after %d ticks without data", metric, name, missed[name])
                self.context.remove_series(metric, name)
                del missed[name]

    def tick(self) -> Set[str]:
        """Run one sampling tick; return the domains that were published."""
        self.publish_total_memory()
        published = set()
        for domain in DOMAINS:
            try:
                self._handlers[domain]()
            except (SourceUnavailable, ParseError) as exc:
                logger.warning("Skipping %s this tick: %s", domain, exc)
                continue
            except Exception:  # pylint: disable=broad-except
                logger.exception("Unexpected error while sampling %s", domain)
                continue
            published.add(domain)
        self.ticks += 1
        return published

    def run(self, stop_event: Optional[threading.Event] = None, max_ticks: Optional[int] = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info("Sampling every %.1fs", self.interval)
        while not stop_event.is_set():
            self.tick()
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            stop_event.wait(self.interval)
