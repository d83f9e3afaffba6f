"""Shared fixtures: synthetic /proc trees and an in-memory counter source."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Dict, Optional

import pytest
from prometheus_client.parser import text_string_to_metric_families

from hoststat_exporter.errors import SourceUnavailable
from hoststat_exporter.registry import ExporterContext
from hoststat_exporter.sources import (
    BlockDeviceStats,
    CounterSource,
    CpuTimes,
    DiskSnapshot,
    InterfaceStats,
    MemoryInfo,
    ProcessCounts,
)

PROC_STAT = textwrap.dedent(
    """\
    cpu  100 0 50 850 0 0 0 0 0 0
    cpu0 50 0 25 425 0 0 0 0 0 0
    cpu1 50 0 25 425 0 0 0 0 0 0
    intr 12345 0 0
    ctxt 987654
    btime 1700000000
    processes 4321
    procs_running 3
    procs_blocked 1
    """
)

PROC_MEMINFO = textwrap.dedent(
    """\
    MemTotal:        1000000 kB
    MemFree:          200000 kB
    MemAvailable:     600000 kB
    Buffers:           50000 kB
    Cached:           300000 kB
    HugePages_Total:       0
    """
)

PROC_DISKSTATS = textwrap.dedent(
    """\
       7       0 loop0 40 0 800 12 0 0 0 0 0 8 12 0 0 0 0
       8       0 sda 1000 10 20000 300 500 20 8000 400 2 600 700 0 0 0 0
       8       1 sda1 900 10 18000 280 480 20 7600 380 0 560 660
     253       0 dm-0 10 0 100 1 10 0 100 1 0 2 2 0 0 0 0
       1       0 ram0 0 0 0 0 0 0 0 0 0 0 0
    """
)

PROC_NET_DEV = textwrap.dedent(
    """\
    Inter-|   Receive                                                |  Transmit
     face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs colls carrier compressed
        lo:    5000      50    0    0    0     0          0         0     5000      50    0    0    0     0       0          0
      eth0: 1234567    8910    2    0    0     0          0         0   765432    4321    1    0    0     0       0          0
    """
)


def write_proc(root: Path, **files: str) -> Path:
    """Write a fake /proc tree; keyword names map ``net_dev`` to ``net/dev``."""
    defaults = {
        "stat": PROC_STAT,
        "meminfo": PROC_MEMINFO,
        "diskstats": PROC_DISKSTATS,
        "net_dev": PROC_NET_DEV,
    }
    defaults.update(files)
    for name, content in defaults.items():
        if content is None:
            continue
        path = root / name.replace("_", "/")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def proc_root(tmp_path):
    return write_proc(tmp_path / "proc")


class StaticSource(CounterSource):
    """Counter source returning whatever snapshots the test sets.

    Assigning an exception instance to a domain makes that read raise it.
    """

    def __init__(self) -> None:
        self.cpu: object = CpuTimes(user=100, system=50, idle=850)
        self.memory: object = MemoryInfo(total=1000, free=200, available=600)
        self.disks: object = DiskSnapshot(
            physical={"sda": BlockDeviceStats("sda", sectors_read=20000, sectors_written=8000, io_in_progress=2)},
            loop={"loop0": BlockDeviceStats("loop0", sectors_read=800)},
        )
        self.network: object = {"eth0": InterfaceStats("eth0", rx_bytes=1234, tx_bytes=567)}
        self.processes: object = ProcessCounts(running=3, blocked=1)

    @staticmethod
    def _give(value):
        if isinstance(value, BaseException):
            raise value
        return value

    def read_cpu(self):
        return self._give(self.cpu)

    def read_memory(self):
        return self._give(self.memory)

    def read_disks(self):
        return self._give(self.disks)

    def read_network(self):
        return self._give(self.network)

    def read_processes(self):
        return self._give(self.processes)

    def fail(self, domain: str, exc: Optional[BaseException] = None) -> None:
        setattr(self, domain, exc or SourceUnavailable(domain, reason="gone"))


@pytest.fixture
def source():
    return StaticSource()


@pytest.fixture
def context():
    ctx = ExporterContext()
    ctx.register_metrics()
    return ctx


def scrape_values(text: str) -> Dict[tuple, float]:
    """Map ``(sample_name, label_value)`` to value for a rendered exposition."""
    values = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name.endswith("_created"):
                continue
            label = next(iter(sample.labels.values()), None)
            values[(sample.name, label)] = sample.value
    return values


def sample(context: ExporterContext, name: str, label: Optional[str] = None) -> Optional[float]:
    spec = context.specs[name]
    labels = {spec.label: label} if spec.label else None
    return context.registry.get_sample_value(name, labels)
