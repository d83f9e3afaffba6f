"""Readers that turn kernel counter sources into typed snapshots.

Two implementations share the :class:`CounterSource` interface:

* :class:`ProcfsSource` parses the text files under ``/proc`` directly.
* :class:`PsutilSource` builds the same snapshots from psutil.

Each read opens the source, consumes it in one call and closes it again, so a
file rewritten by the kernel between ticks never leaves stale state behind.
Truncated or malformed content raises :class:`ParseError`; a missing or
unreadable source raises :class:`SourceUnavailable`.
"""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List

import psutil

from .config import Settings
from .errors import ParseError, SourceUnavailable

SECTOR_SIZE = 512

LOOP_PREFIXES = ("loop",)
VIRTUAL_PREFIXES = ("ram", "zram", "dm-", "md", "nbd", "sr", "fd")

DEVICE_PHYSICAL = "physical"
DEVICE_LOOP = "loop"
DEVICE_VIRTUAL = "virtual"


@dataclass(frozen=True)
class CpuTimes:
    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        return (
            self.user + self.nice + self.system + self.idle
            + self.iowait + self.irq + self.softirq + self.steal
        )

    @property
    def idle_total(self) -> int:
        return self.idle + self.iowait

    @property
    def busy(self) -> int:
        return self.total - self.idle_total


@dataclass(frozen=True)
class MemoryInfo:
    total: int
    free: int
    available: int

    @property
    def used(self) -> int:
        return max(0, self.total - self.available)


@dataclass(frozen=True)
class BlockDeviceStats:
    name: str
    reads_completed: int = 0
    sectors_read: int = 0
    read_time_ms: int = 0
    writes_completed: int = 0
    sectors_written: int = 0
    write_time_ms: int = 0
    io_in_progress: int = 0
    io_time_ms: int = 0


@dataclass(frozen=True)
class DiskSnapshot:
    physical: Dict[str, BlockDeviceStats] = field(default_factory=dict)
    loop: Dict[str, BlockDeviceStats] = field(default_factory=dict)


@dataclass(frozen=True)
class InterfaceStats:
    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0


@dataclass(frozen=True)
class ProcessCounts:
    running: int
    blocked: int


def classify_device(name: str) -> str:
    """Return which disk group a block device belongs to.

    Loop devices get their own group; other virtual devices (ramdisks,
    device-mapper, md arrays, optical drives) are reported in neither group.
    """
    if name.startswith(LOOP_PREFIXES):
        return DEVICE_LOOP
    if name.startswith(VIRTUAL_PREFIXES):
        return DEVICE_VIRTUAL
    return DEVICE_PHYSICAL


def split_devices(devices: List[BlockDeviceStats]) -> DiskSnapshot:
    snapshot = DiskSnapshot()
    for device in devices:
        group = classify_device(device.name)
        if group == DEVICE_PHYSICAL:
            snapshot.physical[device.name] = device
        elif group == DEVICE_LOOP:
            snapshot.loop[device.name] = device
    return snapshot


class CounterSource(ABC):
    """Produces one snapshot per metric domain."""

    @abstractmethod
    def read_cpu(self) -> CpuTimes:
        ...

    @abstractmethod
    def read_memory(self) -> MemoryInfo:
        ...

    @abstractmethod
    def read_disks(self) -> DiskSnapshot:
        ...

    @abstractmethod
    def read_network(self) -> Dict[str, InterfaceStats]:
        ...

    @abstractmethod
    def read_processes(self) -> ProcessCounts:
        ...


def _as_ints(domain: str, values: List[str]) -> List[int]:
    try:
        return [int(value) for value in values]
    except ValueError as exc:
        raise ParseError(domain, f"non-numeric field: {exc}") from exc


class ProcfsSource(CounterSource):
    """Parse ``/proc/stat``, ``/proc/meminfo``, ``/proc/diskstats`` and ``/proc/net/dev``."""

    def __init__(self, proc_root: str = "/proc") -> None:
        self.proc_root = Path(proc_root)

    def _read(self, domain: str, relative: str) -> str:
        path = self.proc_root / relative
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as handle:
                content = handle.read()
        except OSError as exc:
            raise SourceUnavailable(domain, str(path), exc.strerror or str(exc)) from exc
        if not content.strip():
            raise ParseError(domain, f"{path} is empty")
        return content

    def _stat_lines(self, domain: str) -> Dict[str, List[str]]:
        lines: Dict[str, List[str]] = {}
        for line in self._read(domain, "stat").splitlines():
            parts = line.split()
            if parts:
                lines[parts[0]] = parts[1:]
        return lines

    def read_cpu(self) -> CpuTimes:
        fields = self._stat_lines("cpu").get("cpu")
        if fields is None:
            raise ParseError("cpu", "aggregate 'cpu' line missing")
        # user nice system idle iowait irq softirq steal, present since 2.6.11
        if len(fields) < 8:
            raise ParseError("cpu", f"expected at least 8 fields, got {len(fields)}")
        return CpuTimes(*_as_ints("cpu", fields[:8]))

    def read_processes(self) -> ProcessCounts:
        lines = self._stat_lines("processes")
        try:
            running = lines["procs_running"]
            blocked = lines["procs_blocked"]
        except KeyError as exc:
            raise ParseError("processes", f"{exc.args[0]} line missing") from exc
        if not running or not blocked:
            raise ParseError("processes", "procs line has no value")
        return ProcessCounts(*_as_ints("processes", [running[0], blocked[0]]))

    def read_memory(self) -> MemoryInfo:
        values: Dict[str, int] = {}
        for line in self._read("memory", "meminfo").splitlines():
            key, sep, rest = line.partition(":")
            parts = rest.split()
            if not sep or not parts:
                continue
            (kib,) = _as_ints("memory", parts[:1])
            values[key.strip()] = kib * 1024
        if "MemTotal" not in values or "MemFree" not in values:
            raise ParseError("memory", "MemTotal/MemFree missing")
        available = values.get("MemAvailable")
        if available is None:
            available = values["MemFree"] + values.get("Buffers", 0) + values.get("Cached", 0)
        total = values["MemTotal"]
        return MemoryInfo(total=total, free=values["MemFree"], available=min(available, total))

    def read_disks(self) -> DiskSnapshot:
        devices = []
        for line in self._read("disk", "diskstats").splitlines():
            parts = line.split()
            if not parts:
                continue
            # major minor name + at least 11 counters
            if len(parts) < 14:
                raise ParseError("disk", f"short diskstats line: {line.strip()!r}")
            counters = _as_ints("disk", parts[3:14])
            devices.append(
                BlockDeviceStats(
                    name=parts[2],
                    reads_completed=counters[0],
                    sectors_read=counters[2],
                    read_time_ms=counters[3],
                    writes_completed=counters[4],
                    sectors_written=counters[6],
                    write_time_ms=counters[7],
                    io_in_progress=counters[8],
                    io_time_ms=counters[9],
                )
            )
        return split_devices(devices)

    def read_network(self) -> Dict[str, InterfaceStats]:
        lines = self._read("network", "net/dev").splitlines()
        interfaces: Dict[str, InterfaceStats] = {}
        for line in lines[2:]:
            name, sep, rest = line.partition(":")
            if not sep:
                if line.strip():
                    raise ParseError("network", f"malformed line: {line.strip()!r}")
                continue
            parts = rest.split()
            if len(parts) < 16:
                raise ParseError("network", f"expected 16 counters for {name.strip()}, got {len(parts)}")
            counters = _as_ints("network", parts[:16])
            interfaces[name.strip()] = InterfaceStats(
                name=name.strip(),
                rx_bytes=counters[0],
                rx_packets=counters[1],
                rx_errors=counters[2],
                tx_bytes=counters[8],
                tx_packets=counters[9],
                tx_errors=counters[10],
            )
        return interfaces


def _clock_ticks() -> int:
    try:
        return os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):  # pragma: no cover - non-POSIX hosts
        return 100


@contextmanager
def _psutil_guard(domain: str) -> Iterator[None]:
    try:
        yield
    except (psutil.Error, OSError) as exc:
        raise SourceUnavailable(domain, reason=str(exc)) from exc


class PsutilSource(CounterSource):
    """Build snapshots from psutil instead of parsing ``/proc`` by hand."""

    def __init__(self) -> None:
        self.clock_ticks = _clock_ticks()

    def read_cpu(self) -> CpuTimes:
        with _psutil_guard("cpu"):
            times = psutil.cpu_times()
        return CpuTimes(
            *(
                int(round(getattr(times, name, 0.0) * self.clock_ticks))
                for name in ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
            )
        )

    def read_memory(self) -> MemoryInfo:
        with _psutil_guard("memory"):
            memory = psutil.virtual_memory()
        return MemoryInfo(total=memory.total, free=memory.free, available=min(memory.available, memory.total))

    def read_disks(self) -> DiskSnapshot:
        with _psutil_guard("disk"):
            counters = psutil.disk_io_counters(perdisk=True) or {}
        devices = [
            BlockDeviceStats(
                name=name,
                reads_completed=stats.read_count,
                sectors_read=stats.read_bytes // SECTOR_SIZE,
                read_time_ms=stats.read_time,
                writes_completed=stats.write_count,
                sectors_written=stats.write_bytes // SECTOR_SIZE,
                write_time_ms=stats.write_time,
                io_time_ms=getattr(stats, "busy_time", 0),
            )
            for name, stats in counters.items()
        ]
        return split_devices(devices)

    def read_network(self) -> Dict[str, InterfaceStats]:
        with _psutil_guard("network"):
            counters = psutil.net_io_counters(pernic=True)
        return {
            name: InterfaceStats(
                name=name,
                rx_bytes=stats.bytes_recv,
                rx_packets=stats.packets_recv,
                rx_errors=stats.errin,
                tx_bytes=stats.bytes_sent,
                tx_packets=stats.packets_sent,
                tx_errors=stats.errout,
            )
            for name, stats in counters.items()
        }

    def read_processes(self) -> ProcessCounts:
        running = blocked = 0
        with _psutil_guard("processes"):
            for proc in psutil.process_iter(attrs=["status"]):
                status = proc.info.get("status")
                if status == psutil.STATUS_RUNNING:
                    running += 1
                elif status == psutil.STATUS_DISK_SLEEP:
                    blocked += 1
        return ProcessCounts(running=running, blocked=blocked)


def build_source(settings: Settings) -> CounterSource:
    if settings.source == "procfs":
        return ProcfsSource(settings.proc_root)
    if settings.source == "psutil":
        return PsutilSource()
    raise ValueError(f"Unknown counter source {settings.source!r}; expected 'procfs' or 'psutil'")
