"""Turn cumulative kernel counters into rates, percentages and a process table.

The :class:`Sampler` is the only owner of the previous-sample state. Each
call to :meth:`Sampler.sample` reads every source once, computes deltas
against the history, then replaces the history wholesale so exited PIDs and
vanished interfaces drop out on their own.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from lintop.gpu import GpuMonitor, GpuSnapshot, ProbeContext
from lintop.readers import (
    PROC_ROOT,
    SYS_ROOT,
    CpuTimes,
    MemorySnapshot,
    list_pids,
    page_size,
    read_cpu_freq,
    read_cpu_stat,
    read_cpu_temp,
    read_memory,
    read_net_counters,
    read_proc_stat,
)

logger = logging.getLogger(__name__)

# Floor for elapsed wall time between samples, in seconds.
MIN_ELAPSED = 0.001


# ── Data types ─────────────────────────────────────────────────────────────


class SortMode(enum.Enum):
    CPU = "cpu"
    MEMORY = "mem"


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_percent: float
    mem_bytes: int
    threads: int


@dataclass(frozen=True)
class NetworkSnapshot:
    """Rates for the busiest interface; ``iface`` is None when there is none."""

    iface: str | None = None
    rx_rate: float = 0.0
    tx_rate: float = 0.0


@dataclass
class SamplerHistory:
    prev_cpu: CpuTimes | None = None
    prev_ticks: dict[int, int] = field(default_factory=dict)
    prev_net: dict[str, tuple[int, int]] = field(default_factory=dict)
    gpu_queues: dict[str, tuple[int, int]] = field(default_factory=dict)
    last_sample: float | None = None


@dataclass
class Sample:
    """Everything one dashboard frame needs. ``None`` means unknown."""

    cpu_percent: float = 0.0
    cpu_count: int = 1
    memory: MemorySnapshot | None = None
    network: NetworkSnapshot = field(default_factory=NetworkSnapshot)
    gpu: GpuSnapshot | None = None
    processes: list[ProcessInfo] = field(default_factory=list)
    cpu_temp: float | None = None
    cpu_freq_mhz: float | None = None


# ── Pure helpers ───────────────────────────────────────────────────────────


def cpu_percent(prev: CpuTimes | None, cur: CpuTimes | None) -> float:
    """Busy share of the ticks elapsed between two readings, 0 if unknown."""
    if prev is None or cur is None:
        return 0.0
    total = max(0, cur.total - prev.total)
    if total == 0:
        return 0.0
    idle = max(0, cur.idle_total - prev.idle_total)
    busy = max(0, total - idle)
    return min(100.0, busy * 100.0 / total)


def counter_rate(prev: int, cur: int, elapsed: float) -> float:
    """Per-second rate of a monotonic counter; a reset counts as no traffic."""
    if cur < prev:
        return 0.0
    return (cur - prev) / max(MIN_ELAPSED, elapsed)


def pick_busiest(counters: dict[str, tuple[int, int]]) -> str | None:
    """Interface with the largest cumulative rx+tx; ties go to the first name."""
    best: str | None = None
    best_total = -1
    for iface in sorted(counters):
        rx, tx = counters[iface]
        if rx + tx > best_total:
            best, best_total = iface, rx + tx
    return best


def network_snapshot(
    prev: dict[str, tuple[int, int]],
    cur: dict[str, tuple[int, int]],
    elapsed: float,
) -> NetworkSnapshot:
    iface = pick_busiest(cur)
    if iface is None:
        return NetworkSnapshot()
    rx, tx = cur[iface]
    # an interface seen for the first time has no rate yet
    prev_rx, prev_tx = prev.get(iface, (rx, tx))
    return NetworkSnapshot(
        iface=iface,
        rx_rate=counter_rate(prev_rx, rx, elapsed),
        tx_rate=counter_rate(prev_tx, tx, elapsed),
    )


def matches_filter(proc: ProcessInfo, text: str) -> bool:
    if not text:
        return True
    return text.lower() in proc.name.lower() or text in str(proc.pid)


def filter_processes(procs: list[ProcessInfo], text: str) -> list[ProcessInfo]:
    return [p for p in procs if matches_filter(p, text)]


def sort_key(mode: SortMode) -> Callable[[ProcessInfo], tuple[float, float, int]]:
    """Ascending key for a descending primary/secondary metric order.

    The PID is the last component so the order is total.
    """
    if mode is SortMode.MEMORY:
        return lambda p: (-p.mem_bytes, -p.cpu_percent, p.pid)
    return lambda p: (-p.cpu_percent, -p.mem_bytes, p.pid)


def sort_processes(procs: list[ProcessInfo], mode: SortMode) -> list[ProcessInfo]:
    return sorted(procs, key=sort_key(mode))


# ── Sampler ────────────────────────────────────────────────────────────────


class Sampler:
    """Stateful producer of :class:`Sample` objects.

    ``clock`` and ``pid_source`` are injectable so a synthetic ``/proc``
    tree can be sampled deterministically.
    """

    def __init__(
        self,
        proc_root: str = PROC_ROOT,
        sys_root: str = SYS_ROOT,
        gpu_monitor: GpuMonitor | None = None,
        clock: Callable[[], float] = time.monotonic,
        pid_source: Callable[[str], list[int]] = list_pids,
    ) -> None:
        self.proc_root = proc_root
        self.sys_root = sys_root
        self.gpu_monitor = gpu_monitor
        self.history = SamplerHistory()
        self._clock = clock
        self._pid_source = pid_source
        self._page_size = page_size()

    def sample(self, sort_mode: SortMode = SortMode.CPU, filter_text: str = "") -> Sample:
        now = self._clock()
        hist = self.history
        elapsed = MIN_ELAPSED
        if hist.last_sample is not None:
            elapsed = max(MIN_ELAPSED, now - hist.last_sample)

        cpu, cpu_count = read_cpu_stat(self.proc_root)
        memory = read_memory(self.proc_root)
        net = read_net_counters(self.proc_root)

        total_delta = 0
        if hist.prev_cpu is not None and cpu is not None:
            total_delta = max(0, cpu.total - hist.prev_cpu.total)

        procs, ticks = self._collect_processes(total_delta)

        gpu = None
        gpu_queues = hist.gpu_queues
        if self.gpu_monitor is not None:
            ctx = ProbeContext(memory=memory, queue_stats=hist.gpu_queues)
            gpu = self.gpu_monitor.read(ctx)
            if ctx.queue_updates:
                gpu_queues = {**hist.gpu_queues, **ctx.queue_updates}

        result = Sample(
            cpu_percent=cpu_percent(hist.prev_cpu, cpu),
            cpu_count=cpu_count,
            memory=memory,
            network=network_snapshot(hist.prev_net, net, elapsed),
            gpu=gpu,
            processes=sort_processes(filter_processes(procs, filter_text), sort_mode),
            cpu_temp=read_cpu_temp(self.sys_root),
            cpu_freq_mhz=read_cpu_freq(self.proc_root, self.sys_root),
        )

        self.history = SamplerHistory(
            # keep the last good reading when /proc/stat is briefly unreadable
            prev_cpu=cpu if cpu is not None else hist.prev_cpu,
            prev_ticks=ticks,
            prev_net=net,
            gpu_queues=gpu_queues,
            last_sample=now,
        )
        return result

    def _collect_processes(
        self, total_delta: int
    ) -> tuple[list[ProcessInfo], dict[int, int]]:
        """Read every PID once; tick totals are kept for filtered-out ones too."""
        prev_ticks = self.history.prev_ticks
        procs: list[ProcessInfo] = []
        ticks: dict[int, int] = {}
        for pid in self._pid_source(self.proc_root):
            stat = read_proc_stat(pid, self.proc_root)
            if stat is None:
                continue
            now_ticks = stat.ticks
            ticks[pid] = now_ticks
            prev = prev_ticks.get(pid, now_ticks)
            percent = 0.0
            if total_delta > 0 and now_ticks > prev:
                percent = min(100.0, (now_ticks - prev) * 100.0 / total_delta)
            procs.append(
                ProcessInfo(
                    pid=pid,
                    name=stat.name,
                    cpu_percent=percent,
                    mem_bytes=stat.rss_pages * self._page_size,
                    threads=stat.threads,
                )
            )
        logger.debug("sampled %d processes", len(procs))
        return procs, ticks
