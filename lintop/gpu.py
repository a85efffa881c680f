"""GPU metrics as a priority-ordered probe chain.

Each probe knows one way of finding a GPU (a vendor tool, a DRM sysfs file,
a driver statistics file, a platform devfreq node) and either returns a
:class:`GpuSnapshot` or ``None``. :class:`GpuMonitor` walks the chain in
order, keeps the first hit, and throttles the whole walk so the vendor tool
is spawned at most once per probe interval.

Adding a vendor means adding one probe class to :func:`default_probes`.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from lintop.readers import (
    SYS_ROOT,
    MemorySnapshot,
    list_dir,
    read_text,
    read_first_number,
    read_millidegrees,
)

logger = logging.getLogger(__name__)

MIN_PROBE_INTERVAL = 0.8
MIB = 1024 * 1024

_NVIDIA_QUERY = [
    "--query-gpu=utilization.gpu,memory.used,memory.total,temperature.gpu",
    "--format=csv,noheader,nounits",
]

# Relative to /sys/class/drm/cardN, most specific first.
_BUSY_FILES = (
    ("device", "gpu_busy_percent"),
    ("gt", "gt0", "usage"),
    ("device", "usage"),
    ("device", "load"),
)

_PCI_VENDORS = {
    "0x1002": "AMD GPU",
    "0x8086": "Intel GPU",
    "0x10de": "NVIDIA GPU",
    "0x14e4": "Broadcom GPU",
}

# Labels whose boards carve video memory out of the CMA pool.
_CMA_LABELS = ("GPU", "Broadcom GPU", "VideoCore GPU")


# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GpuSnapshot:
    """One GPU reading. Every metric is independently optional."""

    label: str = "GPU"
    usage: float | None = None
    mem_used: int | None = None
    mem_total: int | None = None
    temp: float | None = None

    @property
    def has_data(self) -> bool:
        return self.usage is not None or self.mem_used is not None

    @property
    def mem_percent(self) -> float | None:
        if self.mem_used is None or not self.mem_total:
            return None
        return min(100.0, self.mem_used * 100.0 / self.mem_total)


@dataclass
class ProbeContext:
    """What a probe may look at besides the filesystem.

    ``queue_stats`` maps a driver queue name to its last
    ``(timestamp, runtime)`` pair and is read-only here. Probes put the pairs
    they read into ``queue_updates``; the sampler folds those into the
    history it keeps for the next run.
    """

    memory: MemorySnapshot | None = None
    queue_stats: Mapping[str, tuple[int, int]] = field(default_factory=dict)
    queue_updates: dict[str, tuple[int, int]] = field(default_factory=dict)


class GpuProbe(Protocol):
    name: str

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None: ...


# ── Shared sysfs helpers ───────────────────────────────────────────────────


def _zone0_temp(sys_root: str) -> float | None:
    return read_millidegrees(
        os.path.join(sys_root, "class", "thermal", "thermal_zone0", "temp")
    )


def _cma_pool(memory: MemorySnapshot | None) -> tuple[int, int] | None:
    if memory is None or memory.cma_total_bytes <= 0:
        return None
    return memory.cma_used_bytes, memory.cma_total_bytes


def drm_cards(sys_root: str) -> list[str]:
    """Card directories under class/drm, skipping connectors like card0-HDMI-A-1."""
    base = os.path.join(sys_root, "class", "drm")
    return [
        os.path.join(base, entry)
        for entry in list_dir(base)
        if entry.startswith("card") and "-" not in entry
    ]


def card_label(card_dir: str) -> str:
    vendor = read_text(os.path.join(card_dir, "device", "vendor"), 64)
    if vendor is not None:
        return _PCI_VENDORS.get(vendor.strip().lower(), "GPU")
    uevent = read_text(os.path.join(card_dir, "device", "uevent"))
    if uevent is not None:
        for line in uevent.splitlines():
            if line.strip() in ("DRIVER=v3d", "DRIVER=vc4"):
                return "VideoCore GPU"
    return "GPU"


def _card_temp(card_dir: str) -> float | None:
    hwmon_base = os.path.join(card_dir, "device", "hwmon")
    for hwmon in list_dir(hwmon_base):
        if not hwmon.startswith("hwmon"):
            continue
        temp = read_millidegrees(os.path.join(hwmon_base, hwmon, "temp1_input"))
        if temp is not None:
            return temp
    return None


def _card_vram(card_dir: str) -> tuple[int, int] | None:
    pairs = (
        # amdgpu
        (("device", "mem_info_vram_used"), ("device", "mem_info_vram_total")),
        # xe / i915 discrete
        (("tile0", "vram0", "used"), ("tile0", "vram0", "size")),
    )
    for used_rel, total_rel in pairs:
        used = read_first_number(os.path.join(card_dir, *used_rel))
        if used is None:
            continue
        total = read_first_number(os.path.join(card_dir, *total_rel))
        return int(used), int(total or 0)
    return None


def describe_card(
    card_dir: str,
    sys_root: str,
    usage: float | None,
    memory: MemorySnapshot | None,
) -> GpuSnapshot:
    """Fill in label, temperature and video memory for a DRM card."""
    label = card_label(card_dir)
    temp = _card_temp(card_dir)
    if temp is None:
        temp = _zone0_temp(sys_root)

    vram = _card_vram(card_dir)
    if vram is None and label in _CMA_LABELS:
        vram = _cma_pool(memory)
        if vram is not None and label == "GPU":
            label = "VideoCore GPU"

    mem_used, mem_total = vram if vram is not None else (None, None)
    return GpuSnapshot(
        label=label,
        usage=usage,
        mem_used=mem_used,
        mem_total=mem_total,
        temp=temp,
    )


def queue_usage(
    text: str, history: Mapping[str, tuple[int, int]]
) -> tuple[float | None, dict[str, tuple[int, int]]]:
    """Busiest-queue utilisation from a v3d-style ``gpu_stats`` table.

    Rows after the header are ``queue timestamp jobs runtime``. Returns the
    usage and the pairs just read, for the caller to keep as the next
    *history*; a queue seen for the first time contributes nothing.
    """
    best: float | None = None
    seen: dict[str, tuple[int, int]] = {}
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4:
            continue
        try:
            ts = int(fields[1])
            runtime = int(fields[3])
        except ValueError:
            continue
        queue = fields[0]
        prev = history.get(queue)
        seen[queue] = (ts, runtime)
        if prev is None:
            continue
        elapsed = ts - prev[0]
        busy = runtime - prev[1]
        if elapsed <= 0 or busy < 0:
            continue
        usage = min(100.0, busy * 100.0 / elapsed)
        best = usage if best is None else max(best, usage)
    return best, seen


# ── Probes ─────────────────────────────────────────────────────────────────


def parse_nvidia_smi(output: str) -> GpuSnapshot | None:
    """Parse the first CSV row of the nvidia-smi query."""
    lines = output.strip().splitlines()
    if not lines:
        return None
    parts = [p.strip() for p in lines[0].split(",")]
    if len(parts) < 4:
        return None

    def number(value: str) -> float | None:
        try:
            return float(value)
        except ValueError:
            # "[N/A]" or "[Not Supported]"
            return None

    usage = number(parts[0])
    if usage is None:
        return None
    mem_used = number(parts[1])
    mem_total = number(parts[2])
    return GpuSnapshot(
        label="NVIDIA GPU",
        usage=usage,
        mem_used=int(mem_used * MIB) if mem_used is not None else None,
        mem_total=int(mem_total * MIB) if mem_total is not None else None,
        temp=number(parts[3]),
    )


class NvidiaSmiProbe:
    """Query ``nvidia-smi``; gives up for the session after the first failure."""

    name = "nvidia-smi"

    def __init__(self, command: str = "nvidia-smi", timeout: float = 1.0) -> None:
        self.command = command
        self.timeout = timeout
        self._available: bool | None = None

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        if self._available is False:
            return None
        try:
            result = subprocess.run(
                [self.command, *_NVIDIA_QUERY],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("%s unavailable: %s", self.command, e)
            self._available = False
            return None
        if result.returncode != 0:
            logger.debug("%s exited with %d", self.command, result.returncode)
            self._available = False
            return None
        snapshot = parse_nvidia_smi(result.stdout)
        if snapshot is None:
            logger.debug("unexpected %s output: %r", self.command, result.stdout[:80])
            self._available = False
            return None
        self._available = True
        return snapshot


class DrmBusyProbe:
    """Percent-busy files exposed by amdgpu, i915/xe and friends."""

    name = "drm-busy"

    def __init__(self, sys_root: str = SYS_ROOT) -> None:
        self.sys_root = sys_root

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        for card_dir in drm_cards(self.sys_root):
            for rel in _BUSY_FILES:
                usage = read_first_number(os.path.join(card_dir, *rel))
                if usage is not None:
                    return describe_card(card_dir, self.sys_root, usage, ctx.memory)
        return None


class DrmStatsProbe:
    """Per-queue runtime counters (v3d ``gpu_stats``), turned into a rate."""

    name = "drm-stats"

    def __init__(self, sys_root: str = SYS_ROOT) -> None:
        self.sys_root = sys_root

    def _stats_text(self, card_dir: str) -> str | None:
        text = read_text(os.path.join(card_dir, "device", "gpu_stats"))
        if text is not None:
            return text
        index = os.path.basename(card_dir)[len("card") :]
        if not index.isdigit():
            return None
        return read_text(
            os.path.join(self.sys_root, "kernel", "debug", "dri", index, "gpu_stats")
        )

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        for card_dir in drm_cards(self.sys_root):
            text = self._stats_text(card_dir)
            if text is None:
                continue
            usage, seen = queue_usage(text, ctx.queue_stats)
            ctx.queue_updates.update(seen)
            if usage is not None:
                return describe_card(card_dir, self.sys_root, usage, ctx.memory)
        return None


class KgslProbe:
    """Qualcomm Adreno through the kgsl driver."""

    name = "kgsl"

    def __init__(self, sys_root: str = SYS_ROOT) -> None:
        self.sys_root = sys_root

    def _usage(self) -> float | None:
        base = os.path.join(self.sys_root, "class", "kgsl", "kgsl-3d0")
        usage = read_first_number(os.path.join(base, "gpu_busy_percentage"))
        if usage is not None:
            return usage
        text = read_text(os.path.join(base, "gpubusy"), 256)
        if text is None:
            return None
        try:
            busy, total = (int(v) for v in text.split()[:2])
        except ValueError:
            return None
        if total <= 0:
            return None
        return min(100.0, busy * 100.0 / total)

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        usage = self._usage()
        if usage is None:
            return None
        return GpuSnapshot(
            label="Adreno GPU", usage=usage, temp=_zone0_temp(self.sys_root)
        )


class DevfreqProbe:
    """Platform devfreq ``load`` files (Mali, VideoCore and generic SoC GPUs)."""

    name = "devfreq"

    _MARKERS = ("v3d", "gpu", "mali")

    def __init__(self, sys_root: str = SYS_ROOT) -> None:
        self.sys_root = sys_root

    def _dirs(self) -> list[str]:
        return [
            os.path.join(self.sys_root, "class", "devfreq"),
            os.path.join(self.sys_root, "devices", "platform", "soc", "soc:gpu", "devfreq"),
        ]

    @staticmethod
    def _label(entry: str) -> str:
        if "v3d" in entry or "soc:gpu" in entry:
            return "VideoCore GPU"
        if "mali" in entry:
            return "Mali GPU"
        return "GPU"

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        for base in self._dirs():
            for entry in list_dir(base):
                if not any(marker in entry for marker in self._MARKERS):
                    continue
                text = read_text(os.path.join(base, entry, "load"), 64)
                if text is None:
                    continue
                # "37@500000000Hz"
                load = text.split("@", 1)[0].strip()
                try:
                    usage = float(load)
                except ValueError:
                    continue
                return GpuSnapshot(
                    label=self._label(entry),
                    usage=min(100.0, max(0.0, usage)),
                    temp=_zone0_temp(self.sys_root),
                )
        return None


class CmaProbe:
    """Last resort for VideoCore boards: report the CMA pool as video memory."""

    name = "cma"

    def __init__(self, sys_root: str = SYS_ROOT) -> None:
        self.sys_root = sys_root

    def probe(self, ctx: ProbeContext) -> GpuSnapshot | None:
        pool = _cma_pool(ctx.memory)
        if pool is None:
            return None
        return GpuSnapshot(
            label="VideoCore GPU",
            mem_used=pool[0],
            mem_total=pool[1],
            temp=_zone0_temp(self.sys_root),
        )


def default_probes(
    sys_root: str = SYS_ROOT,
    nvidia_smi: str = "nvidia-smi",
    tool_timeout: float = 1.0,
) -> list[GpuProbe]:
    return [
        NvidiaSmiProbe(nvidia_smi, tool_timeout),
        DrmBusyProbe(sys_root),
        DrmStatsProbe(sys_root),
        KgslProbe(sys_root),
        DevfreqProbe(sys_root),
        CmaProbe(sys_root),
    ]


# ── Throttled chain ────────────────────────────────────────────────────────


class GpuMonitor:
    """Run the probe chain at most once per *min_interval* seconds."""

    def __init__(
        self,
        probes: Sequence[GpuProbe],
        min_interval: float = MIN_PROBE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.probes = list(probes)
        self.min_interval = max(MIN_PROBE_INTERVAL, min_interval)
        self._clock = clock
        self._last_probe: float | None = None
        self._cached: GpuSnapshot | None = None

    def read(self, ctx: ProbeContext) -> GpuSnapshot | None:
        now = self._clock()
        if self._last_probe is not None and now - self._last_probe < self.min_interval:
            return self._cached
        self._last_probe = now
        self._cached = self._run_chain(ctx)
        return self._cached

    def _run_chain(self, ctx: ProbeContext) -> GpuSnapshot | None:
        for probe in self.probes:
            snapshot = probe.probe(ctx)
            if snapshot is not None and snapshot.has_data:
                logger.debug("gpu probe %s matched: %s", probe.name, snapshot.label)
                return snapshot
        return None
