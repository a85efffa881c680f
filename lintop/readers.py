"""Readers for the kernel's pseudo-filesystems.

Every reader is a plain function of the current kernel state. Reads are
bounded in size and never retried; a missing or malformed source yields an
empty result (``None``, ``{}`` or zero) and a DEBUG log line instead of an
exception, so one broken metric never takes down a sample.

Paths are rooted at ``proc_root``/``sys_root`` so the same code runs against
a synthetic tree in tests.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

PROC_ROOT = "/proc"
SYS_ROOT = "/sys"

# Upper bound for a single pseudo-file read.
_MAX_READ = 256 * 1024
_PID_STAT_READ = 4096

MAX_NAME_LEN = 255

_CPU_THERMAL_TYPES = ("pkg", "cpu", "core", "soc")
_CPU_HWMON_NAMES = ("coretemp", "cpu", "k10temp")


# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative scheduler ticks from the aggregate ``cpu`` line."""

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
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )

    @property
    def idle_total(self) -> int:
        return self.idle + self.iowait


@dataclass(frozen=True)
class MemorySnapshot:
    """Memory usage in bytes. Swap and CMA totals are 0 when absent."""

    used_bytes: int
    total_bytes: int
    swap_used_bytes: int = 0
    swap_total_bytes: int = 0
    cma_used_bytes: int = 0
    cma_total_bytes: int = 0

    @property
    def used_percent(self) -> float:
        return _percent(self.used_bytes, self.total_bytes)

    @property
    def swap_percent(self) -> float:
        return _percent(self.swap_used_bytes, self.swap_total_bytes)

    @property
    def cma_percent(self) -> float:
        return _percent(self.cma_used_bytes, self.cma_total_bytes)


@dataclass(frozen=True)
class ProcStat:
    """The fields of ``/proc/<pid>/stat`` the process table needs."""

    name: str
    utime: int
    stime: int
    threads: int
    rss_pages: int

    @property
    def ticks(self) -> int:
        return self.utime + self.stime


def _percent(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, used * 100.0 / total)


# ── File helpers ───────────────────────────────────────────────────────────


def read_text(path: str, limit: int = _MAX_READ) -> str | None:
    """Read at most *limit* characters from *path*, or None if unreadable."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read(limit)
    except OSError as e:
        logger.debug("cannot read %s: %s", path, e)
        return None


def read_first_number(path: str) -> float | None:
    """Parse the leading number of a one-value sysfs file."""
    text = read_text(path, 256)
    if text is None:
        return None
    parts = text.split()
    if not parts:
        return None
    try:
        return float(parts[0])
    except ValueError:
        logger.debug("malformed number in %s: %r", path, text[:32])
        return None


def read_millidegrees(path: str) -> float | None:
    """Read a sysfs temperature (millidegrees Celsius) as degrees."""
    value = read_first_number(path)
    if value is None:
        return None
    return value / 1000.0


def list_dir(path: str) -> list[str]:
    try:
        return sorted(os.listdir(path))
    except OSError:
        return []


# ── CPU ────────────────────────────────────────────────────────────────────


def parse_cpu_times(line: str) -> CpuTimes | None:
    """Parse the aggregate ``cpu`` line of /proc/stat.

    Kernels that report fewer than eight counters get the missing trailing
    ones as zero; fewer than four counters is treated as malformed.
    """
    parts = line.split()
    if not parts or parts[0] != "cpu":
        return None
    try:
        values = [int(p) for p in parts[1:9]]
    except ValueError:
        logger.debug("malformed cpu line: %r", line[:80])
        return None
    if len(values) < 4 or any(v < 0 for v in values):
        return None
    values += [0] * (8 - len(values))
    return CpuTimes(*values)


def count_cpu_lines(text: str) -> int:
    """Count ``cpuN`` lines, i.e. logical CPUs."""
    return sum(
        1
        for line in text.splitlines()
        if line.startswith("cpu") and line[3:4].isdigit()
    )


def read_cpu_stat(proc_root: str = PROC_ROOT) -> tuple[CpuTimes | None, int]:
    """Return the aggregate CPU counters and the logical CPU count.

    The count falls back to psutil and finally to 1 when /proc/stat has no
    per-core lines.
    """
    text = read_text(os.path.join(proc_root, "stat"))
    times: CpuTimes | None = None
    count = 0
    if text:
        times = parse_cpu_times(text.split("\n", 1)[0])
        count = count_cpu_lines(text)
    if count <= 0:
        count = psutil.cpu_count() or 1
    return times, count


def read_cpu_freq(proc_root: str = PROC_ROOT, sys_root: str = SYS_ROOT) -> float | None:
    """Mean current CPU frequency in MHz, or None if no source reports it."""
    text = read_text(os.path.join(proc_root, "cpuinfo"))
    if text:
        freqs: list[float] = []
        for line in text.splitlines():
            if not line.startswith("cpu MHz"):
                continue
            _, _, value = line.partition(":")
            try:
                freqs.append(float(value))
            except ValueError:
                continue
        if freqs:
            return sum(freqs) / len(freqs)

    cpu_dir = os.path.join(sys_root, "devices", "system", "cpu")
    khz: list[float] = []
    for entry in list_dir(cpu_dir):
        if not (entry.startswith("cpu") and entry[3:4].isdigit()):
            continue
        value = read_first_number(
            os.path.join(cpu_dir, entry, "cpufreq", "scaling_cur_freq")
        )
        if value is not None:
            khz.append(value)
    if khz:
        return sum(khz) / len(khz) / 1000.0
    return None


def _thermal_zone_temp(sys_root: str) -> float | None:
    base = os.path.join(sys_root, "class", "thermal")
    for zone in list_dir(base):
        if not zone.startswith("thermal_zone"):
            continue
        kind = read_text(os.path.join(base, zone, "type"), 256)
        if kind is None:
            continue
        kind = kind.strip().lower()
        if any(tag in kind for tag in _CPU_THERMAL_TYPES):
            temp = read_millidegrees(os.path.join(base, zone, "temp"))
            if temp is not None:
                return temp
    return None


def _hwmon_temp(sys_root: str) -> float | None:
    base = os.path.join(sys_root, "class", "hwmon")
    for hwmon in list_dir(base):
        name = read_text(os.path.join(base, hwmon, "name"), 256)
        if name is None:
            continue
        name = name.strip().lower()
        if not any(chip in name for chip in _CPU_HWMON_NAMES):
            continue
        hwmon_dir = os.path.join(base, hwmon)
        temps = [
            read_millidegrees(os.path.join(hwmon_dir, entry))
            for entry in list_dir(hwmon_dir)
            if entry.startswith("temp") and entry.endswith("_input")
        ]
        readings = [t for t in temps if t is not None]
        if readings:
            return max(readings)
    return None


def _psutil_temp() -> float | None:
    try:
        temps = psutil.sensors_temperatures()
    except AttributeError:
        return None
    if not temps:
        return None
    for chip in ("coretemp", "k10temp", "cpu_thermal", "acpitz"):
        if chip in temps and temps[chip]:
            return float(temps[chip][0].current)
    for entries in temps.values():
        if entries:
            return float(entries[0].current)
    return None


def read_cpu_temp(sys_root: str = SYS_ROOT) -> float | None:
    """CPU temperature in degrees Celsius, or None.

    Thermal zones are tried first, then hwmon chips, then psutil's view of
    the same sensors.
    """
    temp = _thermal_zone_temp(sys_root)
    if temp is None:
        temp = _hwmon_temp(sys_root)
    if temp is None:
        temp = _psutil_temp()
    return temp


# ── Memory ─────────────────────────────────────────────────────────────────

_MEMINFO_KEYS = {
    "MemTotal": "total",
    "MemAvailable": "available",
    "SwapTotal": "swap_total",
    "SwapFree": "swap_free",
    "CmaTotal": "cma_total",
    "CmaFree": "cma_free",
}


def parse_meminfo(text: str) -> MemorySnapshot | None:
    """Build a MemorySnapshot from /proc/meminfo text (values in kB)."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep or key not in _MEMINFO_KEYS:
            continue
        fields = rest.split()
        if not fields:
            continue
        try:
            values[_MEMINFO_KEYS[key]] = int(fields[0]) * 1024
        except ValueError:
            logger.debug("malformed meminfo line: %r", line)

    total = values.get("total", 0)
    if total <= 0:
        return None

    def used(total_key: str, free_key: str) -> tuple[int, int]:
        pool = values.get(total_key, 0)
        free = values.get(free_key, 0)
        return min(pool, max(0, pool - free)), pool

    mem_used, mem_total = used("total", "available")
    swap_used, swap_total = used("swap_total", "swap_free")
    cma_used, cma_total = used("cma_total", "cma_free")
    return MemorySnapshot(
        used_bytes=mem_used,
        total_bytes=mem_total,
        swap_used_bytes=swap_used,
        swap_total_bytes=swap_total,
        cma_used_bytes=cma_used,
        cma_total_bytes=cma_total,
    )


def read_memory(proc_root: str = PROC_ROOT) -> MemorySnapshot | None:
    text = read_text(os.path.join(proc_root, "meminfo"))
    if text is None:
        return None
    return parse_meminfo(text)


# ── Network ────────────────────────────────────────────────────────────────


def parse_net_dev(text: str) -> dict[str, tuple[int, int]]:
    """Map interface name to cumulative (rx_bytes, tx_bytes), loopback excluded."""
    counters: dict[str, tuple[int, int]] = {}
    for line in text.splitlines()[2:]:
        iface, sep, rest = line.partition(":")
        if not sep:
            continue
        iface = iface.strip()
        if not iface or iface == "lo":
            continue
        fields = rest.split()
        try:
            counters[iface] = (int(fields[0]), int(fields[8]))
        except (IndexError, ValueError):
            logger.debug("malformed net/dev line: %r", line)
    return counters


def read_net_counters(proc_root: str = PROC_ROOT) -> dict[str, tuple[int, int]]:
    text = read_text(os.path.join(proc_root, "net", "dev"))
    if text is None:
        return {}
    return parse_net_dev(text)


# ── Processes ──────────────────────────────────────────────────────────────


def list_pids(proc_root: str = PROC_ROOT) -> list[int]:
    """Numeric entries of the proc root."""
    try:
        entries = os.listdir(proc_root)
    except OSError as e:
        logger.debug("cannot list %s: %s", proc_root, e)
        return []
    return [int(entry) for entry in entries if entry.isdigit()]


def parse_proc_stat(raw: str) -> ProcStat | None:
    """Parse one /proc/<pid>/stat line.

    The command name sits between the first ``(`` and the *last* ``)``: it
    may itself contain parentheses and spaces, so the numeric fields are
    only split after the closing one.
    """
    start = raw.find("(")
    end = raw.rfind(")")
    if start < 0 or end <= start:
        return None
    name = raw[start + 1 : end][:MAX_NAME_LEN]
    fields = raw[end + 1 :].split()
    # fields[0] is the state; utime/stime/num_threads/rss follow at fixed offsets
    if len(fields) < 22:
        return None
    try:
        utime = int(fields[11])
        stime = int(fields[12])
        threads = int(fields[17])
        rss_pages = int(fields[21])
    except ValueError:
        return None
    return ProcStat(
        name=name,
        utime=max(0, utime),
        stime=max(0, stime),
        threads=max(1, threads),
        rss_pages=max(0, rss_pages),
    )


def read_proc_stat(pid: int, proc_root: str = PROC_ROOT) -> ProcStat | None:
    """Read one process's stat file; None if it vanished or is unreadable."""
    path = os.path.join(proc_root, str(pid), "stat")
    try:
        with open(path, "rb") as f:
            raw = f.read(_PID_STAT_READ)
    except (FileNotFoundError, ProcessLookupError):
        # exited since the directory listing
        return None
    except OSError as e:
        logger.debug("cannot read %s: %s", path, e)
        return None
    if not raw:
        return None
    return parse_proc_stat(raw.decode("utf-8", errors="replace"))


def page_size() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE")
    except (ValueError, OSError):
        return 4096
