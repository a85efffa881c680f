"""Full-screen text dashboard for lintop.

A frame is laid out as one string of text and ANSI control sequences and
handed to the terminal in a single write, so the screen never shows a
half-drawn frame. Layout from the top:

    title, CPU, MEM, SWP, CMA, GPU, NET, controls, filter   (status block)
    PID  NAME  CPU%  MEM  THR                              (table header)
    ------------------------------------------------------
    rows, windowed around the selection
    Showing a-b of n                                       (last line)

Status lines whose metric is unknown are left out.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TextIO

from lintop.gpu import GpuSnapshot
from lintop.sampler import ProcessInfo, Sample, SortMode
from lintop.state import UIState

# ── Constants ──────────────────────────────────────────────────────────────

HOME = "\x1b[H"
CLEAR_EOL = "\x1b[K"
CLEAR_BELOW = "\x1b[J"
REVERSE = "\x1b[7m"
RESET = "\x1b[0m"

PID_W = 7
CPU_W = 8
MEM_W = 12
THR_W = 4
SEPARATORS = 4
MIN_NAME_W = 12

SORT_MARK = "▼"
CONTROLS = "Controls: q:quit, j/k/arrows:move, h/l/arrows:sort, /:filter"

# C0 controls, DEL and C1 controls; any process can put these in its name
_UNPRINTABLE = {c: "?" for c in (*range(0x20), *range(0x7F, 0xA0))}


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Human-readable byte count (binary prefixes)."""
    v = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def printable(text: str) -> str:
    """Replace control characters so *text* cannot drive the terminal."""
    return text.translate(_UNPRINTABLE)


def fmt_rate(bps: float) -> str:
    """Human-readable transfer rate."""
    if bps < 1024:
        return f"{bps:.0f} B/s"
    if bps < 1024 * 1024:
        return f"{bps / 1024:.1f} KB/s"
    if bps < 1024**3:
        return f"{bps / 1024 ** 2:.1f} MB/s"
    return f"{bps / 1024 ** 3:.1f} GB/s"


def _usage_line(tag: str, percent: float, used: int, total: int) -> str:
    return f"{tag}: {percent:5.1f}% {fmt_bytes(used)} / {fmt_bytes(total)}"


def gpu_line(gpu: GpuSnapshot) -> str:
    parts = [f"{gpu.label}:"]
    if gpu.usage is not None:
        parts.append(f"{gpu.usage:5.1f}%")
    if gpu.temp is not None:
        parts.append(f"{gpu.temp:.1f}°C")
    mem_percent = gpu.mem_percent
    if gpu.mem_used is not None and mem_percent is not None:
        parts.append(
            f" VRAM: {mem_percent:5.1f}% "
            f"{fmt_bytes(gpu.mem_used)} / {fmt_bytes(gpu.mem_total or 0)}"
        )
    return " ".join(parts)


def status_lines(sample: Sample, ui: UIState) -> list[str]:
    """The status block above the process table."""
    cpu = f"CPU: {sample.cpu_percent:5.1f}%"
    if sample.cpu_freq_mhz:
        cpu += f" @ {sample.cpu_freq_mhz / 1000.0:.2f} GHz"
    if sample.cpu_temp is not None:
        cpu += f" {sample.cpu_temp:.1f}°C"
    lines = [f"lintop    CPUs: {sample.cpu_count}", cpu]

    mem = sample.memory
    if mem is not None:
        lines.append(_usage_line("MEM", mem.used_percent, mem.used_bytes, mem.total_bytes))
        if mem.swap_total_bytes > 0:
            lines.append(
                _usage_line("SWP", mem.swap_percent, mem.swap_used_bytes, mem.swap_total_bytes)
            )
        if mem.cma_total_bytes > 0:
            lines.append(
                _usage_line("CMA", mem.cma_percent, mem.cma_used_bytes, mem.cma_total_bytes)
            )

    if sample.gpu is not None and sample.gpu.has_data:
        lines.append(gpu_line(sample.gpu))

    net = sample.network
    if net.iface is not None:
        lines.append(
            f"NET: {net.iface}  rx {fmt_rate(net.rx_rate)}  tx {fmt_rate(net.tx_rate)}"
        )

    mode = "SEARCHING" if ui.searching else "NORMAL"
    lines.append(f"{CONTROLS} [{mode}]")
    if ui.searching:
        lines.append(f"Filter: /{ui.filter_text}_")
    elif ui.filter_text:
        lines.append(f"Filter: {ui.filter_text} (press / to edit)")
    return lines


# ── Table layout ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Columns:
    name_w: int

    @classmethod
    def for_width(cls, width: int) -> Columns:
        fixed = PID_W + CPU_W + MEM_W + THR_W + SEPARATORS
        return cls(name_w=max(MIN_NAME_W, width - fixed))

    @property
    def total(self) -> int:
        return PID_W + self.name_w + CPU_W + MEM_W + THR_W + SEPARATORS

    def header(self, sort_mode: SortMode) -> str:
        cpu = "CPU%" + (SORT_MARK if sort_mode is SortMode.CPU else "")
        mem = "MEM" + (SORT_MARK if sort_mode is SortMode.MEMORY else "")
        return (
            f"{'PID':<{PID_W}} {'NAME':<{self.name_w}} "
            f"{cpu:>{CPU_W}} {mem:>{MEM_W}} {'THR':>{THR_W}}"
        )

    def row(self, proc: ProcessInfo) -> str:
        w = self.name_w
        name = printable(proc.name)
        return (
            f"{proc.pid:<{PID_W}} {name:<{w}.{w}} "
            f"{proc.cpu_percent:>{CPU_W}.1f} {fmt_bytes(proc.mem_bytes):>{MEM_W}} "
            f"{proc.threads:>{THR_W}}"
        )


def visible_window(selected: int, count: int, visible: int) -> int:
    """First row index of a *visible*-row window centred on *selected*."""
    top = selected - visible // 2
    top = min(top, count - visible)
    return max(0, top)


def render_frame(sample: Sample, ui: UIState, width: int, height: int) -> str:
    """Lay out one complete frame for a *width* x *height* terminal.

    The last terminal row is reserved for the footer; anything that does not
    fit above it is cut off rather than scrolled.
    """
    width = max(1, width)
    height = max(1, height)
    cols = Columns.for_width(width)
    procs = sample.processes
    count = len(procs)
    selected = max(0, min(ui.selected, count - 1))

    lines = [text[:width] for text in status_lines(sample, ui)]
    lines.append(cols.header(ui.sort_mode)[:width])
    lines.append("-" * min(width, cols.total))

    visible = max(0, height - 1 - len(lines))
    top = visible_window(selected, count, visible)
    end = min(count, top + visible)

    if count == 0:
        lines.append("No processes available."[:width])
    for i in range(top, end):
        text = cols.row(procs[i])[:width]
        lines.append(REVERSE + text + RESET if i == selected else text)

    out = [HOME]
    out.extend(text + CLEAR_EOL + "\n" for text in lines[: height - 1])
    out.append(CLEAR_BELOW)
    if end > top:
        footer = f"Showing {top + 1}-{end} of {count}"
        out.append(f"\x1b[{height};1H{footer[:width]}{CLEAR_EOL}")
    return "".join(out)


# ── Renderer ───────────────────────────────────────────────────────────────


class Renderer:
    """Write frames to *stream*, one write and one flush per frame."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self.frames = 0

    def render(self, sample: Sample, ui: UIState, width: int, height: int) -> None:
        frame = render_frame(sample, ui, width, height)
        self.stream.write(frame)
        self.stream.flush()
        self.frames += 1
