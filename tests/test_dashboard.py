"""Tests for the dashboard layout and formatting helpers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from lintop.dashboard import (
    CLEAR_BELOW,
    CLEAR_EOL,
    HOME,
    RESET,
    REVERSE,
    Columns,
    Renderer,
    fmt_bytes,
    fmt_rate,
    gpu_line,
    render_frame,
    status_lines,
    visible_window,
)
from lintop.gpu import GpuSnapshot
from lintop.readers import MemorySnapshot
from lintop.sampler import NetworkSnapshot, ProcessInfo, Sample, SortMode
from lintop.state import UIState

GIB = 1024**3


def _sample(n_procs: int = 3, **kwargs: object) -> Sample:
    procs = [
        ProcessInfo(pid=100 + i, name=f"proc{i}", cpu_percent=float(n_procs - i), mem_bytes=1024 * i, threads=1)
        for i in range(n_procs)
    ]
    return Sample(processes=procs, **kwargs)  # type: ignore[arg-type]


def _lines(frame: str) -> list[str]:
    body = frame.removeprefix(HOME).split(CLEAR_BELOW)[0]
    return [line.removesuffix(CLEAR_EOL) for line in body.split("\n") if line]


# ── fmt_bytes ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "0.0 B"),
        (512, "512.0 B"),
        (1024, "1.0 KiB"),
        (1024 * 1024, "1.0 MiB"),
        (1024**3, "1.0 GiB"),
        (1024**4, "1.0 TiB"),
        (1536, "1.5 KiB"),
        (2.5 * 1024**2, "2.5 MiB"),
    ],
)
def test_fmt_bytes(value: int | float, expected: str) -> None:
    assert fmt_bytes(value) == expected


# ── fmt_rate ───────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("bps", "expected"),
    [
        (0, "0 B/s"),
        (500, "500 B/s"),
        (1024, "1.0 KB/s"),
        (1024 * 1024, "1.0 MB/s"),
        (1024**3, "1.0 GB/s"),
    ],
)
def test_fmt_rate(bps: float, expected: str) -> None:
    assert fmt_rate(bps) == expected


# ── visible_window ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("selected", "count", "visible", "top"),
    [
        (0, 100, 10, 0),
        (3, 100, 10, 0),
        (50, 100, 10, 45),
        (99, 100, 10, 90),
        (2, 4, 10, 0),
        (0, 0, 10, 0),
        (5, 10, 0, 5),
    ],
)
def test_visible_window(selected: int, count: int, visible: int, top: int) -> None:
    assert visible_window(selected, count, visible) == top


# ── Status block ───────────────────────────────────────────────────────────


class TestStatusLines:
    def test_minimal(self) -> None:
        lines = status_lines(Sample(cpu_percent=12.34, cpu_count=8), UIState())
        assert lines[0] == "lintop    CPUs: 8"
        assert lines[1] == "CPU:  12.3%"
        assert lines[2].endswith("[NORMAL]")
        assert len(lines) == 3

    def test_frequency_and_temperature(self) -> None:
        sample = Sample(cpu_percent=5.0, cpu_freq_mhz=2400.0, cpu_temp=55.0)
        assert status_lines(sample, UIState())[1] == "CPU:   5.0% @ 2.40 GHz 55.0°C"

    def test_memory_swap_cma(self) -> None:
        mem = MemorySnapshot(
            used_bytes=6 * GIB,
            total_bytes=8 * GIB,
            swap_used_bytes=GIB,
            swap_total_bytes=4 * GIB,
            cma_used_bytes=0,
            cma_total_bytes=256 * 1024**2,
        )
        lines = status_lines(Sample(memory=mem), UIState())
        assert "MEM:  75.0% 6.0 GiB / 8.0 GiB" in lines
        assert "SWP:  25.0% 1.0 GiB / 4.0 GiB" in lines
        assert "CMA:   0.0% 0.0 B / 256.0 MiB" in lines

    def test_no_swap_line_without_swap(self) -> None:
        mem = MemorySnapshot(used_bytes=1, total_bytes=2)
        lines = status_lines(Sample(memory=mem), UIState())
        assert not any(line.startswith(("SWP", "CMA")) for line in lines)

    def test_network(self) -> None:
        net = NetworkSnapshot(iface="eth0", rx_rate=2048.0, tx_rate=10.0)
        lines = status_lines(Sample(network=net), UIState())
        assert "NET: eth0  rx 2.0 KB/s  tx 10 B/s" in lines

    def test_searching_filter(self) -> None:
        lines = status_lines(Sample(), UIState(searching=True, filter_text="py"))
        assert lines[-2].endswith("[SEARCHING]")
        assert lines[-1] == "Filter: /py_"

    def test_applied_filter(self) -> None:
        lines = status_lines(Sample(), UIState(filter_text="py"))
        assert lines[-1] == "Filter: py (press / to edit)"


class TestGpuLine:
    def test_full(self) -> None:
        gpu = GpuSnapshot(label="AMD GPU", usage=37.0, mem_used=GIB, mem_total=4 * GIB, temp=48.0)
        assert gpu_line(gpu) == "AMD GPU:  37.0% 48.0°C  VRAM:  25.0% 1.0 GiB / 4.0 GiB"

    def test_usage_only(self) -> None:
        assert gpu_line(GpuSnapshot(label="Mali GPU", usage=5.0)) == "Mali GPU:   5.0%"

    def test_omitted_without_data(self) -> None:
        lines = status_lines(Sample(gpu=GpuSnapshot(temp=40.0)), UIState())
        assert not any(line.startswith("GPU") for line in lines)


# ── Process table ──────────────────────────────────────────────────────────


class TestColumns:
    def test_name_width_fills_terminal(self) -> None:
        cols = Columns.for_width(100)
        assert cols.name_w == 100 - (7 + 8 + 12 + 4 + 4)
        assert cols.total == 100

    def test_name_width_floor(self) -> None:
        assert Columns.for_width(20).name_w == 12

    def test_sort_marker(self) -> None:
        cols = Columns.for_width(80)
        assert "CPU%▼" in cols.header(SortMode.CPU)
        assert "MEM▼" not in cols.header(SortMode.CPU)
        assert "MEM▼" in cols.header(SortMode.MEMORY)
        assert len(cols.header(SortMode.CPU)) == cols.total

    def test_row_alignment(self) -> None:
        cols = Columns.for_width(80)
        proc = ProcessInfo(pid=42, name="x" * 200, cpu_percent=3.14159, mem_bytes=2048, threads=12)
        row = cols.row(proc)
        assert len(row) == cols.total
        assert row.startswith("42      " + "x" * cols.name_w + " ")
        assert row.endswith("     3.1      2.0 KiB   12")


class TestRenderFrame:
    def test_frame_shape(self) -> None:
        frame = render_frame(_sample(3), UIState(), 80, 24)
        assert frame.startswith(HOME)
        assert CLEAR_BELOW in frame
        assert frame.endswith(f"\x1b[24;1HShowing 1-3 of 3{CLEAR_EOL}")
        body = frame.split(CLEAR_BELOW)[0]
        assert all(line.endswith(CLEAR_EOL) for line in body.removeprefix(HOME).split("\n")[:-1])

    def test_rule_matches_header(self) -> None:
        lines = _lines(render_frame(_sample(1), UIState(), 80, 24))
        header_idx = next(i for i, line in enumerate(lines) if line.startswith("PID"))
        assert lines[header_idx + 1] == "-" * 80

    def test_rule_clipped_to_narrow_terminal(self) -> None:
        lines = _lines(render_frame(_sample(1), UIState(), 30, 24))
        assert "-" * 30 in lines
        assert all(len(line) <= 30 for line in lines if REVERSE not in line)

    def test_selected_row_highlighted(self) -> None:
        frame = render_frame(_sample(3), UIState(selected=1), 80, 24)
        highlighted = [line for line in _lines(frame) if line.startswith(REVERSE)]
        assert len(highlighted) == 1
        assert highlighted[0].startswith(REVERSE + "101 ")
        assert highlighted[0].endswith(RESET)

    def test_empty_table(self) -> None:
        frame = render_frame(_sample(0), UIState(), 80, 24)
        assert "No processes available." in _lines(frame)
        assert "Showing" not in frame

    def test_window_follows_selection(self) -> None:
        # 3 status lines + header + rule leave 18 rows on a 24-line screen
        frame = render_frame(_sample(100), UIState(selected=99), 80, 24)
        assert frame.endswith(f"Showing 83-100 of 100{CLEAR_EOL}")
        rows = [line for line in _lines(frame) if line.lstrip(REVERSE)[:1].isdigit()]
        assert len(rows) == 18

    def test_selection_beyond_list_is_clamped(self) -> None:
        frame = render_frame(_sample(2), UIState(selected=50), 80, 24)
        assert any(line.startswith(REVERSE + "101 ") for line in _lines(frame))

    def test_control_bytes_in_name_are_neutralised(self) -> None:
        sample = Sample(
            processes=[
                ProcessInfo(pid=7, name="evil\x1b[2J\x1b]0;pwn\x07", cpu_percent=0.0, mem_bytes=0, threads=1),
                ProcessInfo(pid=8, name="tab\tbed\x9b", cpu_percent=0.0, mem_bytes=0, threads=1),
            ]
        )
        frame = render_frame(sample, UIState(selected=1), 80, 24)
        assert "\x1b[2J" not in frame
        assert "\x1b]0;" not in frame
        assert "\x07" not in frame
        assert "\t" not in frame
        assert "\x9b" not in frame
        rows = [line for line in _lines(frame) if "evil" in line]
        assert rows == [Columns.for_width(80).row(sample.processes[0])]
        assert "evil?[2J?]0;pwn?" in rows[0]
        assert len(rows[0]) == 80

    def test_tiny_terminal_never_overflows(self) -> None:
        frame = render_frame(_sample(50), UIState(), 80, 4)
        body = frame.removeprefix(HOME).split(CLEAR_BELOW)[0]
        assert body.count("\n") == 3
        assert "Showing" not in frame


def test_renderer_writes_once_per_frame() -> None:
    stream = MagicMock()
    renderer = Renderer(stream)
    renderer.render(_sample(2), UIState(), 80, 24)
    stream.write.assert_called_once()
    assert stream.write.call_args[0][0].startswith(HOME)
    stream.flush.assert_called_once()
    assert renderer.frames == 1
