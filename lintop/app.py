"""lintop entry point and event loop.

Usage:
    lintop
    lintop --interval 1 --sort mem --filter python
    lintop --log-file /tmp/lintop.log --debug
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Callable
from typing import Any, Protocol

from lintop.config import DEFAULT_CONFIG, load_config
from lintop.dashboard import Renderer
from lintop.gpu import GpuMonitor, default_probes
from lintop.keys import decode_keys
from lintop.sampler import Sample, Sampler, SortMode
from lintop.state import Effect, UIState, clamp_selection, handle_key
from lintop.terminal import TerminalSession, TerminalSetupError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Session(Protocol):
    def size(self) -> tuple[int, int]: ...

    def wait_for_input(self, timeout: float) -> bool: ...

    def read_input(self) -> bytes: ...

    def restore(self) -> None: ...


# ── Event loop ─────────────────────────────────────────────────────────────


class EventLoop:
    """Interleave sampling, rendering and input on one thread.

    Sampling runs every ``sample_interval`` seconds, or on the next pass when
    a key changed the filter or sort order. Rendering runs only when
    something changed and at most ``render_fps`` times a second. Between the
    two, input is polled with a short timeout and drained completely.
    """

    def __init__(
        self,
        session: Session,
        sampler: Sampler,
        renderer: Renderer,
        config: dict[str, Any] | None = None,
        ui: UIState | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = config if config is not None else DEFAULT_CONFIG
        self.session = session
        self.sampler = sampler
        self.renderer = renderer
        self.ui = ui if ui is not None else UIState()
        self.sample_interval: float = cfg["sample_interval"]
        self.frame_interval: float = 1.0 / cfg["render_fps"]
        self.input_timeout: float = cfg["input_timeout"]
        self.filter_max_len: int = cfg["filter_max_len"]
        self._clock = clock

        self.sample: Sample | None = None
        self.needs_sample = True
        self.needs_render = True
        self._last_sample: float | None = None
        self._last_render: float | None = None
        self._size: tuple[int, int] | None = None

    @property
    def row_count(self) -> int:
        return len(self.sample.processes) if self.sample is not None else 0

    def run(self) -> int:
        try:
            while not self.ui.quit_requested:
                self.step()
        finally:
            self.session.restore()
        return 0

    def step(self) -> None:
        """One pass: maybe sample, maybe render, then poll and drain input."""
        now = self._clock()
        if (
            self.needs_sample
            or self._last_sample is None
            or now - self._last_sample >= self.sample_interval
        ):
            self._take_sample(now)

        size = self.session.size()
        if size != self._size:
            self._size = size
            self.needs_render = True

        if (
            self.sample is not None
            and self.needs_render
            and (self._last_render is None or now - self._last_render >= self.frame_interval)
        ):
            width, height = size
            self.renderer.render(self.sample, self.ui, width, height)
            self._last_render = now
            self.needs_render = False

        if self.session.wait_for_input(self.input_timeout):
            self.drain_input()

    def _take_sample(self, now: float) -> None:
        self.sample = self.sampler.sample(self.ui.sort_mode, self.ui.filter_text)
        clamp_selection(self.ui, self.row_count)
        self._last_sample = now
        self.needs_sample = False
        self.needs_render = True

    def drain_input(self) -> None:
        """Handle every key queued on the terminal."""
        while True:
            data = self.session.read_input()
            if not data:
                return
            for key in decode_keys(data):
                effect = handle_key(self.ui, key, self.row_count, self.filter_max_len)
                if effect is Effect.QUIT:
                    return
                if effect is Effect.RESAMPLE:
                    self.needs_sample = True
                elif effect is Effect.RENDER:
                    self.needs_render = True


# ── CLI entry point ────────────────────────────────────────────────────────


def setup_logging(log_file: str | None, debug: bool) -> None:
    """Logging stays off the screen: silent unless a log file is given."""
    root = logging.getLogger("lintop")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False
    if log_file is None:
        root.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lintop",
        description="Interactive terminal resource monitor for Linux.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help=f"Seconds between samples (default: {DEFAULT_CONFIG['sample_interval']})",
    )
    parser.add_argument(
        "--fps",
        type=int,
        default=None,
        help=f"Maximum redraws per second (default: {DEFAULT_CONFIG['render_fps']})",
    )
    parser.add_argument(
        "--sort",
        choices=[mode.value for mode in SortMode],
        default=SortMode.CPU.value,
        help="Initial sort column (default: cpu)",
    )
    parser.add_argument(
        "--filter",
        default="",
        metavar="TEXT",
        help="Initial process filter",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        metavar="PATH",
        help="Write diagnostics to PATH",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level (needs --log-file)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config({"sample_interval": args.interval, "render_fps": args.fps})

    try:
        setup_logging(args.log_file, args.debug)
    except OSError as e:
        print(f"lintop: cannot open log file: {e}", file=sys.stderr)
        return 1

    ui = UIState(
        sort_mode=SortMode(args.sort),
        filter_text=args.filter[: config["filter_max_len"]],
    )
    monitor = GpuMonitor(
        default_probes(config["sys_root"], config["nvidia_smi"], config["gpu_tool_timeout"]),
        min_interval=config["gpu_probe_interval"],
    )
    sampler = Sampler(config["proc_root"], config["sys_root"], monitor)

    session = TerminalSession()
    try:
        session.open()
    except TerminalSetupError as e:
        print(f"lintop: {e}", file=sys.stderr)
        return 1

    logger.info(
        "lintop started (interval=%.2fs, fps=%d)",
        config["sample_interval"],
        config["render_fps"],
    )
    loop = EventLoop(session, sampler, Renderer(session.stream), config, ui)
    return loop.run()


if __name__ == "__main__":
    raise SystemExit(main())
