"""Raw-mode, alternate-screen terminal session.

The session is the only place that touches terminal modes. It is opened
once, and :meth:`TerminalSession.restore` undoes everything it did. Restore
is idempotent and reachable from every exit path: the ``with`` block, an
``atexit`` hook and the handlers for SIGINT, SIGTERM, SIGHUP and SIGQUIT.
"""

from __future__ import annotations

import atexit
import logging
import os
import select
import signal
import sys
import termios
from types import FrameType
from typing import Any, TextIO

logger = logging.getLogger(__name__)

ENTER_SEQ = "\x1b[?1049h\x1b[2J\x1b[H\x1b[?25l"
LEAVE_SEQ = "\x1b[?1049l\x1b[?25h\x1b[0m"

RESTORE_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP, signal.SIGQUIT)

DEFAULT_SIZE = (80, 24)
_READ_CHUNK = 1024


class TerminalSetupError(Exception):
    """The terminal cannot be put into dashboard mode."""


class TerminalSession:
    """Own the controlling terminal for the lifetime of the dashboard."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self._saved_attrs: list[Any] | None = None
        self._saved_handlers: dict[int, Any] = {}
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def open(self) -> TerminalSession:
        if not (self.stdin.isatty() and self.stdout.isatty()):
            raise TerminalSetupError("stdin and stdout must be a terminal")

        fd = self.stdin.fileno()
        try:
            self._saved_attrs = termios.tcgetattr(fd)
            attrs = termios.tcgetattr(fd)
            attrs[3] &= ~(termios.ECHO | termios.ICANON | termios.ISIG)
            attrs[6][termios.VMIN] = 0
            attrs[6][termios.VTIME] = 0
            termios.tcsetattr(fd, termios.TCSAFLUSH, attrs)
        except termios.error as e:
            self._saved_attrs = None
            raise TerminalSetupError(f"cannot enter raw mode: {e}") from e

        self._active = True
        atexit.register(self.restore)
        for signum in RESTORE_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, self._on_signal)

        try:
            self.stdout.write(ENTER_SEQ)
            self.stdout.flush()
        except OSError as e:
            self.restore()
            raise TerminalSetupError(f"cannot switch to the alternate screen: {e}") from e
        logger.debug("terminal session opened on fd %d", fd)
        return self

    def restore(self) -> None:
        """Leave raw mode and the alternate screen; later calls do nothing."""
        if not self._active:
            return
        self._active = False
        atexit.unregister(self.restore)

        try:
            self.stdout.write(LEAVE_SEQ)
            self.stdout.flush()
        except (OSError, ValueError) as e:
            logger.debug("cannot leave the alternate screen: %s", e)

        if self._saved_attrs is not None:
            try:
                termios.tcsetattr(self.stdin.fileno(), termios.TCSAFLUSH, self._saved_attrs)
            except (termios.error, OSError, ValueError) as e:
                logger.debug("cannot restore terminal modes: %s", e)
            self._saved_attrs = None

        for signum, handler in self._saved_handlers.items():
            signal.signal(signum, handler)
        self._saved_handlers.clear()
        logger.debug("terminal session restored")

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        self.restore()
        raise SystemExit(128 + signum)

    def __enter__(self) -> TerminalSession:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.restore()

    # ── I/O ────────────────────────────────────────────────────────────────

    def size(self) -> tuple[int, int]:
        """(columns, rows) of the output terminal."""
        try:
            size = os.get_terminal_size(self.stdout.fileno())
        except (OSError, ValueError):
            return DEFAULT_SIZE
        if size.columns <= 0 or size.lines <= 0:
            return DEFAULT_SIZE
        return size.columns, size.lines

    def wait_for_input(self, timeout: float) -> bool:
        try:
            ready, _, _ = select.select([self.stdin.fileno()], [], [], timeout)
        except InterruptedError:
            return False
        return bool(ready)

    def read_input(self) -> bytes:
        """Whatever is queued on stdin, without blocking."""
        try:
            return os.read(self.stdin.fileno(), _READ_CHUNK)
        except (BlockingIOError, InterruptedError):
            return b""

    @property
    def stream(self) -> TextIO:
        return self.stdout
