"""Tests for lintop.terminal."""

from __future__ import annotations

import os
import signal
import termios
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from lintop.terminal import (
    DEFAULT_SIZE,
    ENTER_SEQ,
    LEAVE_SEQ,
    RESTORE_SIGNALS,
    TerminalSession,
    TerminalSetupError,
)

SAVED = [1, 2, 3, 0xFFFF, 5, 6, [0] * 32]


def _tty(fd: int = 0) -> MagicMock:
    stream = MagicMock()
    stream.isatty.return_value = True
    stream.fileno.return_value = fd
    return stream


@pytest.fixture()
def fake_tty() -> Iterator[dict[str, MagicMock]]:
    with (
        patch("lintop.terminal.termios.tcgetattr", side_effect=lambda fd: [1, 2, 3, 0xFFFF, 5, 6, [0] * 32]) as getattr_,
        patch("lintop.terminal.termios.tcsetattr") as setattr_,
        patch("lintop.terminal.signal.signal", return_value=signal.SIG_DFL) as signal_,
        patch("lintop.terminal.atexit") as atexit_,
    ):
        yield {"tcgetattr": getattr_, "tcsetattr": setattr_, "signal": signal_, "atexit": atexit_}


# ── Setup ──────────────────────────────────────────────────────────────────


class TestOpen:
    def test_requires_a_terminal(self) -> None:
        stdin = _tty()
        stdin.isatty.return_value = False
        session = TerminalSession(stdin, _tty(1))
        with pytest.raises(TerminalSetupError):
            session.open()
        assert not session.active

    def test_raw_mode_and_alternate_screen(self, fake_tty: dict[str, MagicMock]) -> None:
        stdout = _tty(1)
        session = TerminalSession(_tty(0), stdout).open()

        assert session.active
        fd, _, attrs = fake_tty["tcsetattr"].call_args[0]
        assert fd == 0
        assert attrs[3] & (termios.ECHO | termios.ICANON | termios.ISIG) == 0
        assert attrs[6][termios.VMIN] == 0
        assert attrs[6][termios.VTIME] == 0
        stdout.write.assert_called_once_with(ENTER_SEQ)

    def test_registers_restore_hooks(self, fake_tty: dict[str, MagicMock]) -> None:
        session = TerminalSession(_tty(0), _tty(1)).open()
        fake_tty["atexit"].register.assert_called_once_with(session.restore)
        registered = [c[0][0] for c in fake_tty["signal"].call_args_list]
        assert registered == list(RESTORE_SIGNALS)

    def test_termios_failure(self, fake_tty: dict[str, MagicMock]) -> None:
        fake_tty["tcgetattr"].side_effect = termios.error(25, "Inappropriate ioctl for device")
        session = TerminalSession(_tty(0), _tty(1))
        with pytest.raises(TerminalSetupError, match="raw mode"):
            session.open()
        assert not session.active


# ── Restore ────────────────────────────────────────────────────────────────


class TestRestore:
    def test_restores_modes_and_screen(self, fake_tty: dict[str, MagicMock]) -> None:
        stdout = _tty(1)
        session = TerminalSession(_tty(0), stdout).open()
        session.restore()

        assert not session.active
        stdout.write.assert_called_with(LEAVE_SEQ)
        assert fake_tty["tcsetattr"].call_args[0][2] == SAVED
        fake_tty["atexit"].unregister.assert_called_once_with(session.restore)

    def test_idempotent(self, fake_tty: dict[str, MagicMock]) -> None:
        stdout = _tty(1)
        session = TerminalSession(_tty(0), stdout).open()
        session.restore()
        session.restore()
        leave_writes = [c for c in stdout.write.call_args_list if c[0][0] == LEAVE_SEQ]
        assert len(leave_writes) == 1

    def test_context_manager(self, fake_tty: dict[str, MagicMock]) -> None:
        with TerminalSession(_tty(0), _tty(1)) as session:
            assert session.active
        assert not session.active

    def test_signal_restores_then_exits(self, fake_tty: dict[str, MagicMock]) -> None:
        session = TerminalSession(_tty(0), _tty(1)).open()
        with pytest.raises(SystemExit) as exc_info:
            session._on_signal(signal.SIGTERM, None)
        assert exc_info.value.code == 128 + signal.SIGTERM
        assert not session.active

    def test_restore_without_open(self) -> None:
        stdout = _tty(1)
        TerminalSession(_tty(0), stdout).restore()
        stdout.write.assert_not_called()


# ── Input and size ─────────────────────────────────────────────────────────


class TestIO:
    def test_reads_queued_bytes(self) -> None:
        read_fd, write_fd = os.pipe()
        try:
            session = TerminalSession(_tty(read_fd), _tty(1))
            assert session.wait_for_input(0) is False
            os.write(write_fd, b"jj\x1b[A")
            assert session.wait_for_input(0.5) is True
            assert session.read_input() == b"jj\x1b[A"
        finally:
            os.close(read_fd)
            os.close(write_fd)

    def test_size(self) -> None:
        with patch("lintop.terminal.os.get_terminal_size", return_value=os.terminal_size((132, 43))):
            assert TerminalSession(_tty(0), _tty(1)).size() == (132, 43)

    def test_size_fallback(self) -> None:
        with patch("lintop.terminal.os.get_terminal_size", side_effect=OSError):
            assert TerminalSession(_tty(0), _tty(1)).size() == DEFAULT_SIZE
