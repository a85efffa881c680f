"""Shared fixtures: empty /proc and /sys roots under tmp_path."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture()
def sys_root(tmp_path: Path) -> Path:
    root = tmp_path / "sys"
    root.mkdir()
    return root
