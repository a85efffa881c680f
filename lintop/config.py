"""Configuration for lintop.

There is no configuration file: settings are the defaults below with
command-line overrides merged on top.
"""

from __future__ import annotations

import sys
from typing import Any, NoReturn

from lintop.gpu import MIN_PROBE_INTERVAL

DEFAULT_CONFIG: dict[str, Any] = {
    "sample_interval": 0.5,
    "render_fps": 30,
    "input_timeout": 0.01,
    "gpu_probe_interval": MIN_PROBE_INTERVAL,
    "gpu_tool_timeout": 1.0,
    "nvidia_smi": "nvidia-smi",
    "proc_root": "/proc",
    "sys_root": "/sys",
    "filter_max_len": 63,
}

MAX_FPS = 60


def _fail(message: str) -> NoReturn:
    print(f"lintop: {message}", file=sys.stderr)
    raise SystemExit(1)


def _validate(cfg: dict[str, Any]) -> None:
    unknown = sorted(set(cfg) - set(DEFAULT_CONFIG))
    if unknown:
        _fail(f"unknown setting(s): {', '.join(unknown)}")

    for key in ("sample_interval", "input_timeout", "gpu_tool_timeout"):
        value = cfg[key]
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            _fail(f"{key} must be a positive number, got {value!r}")

    fps = cfg["render_fps"]
    if not isinstance(fps, int) or isinstance(fps, bool) or not 1 <= fps <= MAX_FPS:
        _fail(f"render_fps must be an integer between 1 and {MAX_FPS}, got {fps!r}")

    max_len = cfg["filter_max_len"]
    if not isinstance(max_len, int) or isinstance(max_len, bool) or max_len < 1:
        _fail(f"filter_max_len must be a positive integer, got {max_len!r}")

    for key in ("nvidia_smi", "proc_root", "sys_root"):
        if not isinstance(cfg[key], str) or not cfg[key]:
            _fail(f"{key} must be a non-empty string")


def load_config(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the defaults merged with *overrides*.

    ``None`` values in *overrides* mean "not given" and are skipped, so an
    argparse namespace can be passed through ``vars()`` directly. The GPU
    probe interval is raised to its floor rather than rejected.

    Raises:
        SystemExit: If a setting is unknown or out of range.
    """
    given = {k: v for k, v in (overrides or {}).items() if v is not None}
    cfg = {**DEFAULT_CONFIG, **given}
    _validate(cfg)
    interval = cfg["gpu_probe_interval"]
    if not isinstance(interval, (int, float)) or isinstance(interval, bool):
        _fail(f"gpu_probe_interval must be a number, got {interval!r}")
    cfg["gpu_probe_interval"] = max(MIN_PROBE_INTERVAL, float(interval))
    return cfg
