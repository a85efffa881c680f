"""UI state and how key events change it."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from lintop.keys import Key, KeyKind
from lintop.sampler import SortMode

FILTER_MAX_LEN = 63


class Effect(enum.Enum):
    """What the event loop has to do after a key was handled."""

    NONE = 0
    RENDER = 1
    RESAMPLE = 2
    QUIT = 3


@dataclass
class UIState:
    selected: int = 0
    sort_mode: SortMode = SortMode.CPU
    filter_text: str = ""
    searching: bool = False
    quit_requested: bool = False


def clamp_selection(ui: UIState, count: int) -> None:
    ui.selected = max(0, min(ui.selected, count - 1))


def _set_sort(ui: UIState, mode: SortMode) -> Effect:
    ui.sort_mode = mode
    return Effect.RESAMPLE


def _move(ui: UIState, step: int, count: int) -> Effect:
    ui.selected += step
    clamp_selection(ui, count)
    return Effect.RENDER


def _handle_search(ui: UIState, key: Key, max_len: int) -> Effect:
    if key.kind in (KeyKind.ESCAPE, KeyKind.ENTER):
        ui.searching = False
        return Effect.RENDER
    if key.kind is KeyKind.BACKSPACE:
        if not ui.filter_text:
            ui.searching = False
            return Effect.RENDER
        ui.filter_text = ui.filter_text[:-1]
        ui.selected = 0
        return Effect.RESAMPLE
    if key.kind is KeyKind.CHAR:
        if len(ui.filter_text) >= max_len:
            return Effect.NONE
        ui.filter_text += key.char
        ui.selected = 0
        return Effect.RESAMPLE
    return Effect.NONE


def _handle_normal(ui: UIState, key: Key, count: int) -> Effect:
    kind = key.kind
    if kind is KeyKind.CHAR:
        kind = {
            "j": KeyKind.DOWN,
            "k": KeyKind.UP,
            "h": KeyKind.LEFT,
            "l": KeyKind.RIGHT,
        }.get(key.char, kind)

    if kind is KeyKind.DOWN:
        return _move(ui, 1, count)
    if kind is KeyKind.UP:
        return _move(ui, -1, count)
    if kind is KeyKind.LEFT:
        return _set_sort(ui, SortMode.CPU)
    if kind is KeyKind.RIGHT:
        return _set_sort(ui, SortMode.MEMORY)
    if kind is KeyKind.ESCAPE:
        if not ui.filter_text:
            return Effect.NONE
        ui.filter_text = ""
        ui.selected = 0
        return Effect.RESAMPLE
    if kind is KeyKind.CHAR:
        if key.char == "q":
            ui.quit_requested = True
            return Effect.QUIT
        if key.char == "/":
            ui.searching = True
            return Effect.RENDER
    return Effect.NONE


def handle_key(
    ui: UIState,
    key: Key,
    count: int,
    filter_max_len: int = FILTER_MAX_LEN,
) -> Effect:
    """Apply *key* to *ui*; *count* is the number of rows currently listed.

    Ctrl-C quits in every mode. While the filter is being edited every other
    key edits it, so ``q`` and ``j`` are plain characters there.
    """
    if key.kind is KeyKind.QUIT:
        ui.quit_requested = True
        return Effect.QUIT
    if ui.searching:
        return _handle_search(ui, key, filter_max_len)
    return _handle_normal(ui, key, count)
