"""Decode raw terminal input bytes into logical key events."""

from __future__ import annotations

import enum
from dataclasses import dataclass

ESC = 0x1B
CTRL_C = 0x03

_ARROWS = {
    ord("A"): "UP",
    ord("B"): "DOWN",
    ord("C"): "RIGHT",
    ord("D"): "LEFT",
}


class KeyKind(enum.Enum):
    QUIT = "quit"
    ESCAPE = "escape"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    BACKSPACE = "backspace"
    ENTER = "enter"
    CHAR = "char"


@dataclass(frozen=True)
class Key:
    kind: KeyKind
    char: str = ""


def _csi_end(data: bytes, start: int) -> int:
    """Index just past the final byte of a CSI sequence whose parameters begin at *start*."""
    for i in range(start, len(data)):
        if data[i] < 0x20:
            # a control byte aborts the sequence and is decoded on its own
            return i
        if 0x40 <= data[i] <= 0x7E:
            return i + 1
    return len(data)


def decode_keys(data: bytes) -> list[Key]:
    """Split one chunk of terminal input into key events.

    A chunk may hold several queued keys. Recognised sequences are Ctrl-C,
    a lone ESC, ``ESC [ A-D`` arrows, Backspace (DEL or BS), Enter (LF or
    CR) and printable ASCII. Other escape sequences (function keys, SS3
    keys, Alt+key) and control bytes are dropped. A control byte never
    belongs to an escape sequence, so Ctrl-C always quits.
    """
    keys: list[Key] = []
    i = 0
    n = len(data)
    while i < n:
        b = data[i]
        if b == CTRL_C:
            keys.append(Key(KeyKind.QUIT))
            i += 1
        elif b == ESC:
            if i + 1 >= n:
                keys.append(Key(KeyKind.ESCAPE))
                i += 1
            elif data[i + 1] == ord("["):
                end = _csi_end(data, i + 2)
                if end == i + 3 and data[i + 2] in _ARROWS:
                    keys.append(Key(KeyKind[_ARROWS[data[i + 2]]]))
                i = end
            elif data[i + 1] == ord("O"):
                if i + 2 < n and data[i + 2] < 0x20:
                    i += 2
                else:
                    i += 3
            elif data[i + 1] < 0x20:
                # Esc followed by Ctrl-C, another Esc or Enter; the next
                # byte is decoded on its own
                keys.append(Key(KeyKind.ESCAPE))
                i += 1
            else:
                # Alt+key
                i += 2
        elif b in (0x7F, 0x08):
            keys.append(Key(KeyKind.BACKSPACE))
            i += 1
        elif b in (0x0A, 0x0D):
            keys.append(Key(KeyKind.ENTER))
            i += 1
        elif 0x20 <= b <= 0x7E:
            keys.append(Key(KeyKind.CHAR, chr(b)))
            i += 1
        else:
            i += 1
    return keys
