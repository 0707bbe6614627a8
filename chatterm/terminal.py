"""
Terminal adapter: raw keyboard input, mouse wheel and resize in; styled frames out.

Built on prompt_toolkit's low level input and output objects rather than its
Application, so the session engine keeps ownership of the event loop.
"""

from __future__ import annotations

import re
import select
from dataclasses import dataclass
from typing import Union

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.key_binding.key_processor import KeyPress
from prompt_toolkit.keys import Keys
from prompt_toolkit.output import Output, create_output
from rich.color import ColorSystem
from rich.text import Text

from chatterm.globals import CONSOLE


@dataclass(frozen=True)
class KeyEvent:
    key: str
    data: str = ""


@dataclass(frozen=True)
class ScrollEvent:
    # Wheel notches, positive toward older text
    delta: int


@dataclass(frozen=True)
class ResizeEvent:
    rows: int
    cols: int


TerminalEvent = Union[KeyEvent, ScrollEvent, ResizeEvent]

KEY_NAMES = {
    Keys.ControlM: "enter",
    Keys.ControlJ: "enter",
    Keys.ControlH: "backspace",
    Keys.Delete: "delete",
    Keys.Left: "left",
    Keys.Right: "right",
    Keys.Up: "up",
    Keys.Down: "down",
    Keys.Home: "home",
    Keys.End: "end",
    Keys.PageUp: "pageup",
    Keys.PageDown: "pagedown",
    Keys.Escape: "escape",
    Keys.ControlC: "c-c",
    Keys.ControlD: "c-d",
    Keys.ControlS: "c-s",
    Keys.ControlA: "home",
    Keys.ControlE: "end",
}

_SGR_MOUSE = re.compile(r"^\x1b\[<(\d+);\d+;\d+[mM]$")
_URXVT_MOUSE = re.compile(r"^\x1b\[(\d+);\d+;\d+M$")


def parse_wheel(data: str) -> int:
    """Wheel direction of a VT100 mouse report: 1 up, -1 down, 0 for anything else."""
    match = _SGR_MOUSE.match(data)
    if match:
        code = int(match.group(1))
    else:
        match = _URXVT_MOUSE.match(data)
        if match:
            code = int(match.group(1)) - 32
        elif data.startswith("\x1b[M") and len(data) >= 6:
            code = ord(data[3]) - 32
        else:
            return 0
    if not code & 64:
        return 0
    # 64 and 65 are vertical wheel; 66 and 67 are horizontal and ignored
    return {0: 1, 1: -1}.get(code & 3, 0)


def translate(press: KeyPress) -> TerminalEvent | None:
    """Converts one prompt_toolkit key press into a terminal event."""
    key = press.key
    if key == Keys.Vt100MouseEvent:
        direction = parse_wheel(press.data)
        return ScrollEvent(direction) if direction else None
    if key == Keys.ScrollUp:
        return ScrollEvent(1)
    if key == Keys.ScrollDown:
        return ScrollEvent(-1)
    if key == Keys.BracketedPaste:
        return KeyEvent("paste", press.data)
    if key in KEY_NAMES:
        return KeyEvent(KEY_NAMES[key])
    if not isinstance(key, Keys) and key.isprintable():
        return KeyEvent("char", key)
    return None


class PromptToolkitTerminal:
    """Full-screen terminal session: alternate screen, raw mode, mouse reporting"""

    def __init__(self, input: Input | None = None, output: Output | None = None):
        self.input = input or create_input()
        self.output = output or create_output()
        self._raw_mode = None
        self._size: tuple[int, int] | None = None

    def __enter__(self) -> PromptToolkitTerminal:
        self._raw_mode = self.input.raw_mode()
        self._raw_mode.__enter__()
        out = self.output
        out.enter_alternate_screen()
        out.enable_mouse_support()
        out.enable_bracketed_paste()
        out.erase_screen()
        out.flush()
        return self

    def __exit__(self, exc_type, exc, tb):
        out = self.output
        out.disable_bracketed_paste()
        out.disable_mouse_support()
        out.reset_attributes()
        out.quit_alternate_screen()
        out.show_cursor()
        out.flush()
        if self._raw_mode is not None:
            self._raw_mode.__exit__(exc_type, exc, tb)
            self._raw_mode = None

    def size(self) -> tuple[int, int]:
        size = self.output.get_size()
        return size.rows, size.columns

    def read_events(self, timeout: float) -> list[TerminalEvent]:
        """
        Waits up to `timeout` seconds for input, then returns everything pending.

        This is the loop's only suspension point. A resize shows up as a
        ResizeEvent the first time the new size is seen.
        """
        ready, _, _ = select.select([self.input.fileno()], [], [], timeout)
        # A lone Esc stays buffered by the parser until input goes quiet
        presses = self.input.read_keys() if ready else self.input.flush_keys()

        events: list[TerminalEvent] = []
        size = self.size()
        if size != self._size:
            self._size = size
            events.append(ResizeEvent(*size))
        for press in presses:
            event = translate(press)
            if event is not None:
                events.append(event)
        return events

    def _ansi(self, line: Text) -> str:
        return "".join(
            segment.style.render(segment.text, color_system=ColorSystem.STANDARD)
            if segment.style
            else segment.text
            for segment in line.render(CONSOLE)
        )

    def draw(self, lines: list[Text], cursor: tuple[int, int]):
        """Paints one full frame, then parks the cursor at (row, col), 0-based."""
        out = self.output
        out.hide_cursor()
        for row, line in enumerate(lines):
            out.cursor_goto(row + 1, 1)
            out.write_raw(self._ansi(line))
            out.erase_end_of_line()
        out.cursor_goto(cursor[0] + 1, cursor[1] + 1)
        out.show_cursor()
        out.flush()
