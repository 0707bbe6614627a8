"""The single-threaded loop that runs an interactive session."""

from __future__ import annotations

import time
from typing import Protocol

from rich.spinner import Spinner
from rich.text import Text

from chatterm.config import Config
from chatterm.controller import ConversationController, ConversationState
from chatterm.editor import InputEditor
from chatterm.errors import ConversationBusy
from chatterm.terminal import KeyEvent, ResizeEvent, ScrollEvent, TerminalEvent
from chatterm.viewport import Viewport

PROMPT_PREFIX = "> "
KEY_HINTS = "Esc quit · ^C cancel · ^S save · PgUp/PgDn scroll"
# Rows below the transcript: the status line and the prompt line
CHROME_ROWS = 2

STATE_LABELS = {
    ConversationState.IDLE: "ready",
    ConversationState.AWAITING_FIRST_CHUNK: "waiting",
    ConversationState.STREAMING: "streaming",
    ConversationState.ERROR: "error",
}


class Terminal(Protocol):
    def size(self) -> tuple[int, int]: ...

    def read_events(self, timeout: float) -> list[TerminalEvent]: ...

    def draw(self, lines: list[Text], cursor: tuple[int, int]) -> None: ...


class EventLoop:
    """
    Multiplexes terminal input, the active response stream, and redraw ticks.

    Each pass waits for terminal input for at most one tick, dispatches what
    arrived, drains whatever the stream has ready, and redraws if anything changed.
    While a reply is in flight every tick redraws, which animates the spinner.
    """

    IDLE_TIMEOUT = 0.5

    def __init__(
        self,
        terminal: Terminal,
        controller: ConversationController,
        config: Config,
        editor: InputEditor | None = None,
    ):
        self.terminal = terminal
        self.controller = controller
        self.config = config
        self.editor = editor or InputEditor()
        self.viewport = Viewport()
        self.spinner = Spinner("dots", style="bold medium_orchid")
        self.size: tuple[int, int] = (24, 80)
        self.notice: str = ""
        self.running = False
        self.dirty = True
        self.controller.on_notice = self.set_notice

    @property
    def turns(self):
        return self.controller.store.turns

    def set_notice(self, message: str):
        self.notice = message
        self.dirty = True

    # <~~LOOP~~>
    def run(self):
        """Runs until the user quits, then closes out the session on disk."""
        self.resize(*self.terminal.size())
        self.running = True
        while self.running:
            self.step()
        self.controller.close()

    def step(self):
        """One pass of the loop."""
        busy = self.controller.busy
        timeout = self.config.tick_interval if busy else self.IDLE_TIMEOUT
        for event in self.terminal.read_events(timeout):
            self.dispatch(event)
        if self.controller.pump():
            self.viewport.sync(self.turns)
            self.dirty = True
        if self.dirty or busy:
            self.redraw()

    # <~~EVENTS~~>
    def dispatch(self, event: TerminalEvent):
        self.dirty = True
        if isinstance(event, ResizeEvent):
            self.resize(event.rows, event.cols)
        elif isinstance(event, ScrollEvent):
            self.viewport.scroll(event.delta * self.config.scroll_step)
        elif isinstance(event, KeyEvent):
            self.handle_key(event)

    def resize(self, rows: int, cols: int):
        self.size = (rows, cols)
        self.viewport.resize(max(0, rows - CHROME_ROWS), cols, self.turns)

    def handle_key(self, event: KeyEvent):
        editor = self.editor
        key = event.key
        if key in ("char", "paste"):
            editor.insert(event.data)
        elif key == "enter":
            self.submit()
        elif key == "backspace":
            editor.delete_backward()
        elif key == "delete":
            editor.delete_forward()
        elif key == "left":
            editor.move_cursor(-1)
        elif key == "right":
            editor.move_cursor(1)
        elif key == "home":
            editor.home()
        elif key == "end":
            editor.end()
        elif key == "up":
            editor.history_back()
        elif key == "down":
            editor.history_forward()
        elif key == "pageup":
            self.viewport.scroll(self._page())
        elif key == "pagedown":
            self.viewport.scroll(-self._page())
        elif key == "c-c":
            if self.controller.cancel():
                self.viewport.sync(self.turns)
            else:
                editor.clear()
        elif key == "c-s":
            if self.controller.persist():
                path = self.controller.sessions.active_session
                self.set_notice(f"Saved session to {path}")
        elif key in ("escape", "c-d"):
            self.running = False

    def _page(self) -> int:
        return max(1, self.viewport.state.rows // 2)

    def submit(self):
        """Hands the draft to the controller. A busy controller leaves the draft alone."""
        prompt = self.editor.draft
        if not prompt.strip():
            return
        try:
            self.controller.submit(prompt)
        except ConversationBusy as e:
            self.set_notice(str(e))
            return
        self.editor.take()
        self.notice = ""
        self.viewport.scroll_to_bottom()
        self.viewport.sync(self.turns)

    # <~~DRAWING~~>
    def status_line(self, cols: int) -> Text:
        state = self.controller.state
        # ERROR passes within one pump; the last failure shows until the next submit
        if state is ConversationState.IDLE and self.controller.last_error:
            state = ConversationState.ERROR
        status = Text(style="reverse")
        if self.controller.busy:
            status.append(self.spinner.render(time.monotonic()))
            status.append(" ")
        status.append(f" {self.config.model} ", style="bold")
        status.append(f"│ {STATE_LABELS[state]} ")
        if not self.viewport.pinned:
            status.append(f"│ ↑{self.viewport.scroll_offset} ", style="yellow")
        if self.notice:
            style = "red" if self.controller.last_error else ""
            status.append(f"│ {self.notice}", style=style)
        else:
            status.append(f"│ {KEY_HINTS}", style="dim")
        status.truncate(cols, overflow="crop", pad=True)
        return status

    def redraw(self):
        rows, cols = self.size
        if rows <= 0:
            return
        frame = self.viewport.frame(self.turns)
        visible, cursor_col = self.editor.visible(cols - len(PROMPT_PREFIX))
        prompt_line = Text(PROMPT_PREFIX, style="bold green")
        prompt_line.append(visible)
        lines = (frame + [self.status_line(cols), prompt_line])[-rows:]
        self.terminal.draw(lines, (len(lines) - 1, len(PROMPT_PREFIX) + cursor_col))
        self.dirty = False
