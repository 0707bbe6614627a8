"""Maps the transcript and a scroll position onto the rows of the terminal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from rich.text import Text

from chatterm.globals import CONSOLE
from chatterm.transcript import Role, Status, Turn

# Role markers are all MARKER_WIDTH cells wide, continuation lines are indented to match
MARKER_WIDTH = 5
ROLE_MARKERS = {
    Role.USER: ("You: ", "bold blue"),
    Role.ASSISTANT: ("Bot: ", "bold green"),
    Role.SYSTEM: ("Sys: ", "bold yellow"),
}
ROLE_TEXT_STYLES = {
    Role.USER: "default",
    Role.ASSISTANT: "default",
    Role.SYSTEM: "dim italic",
}
FAILED_MARKER_STYLE = "bold red"
FAILED_TEXT_STYLE = "red"
STREAMING_CURSOR = "▌"

Frame = list[Text]


@dataclass
class ViewportState:
    scroll_offset: int = 0
    terminal_size: tuple[int, int] = (24, 80)

    @property
    def rows(self) -> int:
        return max(0, self.terminal_size[0])

    @property
    def cols(self) -> int:
        return max(1, self.terminal_size[1])


def wrap_turn(turn: Turn, cols: int) -> list[Text]:
    """Word-wraps one turn to the given width, prefixing its role marker."""
    marker, marker_style = ROLE_MARKERS[turn.role]
    text_style = ROLE_TEXT_STYLES[turn.role]
    if turn.status is Status.FAILED:
        marker_style, text_style = FAILED_MARKER_STYLE, FAILED_TEXT_STYLE

    body = turn.content
    if turn.status is Status.STREAMING:
        body += STREAMING_CURSOR

    # Wrapped by terminal cells, so wide characters count double
    width = max(1, cols - MARKER_WIDTH)
    pieces: list[Text] = []
    for paragraph in body.split("\n"):
        if not paragraph:
            pieces.append(Text(style=text_style))
            continue
        for piece in Text(paragraph, style=text_style).wrap(CONSOLE, width):
            piece.rstrip()
            pieces.append(piece)

    lines = []
    for i, piece in enumerate(pieces):
        if i == 0:
            line = Text(marker, style=marker_style)
        else:
            line = Text(" " * MARKER_WIDTH)
        line.append(piece)
        line.truncate(cols, overflow="crop")
        lines.append(line)
    return lines


def layout(turns: Sequence[Turn], cols: int) -> list[Text]:
    """Every wrapped line of the transcript, oldest first."""
    lines: list[Text] = []
    for turn in turns:
        lines.extend(wrap_turn(turn, cols))
    return lines


def clamp_offset(offset: int, total_lines: int, rows: int) -> int:
    return min(max(0, offset), max(0, total_lines - rows))


def render(turns: Sequence[Turn], state: ViewportState) -> Frame:
    """
    Builds the visible frame: exactly `rows` lines, each exactly `cols` cells.

    `scroll_offset` counts lines up from the bottom, so 0 shows the newest text.
    A transcript shorter than the viewport is drawn from the top row down.
    """
    rows, cols = state.rows, state.cols
    lines = layout(turns, cols)
    offset = clamp_offset(state.scroll_offset, len(lines), rows)
    end = len(lines) - offset
    visible = lines[max(0, end - rows) : end]
    visible.extend(Text() for _ in range(rows - len(visible)))
    for line in visible:
        line.truncate(cols, overflow="crop", pad=True)
    return visible


class Viewport:
    """Holds the scroll position and keeps it clamped as the transcript changes"""

    def __init__(self, rows: int = 24, cols: int = 80):
        self.state = ViewportState(terminal_size=(rows, cols))
        self.total_lines = 0

    @property
    def scroll_offset(self) -> int:
        return self.state.scroll_offset

    @property
    def pinned(self) -> bool:
        return self.state.scroll_offset == 0

    @property
    def max_offset(self) -> int:
        return max(0, self.total_lines - self.state.rows)

    def _clamp(self):
        self.state.scroll_offset = clamp_offset(
            self.state.scroll_offset, self.total_lines, self.state.rows
        )

    def sync(self, turns: Sequence[Turn]):
        """
        Recounts wrapped lines after a transcript mutation.

        When scrolled up, the offset grows with the new lines so the text in view
        stays put. When pinned the offset stays 0 and new text stays visible.
        """
        total = len(layout(turns, self.state.cols))
        if not self.pinned:
            self.state.scroll_offset += total - self.total_lines
        self.total_lines = total
        self._clamp()

    def resize(self, rows: int, cols: int, turns: Sequence[Turn]):
        self.state.terminal_size = (rows, cols)
        self.total_lines = len(layout(turns, self.state.cols))
        self._clamp()

    def scroll(self, delta: int):
        """Positive deltas scroll toward older text, negative toward the newest."""
        self.state.scroll_offset += delta
        self._clamp()

    def scroll_to_bottom(self):
        self.state.scroll_offset = 0

    def frame(self, turns: Sequence[Turn]) -> Frame:
        return render(turns, self.state)
