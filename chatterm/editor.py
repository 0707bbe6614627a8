"""Editable prompt line: the draft the user is typing before it is submitted."""

from prompt_toolkit.history import InMemoryHistory
from rich.cells import cell_len


class InputEditor:
    """Holds the draft text and cursor, plus recall of earlier prompts"""

    def __init__(self, history: InMemoryHistory | None = None):
        self.text: list[str] = []
        self.cursor_position: int = 0
        self.history = history or InMemoryHistory()
        # Index into the recalled prompts while browsing, None when editing a fresh draft
        self._recall_index: int | None = None
        self._stashed_draft: str = ""

    @property
    def draft(self) -> str:
        return "".join(self.text)

    def _set_draft(self, value: str):
        self.text = list(value)
        self.cursor_position = len(self.text)

    def insert(self, chars: str):
        """Inserts a character, or a pasted run of them, at the cursor."""
        chars = chars.replace("\r", "").replace("\n", " ")
        self.text[self.cursor_position : self.cursor_position] = list(chars)
        self.cursor_position += len(chars)

    def delete_backward(self):
        if self.cursor_position > 0:
            del self.text[self.cursor_position - 1]
            self.cursor_position -= 1

    def delete_forward(self):
        if self.cursor_position < len(self.text):
            del self.text[self.cursor_position]

    def move_cursor(self, delta: int):
        self.cursor_position = min(max(0, self.cursor_position + delta), len(self.text))

    def home(self):
        self.cursor_position = 0

    def end(self):
        self.cursor_position = len(self.text)

    def clear(self):
        self._set_draft("")
        self._recall_index = None

    def take(self) -> str:
        """Returns the draft and clears it. Non-blank drafts are added to history."""
        draft = self.draft
        if draft.strip():
            self.history.append_string(draft)
        self.clear()
        return draft

    def history_back(self):
        """Steps to the previous submitted prompt."""
        # get_strings() is oldest first
        past = self.history.get_strings()
        if not past:
            return
        if self._recall_index is None:
            self._stashed_draft = self.draft
            self._recall_index = len(past)
        if self._recall_index > 0:
            self._recall_index -= 1
            self._set_draft(past[self._recall_index])

    def history_forward(self):
        """Steps toward the newest prompt, then back to the stashed draft."""
        if self._recall_index is None:
            return
        past = self.history.get_strings()
        self._recall_index += 1
        if self._recall_index >= len(past):
            self._recall_index = None
            self._set_draft(self._stashed_draft)
        else:
            self._set_draft(past[self._recall_index])

    def visible(self, width: int) -> tuple[str, int]:
        """
        Slice of the draft that fits in `width` cells, and the cursor column in it.

        The window scrolls horizontally so the cursor is always inside it.
        """
        width = max(1, width)
        text, cursor = self.text, self.cursor_position
        # The cell under the cursor must fit, even past the end of the draft
        used = cell_len(text[cursor]) if cursor < len(text) else 1
        start = cursor
        while start > 0 and used + cell_len(text[start - 1]) <= width:
            start -= 1
            used += cell_len(text[start])

        shown: list[str] = []
        cells = 0
        for ch in text[start:]:
            cells += cell_len(ch)
            if cells > width:
                break
            shown.append(ch)
        return "".join(shown), cell_len("".join(text[start:cursor]))
