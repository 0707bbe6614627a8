"""
Shared fakes for the session engine tests.

- A scripted transport whose handles replay a fixed list of stream events
- A scripted terminal that feeds batches of input events and records frames
"""

import pytest

from chatterm.terminal import KeyEvent


class ScriptedHandle:
    """Stream handle that hands out one queued event per poll."""

    def __init__(self, events=None):
        self.events = list(events or [])
        self.cancelled = False

    def poll(self):
        if self.cancelled or not self.events:
            return None
        return self.events.pop(0)

    def cancel(self):
        self.cancelled = True


class ScriptedTransport:
    """Transport that records every context it is sent."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.contexts = []
        self.handles = []

    def open_stream(self, context):
        self.contexts.append(list(context))
        handle = ScriptedHandle(self.scripts.pop(0) if self.scripts else [])
        self.handles.append(handle)
        return handle


class ScriptedTerminal:
    """Terminal that replays input batches, then presses Esc."""

    def __init__(self, batches, size=(12, 40)):
        self.batches = list(batches)
        self.rows_cols = size
        self.frames = []

    def size(self):
        return self.rows_cols

    def read_events(self, timeout):
        if self.batches:
            return self.batches.pop(0)
        return [KeyEvent("escape")]

    def draw(self, lines, cursor):
        self.frames.append(([line.plain for line in lines], cursor))


def typed(text):
    """Key events for typing `text` one character at a time."""
    return [KeyEvent("char", ch) for ch in text]


@pytest.fixture
def transport_factory():
    return ScriptedTransport


@pytest.fixture
def terminal_factory():
    return ScriptedTerminal


@pytest.fixture
def typing():
    return typed
