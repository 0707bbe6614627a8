"""Word wrapping, scroll clamping and pinning of the transcript viewport."""

import random

from rich.cells import cell_len

from chatterm.transcript import Role, Status, Turn
from chatterm.viewport import (
    STREAMING_CURSOR,
    Viewport,
    ViewportState,
    layout,
    render,
    wrap_turn,
)


def numbered_turns(count):
    return [Turn(Role.USER, f"line {i}") for i in range(count)]


# 1. Rendering


def test_wrap_prefixes_role_and_indents_continuations():
    turn = Turn(Role.USER, "one two three four five six")
    lines = [line.plain for line in wrap_turn(turn, 20)]
    assert lines == ["You: one two three", "     four five six"]


def test_role_markers():
    turns = [
        Turn(Role.SYSTEM, "rules"),
        Turn(Role.USER, "hi"),
        Turn(Role.ASSISTANT, "hello"),
    ]
    assert [line.plain for line in layout(turns, 40)] == [
        "Sys: rules",
        "You: hi",
        "Bot: hello",
    ]


def test_paragraphs_and_blank_lines_survive():
    turn = Turn(Role.ASSISTANT, "first\n\nsecond")
    assert [line.plain for line in wrap_turn(turn, 40)] == [
        "Bot: first",
        "     ",
        "     second",
    ]


def test_long_words_are_broken_to_width():
    turn = Turn(Role.ASSISTANT, "x" * 30)
    lines = [line.plain for line in wrap_turn(turn, 15)]
    assert lines == ["Bot: " + "x" * 10, "     " + "x" * 10, "     " + "x" * 10]


def test_streaming_turn_shows_cursor():
    turn = Turn(Role.ASSISTANT, "Hi", Status.STREAMING)
    assert wrap_turn(turn, 40)[0].plain == f"Bot: Hi{STREAMING_CURSOR}"


def test_failed_turn_is_marked_red():
    turn = Turn(Role.ASSISTANT, "[error: timeout] The request timed out.", Status.FAILED)
    line = wrap_turn(turn, 80)[0]
    assert "[error: timeout]" in line.plain
    assert any("red" in str(span.style) for span in line.spans)


def test_frame_has_exact_size():
    state = ViewportState(terminal_size=(5, 12))
    frame = render([Turn(Role.USER, "a much longer message than fits")], state)
    assert len(frame) == 5
    assert all(len(line.plain) == 12 for line in frame)


def test_short_transcript_starts_at_top():
    frame = render([Turn(Role.USER, "hi")], ViewportState(terminal_size=(3, 10)))
    assert [line.plain for line in frame] == ["You: hi   ", " " * 10, " " * 10]


def test_offset_zero_shows_newest_lines():
    frame = render(numbered_turns(10), ViewportState(0, (3, 20)))
    assert [line.plain.strip() for line in frame] == [
        "You: line 7",
        "You: line 8",
        "You: line 9",
    ]


def test_offset_scrolls_back_and_clamps():
    turns = numbered_turns(10)
    frame = render(turns, ViewportState(2, (3, 20)))
    assert frame[0].plain.strip() == "You: line 5"
    frame = render(turns, ViewportState(500, (3, 20)))
    assert frame[0].plain.strip() == "You: line 0"


# 2. Scrolling


def test_scroll_offset_stays_in_range():
    rng = random.Random(7)
    for _ in range(50):
        total = rng.randint(0, 40)
        rows = rng.randint(1, 15)
        viewport = Viewport(rows, 30)
        turns = numbered_turns(total)
        viewport.sync(turns)
        for _ in range(30):
            viewport.scroll(rng.randint(-20, 20))
            assert 0 <= viewport.scroll_offset <= max(0, total - rows)


def test_scroll_ignored_when_transcript_fits():
    viewport = Viewport(10, 30)
    viewport.sync(numbered_turns(3))
    viewport.scroll(5)
    assert viewport.scroll_offset == 0
    assert viewport.pinned


def test_pinned_viewport_follows_new_content():
    viewport = Viewport(3, 30)
    turns = numbered_turns(5) + [Turn(Role.ASSISTANT, "", Status.STREAMING)]
    viewport.sync(turns)
    turns[-1] = Turn(Role.ASSISTANT, "a\nb\nc\nd", Status.STREAMING)
    viewport.sync(turns)
    turns[-1] = Turn(Role.ASSISTANT, "a\nb\nc\nd", Status.COMPLETE)
    viewport.sync(turns)

    assert viewport.scroll_offset == 0
    assert viewport.frame(turns)[-1].plain.strip() == "d"


def test_unpinned_viewport_holds_its_place():
    viewport = Viewport(3, 30)
    turns = numbered_turns(10)
    viewport.sync(turns)
    viewport.scroll(4)
    before = [line.plain for line in viewport.frame(turns)]

    turns.append(Turn(Role.ASSISTANT, "new\nreply"))
    viewport.sync(turns)

    assert viewport.scroll_offset == 6
    assert [line.plain for line in viewport.frame(turns)] == before


def test_resize_reflows_and_clamps():
    viewport = Viewport(3, 80)
    turns = [Turn(Role.ASSISTANT, "word " * 30)]
    viewport.sync(turns)
    assert viewport.total_lines == 2

    viewport.resize(3, 20, turns)
    assert viewport.total_lines == 10
    viewport.scroll(100)
    assert viewport.scroll_offset == 7

    viewport.resize(20, 20, turns)
    assert viewport.scroll_offset == 0


def test_wide_characters_wrap_by_cell_width():
    content = "你好世界" * 10
    lines = [line.plain for line in wrap_turn(Turn(Role.ASSISTANT, content), 25)]

    assert "".join(line[5:] for line in lines) == content
    assert all(cell_len(line) <= 25 for line in lines)
    assert len(lines) == 2
