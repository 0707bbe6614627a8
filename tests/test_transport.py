"""
Transport tests: message building, error mapping, and the OpenAI stream handle.

The OpenAI client is replaced by a small fake, so no network is touched.
"""

import threading
import time
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import openai

from chatterm.config import Config
from chatterm.errors import ErrorKind
from chatterm.transcript import Role, Status, Turn
from chatterm.transport import (
    Chunk,
    End,
    OpenAIStreamHandle,
    OpenAITransport,
    StreamError,
    build_messages,
    classify_exception,
)


def word_count(text):
    return len(text.split())


def fake_chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeStream:
    def __init__(self, texts, hold=None):
        self.texts = texts
        self.hold = hold
        self.closed = False

    def __iter__(self):
        yield SimpleNamespace(choices=[])
        for text in self.texts:
            yield fake_chunk(text)
        if self.hold is not None:
            self.hold.wait(2)

    def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, texts=(), error=None, hold=None, gate=None):
        self.stream = FakeStream(list(texts), hold)
        self.error = error
        self.gate = gate
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.gate is not None:
            self.gate.wait(2)
        if self.error is not None:
            raise self.error
        return self.stream


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def drain(handle, timeout=2.0):
    """Polls until the handle ends, returning every event seen."""
    events = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = handle.poll()
        if event is None:
            time.sleep(0.005)
            continue
        events.append(event)
        if isinstance(event, (End, StreamError)):
            break
    return events


# 1. Message building


def test_messages_skip_failed_and_streaming_turns():
    turns = [
        Turn(Role.SYSTEM, "Be brief."),
        Turn(Role.USER, "Hello"),
        Turn(Role.ASSISTANT, "[error: timeout] The request timed out.", Status.FAILED),
        Turn(Role.USER, "Hello?"),
        Turn(Role.ASSISTANT, "", Status.STREAMING),
    ]
    assert build_messages(turns, 1000, word_count) == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hello\n\nHello?"},
    ]


def test_budget_keeps_system_and_newest_messages():
    turns = [
        Turn(Role.SYSTEM, "sys"),
        Turn(Role.USER, "one two three"),
        Turn(Role.ASSISTANT, "four five six"),
        Turn(Role.USER, "seven eight"),
    ]
    messages = build_messages(turns, 6, word_count)
    assert [m["content"] for m in messages] == ["sys", "four five six", "seven eight"]


def test_newest_message_always_sent():
    turns = [Turn(Role.USER, "a very long prompt that blows the budget")]
    assert len(build_messages(turns, 1, word_count)) == 1


# 2. Error mapping


def test_classify_sdk_exceptions():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    assert classify_exception(openai.APITimeoutError(request=request)) is ErrorKind.TIMEOUT
    assert (
        classify_exception(openai.APIConnectionError(request=request))
        is ErrorKind.NETWORK_ERROR
    )
    limited = openai.RateLimitError(
        "slow down", response=httpx.Response(429, request=request), body=None
    )
    assert classify_exception(limited) is ErrorKind.RATE_LIMIT
    denied = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=request), body=None
    )
    assert classify_exception(denied) is ErrorKind.AUTH
    assert classify_exception(ValueError("?")) is ErrorKind.UNKNOWN


def test_classify_by_status_code():
    err = RuntimeError("gateway")
    err.status_code = 502
    assert classify_exception(err) is ErrorKind.SERVER_ERROR


# 3. Stream handle


def test_handle_yields_chunks_in_order_then_end():
    completions = FakeCompletions(["Hi", " there", "!"])
    handle = OpenAIStreamHandle(fake_client(completions), "gpt-4o-mini", [])

    events = drain(handle)

    assert events == [Chunk("Hi"), Chunk(" there"), Chunk("!"), End()]
    assert completions.calls[0]["stream"] is True
    assert completions.calls[0]["model"] == "gpt-4o-mini"
    assert handle.poll() is None


@patch("chatterm.transport.log_exception")
def test_handle_reports_sdk_errors(mock_log):
    request = httpx.Request("POST", "https://example.invalid")
    completions = FakeCompletions(error=openai.APITimeoutError(request=request))
    handle = OpenAIStreamHandle(fake_client(completions), "m", [])

    events = drain(handle)

    assert len(events) == 1
    assert events[0].kind is ErrorKind.TIMEOUT
    mock_log.assert_called_once()


def test_first_chunk_timeout():
    now = [0.0]
    gate = threading.Event()
    handle = OpenAIStreamHandle(
        fake_client(FakeCompletions(["late"], gate=gate)),
        "m",
        [],
        first_chunk_timeout=5,
        clock=lambda: now[0],
    )
    assert handle.poll() is None

    now[0] = 5.0
    event = handle.poll()
    gate.set()

    assert event.kind is ErrorKind.TIMEOUT
    # Nothing after the timeout, even if the late chunk shows up
    time.sleep(0.05)
    assert handle.poll() is None


def test_idle_timeout_closes_stream():
    now = [0.0]
    hold = threading.Event()
    completions = FakeCompletions(["Hi"], hold=hold)
    handle = OpenAIStreamHandle(
        fake_client(completions), "m", [], idle_timeout=30, clock=lambda: now[0]
    )
    assert drain_until_chunk(handle) == Chunk("Hi")

    now[0] = 31.0
    event = handle.poll()
    hold.set()

    assert event.kind is ErrorKind.TIMEOUT
    assert completions.stream.closed


def drain_until_chunk(handle, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = handle.poll()
        if event is not None:
            return event
        time.sleep(0.005)
    return None


def test_cancel_stops_events():
    hold = threading.Event()
    completions = FakeCompletions(["Hi"], hold=hold)
    handle = OpenAIStreamHandle(fake_client(completions), "m", [])
    assert drain_until_chunk(handle) == Chunk("Hi")

    handle.cancel()
    hold.set()

    assert completions.stream.closed
    time.sleep(0.05)
    assert handle.poll() is None


# 4. Transport


@patch("chatterm.transport.tiktoken.get_encoding")
def test_transport_opens_budgeted_stream(mock_encoding):
    mock_encoding.return_value = SimpleNamespace(encode=lambda text: text.split())
    config = Config()
    config.model = "test-model"
    config.max_tokens = 3
    completions = FakeCompletions(["ok"])
    transport = OpenAITransport(config, "fake-key", client=fake_client(completions))

    handle = transport.open_stream(
        [
            Turn(Role.USER, "old words here"),
            Turn(Role.ASSISTANT, "old reply"),
            Turn(Role.USER, "new prompt"),
            Turn(Role.ASSISTANT, "", Status.STREAMING),
        ]
    )
    drain(handle)

    sent = completions.calls[0]
    assert sent["model"] == "test-model"
    assert sent["messages"] == [{"role": "user", "content": "new prompt"}]


@patch("chatterm.transport.log_exception")
@patch("chatterm.transport.tiktoken.get_encoding", side_effect=OSError("offline"))
def test_transport_without_encoder_counts_zero(mock_encoding, mock_log):
    transport = OpenAITransport(Config(), "fake-key", client=fake_client(FakeCompletions()))
    assert transport.encoder is None
    assert transport.encode("anything at all") == 0
    mock_log.assert_called_once()


def test_cancel_before_stream_opens_still_closes_it():
    gate = threading.Event()
    completions = FakeCompletions(["late"], gate=gate)
    handle = OpenAIStreamHandle(fake_client(completions), "m", [])

    handle.cancel()
    gate.set()
    handle._reader.join(2)

    assert completions.stream.closed
    assert handle.poll() is None
