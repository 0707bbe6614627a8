"""
Transport: sends the conversation to the model and hands back the reply in pieces.

The session engine only sees `open_stream(context) -> handle` and `handle.poll()`,
which returns `Chunk`, `End`, `StreamError`, or None when nothing is ready yet.
The OpenAI implementation reads the HTTP stream on a private reader thread and
queues the events, so `poll()` never blocks the caller.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, Union

import openai
import tiktoken
from openai import OpenAI

from chatterm.errors import ErrorKind
from chatterm.globals import log_exception
from chatterm.transcript import Role, Status, Turn


@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class StreamError:
    kind: ErrorKind
    message: str


StreamEvent = Union[Chunk, End, StreamError]


class StreamHandle(Protocol):
    def poll(self) -> StreamEvent | None: ...

    def cancel(self) -> None: ...


class Transport(Protocol):
    def open_stream(self, context: Sequence[Turn]) -> StreamHandle: ...


def classify_exception(exc: BaseException) -> ErrorKind:
    """Maps an SDK exception onto the error kinds shown to the user."""
    # APITimeoutError subclasses APIConnectionError, so it is checked first
    if isinstance(exc, openai.APITimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return ErrorKind.NETWORK_ERROR
    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.RATE_LIMIT
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorKind.AUTH
    if isinstance(exc, openai.NotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, openai.BadRequestError):
        return ErrorKind.BAD_REQUEST
    if isinstance(exc, openai.InternalServerError):
        return ErrorKind.SERVER_ERROR

    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        if status_code in (401, 403):
            return ErrorKind.AUTH
        if status_code == 404:
            return ErrorKind.NOT_FOUND
        if status_code == 429:
            return ErrorKind.RATE_LIMIT
        if 400 <= status_code <= 499:
            return ErrorKind.BAD_REQUEST
        if 500 <= status_code <= 599:
            return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def build_messages(
    turns: Sequence[Turn], max_tokens: int, count_tokens: Callable[[str], int]
) -> list[dict]:
    """
    Converts turns into chat messages that fit the token budget.

    Only complete turns are sent. Back-to-back user turns (left behind by a failed
    reply) are merged. A leading system turn is always kept; the rest is filled
    newest first until the budget runs out, and the newest message always goes.
    """
    messages: list[dict] = []
    for turn in turns:
        if turn.status is not Status.COMPLETE:
            continue
        if (
            messages
            and turn.role is Role.USER
            and messages[-1]["role"] == Role.USER.value
        ):
            messages[-1]["content"] += f"\n\n{turn.content}"
        else:
            messages.append({"role": turn.role.value, "content": turn.content})

    head = messages[:1] if messages and messages[0]["role"] == Role.SYSTEM.value else []
    used = sum(count_tokens(m["content"]) for m in head)
    kept: list[dict] = []
    for msg in reversed(messages[len(head) :]):
        cost = count_tokens(msg["content"])
        if kept and used + cost > max_tokens:
            break
        kept.append(msg)
        used += cost
    return head + kept[::-1]


class OpenAIStreamHandle:
    """Poll-based view of one streaming chat completion"""

    def __init__(
        self,
        client: OpenAI,
        model: str,
        messages: list[dict],
        first_chunk_timeout: float | None = None,
        idle_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.model = model
        self.messages = messages
        self.first_chunk_timeout = first_chunk_timeout
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._events: queue.Queue[StreamEvent] = queue.Queue()
        self._stopped = threading.Event()
        self._stream = None
        self._done = False
        self._started = clock()
        self._last_event: float | None = None
        self._reader = threading.Thread(
            target=self._read, name="chatterm-stream-reader", daemon=True
        )
        self._reader.start()

    def _read(self):
        """Reader thread: pulls chunks off the HTTP stream and queues them."""
        try:
            self._stream = self.client.chat.completions.create(
                model=self.model,
                messages=self.messages,
                stream=True,
            )
            for chunk in self._stream:
                if self._stopped.is_set():
                    return
                if not chunk.choices:
                    continue
                text = getattr(chunk.choices[0].delta, "content", "") or ""
                if text:
                    self._events.put(Chunk(text))
            if not self._stopped.is_set():
                self._events.put(End())
        except Exception as e:
            # Closing the stream on cancel or timeout surfaces here as well
            if self._stopped.is_set():
                return
            log_exception(e, "Error while streaming a response")
            message = str(e) or e.__class__.__name__
            self._events.put(StreamError(classify_exception(e), message))
        finally:
            # A cancel can land before the stream exists
            if self._stopped.is_set():
                self._close_stream()

    def poll(self) -> StreamEvent | None:
        """Next event if one is ready, without waiting."""
        if self._done:
            return None
        try:
            event = self._events.get_nowait()
        except queue.Empty:
            return self._check_stall()
        self._last_event = self._clock()
        if isinstance(event, (End, StreamError)):
            self._done = True
        return event

    def _check_stall(self) -> StreamError | None:
        if self._last_event is None:
            limit, since = self.first_chunk_timeout, self._started
        else:
            limit, since = self.idle_timeout, self._last_event
        if limit is None or self._clock() - since < limit:
            return None
        self._done = True
        self._abort()
        return StreamError(
            ErrorKind.TIMEOUT, f"The model sent nothing for {limit:g} seconds."
        )

    def cancel(self):
        self._done = True
        self._abort()

    def _abort(self):
        self._stopped.set()
        self._close_stream()

    def _close_stream(self):
        stream = self._stream
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            log_exception(e, "Could not close the response stream")


class OpenAITransport:
    """Transport backed by any OpenAI-compatible chat completions endpoint"""

    def __init__(self, config, api_key: str, client: OpenAI | None = None):
        self.config = config
        self.client = client or OpenAI(
            base_url=config.endpoint,
            api_key=api_key,
            timeout=config.request_timeout,
        )
        try:
            self.encoder = tiktoken.get_encoding("o200k_base")
        except Exception as e:
            log_exception(e, "Token encoder unavailable, context budgeting disabled")
            self.encoder = None

    def encode(self, text: str) -> int:
        """Converts a string to a token count"""
        if self.encoder is None:
            return 0
        try:
            count = len(self.encoder.encode(text))
        except Exception:
            count = 0
        return count

    def open_stream(self, context: Sequence[Turn]) -> OpenAIStreamHandle:
        messages = build_messages(context, self.config.max_tokens, self.encode)
        return OpenAIStreamHandle(
            self.client,
            self.config.model,
            messages,
            first_chunk_timeout=self.config.first_chunk_timeout,
            idle_timeout=self.config.idle_timeout,
        )
