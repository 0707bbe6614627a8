"""
Conversation controller: the turn lifecycle state machine.

    IDLE --submit--> AWAITING_FIRST_CHUNK --chunk--> STREAMING --chunk--> STREAMING
    AWAITING_FIRST_CHUNK | STREAMING --end--> IDLE
    AWAITING_FIRST_CHUNK | STREAMING --error--> ERROR --> IDLE
    AWAITING_FIRST_CHUNK | STREAMING --cancel--> IDLE

The controller is the only writer of the transcript. Transport failures never
escape it; they become a failed assistant turn and the loop carries on.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from chatterm.errors import ConversationBusy, ErrorKind, TransportError
from chatterm.globals import log_exception
from chatterm.session_manager import SessionManager
from chatterm.transcript import Role, Status, TranscriptStore, Turn
from chatterm.transport import Chunk, End, StreamError, StreamHandle, Transport

CANCELLED_MARKER = "[cancelled]"

ERROR_SUMMARIES = {
    ErrorKind.TIMEOUT: "The request timed out.",
    ErrorKind.AUTH: "The API key was rejected.",
    ErrorKind.RATE_LIMIT: "Rate limited by the provider, try again shortly.",
    ErrorKind.BAD_REQUEST: "The provider rejected the request.",
    ErrorKind.NOT_FOUND: "The model or endpoint was not found.",
    ErrorKind.SERVER_ERROR: "The provider had an internal error.",
    ErrorKind.NETWORK_ERROR: "Could not reach the provider.",
    ErrorKind.UNKNOWN: "The request failed.",
}


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    STREAMING = "streaming"
    ERROR = "error"


def error_summary(kind: ErrorKind, detail: str = "") -> str:
    """Human readable content for a failed turn, led by a `[error: kind]` marker."""
    base = ERROR_SUMMARIES.get(kind, ERROR_SUMMARIES[ErrorKind.UNKNOWN])
    summary = f"[error: {kind.value}] {base}"
    if detail:
        summary += f"\n{detail}"
    return summary


class ConversationController:
    """Drives one conversation: submit, stream, finalize, persist"""

    def __init__(
        self,
        store: TranscriptStore,
        transport: Transport,
        sessions: SessionManager | None = None,
        on_notice: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.transport = transport
        self.sessions = sessions
        self.on_notice = on_notice
        self.state = ConversationState.IDLE
        self.handle: StreamHandle | None = None
        self.last_error: TransportError | None = None

    @property
    def busy(self) -> bool:
        return self.state in (
            ConversationState.AWAITING_FIRST_CHUNK,
            ConversationState.STREAMING,
        )

    def _notify(self, message: str):
        if self.on_notice:
            self.on_notice(message)

    # <~~TURN LIFECYCLE~~>
    def submit(self, prompt: str):
        """
        Starts a new turn. Raises ConversationBusy while a reply is in flight,
        leaving the transcript as it was.
        """
        if self.state is not ConversationState.IDLE:
            raise ConversationBusy("Wait for the current reply, or cancel it first")
        if not prompt.strip():
            raise ValueError("Cannot submit an empty prompt")

        self.last_error = None
        self.store.append(Turn(Role.USER, prompt))
        self.store.append(Turn(Role.ASSISTANT, "", Status.STREAMING))
        self.state = ConversationState.AWAITING_FIRST_CHUNK
        try:
            self.handle = self.transport.open_stream(self.store.turns)
        except Exception as e:
            log_exception(e, "Could not open the response stream")
            self._fail(TransportError(str(e) or e.__class__.__name__))

    def pump(self) -> bool:
        """
        Applies every event the stream has ready, in arrival order.
        Returns True if the transcript changed.
        """
        changed = False
        while self.busy and self.handle is not None:
            try:
                event = self.handle.poll()
            except Exception as e:
                log_exception(e, "Error while polling the response stream")
                self._fail(TransportError(str(e) or e.__class__.__name__))
                return True
            if event is None:
                break
            changed = True
            if isinstance(event, Chunk):
                self.store.update_last_streaming(event.text)
                self.state = ConversationState.STREAMING
            elif isinstance(event, End):
                self._complete()
            elif isinstance(event, StreamError):
                self._fail(TransportError(event.message, event.kind))
        return changed

    def cancel(self) -> bool:
        """Aborts the in-flight reply, keeping what arrived so far. False if idle."""
        if not self.busy:
            return False
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None
        partial = self.store.streaming_turn.content
        content = f"{partial} {CANCELLED_MARKER}" if partial else CANCELLED_MARKER
        self.store.finalize_last_streaming(Status.FAILED, content)
        self.state = ConversationState.IDLE
        self.persist()
        self._notify("Reply cancelled.")
        return True

    def _complete(self):
        self.store.finalize_last_streaming(Status.COMPLETE)
        self.handle = None
        self.state = ConversationState.IDLE
        self.persist()

    def _fail(self, error: TransportError):
        self.state = ConversationState.ERROR
        self.handle = None
        self.store.finalize_last_streaming(
            Status.FAILED, error_summary(error.kind, str(error))
        )
        self.persist()
        # ERROR is advisory: surface it, then accept new prompts again
        self.last_error = error
        self._notify(f"Request failed ({error.kind.value}). Resubmit to try again.")
        self.state = ConversationState.IDLE

    # <~~PERSISTENCE~~>
    def close(self):
        """Ends the session: cancels a reply in flight, then saves if anything was said."""
        if self.cancel():
            return
        if any(turn.role is not Role.SYSTEM for turn in self.store.turns):
            self.persist()

    def persist(self) -> bool:
        """Writes the session to disk. A failed write is reported, not raised."""
        if self.sessions is None:
            return False
        try:
            self.sessions.save_to_disk(self.store.session)
        except (OSError, ValueError) as e:
            log_exception(e, "Could not save session")
            self._notify(f"Could not save session: {e}")
            return False
        return True
