"""
Conversation state: turns, the session that owns them, and the session file format.

The store enforces the single-stream contract: at most one assistant turn can be
in the `STREAMING` status at a time, and only that turn may change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from chatterm.errors import (
    AlreadyFinalized,
    CorruptSession,
    InvariantViolation,
    NoActiveStream,
)

FORMAT_VERSION = 1


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Status(str, Enum):
    COMPLETE = "complete"
    STREAMING = "streaming"
    FAILED = "failed"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    status: Status = Status.COMPLETE


@dataclass
class SessionMetadata:
    created_at: datetime
    model_identifier: str


@dataclass
class Session:
    metadata: SessionMetadata
    turns: list[Turn] = field(default_factory=list)

    @classmethod
    def new(cls, model_identifier: str, initial_prompt: str = "") -> Session:
        """Creates an empty session, seeded with a system turn when a prompt is given."""
        session = cls(SessionMetadata(datetime.now(timezone.utc), model_identifier))
        if initial_prompt.strip():
            session.turns.append(Turn(Role.SYSTEM, initial_prompt))
        return session


class TranscriptStore:
    """Owns a session's turns and guards every mutation of them"""

    def __init__(self, session: Session):
        self.session = session
        self._streaming_index: int | None = None
        self._finalized_index: int | None = None
        for i, turn in enumerate(session.turns):
            if turn.status is Status.STREAMING:
                if self._streaming_index is not None:
                    raise InvariantViolation("More than one streaming turn in session")
                self._streaming_index = i

    @property
    def turns(self) -> list[Turn]:
        return list(self.session.turns)

    @property
    def streaming_turn(self) -> Turn | None:
        if self._streaming_index is None:
            return None
        return self.session.turns[self._streaming_index]

    def __len__(self) -> int:
        return len(self.session.turns)

    def append(self, turn: Turn):
        """Appends a turn at the tail of the transcript."""
        if turn.status is Status.STREAMING:
            if self._streaming_index is not None:
                raise InvariantViolation("A streaming turn is already in progress")
            self._streaming_index = len(self.session.turns)
            self._finalized_index = None
        self.session.turns.append(turn)

    def update_last_streaming(self, chunk: str):
        """Grows the content of the streaming turn by one chunk."""
        if self._streaming_index is None:
            raise NoActiveStream("No streaming turn to update")
        turn = self.session.turns[self._streaming_index]
        self.session.turns[self._streaming_index] = replace(
            turn, content=turn.content + chunk
        )

    def finalize_last_streaming(self, status: Status, content: str | None = None):
        """
        Moves the streaming turn to a terminal status, optionally replacing its content.

        A repeated call leaves the finalized turn untouched and raises AlreadyFinalized.
        """
        if status is Status.STREAMING:
            raise ValueError("A turn can only be finalized as complete or failed")
        if self._streaming_index is None:
            if self._finalized_index is not None:
                raise AlreadyFinalized("The last streaming turn was already finalized")
            raise NoActiveStream("No streaming turn to finalize")
        index = self._streaming_index
        turn = self.session.turns[index]
        self.session.turns[index] = replace(
            turn,
            status=status,
            content=turn.content if content is None else content,
        )
        self._streaming_index = None
        self._finalized_index = index

    def serialize(self) -> bytes:
        return serialize_session(self.session)

    @classmethod
    def deserialize(cls, data: bytes | str) -> TranscriptStore:
        return cls(deserialize_session(data))


# <~~SESSION FILE FORMAT~~>
def serialize_session(session: Session) -> bytes:
    """Encodes a session as indented, human-diffable JSON."""
    payload = {
        "version": FORMAT_VERSION,
        "metadata": {
            "created_at": session.metadata.created_at.isoformat(),
            "model_identifier": session.metadata.model_identifier,
        },
        "transcript": [
            {
                "role": turn.role.value,
                "content": turn.content,
                "status": turn.status.value,
            }
            for turn in session.turns
        ],
    }
    # Lone surrogates from a provider survive; json.loads reads them back
    return json.dumps(payload, indent=2, ensure_ascii=False).encode(
        "utf-8", errors="surrogatepass"
    )


def _require(mapping: dict, key: str, kind: type, where: str) -> Any:
    if key not in mapping:
        raise CorruptSession(f"Missing field '{key}' in {where}")
    value = mapping[key]
    if not isinstance(value, kind):
        raise CorruptSession(f"Field '{key}' in {where} has the wrong type")
    return value


def _decode_turn(raw: Any, index: int) -> Turn:
    where = f"turn {index}"
    if not isinstance(raw, dict):
        raise CorruptSession(f"{where.capitalize()} is not an object")
    role = _require(raw, "role", str, where)
    content = _require(raw, "content", str, where)
    status = _require(raw, "status", str, where)
    try:
        return Turn(Role(role), content, Status(status))
    except ValueError as e:
        raise CorruptSession(f"Invalid value in {where}: {e}") from e


def deserialize_session(data: bytes | str) -> Session:
    """
    Decodes a session file. Unknown fields are ignored.

    Raises CorruptSession on anything malformed; nothing partial is returned.
    """
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptSession(f"Session file is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise CorruptSession("Session file does not hold an object")

    meta = _require(raw, "metadata", dict, "session")
    created_at = _require(meta, "created_at", str, "metadata")
    model_identifier = _require(meta, "model_identifier", str, "metadata")
    # fromisoformat only accepts a trailing Z from Python 3.11 on
    if created_at.endswith("Z"):
        created_at = created_at[:-1] + "+00:00"
    try:
        created = datetime.fromisoformat(created_at)
    except ValueError as e:
        raise CorruptSession(f"Invalid created_at timestamp: {created_at}") from e

    turns = [
        _decode_turn(item, i)
        for i, item in enumerate(_require(raw, "transcript", list, "session"))
    ]
    if sum(1 for t in turns if t.status is Status.STREAMING) > 1:
        raise CorruptSession("Session holds more than one streaming turn")
    return Session(SessionMetadata(created, model_identifier), turns)
