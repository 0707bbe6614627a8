"""Session I/O: where session files live and how they reach the disk."""

import os
from datetime import datetime

from chatterm.errors import CorruptSession, SessionNotFound
from chatterm.globals import SESSIONS_DIR
from chatterm.transcript import (
    Session,
    Status,
    TranscriptStore,
    deserialize_session,
    serialize_session,
)

INTERRUPTED_MARKER = "[interrupted]"


class SessionManager:
    """Handles session-related I/O"""

    def __init__(self, sessions_dir: str = SESSIONS_DIR):
        self.sessions_dir = sessions_dir
        self.active_session: str = ""

    def _json_helper(self, file_name: str) -> str:
        """JSON extension helper"""
        if not file_name.endswith(".json"):
            file_name += ".json"
        return os.path.join(self.sessions_dir, file_name)

    def new_session_path(self) -> str:
        """Timestamped file name for a fresh session, e.g. chatlog_20251109143005.json"""
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        return self._json_helper(f"chatlog_{stamp}")

    def save_to_disk(self, session: Session, filepath: str = ""):
        """Save the session to disk, replacing the previous file atomically"""
        filepath = filepath or self.active_session or self.new_session_path()
        directory = os.path.dirname(os.path.abspath(filepath))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{filepath}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(serialize_session(session))
        os.replace(tmp_path, filepath)
        self.active_session = filepath

    def load_from_disk(self, filepath: str) -> Session:
        """Load a session file from disk. Nothing is kept if the file is bad."""
        try:
            with open(filepath, "rb") as f:
                data = f.read()
        except FileNotFoundError as e:
            raise SessionNotFound(f"No session file at {filepath}") from e
        except OSError as e:
            raise CorruptSession(f"Could not read {filepath}: {e}") from e
        session = deserialize_session(data)
        self.active_session = filepath
        return session

    def open_store(self, session: Session) -> TranscriptStore:
        """Wraps a session in a store, closing out any reply cut off by a crash."""
        store = TranscriptStore(session)
        leftover = store.streaming_turn
        if leftover is not None:
            content = leftover.content
            content = f"{content} {INTERRUPTED_MARKER}" if content else INTERRUPTED_MARKER
            store.finalize_last_streaming(Status.FAILED, content)
        return store

