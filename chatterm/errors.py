"""Error taxonomy shared by the session engine."""

from enum import Enum


class ChatTermError(Exception):
    """Base class for every error raised by chatterm."""


class CorruptSession(ChatTermError):
    """A session file is malformed or unreadable."""


class SessionNotFound(ChatTermError):
    """A session file named on the command line does not exist."""


class MissingCredential(ChatTermError):
    """No API key is available and setup was declined."""


class ConversationBusy(ChatTermError):
    """A prompt was submitted while a request is still in flight."""


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class TransportError(ChatTermError):
    """Network, timeout or remote failure reported by the transport."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class TranscriptContractError(ChatTermError):
    """The transcript was driven in a way that breaks its single-stream contract."""


class InvariantViolation(TranscriptContractError):
    pass


class NoActiveStream(TranscriptContractError):
    pass


class AlreadyFinalized(TranscriptContractError):
    pass
