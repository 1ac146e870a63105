"""Error type shared by every step of a chat turn.

One exception class tagged with an ``ErrorKind``; the structured fields
travel with it so the transport layers can log them without exposing them
to end users.
"""

from enum import Enum


class ErrorKind(str, Enum):
    UNKNOWN_ASSISTANT = "unknown_assistant"
    ASSISTANT_CONFIG_UNAVAILABLE = "assistant_config_unavailable"
    RUN_FAILED = "run_failed"
    RUN_TIMED_OUT = "run_timed_out"
    RUN_CANCELLED = "run_cancelled"
    MALFORMED_REPLY = "malformed_reply"
    STRUCTURED_PARSE_ERROR = "structured_parse_error"
    PERSISTENCE = "persistence"


class ReplyError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status: str | None = None,
        conversation_id: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.conversation_id = conversation_id

    def __repr__(self) -> str:
        return (
            f"ReplyError(kind={self.kind.value!r}, message={self.message!r}, "
            f"status={self.status!r}, conversation_id={self.conversation_id!r})"
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status": self.status,
            "conversation_id": self.conversation_id,
        }
