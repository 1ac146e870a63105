"""Abstract assistant provider interface. All providers must implement this.

A provider exposes assistant *jobs*: a conversation (thread) minted by the
provider, runs that generate the assistant's next turn on it, and the
messages those runs produce.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal

TERMINAL_FAILURE_STATUSES = frozenset({"failed", "cancelled", "expired", "incomplete"})


@dataclass
class Message:
    role: str  # "user" | "assistant"
    content: str


@dataclass
class AssistantConfig:
    assistant_id: str
    name: str | None = None
    instructions: str | None = None
    model: str | None = None


@dataclass
class Run:
    id: str
    conversation_id: str
    status: str  # queued | in_progress | completed | failed | cancelled | expired | incomplete | ...


@dataclass
class StreamEvent:
    kind: Literal["conversation_created", "message_delta", "run_status", "error"]
    conversation_id: str | None = None
    text: str | None = None
    status: str | None = None
    error: str | None = None


class BaseAssistantProvider(ABC):
    @abstractmethod
    async def retrieve_assistant(self, assistant_id: str) -> AssistantConfig:
        """Fetch provider-side settings for an assistant."""
        ...

    @abstractmethod
    async def create_conversation_and_run(
        self,
        assistant_id: str,
        messages: list[Message],
        response_format: dict | None = None,
    ) -> Run:
        """Create a new conversation seeded with messages and start a run on it."""
        ...

    @abstractmethod
    async def add_message(self, conversation_id: str, content: str) -> None:
        """Append a user message to an existing conversation."""
        ...

    @abstractmethod
    async def create_run(
        self,
        conversation_id: str,
        assistant_id: str,
        response_format: dict | None = None,
    ) -> Run:
        """Start a run on an existing conversation."""
        ...

    @abstractmethod
    async def retrieve_run(self, conversation_id: str, run_id: str) -> Run:
        """Fetch the current status of a run."""
        ...

    @abstractmethod
    async def latest_reply(self, conversation_id: str, run_id: str) -> list[dict[str, Any]]:
        """Return the content parts of the newest assistant message of a run.

        Parts are plain dicts, e.g. ``{"type": "text", "text": {"value": "..."}}``.
        """
        ...

    @abstractmethod
    def stream_conversation_and_run(
        self,
        assistant_id: str,
        messages: list[Message],
        response_format: dict | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming variant of create_conversation_and_run."""
        ...

    @abstractmethod
    def stream_run(
        self,
        conversation_id: str,
        assistant_id: str,
        response_format: dict | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming variant of create_run."""
        ...
