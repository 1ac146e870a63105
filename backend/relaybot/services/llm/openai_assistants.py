"""OpenAI Assistants provider (threads and runs)."""

import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from relaybot.core.config import settings
from relaybot.services.llm.base import (
    AssistantConfig,
    BaseAssistantProvider,
    Message,
    Run,
    StreamEvent,
)

logger = logging.getLogger(__name__)

_RUN_STATUS_EVENTS = {
    "thread.run.completed": "completed",
    "thread.run.failed": "failed",
    "thread.run.cancelled": "cancelled",
    "thread.run.expired": "expired",
    "thread.run.incomplete": "incomplete",
}


def _run_kwargs(response_format: dict | None) -> dict[str, Any]:
    return {"response_format": response_format} if response_format else {}


def _to_events(event: Any) -> list[StreamEvent]:
    """Translate one SDK stream event into provider-neutral events."""
    name = getattr(event, "event", None)
    data = getattr(event, "data", None)

    if name == "thread.created":
        return [StreamEvent(kind="conversation_created", conversation_id=data.id)]
    if name == "thread.run.created":
        return [StreamEvent(kind="conversation_created", conversation_id=data.thread_id)]
    if name == "thread.message.delta":
        events = []
        for part in data.delta.content or []:
            if getattr(part, "type", None) != "text" or part.text is None:
                continue
            if part.text.value:
                events.append(StreamEvent(kind="message_delta", text=part.text.value))
        return events
    if name in _RUN_STATUS_EVENTS:
        return [StreamEvent(kind="run_status", status=_RUN_STATUS_EVENTS[name])]
    if name == "error":
        message = getattr(data, "message", None) or str(data)
        return [StreamEvent(kind="error", error=message)]
    return []


class OpenAIAssistantsProvider(BaseAssistantProvider):
    def __init__(self, client: AsyncOpenAI | None = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)

    async def retrieve_assistant(self, assistant_id: str) -> AssistantConfig:
        assistant = await self.client.beta.assistants.retrieve(assistant_id)
        return AssistantConfig(
            assistant_id=assistant.id,
            name=assistant.name,
            instructions=assistant.instructions,
            model=assistant.model,
        )

    async def create_conversation_and_run(
        self,
        assistant_id: str,
        messages: list[Message],
        response_format: dict | None = None,
    ) -> Run:
        run = await self.client.beta.threads.create_and_run(
            assistant_id=assistant_id,
            thread={"messages": [{"role": m.role, "content": m.content} for m in messages]},
            **_run_kwargs(response_format),
        )
        return Run(id=run.id, conversation_id=run.thread_id, status=run.status)

    async def add_message(self, conversation_id: str, content: str) -> None:
        await self.client.beta.threads.messages.create(
            conversation_id, role="user", content=content
        )

    async def create_run(
        self,
        conversation_id: str,
        assistant_id: str,
        response_format: dict | None = None,
    ) -> Run:
        run = await self.client.beta.threads.runs.create(
            conversation_id,
            assistant_id=assistant_id,
            **_run_kwargs(response_format),
        )
        return Run(id=run.id, conversation_id=run.thread_id, status=run.status)

    async def retrieve_run(self, conversation_id: str, run_id: str) -> Run:
        run = await self.client.beta.threads.runs.retrieve(run_id, thread_id=conversation_id)
        return Run(id=run.id, conversation_id=run.thread_id, status=run.status)

    async def latest_reply(self, conversation_id: str, run_id: str) -> list[dict[str, Any]]:
        page = await self.client.beta.threads.messages.list(
            conversation_id, run_id=run_id, order="desc", limit=1
        )
        for message in page.data:
            if message.role == "assistant":
                return [part.model_dump() for part in message.content]
        logger.warning(f"Run {run_id} on {conversation_id} produced no assistant message")
        return []

    async def stream_conversation_and_run(
        self,
        assistant_id: str,
        messages: list[Message],
        response_format: dict | None = None,
    ) -> AsyncIterator[StreamEvent]:
        stream = await self.client.beta.threads.create_and_run(
            assistant_id=assistant_id,
            thread={"messages": [{"role": m.role, "content": m.content} for m in messages]},
            stream=True,
            **_run_kwargs(response_format),
        )
        async for event in stream:
            for translated in _to_events(event):
                yield translated

    async def stream_run(
        self,
        conversation_id: str,
        assistant_id: str,
        response_format: dict | None = None,
    ) -> AsyncIterator[StreamEvent]:
        stream = await self.client.beta.threads.runs.create(
            conversation_id,
            assistant_id=assistant_id,
            stream=True,
            **_run_kwargs(response_format),
        )
        async for event in stream:
            for translated in _to_events(event):
                yield translated
