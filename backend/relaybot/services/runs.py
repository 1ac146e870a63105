"""Run executor: submit an assistant job and drive it to a terminal state.

Two drive modes share one submission step:

* ``poll``: fetch the run status in a bounded loop with exponential backoff,
  then list the newest assistant message once the run completes.
* ``stream``: consume provider events, assembling message deltas into the
  final text, bounded by an overall timeout.

Both modes honour an optional cancel event and an absolute deadline.

Every failure raises ``ReplyError`` before anything is persisted.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from relaybot.core.config import settings
from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.services.conversations import ReplyMode
from relaybot.services.llm.base import (
    TERMINAL_FAILURE_STATUSES,
    AssistantConfig,
    BaseAssistantProvider,
    Message,
    Run,
    StreamEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "You are an assistant."
JSON_FORMAT_SUFFIX = " Please provide the response in JSON format."
JSON_RESPONSE_FORMAT = {"type": "json_object"}


@dataclass
class BackoffPolicy:
    max_attempts: int = 60
    initial_delay: float = 1.0
    factor: float = 1.5
    max_delay: float = 2.0
    fetch_retries: int = 3
    fetch_retry_delay: float = 1.0

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.poll_max_attempts,
            initial_delay=settings.poll_initial_delay,
            factor=settings.poll_backoff_factor,
            max_delay=settings.poll_max_delay,
            fetch_retries=settings.status_fetch_retries,
            fetch_retry_delay=settings.status_fetch_retry_delay,
        )

    def next_delay(self, delay: float) -> float:
        return min(delay * self.factor, self.max_delay)


@dataclass
class RunOutcome:
    conversation_id: str
    content: list[dict[str, Any]]


def seed_messages(config: AssistantConfig, user_message: str, reply_mode: ReplyMode) -> list[Message]:
    """Messages that open a new conversation: instructions first, then the user's message."""
    instructions = config.instructions or DEFAULT_INSTRUCTIONS
    if reply_mode == ReplyMode.STRUCTURED:
        instructions += JSON_FORMAT_SUFFIX
    return [Message(role="user", content=instructions), Message(role="user", content=user_message)]


class RunExecutor:
    def __init__(
        self,
        provider: BaseAssistantProvider,
        mode: str = "poll",
        policy: BackoffPolicy | None = None,
        stream_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if mode not in ("poll", "stream"):
            raise ValueError(f"Unknown run mode: {mode}")
        self.provider = provider
        self.mode = mode
        self.policy = policy or BackoffPolicy()
        self.stream_timeout = stream_timeout
        self._sleep = sleep

    async def execute(
        self,
        assistant: AssistantConfig,
        conversation_id: str | None,
        user_message: str,
        reply_mode: ReplyMode,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> RunOutcome:
        """Run one turn. ``deadline`` is an absolute event-loop time (``loop.time()``)."""
        response_format = JSON_RESPONSE_FORMAT if reply_mode == ReplyMode.STRUCTURED else None
        try:
            if self.mode == "stream":
                return await self._execute_stream(
                    assistant, conversation_id, user_message, reply_mode, response_format,
                    cancel, deadline,
                )
            run = await self._submit(
                assistant, conversation_id, user_message, reply_mode, response_format
            )
            return await self._poll(run, cancel, deadline)
        except ReplyError as e:
            logger.error(f"Run ended with {e.kind.value}: {e.message}")
            raise

    # --- Submission ---

    async def _submit(
        self,
        assistant: AssistantConfig,
        conversation_id: str | None,
        user_message: str,
        reply_mode: ReplyMode,
        response_format: dict | None,
    ) -> Run:
        try:
            if conversation_id is None:
                logger.info(f"Creating a new conversation for assistant {assistant.assistant_id}")
                run = await self.provider.create_conversation_and_run(
                    assistant.assistant_id,
                    seed_messages(assistant, user_message, reply_mode),
                    response_format,
                )
            else:
                logger.info(f"Continuing conversation {conversation_id}")
                await self.provider.add_message(conversation_id, user_message)
                run = await self.provider.create_run(
                    conversation_id, assistant.assistant_id, response_format
                )
        except Exception as e:
            raise ReplyError(
                ErrorKind.RUN_FAILED,
                f"Job submission failed: {e}",
                conversation_id=conversation_id,
            ) from e

        logger.info(f"Submitted run {run.id} on conversation {run.conversation_id}")
        return run

    # --- Polling ---

    async def _poll(self, run: Run, cancel: asyncio.Event | None, deadline: float | None) -> RunOutcome:
        conversation_id = run.conversation_id
        delay = self.policy.initial_delay

        for attempt in range(1, self.policy.max_attempts + 1):
            self._check_cancelled(conversation_id, cancel, deadline)
            current = await self._fetch_status(run)
            logger.info(f"Run {run.id} attempt {attempt}/{self.policy.max_attempts}: {current.status}")

            if current.status == "completed":
                content = await self._latest_reply(run)
                return RunOutcome(conversation_id=conversation_id, content=content)
            if current.status in TERMINAL_FAILURE_STATUSES:
                raise ReplyError(
                    ErrorKind.RUN_FAILED,
                    f"Run failed with status: {current.status}",
                    status=current.status,
                    conversation_id=conversation_id,
                )

            if attempt == self.policy.max_attempts:
                break
            await self._sleep(delay)
            delay = self.policy.next_delay(delay)
            self._check_cancelled(conversation_id, cancel, deadline)

        raise ReplyError(
            ErrorKind.RUN_TIMED_OUT,
            f"Run {run.id} did not finish after {self.policy.max_attempts} attempts",
            conversation_id=conversation_id,
        )

    async def _fetch_status(self, run: Run) -> Run:
        last_error: Exception | None = None
        for attempt in range(1, self.policy.fetch_retries + 1):
            try:
                return await self.provider.retrieve_run(run.conversation_id, run.id)
            except Exception as e:
                last_error = e
                logger.error(f"Status fetch {attempt} for run {run.id} failed: {e}")
                if attempt < self.policy.fetch_retries:
                    await self._sleep(self.policy.fetch_retry_delay)
        raise ReplyError(
            ErrorKind.RUN_FAILED,
            f"Could not fetch status of run {run.id}",
            conversation_id=run.conversation_id,
        ) from last_error

    async def _latest_reply(self, run: Run) -> list[dict[str, Any]]:
        try:
            return await self.provider.latest_reply(run.conversation_id, run.id)
        except Exception as e:
            raise ReplyError(
                ErrorKind.RUN_FAILED,
                f"Could not list messages of run {run.id}: {e}",
                conversation_id=run.conversation_id,
            ) from e

    def _check_cancelled(
        self, conversation_id: str, cancel: asyncio.Event | None, deadline: float | None
    ) -> None:
        expired = deadline is not None and asyncio.get_running_loop().time() >= deadline
        if (cancel is not None and cancel.is_set()) or expired:
            raise ReplyError(
                ErrorKind.RUN_CANCELLED, "Run was cancelled", conversation_id=conversation_id
            )

    # --- Streaming ---

    async def _execute_stream(
        self,
        assistant: AssistantConfig,
        conversation_id: str | None,
        user_message: str,
        reply_mode: ReplyMode,
        response_format: dict | None,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> RunOutcome:
        self._check_cancelled(conversation_id, cancel, deadline)
        try:
            if conversation_id is None:
                logger.info(f"Streaming a new conversation for assistant {assistant.assistant_id}")
                events = self.provider.stream_conversation_and_run(
                    assistant.assistant_id,
                    seed_messages(assistant, user_message, reply_mode),
                    response_format,
                )
            else:
                logger.info(f"Streaming a run on conversation {conversation_id}")
                await self.provider.add_message(conversation_id, user_message)
                events = self.provider.stream_run(
                    conversation_id, assistant.assistant_id, response_format
                )
        except Exception as e:
            raise ReplyError(
                ErrorKind.RUN_FAILED,
                f"Job submission failed: {e}",
                conversation_id=conversation_id,
            ) from e

        loop = asyncio.get_running_loop()
        timeout = self.stream_timeout
        deadline_bound = deadline is not None and deadline - loop.time() < timeout
        if deadline_bound:
            timeout = max(deadline - loop.time(), 0.0)

        consume = asyncio.ensure_future(self._consume(events, conversation_id))
        waiters = {consume}
        cancelled = None
        if cancel is not None:
            cancelled = asyncio.ensure_future(cancel.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if consume in done:
            return consume.result()

        # Let the stream close before reporting
        await asyncio.gather(consume, return_exceptions=True)
        if cancelled in done or deadline_bound:
            raise ReplyError(
                ErrorKind.RUN_CANCELLED, "Run was cancelled", conversation_id=conversation_id
            )
        raise ReplyError(
            ErrorKind.RUN_TIMED_OUT,
            f"Stream did not finish within {self.stream_timeout}s",
            conversation_id=conversation_id,
        )

    async def _consume(
        self, events: AsyncIterator[StreamEvent], conversation_id: str | None
    ) -> RunOutcome:
        reply = ""
        try:
            async with aclosing(events):
                async for event in events:
                    if event.kind == "conversation_created" and event.conversation_id:
                        if conversation_id is None:
                            logger.info(f"Provider created conversation {event.conversation_id}")
                        conversation_id = event.conversation_id
                    elif event.kind == "message_delta" and event.text:
                        reply += event.text
                    elif event.kind == "error":
                        raise ReplyError(
                            ErrorKind.RUN_FAILED,
                            f"Stream error: {event.error}",
                            conversation_id=conversation_id,
                        )
                    elif event.kind == "run_status":
                        if event.status == "completed":
                            break
                        if event.status in TERMINAL_FAILURE_STATUSES:
                            raise ReplyError(
                                ErrorKind.RUN_FAILED,
                                f"Run failed with status: {event.status}",
                                status=event.status,
                                conversation_id=conversation_id,
                            )
        except ReplyError:
            raise
        except Exception as e:
            raise ReplyError(
                ErrorKind.RUN_FAILED, f"Stream failed: {e}", conversation_id=conversation_id
            ) from e

        if conversation_id is None:
            raise ReplyError(ErrorKind.RUN_FAILED, "Stream ended without a conversation id")

        return RunOutcome(
            conversation_id=conversation_id,
            content=[{"type": "text", "text": {"value": reply}}],
        )
