"""Chat turn orchestration: resolve -> run -> normalize -> persist."""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.services.assistants import AssistantDirectory
from relaybot.services.conversations import ConversationResolver, ReplyMode
from relaybot.services.normalizer import normalize
from relaybot.services.recorder import PersistenceRecorder
from relaybot.services.runs import RunExecutor

logger = logging.getLogger(__name__)

PERSISTENCE_POLICIES = ("log", "raise")


@dataclass
class TurnResult:
    reply: str
    conversation_id: str
    exchange_id: str
    # Background save under the "log" policy; None when the save was awaited
    persistence: asyncio.Task | None = None


class ChatService:
    def __init__(
        self,
        directory: AssistantDirectory,
        resolver: ConversationResolver,
        executor: RunExecutor,
        recorder: PersistenceRecorder,
        default_assistant_name: str = "default",
        persistence_policy: str = "log",
    ):
        if persistence_policy not in PERSISTENCE_POLICIES:
            raise ValueError(f"Unknown persistence policy: {persistence_policy}")
        self.directory = directory
        self.resolver = resolver
        self.executor = executor
        self.recorder = recorder
        self.default_assistant_name = default_assistant_name
        self.persistence_policy = persistence_policy
        self._pending: set[asyncio.Task] = set()

    async def generate_reply(
        self,
        user_id: str,
        username: str,
        message: str,
        assistant_name: str | None = None,
        reply_mode: ReplyMode = ReplyMode.TEXT,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> TurnResult:
        name = assistant_name or self.default_assistant_name
        logger.info(
            f"Turn started: user={user_id}, username={username}, assistant={name}, mode={reply_mode.value}"
        )

        context = await self.resolver.resolve_context(user_id, username, reply_mode, name)
        config = await self.directory.resolve_assistant_config(context.assistant_id)
        outcome = await self.executor.execute(
            config, context.conversation_id, message, reply_mode, cancel=cancel, deadline=deadline
        )
        reply = normalize(outcome.content, reply_mode)
        exchange_id = str(uuid.uuid4())
        logger.info(f"Reply ready for exchange {exchange_id} ({len(reply)} chars)")

        save = self.recorder.record(
            context.user.id, exchange_id, message, reply, outcome.conversation_id
        )
        result = TurnResult(
            reply=reply, conversation_id=outcome.conversation_id, exchange_id=exchange_id
        )

        if self.persistence_policy == "raise":
            await save
            return result

        task = asyncio.create_task(save)
        self._pending.add(task)
        task.add_done_callback(self._on_saved)
        result.persistence = task
        return result

    def _on_saved(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Exchange save was cancelled")
            return
        error = task.exception()
        if error is not None:
            kind = error.kind.value if isinstance(error, ReplyError) else ErrorKind.PERSISTENCE.value
            logger.error(f"Exchange save failed ({kind}): {error}")

    async def drain(self) -> None:
        """Wait for every outstanding background save. Failures are already logged."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
