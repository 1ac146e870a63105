"""Resolve the user record and the conversation a turn should continue."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from relaybot.core.database import engine as default_engine
from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.models.chat import ChatMessage, ChatUser
from relaybot.services.assistants import AssistantDirectory

logger = logging.getLogger(__name__)


class ReplyMode(str, Enum):
    TEXT = "text"
    STRUCTURED = "structured"


@dataclass
class TurnContext:
    user: ChatUser
    assistant_id: str
    conversation_id: str | None


class ConversationResolver:
    def __init__(self, directory: AssistantDirectory, engine: Engine | None = None):
        self.directory = directory
        self.engine = engine or default_engine

    async def resolve_context(
        self,
        user_id: str,
        username: str,
        reply_mode: ReplyMode,
        assistant_name: str,
    ) -> TurnContext:
        user, assistant_id = await asyncio.gather(
            self._run_store(self._upsert_user, user_id, username),
            self.directory.resolve_assistant_id(assistant_name),
        )
        logger.info(f"Resolved user {user.id} ({user_id}) and assistant {assistant_id}")

        if reply_mode == ReplyMode.STRUCTURED:
            logger.info("Structured reply requested, starting a new conversation")
            return TurnContext(user=user, assistant_id=assistant_id, conversation_id=None)

        if not user.context_enabled:
            logger.info(f"Context disabled for user {user.id}, starting a new conversation")
            return TurnContext(user=user, assistant_id=assistant_id, conversation_id=None)

        conversation_id = await self._run_store(self._latest_conversation_id, user.id)
        logger.info(f"Conversation for user {user.id}: {conversation_id or 'new'}")
        return TurnContext(user=user, assistant_id=assistant_id, conversation_id=conversation_id)

    async def _run_store(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            raise ReplyError(ErrorKind.PERSISTENCE, f"Store error: {e}") from e

    def _upsert_user(self, discord_id: str, username: str) -> ChatUser:
        with Session(self.engine) as session:
            user = session.exec(select(ChatUser).where(ChatUser.discord_id == discord_id)).first()
            if user:
                return user

            user = ChatUser(discord_id=discord_id, username=username)
            session.add(user)
            try:
                session.commit()
            except IntegrityError:
                # Another turn inserted the same user first
                session.rollback()
                return session.exec(
                    select(ChatUser).where(ChatUser.discord_id == discord_id)
                ).one()
            session.refresh(user)
            logger.info(f"Created user {user.id} for {discord_id}")
            return user

    def _latest_conversation_id(self, user_pk: int) -> str | None:
        with Session(self.engine) as session:
            message = session.exec(
                select(ChatMessage)
                .where(ChatMessage.user_id == user_pk)
                .where(ChatMessage.is_deleted == False)  # noqa: E712
                .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())  # type: ignore
                .limit(1)
            ).first()
            return message.conversation_id if message else None
