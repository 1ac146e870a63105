"""Persist exchanges (user turn + bot reply) and manage per-user history."""

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from relaybot.core.database import engine as default_engine
from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.models.chat import ChatMessage, ChatUser

logger = logging.getLogger(__name__)


class PersistenceRecorder:
    def __init__(self, engine: Engine | None = None):
        self.engine = engine or default_engine

    async def record(
        self,
        user_id: int,
        exchange_id: str,
        user_message: str,
        bot_reply: str,
        conversation_id: str,
    ) -> None:
        """Write both messages and the user's bookkeeping in one transaction."""
        logger.info(
            f"Saving exchange {exchange_id}: user={user_id}, conversation={conversation_id}"
        )
        try:
            await asyncio.to_thread(
                self._write_exchange, user_id, exchange_id, user_message, bot_reply, conversation_id
            )
        except SQLAlchemyError as e:
            logger.error(f"Saving exchange {exchange_id} failed: {e}")
            raise ReplyError(
                ErrorKind.PERSISTENCE,
                f"Could not save exchange {exchange_id}",
                conversation_id=conversation_id,
            ) from e
        logger.info(f"Saved exchange {exchange_id}")

    def _write_exchange(
        self,
        user_id: int,
        exchange_id: str,
        user_message: str,
        bot_reply: str,
        conversation_id: str,
    ) -> None:
        now = datetime.now(timezone.utc)
        with Session(self.engine) as session:
            try:
                for content, is_bot in ((user_message, False), (bot_reply, True)):
                    session.add(
                        ChatMessage(
                            user_id=user_id,
                            content=content,
                            is_bot_message=is_bot,
                            timestamp=now,
                            conversation_id=conversation_id,
                            exchange_id=exchange_id,
                        )
                    )
                    session.flush()

                user = session.get(ChatUser, user_id)
                if user is None:
                    raise ReplyError(ErrorKind.PERSISTENCE, f"Unknown user {user_id}")
                user.last_interaction = now
                user.last_conversation_id = conversation_id
                session.add(user)
                session.commit()
            except Exception:
                session.rollback()
                raise

    async def reset(self, discord_id: str) -> bool:
        """Soft-delete the user's messages so future turns start a new conversation.

        Returns False when the user has never talked to the bot.
        """
        try:
            return await asyncio.to_thread(self._reset, discord_id)
        except SQLAlchemyError as e:
            raise ReplyError(ErrorKind.PERSISTENCE, f"Could not reset {discord_id}") from e

    def _reset(self, discord_id: str) -> bool:
        with Session(self.engine) as session:
            user = session.exec(select(ChatUser).where(ChatUser.discord_id == discord_id)).first()
            if not user:
                return False
            try:
                messages = session.exec(
                    select(ChatMessage).where(ChatMessage.user_id == user.id)
                ).all()
                for msg in messages:
                    msg.is_deleted = True
                    session.add(msg)
                user.last_conversation_id = None
                session.add(user)
                session.commit()
            except Exception:
                session.rollback()
                raise
            logger.info(f"Reset conversation context for {discord_id}")
            return True

    def history(self, discord_id: str, limit: int = 50) -> list[ChatMessage] | None:
        """Non-deleted messages for a user, oldest first. None if the user is unknown."""
        with Session(self.engine) as session:
            user = session.exec(select(ChatUser).where(ChatUser.discord_id == discord_id)).first()
            if not user:
                return None
            messages = session.exec(
                select(ChatMessage)
                .where(ChatMessage.user_id == user.id)
                .where(ChatMessage.is_deleted == False)  # noqa: E712
                .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())  # type: ignore
                .limit(limit)
            ).all()
            return list(reversed(messages))
