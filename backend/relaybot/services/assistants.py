"""Assistant directory: assistant name -> provider id -> provider configuration.

Both lookups are memoized for the life of the process. A provider-side change
to an assistant's instructions is picked up only after a restart.
"""

import asyncio
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from relaybot.core.cache import ProcessCache
from relaybot.core.database import engine as default_engine
from relaybot.core.errors import ErrorKind, ReplyError
from relaybot.models.chat import Assistant
from relaybot.services.llm.base import AssistantConfig, BaseAssistantProvider

logger = logging.getLogger(__name__)


class AssistantDirectory:
    def __init__(
        self,
        provider: BaseAssistantProvider,
        engine: Engine | None = None,
        ids: ProcessCache[str, str] | None = None,
        configs: ProcessCache[str, AssistantConfig] | None = None,
    ):
        self.provider = provider
        self.engine = engine or default_engine
        self.ids = ids if ids is not None else ProcessCache()
        self.configs = configs if configs is not None else ProcessCache()

    async def resolve_assistant_id(self, name: str) -> str:
        if name in self.ids:
            logger.info(f"Cached assistant id for '{name}': {self.ids.get(name)}")
        return await self.ids.get_or_populate(name, lambda: self._load_assistant_id(name))

    async def resolve_assistant_config(self, assistant_id: str) -> AssistantConfig:
        return await self.configs.get_or_populate(
            assistant_id, lambda: self._load_assistant_config(assistant_id)
        )

    async def _load_assistant_id(self, name: str) -> str:
        logger.info(f"Looking up assistant id for '{name}'")
        try:
            assistant_id = await asyncio.to_thread(self._find_assistant_id, name)
        except SQLAlchemyError as e:
            raise ReplyError(ErrorKind.PERSISTENCE, f"Assistant lookup failed: {e}") from e

        if not assistant_id:
            logger.error(f"No assistant id found for '{name}'")
            raise ReplyError(ErrorKind.UNKNOWN_ASSISTANT, f"Unknown assistant: {name}")

        logger.info(f"Caching assistant id for '{name}': {assistant_id}")
        return assistant_id

    def _find_assistant_id(self, name: str) -> str | None:
        with Session(self.engine) as session:
            assistant = session.exec(select(Assistant).where(Assistant.name == name)).first()
            return assistant.assistant_id if assistant else None

    async def _load_assistant_config(self, assistant_id: str) -> AssistantConfig:
        logger.info(f"Fetching configuration for assistant {assistant_id}")
        try:
            config = await self.provider.retrieve_assistant(assistant_id)
        except Exception as e:
            logger.error(f"Failed to fetch configuration for assistant {assistant_id}: {e}")
            raise ReplyError(
                ErrorKind.ASSISTANT_CONFIG_UNAVAILABLE,
                f"Configuration unavailable for assistant {assistant_id}",
            ) from e
        logger.info(f"Caching configuration for assistant {assistant_id}")
        return config

    def register(self, name: str, assistant_id: str) -> Assistant:
        """Insert or update a directory row. Already-cached ids are not replaced."""
        with Session(self.engine) as session:
            assistant = session.exec(select(Assistant).where(Assistant.name == name)).first()
            if assistant:
                assistant.assistant_id = assistant_id
            else:
                assistant = Assistant(name=name, assistant_id=assistant_id)
            session.add(assistant)
            session.commit()
            session.refresh(assistant)
            return assistant

    def list(self) -> list[Assistant]:
        with Session(self.engine) as session:
            return list(session.exec(select(Assistant).order_by(Assistant.name)).all())
