"""Wiring of the long-lived services one process shares.

Every cache lives on the container, so a fresh container means fresh caches.
"""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine

from relaybot.core.cache import CrawlStatusRegistry
from relaybot.core.config import settings
from relaybot.core.database import engine as default_engine
from relaybot.services.assistants import AssistantDirectory
from relaybot.services.chat import ChatService
from relaybot.services.conversations import ConversationResolver
from relaybot.services.crawler import CrawlService
from relaybot.services.llm import get_assistant_provider
from relaybot.services.llm.base import BaseAssistantProvider
from relaybot.services.recorder import PersistenceRecorder
from relaybot.services.runs import BackoffPolicy, RunExecutor
from relaybot.services.scraper import PageFetcher


@dataclass
class ServiceContainer:
    provider: BaseAssistantProvider
    directory: AssistantDirectory
    recorder: PersistenceRecorder
    chat: ChatService
    crawler: CrawlService


def build_container(
    provider: BaseAssistantProvider | None = None,
    engine: Engine | None = None,
    fetcher: PageFetcher | None = None,
    executor: RunExecutor | None = None,
) -> ServiceContainer:
    provider = provider or get_assistant_provider()
    engine = engine or default_engine

    directory = AssistantDirectory(provider, engine=engine)
    recorder = PersistenceRecorder(engine=engine)
    chat = ChatService(
        directory=directory,
        resolver=ConversationResolver(directory, engine=engine),
        executor=executor or RunExecutor(
            provider,
            mode=settings.run_mode,
            policy=BackoffPolicy.from_settings(),
            stream_timeout=settings.stream_timeout,
        ),
        recorder=recorder,
        default_assistant_name=settings.default_assistant_name,
        persistence_policy=settings.persistence_policy,
    )
    crawler = CrawlService(
        chat, fetcher=fetcher or PageFetcher(), status=CrawlStatusRegistry(), engine=engine
    )
    return ServiceContainer(
        provider=provider, directory=directory, recorder=recorder, chat=chat, crawler=crawler
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency: the container built in the app lifespan."""
    return request.app.state.services
