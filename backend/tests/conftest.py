"""Shared test fixtures for backend tests."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

import relaybot.models.chat  # noqa: F401 - register models
import relaybot.models.crawl  # noqa: F401
from relaybot.models.chat import Assistant
from relaybot.services.container import build_container
from relaybot.services.llm.base import (
    AssistantConfig,
    BaseAssistantProvider,
    Run,
    StreamEvent,
)
from relaybot.services.runs import BackoffPolicy, RunExecutor


class FakeAssistantProvider(BaseAssistantProvider):
    """In-memory provider. Every new conversation gets a fresh ``thread_N`` id."""

    def __init__(self):
        self.assistants = {
            "asst_default": AssistantConfig(
                assistant_id="asst_default", name="default", instructions="Be helpful."
            ),
        }
        self.reply_text = "Hello from assistant"
        self.statuses = ["in_progress", "completed"]
        self.fail_status_fetches = 0
        self.stream_events: list[StreamEvent] | None = None
        self.calls: list[tuple] = []
        self._threads = 0
        self._runs = 0
        self._polls: dict[str, int] = {}

    def _new_run(self, conversation_id: str) -> Run:
        self._runs += 1
        return Run(id=f"run_{self._runs}", conversation_id=conversation_id, status="queued")

    def _new_thread(self) -> str:
        self._threads += 1
        return f"thread_{self._threads}"

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def retrieve_assistant(self, assistant_id):
        self.calls.append(("retrieve_assistant", assistant_id))
        if assistant_id not in self.assistants:
            raise RuntimeError(f"No such assistant: {assistant_id}")
        return self.assistants[assistant_id]

    async def create_conversation_and_run(self, assistant_id, messages, response_format=None):
        self.calls.append(("create_conversation_and_run", assistant_id, messages, response_format))
        return self._new_run(self._new_thread())

    async def add_message(self, conversation_id, content):
        self.calls.append(("add_message", conversation_id, content))

    async def create_run(self, conversation_id, assistant_id, response_format=None):
        self.calls.append(("create_run", conversation_id, assistant_id, response_format))
        return self._new_run(conversation_id)

    async def retrieve_run(self, conversation_id, run_id):
        self.calls.append(("retrieve_run", conversation_id, run_id))
        if self.fail_status_fetches > 0:
            self.fail_status_fetches -= 1
            raise ConnectionError("transient")
        index = self._polls.get(run_id, 0)
        self._polls[run_id] = index + 1
        status = self.statuses[min(index, len(self.statuses) - 1)]
        return Run(id=run_id, conversation_id=conversation_id, status=status)

    async def latest_reply(self, conversation_id, run_id):
        self.calls.append(("latest_reply", conversation_id, run_id))
        return [{"type": "text", "text": {"value": self.reply_text, "annotations": []}}]

    def _events(self, conversation_id):
        if self.stream_events is not None:
            return list(self.stream_events)
        events = [StreamEvent(kind="conversation_created", conversation_id=conversation_id)]
        half = len(self.reply_text) // 2
        for piece in (self.reply_text[:half], self.reply_text[half:]):
            events.append(StreamEvent(kind="message_delta", text=piece))
        events.append(StreamEvent(kind="run_status", status="completed"))
        return events

    async def stream_conversation_and_run(self, assistant_id, messages, response_format=None):
        self.calls.append(("stream_conversation_and_run", assistant_id, messages, response_format))
        for event in self._events(self._new_thread()):
            yield event

    async def stream_run(self, conversation_id, assistant_id, response_format=None):
        self.calls.append(("stream_run", conversation_id, assistant_id, response_format))
        for event in self._events(conversation_id):
            yield event


async def no_sleep(delay):
    return None


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file per test so threads get their own connections."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as session:
        session.add(Assistant(name="default", assistant_id="asst_default"))
        session.commit()
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def provider():
    return FakeAssistantProvider()


@pytest.fixture
def fetcher():
    """Page fetcher stub; set ``fetcher.fetch.return_value`` in tests."""
    stub = AsyncMock()
    stub.fetch.return_value = None
    return stub


@pytest.fixture
def poll_executor(provider):
    policy = BackoffPolicy(max_attempts=5, initial_delay=0.5, factor=1.5, max_delay=2.0)
    return RunExecutor(provider, mode="poll", policy=policy, sleep=no_sleep)


@pytest.fixture
def services(provider, engine, fetcher, poll_executor):
    return build_container(
        provider=provider, engine=engine, fetcher=fetcher, executor=poll_executor
    )


async def noop_scheduler(*args, **kwargs):
    """No-op replacement for scheduler_loop."""
    return


@pytest.fixture
def client(services):
    """FastAPI TestClient with all external deps patched."""
    with (
        patch("relaybot.main.init_db"),
        patch("relaybot.main.build_container", return_value=services),
        patch("relaybot.main.scheduler_loop", noop_scheduler),
        patch("relaybot.main.settings.discord_token", ""),
    ):
        from relaybot.main import app

        with TestClient(app) as c:
            yield c
