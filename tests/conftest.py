from __future__ import annotations

from pathlib import Path

import pytest

from microbot.agent.core import Agent
from microbot.agent.context import ContextAssembler
from microbot.agent.dispatcher import SkillDispatcher
from microbot.agent.inbound import InboundMessage
from microbot.agent.loop import OrchestrationLoop
from microbot.agent.memory import MemoryStore
from microbot.models.base import ChatReply, ChatRequest
from microbot.session.manager import SessionStore
from microbot.skills.catalog import SkillCatalog, SkillDescriptor


class FakeModelClient:
    """Scripted model: returns queued replies in order, then repeats the last."""

    model_name = "fake-model"

    def __init__(self, replies: list[str] | None = None):
        self.replies = list(replies or ["ok"])
        self.requests: list[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> ChatReply:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.replies) - 1)
        return ChatReply(content=self.replies[index])


class FakeOllamaClient(FakeModelClient):
    """Scripted model that can also report which models are installed."""

    def __init__(self, replies: list[str] | None = None, installed: tuple[str, ...] = ("fake-model",)):
        super().__init__(replies)
        self.installed = installed

    async def model_exists(self, name: str) -> bool:
        return name in self.installed


class RecordingSink:
    def __init__(self):
        self.deliveries: list[tuple[InboundMessage, dict]] = []

    async def deliver(self, message: InboundMessage, payload: dict) -> None:
        self.deliveries.append((message, payload))


@pytest.fixture
def skills_dir(tmp_path: Path) -> Path:
    path = tmp_path / "skills"
    path.mkdir()
    return path


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    return tmp_path / "sessions"


@pytest.fixture
def catalog() -> SkillCatalog:
    return SkillCatalog({
        "greet": SkillDescriptor(name="greet", description="Say hello to someone"),
        "lookup": SkillDescriptor(name="lookup", description="Look up a record by id"),
    })


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_agent(tmp_path: Path, sessions_dir: Path, catalog: SkillCatalog):
    """Build an Agent around a scripted model, with storage under tmp_path."""

    def _make(client: FakeModelClient, handlers: dict | None = None, max_iterations: int = 10) -> Agent:
        memory = MemoryStore(tmp_path / "memory")
        dispatcher = SkillDispatcher(catalog, handlers=handlers, timeout=5)
        return Agent(
            client=client,
            sessions=SessionStore(sessions_dir),
            catalog=catalog,
            dispatcher=dispatcher,
            assembler=ContextAssembler(catalog, memory, tmp_path / "soul.md"),
            loop=OrchestrationLoop(client, dispatcher, max_iterations=max_iterations),
            memory=memory,
        )

    return _make
