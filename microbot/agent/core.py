"""
Agent Core
==========

The top-level orchestrator. One Agent instance owns every store (sessions,
skills, memory) and handles inbound messages from any transport.

Message Flow:
    Inbound message (WebSocket / Slack)
         │
         ▼
    Validate (content, user, channel) ── invalid ──► dropped, no reply
         │
         ▼
    SessionStore.get_or_create ─► append user turn
         │
         ▼
    ContextAssembler.build (identity + memory + skills + history)
         │
         ▼
    OrchestrationLoop.run (model <-> skills)
         │
         ▼
    Append assistant turn ─► persist ─► deliver to the reply sink

Only the user turn and the final reply are written to the session. The
intermediate tool round-trips stay in the loop's own message list.

Failure Handling:
    Storage errors are logged and the turn continues with the in-memory
    session. Anything unexpected is caught here, logged, and turned into an
    error payload for the originating connection; it never propagates to
    the transport.
"""

from datetime import datetime
from typing import Any, Protocol

from microbot.agent.context import ContextAssembler
from microbot.agent.dispatcher import SkillDispatcher, register_builtin_handlers
from microbot.agent.inbound import InboundMessage
from microbot.agent.loop import OrchestrationLoop
from microbot.agent.memory import MemoryStore
from microbot.errors import InvalidMessageError, SessionStoreError
from microbot.models.base import ModelClient, check_model_available
from microbot.models.factory import create_model_client
from microbot.session.manager import Message, Session, SessionStore
from microbot.skills.catalog import SkillCatalog
from microbot.utils.config import Config
from microbot.utils.logger import Logger, truncate

logger = Logger("Agent")

DEFAULT_SINK = "default"


class ReplySink(Protocol):
    """Where outbound payloads go (a transport, or a test recorder)."""

    async def deliver(self, message: InboundMessage, payload: dict[str, Any]) -> None:
        ...


def response_payload(reply: str, session: Session) -> dict[str, Any]:
    return {
        "type": "response",
        "message": reply,
        "sessionId": session.key,
        "timestamp": datetime.now().isoformat(),
    }


def error_payload(error: BaseException) -> dict[str, Any]:
    return {
        "type": "error",
        "message": "Error processing message",
        "error": str(error),
    }


class Agent:
    """
    Handles inbound messages end to end.

    Example:
        agent = Agent.from_config(get_config())
        await agent.initialize()

        agent.add_sink("websocket", websocket_transport)
        reply = await agent.handle_message({
            "content": "hello", "user": "u1", "channel": "c1",
            "type": "websocket", "clientId": "client_ab12",
        })
    """

    def __init__(
        self,
        client: ModelClient,
        sessions: SessionStore,
        catalog: SkillCatalog,
        dispatcher: SkillDispatcher,
        assembler: ContextAssembler,
        loop: OrchestrationLoop,
        memory: MemoryStore | None = None,
        skills_dir=None
    ):
        """
        Args:
            client: Model backend
            sessions: Session store (owned by this agent)
            catalog: Skill catalog (owned by this agent)
            dispatcher: Skill dispatcher bound to `catalog`
            assembler: Context assembler bound to `catalog` and `memory`
            loop: Tool-call loop bound to `client` and `dispatcher`
            memory: Optional memory store
            skills_dir: Directory the catalog is loaded from
        """
        self.client = client
        self.sessions = sessions
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.assembler = assembler
        self.loop = loop
        self.memory = memory
        self.skills_dir = skills_dir
        self._sinks: dict[str, ReplySink] = {}

    @classmethod
    def from_config(cls, config: Config, client: ModelClient | None = None) -> "Agent":
        """
        Wire the default component graph from configuration.

        Args:
            config: Application configuration
            client: Optional model client (defaults to the configured backend)
        """
        client = client or create_model_client(config.model, timeout=config.loop.model_timeout)

        catalog = SkillCatalog()
        memory = MemoryStore(config.paths.memory_dir)

        dispatcher = SkillDispatcher(catalog, timeout=config.loop.tool_timeout)
        register_builtin_handlers(dispatcher)

        loop = OrchestrationLoop(
            client,
            dispatcher,
            model=config.model.name,
            max_iterations=config.loop.max_iterations,
            model_timeout=config.loop.model_timeout,
            options={
                "temperature": config.model.temperature,
                "max_tokens": config.model.max_tokens,
            },
        )

        return cls(
            client=client,
            sessions=SessionStore(config.paths.sessions_dir),
            catalog=catalog,
            dispatcher=dispatcher,
            assembler=ContextAssembler(catalog, memory, config.paths.soul_file),
            loop=loop,
            memory=memory,
            skills_dir=config.paths.skills_dir,
        )

    @property
    def model(self) -> str:
        return self.loop.model

    async def initialize(self) -> None:
        """Load sessions and skills, prepare memory, and probe the backend."""
        logger.info("Initializing agent...")

        await self.sessions.initialize()
        if self.memory is not None:
            await self.memory.initialize()
        if self.skills_dir is not None:
            await self.catalog.load(self.skills_dir)

        try:
            if await check_model_available(self.client, self.model):
                logger.info(f"Model {self.model} is available")
            else:
                logger.warning(f"Model {self.model} not found. Please run 'ollama pull {self.model}'")
        except Exception as e:
            logger.warning(f"Could not connect to model service: {e}")

        logger.info(f"Agent initialized with model: {self.model}")

    def add_sink(self, transport: str, sink: ReplySink) -> None:
        """
        Route replies for messages of type `transport` to `sink`.

        Use DEFAULT_SINK for messages without a type.
        """
        self._sinks[transport] = sink

    async def handle_message(self, payload: InboundMessage | dict[str, Any]) -> str | None:
        """
        Process one inbound message.

        Args:
            payload: An InboundMessage or a raw transport dict

        Returns:
            The reply text, or None if the message was rejected or failed
        """
        try:
            message = _coerce(payload)
        except InvalidMessageError as e:
            logger.warning(f"Invalid message format: {e}")
            return None

        logger.info(
            f"Processing message from {message.user} in {message.channel}: "
            f"{truncate(message.content, 50)}"
        )

        try:
            session = await self.sessions.get_or_create(message.channel, message.user)
            history = session.history_view()
            await self._record(session, Message.create("user", message.content, message.timestamp))

            context = await self.assembler.build(session, message, history)
            result = await self.loop.run(context)

            await self._record(session, Message.create("assistant", result.reply))

            logger.info(
                f"Generated reply for {session.key} ({len(result.reply)} chars, "
                f"{result.iterations} model calls, {result.tool_calls} tool calls)"
            )
            await self._deliver(message, response_payload(result.reply, session))
            return result.reply

        except Exception as e:
            logger.error("Error processing message", e)
            await self._deliver(message, error_payload(e))
            return None

    async def _record(self, session: Session, message: Message) -> None:
        try:
            await self.sessions.append(session, message)
        except SessionStoreError as e:
            # In-memory session already has the message; durability is best-effort
            logger.warning(f"Continuing without persisting {message.role} turn: {e}")

    async def _deliver(self, message: InboundMessage, payload: dict[str, Any]) -> None:
        sink = self._sinks.get(message.type or DEFAULT_SINK) or self._sinks.get(DEFAULT_SINK)
        if sink is None:
            logger.debug(f"No reply sink for message type {message.type!r}")
            return

        try:
            await sink.deliver(message, payload)
        except Exception as e:
            logger.error(f"Error delivering {payload.get('type')} to {message.type or DEFAULT_SINK}", e)

    async def reload_skills(self) -> int:
        """Reload the skill catalog; readers keep the old set until the swap."""
        if self.skills_dir is None:
            return len(self.catalog)
        return await self.catalog.load(self.skills_dir)

    async def clear_conversation(self, channel: str, user: str) -> bool:
        """
        Delete a conversation's session.

        Returns:
            True if a session existed
        """
        deleted = await self.sessions.delete(channel, user)
        if deleted:
            logger.info(f"Cleared conversation for {channel}:{user}")
        return deleted

    def status(self) -> dict[str, Any]:
        """Summary used by the CLI and the Slack slash command."""
        return {
            "model": self.model,
            "skills": len(self.catalog),
            "available_skills": sum(1 for s in self.catalog.all() if s.available),
            "sessions": self.sessions.count(),
        }


def _coerce(payload: InboundMessage | dict[str, Any]) -> InboundMessage:
    if isinstance(payload, InboundMessage):
        return payload.validate()
    if not isinstance(payload, dict):
        raise InvalidMessageError(["content", "user", "channel"])
    return InboundMessage.from_dict(payload).validate()
