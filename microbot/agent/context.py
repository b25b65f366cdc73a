"""
Context Assembly
================

Builds the grounding context for one turn from four sources:
- Identity: soul.md (or a built-in default system prompt)
- Memory: the excerpt from the MemoryStore
- Skills: the SkillCatalog summary
- Conversation: the session history plus the inbound message

A Context is built fresh for every inbound message and is read-only. The
loop turns it into a model-facing message list once, then appends its tool
round-trips to that list; the Context and the Session are never touched.

Model-Facing Layout:
    [system]     identity + "## Memory" + "## Available Skills"
    [user]       ...history...
    [assistant]  ...history...
    [user]       current inbound message
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path

from microbot.agent.inbound import InboundMessage
from microbot.agent.memory import MemoryStore
from microbot.session.manager import VALID_ROLES, Message, Session
from microbot.skills.catalog import SkillCatalog
from microbot.utils.logger import Logger

logger = Logger("Context")


DEFAULT_SYSTEM_PROMPT = """You are Microbot, a lightweight AI agent framework.

Your core instructions:
1. Be helpful and friendly
2. Follow user instructions carefully
3. Use tools when necessary
4. Keep responses concise and clear
5. Remember past conversations

Using skills:
- To call a skill, wrap the call in a tag named after the skill, with one
  nested tag per parameter: <skill-name><param>value</param></skill-name>
- A skill result comes back as a message starting with "Tool <name> result:"
- When you have what you need, answer without any skill tags"""


@dataclass(frozen=True)
class Context:
    """
    Everything the model sees for one turn.

    Attributes:
        system_prompt: Identity/system prompt text
        memory: Memory excerpt (may be empty)
        skills_summary: SkillCatalog.summarize() output (may be empty)
        history: Session transcript before the current message was recorded
        current_message: The inbound message being answered
    """
    system_prompt: str
    memory: str
    skills_summary: str
    history: tuple[Message, ...]
    current_message: InboundMessage

    def system_content(self) -> str:
        parts = [self.system_prompt.strip()]
        if self.memory.strip():
            parts.append(f"## Memory\n{self.memory.strip()}")
        if self.skills_summary.strip():
            parts.append(f"## Available Skills\n{self.skills_summary.strip()}")
        return "\n\n".join(p for p in parts if p)

    def to_model_messages(self) -> list[dict]:
        """
        Format as a fresh role/content list for a model backend.

        Roles outside user/assistant/system are sent as "user". The current
        message always comes last.

        Returns:
            A new list the caller may append to
        """
        messages = []

        system = self.system_content()
        if system:
            messages.append({"role": "system", "content": system})

        for msg in self.history:
            if not msg.role or not msg.content:
                continue
            role = msg.role if msg.role in VALID_ROLES else "user"
            messages.append({"role": role, "content": msg.content})

        messages.append({"role": "user", "content": self.current_message.content})

        return messages


class ContextAssembler:
    """
    Assembles a Context for each turn.

    Missing optional inputs never raise: an unreadable identity file falls
    back to DEFAULT_SYSTEM_PROMPT, and memory or skill failures degrade to
    empty text. Each fallback is logged.

    Example:
        assembler = ContextAssembler(catalog, memory, Path("soul.md"))

        context = await assembler.build(session, inbound)
        messages = context.to_model_messages()
    """

    def __init__(
        self,
        catalog: SkillCatalog,
        memory: MemoryStore | None = None,
        soul_file: Path | None = None
    ):
        """
        Args:
            catalog: Skill catalog to summarize
            memory: Optional memory store for the excerpt
            soul_file: Optional identity prompt file
        """
        self.catalog = catalog
        self.memory = memory
        self.soul_file = Path(soul_file) if soul_file else None
        self._identity: str | None = None

    async def build(
        self,
        session: Session,
        inbound: InboundMessage,
        history: tuple[Message, ...] | None = None
    ) -> Context:
        """
        Assemble the context for one inbound message.

        Args:
            session: The conversation's session
            inbound: The message being answered
            history: Transcript snapshot taken before the inbound message was
                recorded; defaults to the session's current history

        Returns:
            A read-only Context
        """
        logger.debug(f"Building context for {session.key}")

        system_prompt = await self._get_identity()
        memory = await self._get_memory()
        skills_summary = self._get_skills_summary()

        return Context(
            system_prompt=system_prompt,
            memory=memory,
            skills_summary=skills_summary,
            history=session.history_view() if history is None else history,
            current_message=inbound,
        )

    async def reload_identity(self) -> str:
        """Forget the cached identity prompt and read it again."""
        self._identity = None
        return await self._get_identity()

    async def _get_identity(self) -> str:
        if self._identity is not None:
            return self._identity

        content = ""
        if self.soul_file is None:
            logger.info("No identity file configured, using default system prompt")
        else:
            try:
                content = await asyncio.to_thread(self.soul_file.read_text, encoding="utf-8")
                logger.info(f"Identity loaded from {self.soul_file}")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not load {self.soul_file}, using default system prompt: {e}")

        self._identity = content.strip() or DEFAULT_SYSTEM_PROMPT
        return self._identity

    async def _get_memory(self) -> str:
        if self.memory is None:
            return ""
        try:
            return await self.memory.get_memory_context()
        except Exception as e:
            logger.error("Error reading memory, continuing without it", e)
            return ""

    def _get_skills_summary(self) -> str:
        try:
            return self.catalog.summarize()
        except Exception as e:
            logger.error("Error building skills summary", e)
            return ""
