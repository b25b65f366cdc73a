"""
Orchestration Loop
==================

Turns one assembled Context into a final reply, running skills in between.

State Machine:

    (availability check) ── model missing ──► fixed "unavailable" reply
            │
            ▼
    AWAITING_MODEL_REPLY ◄─────────────────────────┐
            │ model reply                          │
            ▼                                      │
    parse tool calls ── none ──► FINAL_REPLY       │
            │ some                                 │
            ▼                                      │
    HAS_TOOL_CALLS ─► EXECUTING_TOOLS ─────────────┘
                      for each call, in order:
                        [assistant] <model reply>
                        [user]      Tool <name> result:\\n<result>

Tool results go back as user-role messages. Some backends reject roles
other than user/assistant/system, and some ignore system messages in the
middle of a conversation.

Bounds:
- At most `max_iterations` model calls (default 10). Hitting the cap is not
  an error: the last reply is returned and a warning logged.
- Each model call is bounded by `model_timeout`; each skill by the
  dispatcher's timeout.

The loop works on its own copy of the message list. Nothing it appends is
written to the Session; the agent records only the user turn and the final
reply.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from microbot.agent.context import Context
from microbot.agent.dispatcher import SkillDispatcher
from microbot.agent.parser import ToolCallParser
from microbot.errors import ModelError
from microbot.models.base import ChatRequest, ModelClient, check_model_available
from microbot.utils.logger import Logger, truncate

logger = Logger("Loop")

DEFAULT_MAX_ITERATIONS = 10

EMPTY_REPLY = "Sorry, I could not generate a response."

MODEL_ERROR_REPLY = (
    "Sorry, I encountered an error while processing your request. "
    "Please check the model service configuration."
)

UNAVAILABLE_TEMPLATE = (
    "Sorry, the model {model} is not available. "
    "Please make sure to pull it with 'ollama pull {model}'."
)


class LoopState(Enum):
    AWAITING_MODEL_REPLY = "awaiting-model-reply"
    HAS_TOOL_CALLS = "has-tool-calls"
    EXECUTING_TOOLS = "executing-tools"
    FINAL_REPLY = "final-reply"


@dataclass
class LoopResult:
    """
    Outcome of one loop run.

    Attributes:
        reply: Text to deliver and persist
        iterations: Model calls made
        tool_calls: Skill executions made
        truncated: True if the iteration cap stopped the loop
        unavailable: True if the model was missing and no call was made
        failed: True if the model backend errored
        messages: Final model-facing message list
        trace: States visited, in order
    """
    reply: str
    iterations: int = 0
    tool_calls: int = 0
    truncated: bool = False
    unavailable: bool = False
    failed: bool = False
    messages: list[dict] | None = None
    trace: list[LoopState] = field(default_factory=list)


def format_tool_result(name: str, result: str) -> str:
    return f"Tool {name} result:\n{result}"


class OrchestrationLoop:
    """
    The model <-> skill round-trip driver.

    Example:
        loop = OrchestrationLoop(client, dispatcher, model="qwen3-vl")
        result = await loop.run(context)
        print(result.reply)
    """

    def __init__(
        self,
        client: ModelClient,
        dispatcher: SkillDispatcher,
        model: str | None = None,
        parser: ToolCallParser | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        model_timeout: float | None = None,
        options: dict[str, Any] | None = None
    ):
        """
        Args:
            client: Model backend
            dispatcher: Executes parsed skill calls
            model: Model identifier (defaults to client.model_name)
            parser: Tool call parser (a default one is created)
            max_iterations: Hard cap on model calls per run
            model_timeout: Seconds allowed per model call, None for no limit
            options: Sampling options sent with every request
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.client = client
        self.dispatcher = dispatcher
        self.model = model or getattr(client, "model_name", "")
        self.parser = parser or ToolCallParser()
        self.max_iterations = max_iterations
        self.model_timeout = model_timeout
        self.options = dict(options or {})

    async def run(self, context: Context) -> LoopResult:
        """
        Drive the loop for one inbound message.

        Never raises for backend or skill failures; those become reply text.
        The instance holds no per-run state, so one loop can serve
        concurrent turns.

        Args:
            context: The assembled turn context

        Returns:
            LoopResult with the reply to deliver
        """
        trace: list[LoopState] = []

        if not await self._model_available():
            logger.warning(f"Model {self.model} not found")
            trace.append(LoopState.FINAL_REPLY)
            return LoopResult(
                reply=UNAVAILABLE_TEMPLATE.format(model=self.model),
                unavailable=True,
                trace=trace,
            )

        messages = context.to_model_messages()
        reply = ""
        iteration = 0
        executed = 0

        while iteration < self.max_iterations:
            iteration += 1
            trace.append(LoopState.AWAITING_MODEL_REPLY)
            logger.info(f"Tool call loop iteration {iteration}/{self.max_iterations}")

            try:
                reply = await self._call_model(messages)
            except ModelError as e:
                logger.error("Error calling model service", e)
                trace.append(LoopState.FINAL_REPLY)
                return LoopResult(
                    reply=MODEL_ERROR_REPLY,
                    iterations=iteration,
                    tool_calls=executed,
                    failed=True,
                    messages=messages,
                    trace=trace,
                )

            logger.info(f"Generated response: {truncate(reply, 100)}")

            calls = self.parser.parse(reply)
            if not calls:
                logger.info("No tool calls found, this is the final response")
                trace.append(LoopState.FINAL_REPLY)
                return LoopResult(
                    reply=reply,
                    iterations=iteration,
                    tool_calls=executed,
                    messages=messages,
                    trace=trace,
                )

            trace.append(LoopState.HAS_TOOL_CALLS)
            logger.info(f"Found {len(calls)} tool call(s)")

            trace.append(LoopState.EXECUTING_TOOLS)
            for call in calls:
                result = await self.dispatcher.execute(call.name, call.params)
                executed += 1
                logger.info(f"Tool {call.name} result: {truncate(result, 200)}")

                messages.append({"role": "assistant", "content": reply})
                messages.append({"role": "user", "content": format_tool_result(call.name, result)})

        logger.warning("Reached maximum tool call iterations, stopping")
        trace.append(LoopState.FINAL_REPLY)
        return LoopResult(
            reply=reply,
            iterations=iteration,
            tool_calls=executed,
            truncated=True,
            messages=messages,
            trace=trace,
        )

    async def _model_available(self) -> bool:
        try:
            return await check_model_available(self.client, self.model)
        except Exception as e:
            # Probe failures fall through to the chat call
            logger.warning(f"Could not check model availability: {e}")
            return True

    async def _call_model(self, messages: list[dict]) -> str:
        """
        One model call, bounded by model_timeout.

        Raises:
            ModelError: On timeout or any backend failure
        """
        request = ChatRequest(model=self.model, messages=list(messages), options=dict(self.options))
        logger.debug(f"Sending {len(messages)} messages to {self.model}")

        try:
            if self.model_timeout is None:
                response = await self.client.chat(request)
            else:
                response = await asyncio.wait_for(self.client.chat(request), timeout=self.model_timeout)
        except ModelError:
            raise
        except asyncio.TimeoutError as e:
            raise ModelError(f"Model call timed out after {self.model_timeout:g}s") from e
        except Exception as e:
            raise ModelError(f"Model call failed: {e}") from e

        return response.content or EMPTY_REPLY
