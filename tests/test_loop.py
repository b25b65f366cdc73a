"""Tests for the model <-> skill orchestration loop."""

from __future__ import annotations

import asyncio

import pytest

from microbot.agent.context import Context
from microbot.agent.dispatcher import SkillDispatcher
from microbot.agent.inbound import InboundMessage
from microbot.agent.loop import (
    EMPTY_REPLY,
    MODEL_ERROR_REPLY,
    LoopState,
    OrchestrationLoop,
)
from microbot.errors import ModelError
from microbot.models.base import ChatReply, ChatRequest
from microbot.skills.catalog import SkillCatalog

from conftest import FakeModelClient, FakeOllamaClient


def _context(content: str = "hello") -> Context:
    return Context(
        system_prompt="You are a test bot.",
        memory="",
        skills_summary="",
        history=(),
        current_message=InboundMessage(content=content, user="u1", channel="c1"),
    )


async def _greet(params: dict[str, str]) -> str:
    return f"Hello, {params.get('name', '')}!"


class TestOrchestrationLoop:
    async def test_plain_reply_is_final(self, catalog: SkillCatalog) -> None:
        client = FakeModelClient(["Hi there"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog))

        result = await loop.run(_context())

        assert result.reply == "Hi there"
        assert result.iterations == 1
        assert result.tool_calls == 0
        assert result.trace == [LoopState.AWAITING_MODEL_REPLY, LoopState.FINAL_REPLY]

    async def test_tool_result_goes_back_as_user_message(self, catalog: SkillCatalog) -> None:
        first = "<greet><name>Ana</name></greet>"
        client = FakeModelClient([first, "Done: Hello, Ana!"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog, handlers={"greet": _greet}))

        result = await loop.run(_context("greet Ana"))

        assert result.reply == "Done: Hello, Ana!"
        assert result.iterations == 2
        assert result.tool_calls == 1

        second_request = client.requests[1].messages
        assert second_request[-2:] == [
            {"role": "assistant", "content": first},
            {"role": "user", "content": "Tool greet result:\nHello, Ana!"},
        ]

    async def test_every_call_in_a_reply_is_executed_in_order(self, catalog: SkillCatalog) -> None:
        first = "<greet><name>Ana</name></greet><greet><name>Bo</name></greet>"
        client = FakeModelClient([first, "Both greeted"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog, handlers={"greet": _greet}))

        result = await loop.run(_context())

        assert result.tool_calls == 2
        tool_results = [m["content"] for m in client.requests[1].messages if m["content"].startswith("Tool ")]
        assert tool_results == ["Tool greet result:\nHello, Ana!", "Tool greet result:\nHello, Bo!"]

    async def test_unknown_skill_result_is_fed_back(self, catalog: SkillCatalog) -> None:
        client = FakeModelClient(["<nope>x</nope>", "Sorry"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog))

        await loop.run(_context())

        assert client.requests[1].messages[-1]["content"] == "Tool nope result:\nError: Skill nope not found"

    async def test_iteration_cap(self, catalog: SkillCatalog) -> None:
        client = FakeModelClient(["<greet><name>again</name></greet>"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog, handlers={"greet": _greet}))

        result = await loop.run(_context())

        assert len(client.requests) == 10
        assert result.iterations == 10
        assert result.truncated is True
        assert result.reply == "<greet><name>again</name></greet>"

    async def test_custom_iteration_cap(self, catalog: SkillCatalog) -> None:
        client = FakeModelClient(["<greet>x</greet>"])
        loop = OrchestrationLoop(client, SkillDispatcher(catalog), max_iterations=3)

        result = await loop.run(_context())

        assert len(client.requests) == 3
        assert result.truncated is True

    def test_iteration_cap_must_be_positive(self, catalog: SkillCatalog) -> None:
        with pytest.raises(ValueError):
            OrchestrationLoop(FakeModelClient(), SkillDispatcher(catalog), max_iterations=0)

    async def test_unavailable_model_short_circuits(self, catalog: SkillCatalog) -> None:
        client = FakeOllamaClient(["never sent"], installed=())
        loop = OrchestrationLoop(client, SkillDispatcher(catalog))

        result = await loop.run(_context())

        assert result.unavailable is True
        assert client.requests == []
        assert "fake-model" in result.reply
        assert "ollama pull fake-model" in result.reply

    async def test_model_error_becomes_apology(self, catalog: SkillCatalog) -> None:
        class FailingClient(FakeModelClient):
            async def chat(self, request: ChatRequest) -> ChatReply:
                raise ModelError("connection refused")

        result = await OrchestrationLoop(FailingClient(), SkillDispatcher(catalog)).run(_context())

        assert result.failed is True
        assert result.reply == MODEL_ERROR_REPLY

    async def test_model_timeout_becomes_apology(self, catalog: SkillCatalog) -> None:
        class SlowClient(FakeModelClient):
            async def chat(self, request: ChatRequest) -> ChatReply:
                await asyncio.sleep(10)
                return ChatReply(content="late")

        loop = OrchestrationLoop(SlowClient(), SkillDispatcher(catalog), model_timeout=0.05)

        result = await loop.run(_context())

        assert result.failed is True
        assert result.reply == MODEL_ERROR_REPLY

    async def test_empty_reply_is_replaced(self, catalog: SkillCatalog) -> None:
        result = await OrchestrationLoop(FakeModelClient([""]), SkillDispatcher(catalog)).run(_context())

        assert result.reply == EMPTY_REPLY

    async def test_context_messages_are_not_mutated(self, catalog: SkillCatalog) -> None:
        context = _context()
        client = FakeModelClient(["<greet>x</greet>", "done"])

        await OrchestrationLoop(client, SkillDispatcher(catalog)).run(context)

        assert len(context.to_model_messages()) == 2
        assert len(client.requests[0].messages) == 2
