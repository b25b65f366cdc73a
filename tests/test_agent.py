"""End-to-end tests for Agent.handle_message."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from microbot.agent.inbound import InboundMessage
from microbot.errors import SessionStoreError

from conftest import FakeModelClient, RecordingSink


def _payload(content: str = "hello", **extra) -> dict:
    return {"content": content, "user": "u1", "channel": "c1", "type": "websocket", "clientId": "client_1", **extra}


class TestHandleMessage:
    async def test_hello_round_trip(self, make_agent, sink: RecordingSink, sessions_dir: Path) -> None:
        agent = make_agent(FakeModelClient(["Hi there"]))
        agent.add_sink("websocket", sink)
        await agent.initialize()

        reply = await agent.handle_message(_payload())

        assert reply == "Hi there"

        session = agent.sessions.get("c1", "u1")
        assert [(m.role, m.content) for m in session.history_view()] == [
            ("user", "hello"),
            ("assistant", "Hi there"),
        ]

        [(message, payload)] = sink.deliveries
        assert message.client_id == "client_1"
        assert payload["type"] == "response"
        assert payload["message"] == "Hi there"
        assert payload["sessionId"] == "c1:u1"
        assert "timestamp" in payload

        record = json.loads((sessions_dir / "c1+u1.json").read_text(encoding="utf-8"))
        assert len(record["messages"]) == 2

    async def test_only_user_turn_and_final_reply_are_persisted(self, make_agent, sink: RecordingSink) -> None:
        async def greet(params: dict[str, str]) -> str:
            return f"Hello, {params['name']}!"

        agent = make_agent(
            FakeModelClient(["<greet><name>Ana</name></greet>", "I said hello to Ana."]),
            handlers={"greet": greet},
        )
        agent.add_sink("websocket", sink)
        await agent.initialize()

        await agent.handle_message(_payload("greet Ana"))

        session = agent.sessions.get("c1", "u1")
        assert [m.content for m in session.history_view()] == ["greet Ana", "I said hello to Ana."]
        assert len(sink.deliveries) == 1

    async def test_history_is_sent_on_the_next_turn(self, make_agent) -> None:
        client = FakeModelClient(["first reply", "second reply"])
        agent = make_agent(client)
        await agent.initialize()

        await agent.handle_message(_payload("one"))
        await agent.handle_message(_payload("two"))

        contents = [m["content"] for m in client.requests[1].messages[1:]]
        assert contents == ["one", "first reply", "two"]

    async def test_concurrent_turns_send_each_message_once(self, make_agent) -> None:
        client = FakeModelClient(["first reply", "reply"])
        agent = make_agent(client)
        await agent.initialize()
        await agent.handle_message(_payload("first"))

        await asyncio.gather(
            agent.handle_message(_payload("A")),
            agent.handle_message(_payload("B")),
        )

        by_turn = {r.messages[-1]["content"]: [m["content"] for m in r.messages[1:]] for r in client.requests[1:]}
        assert by_turn == {
            "A": ["first", "first reply", "A"],
            "B": ["first", "first reply", "A", "B"],
        }

    async def test_invalid_message_is_dropped(self, make_agent, sink: RecordingSink) -> None:
        client = FakeModelClient()
        agent = make_agent(client)
        agent.add_sink("websocket", sink)
        await agent.initialize()

        assert await agent.handle_message({"content": "hello", "channel": "c1", "type": "websocket"}) is None
        assert await agent.handle_message({"user": "u1", "channel": "c1"}) is None
        assert await agent.handle_message("not a dict") is None

        assert agent.sessions.count() == 0
        assert sink.deliveries == []
        assert client.requests == []

    async def test_accepts_inbound_message(self, make_agent) -> None:
        agent = make_agent(FakeModelClient(["ok"]))
        await agent.initialize()

        reply = await agent.handle_message(InboundMessage(content="hi", user="u1", channel="c1"))

        assert reply == "ok"

    async def test_default_sink(self, make_agent, sink: RecordingSink) -> None:
        agent = make_agent(FakeModelClient(["ok"]))
        agent.add_sink("default", sink)
        await agent.initialize()

        await agent.handle_message({"content": "hi", "user": "u1", "channel": "c1", "type": "other"})

        assert len(sink.deliveries) == 1

    async def test_storage_failure_is_not_fatal(self, make_agent, sink: RecordingSink, monkeypatch) -> None:
        agent = make_agent(FakeModelClient(["still here"]))
        agent.add_sink("websocket", sink)
        await agent.initialize()

        async def failing_write(session) -> None:
            raise SessionStoreError("disk full")

        monkeypatch.setattr(agent.sessions, "_write", failing_write)

        assert await agent.handle_message(_payload()) == "still here"
        assert len(agent.sessions.get("c1", "u1")) == 2
        assert sink.deliveries[0][1]["type"] == "response"

    async def test_unexpected_error_delivers_error_payload(self, make_agent, sink: RecordingSink, monkeypatch) -> None:
        agent = make_agent(FakeModelClient())
        agent.add_sink("websocket", sink)
        await agent.initialize()

        async def explode(*args):
            raise RuntimeError("boom")

        monkeypatch.setattr(agent.assembler, "build", explode)

        assert await agent.handle_message(_payload()) is None
        [(_, payload)] = sink.deliveries
        assert payload == {"type": "error", "message": "Error processing message", "error": "boom"}

    async def test_sink_failure_is_contained(self, make_agent) -> None:
        class BrokenSink:
            async def deliver(self, message, payload) -> None:
                raise ConnectionError("gone")

        agent = make_agent(FakeModelClient(["ok"]))
        agent.add_sink("websocket", BrokenSink())
        await agent.initialize()

        assert await agent.handle_message(_payload()) == "ok"


class TestAgentAdmin:
    async def test_clear_conversation(self, make_agent) -> None:
        agent = make_agent(FakeModelClient(["ok"]))
        await agent.initialize()
        await agent.handle_message(_payload())

        assert await agent.clear_conversation("c1", "u1") is True
        assert agent.sessions.get("c1", "u1") is None

    async def test_reload_skills(self, make_agent, skills_dir: Path) -> None:
        agent = make_agent(FakeModelClient(["ok"]))
        agent.skills_dir = skills_dir
        await agent.initialize()
        assert len(agent.catalog) == 0

        (skills_dir / "weather.md").write_text("Looks up the weather.", encoding="utf-8")

        assert await agent.reload_skills() == 1
        assert "weather" in agent.catalog

    async def test_status(self, make_agent) -> None:
        agent = make_agent(FakeModelClient(["ok"]))
        await agent.initialize()
        await agent.handle_message(_payload())

        status = agent.status()

        assert status == {"model": "fake-model", "skills": 2, "available_skills": 2, "sessions": 1}
