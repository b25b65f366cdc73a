"""Tests for the model backends and the client factory."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from microbot.errors import ModelError
from microbot.models.base import ChatRequest, check_model_available
from microbot.models.factory import MINIMAX_BASE_URL, create_model_client
from microbot.models.ollama import OllamaClient
from microbot.models.openai_compatible import OpenAICompatibleClient
from microbot.utils.config import ModelConfig

from conftest import FakeModelClient

TAGS = {"models": [{"name": "qwen3-vl:8b"}, {"name": "registry.ollama.ai/library/llama3:latest"}]}


def _ollama(handler) -> OllamaClient:
    http_client = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))
    return OllamaClient("http://ollama.test", model="qwen3-vl", http_client=http_client)


def _model_config(**overrides) -> ModelConfig:
    values = dict(
        type="ollama", name="qwen3-vl", api_key=None, base_url=None,
        host="localhost", port=11434, protocol="http",
        temperature=0.7, max_tokens=1024,
    )
    values.update(overrides)
    return ModelConfig(**values)


class TestOllamaClient:
    async def test_chat(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"model": "qwen3-vl", "message": {"role": "assistant", "content": "Hi"}})

        client = _ollama(handler)
        reply = await client.chat(ChatRequest(
            model="qwen3-vl",
            messages=[{"role": "user", "content": "hello"}],
            options={"temperature": 0.2, "max_tokens": 64},
        ))

        assert reply.content == "Hi"
        assert seen["path"] == "/api/chat"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"] == {"temperature": 0.2, "num_predict": 64}

    async def test_chat_http_error(self) -> None:
        client = _ollama(lambda request: httpx.Response(500, text="model crashed"))

        with pytest.raises(ModelError):
            await client.chat(ChatRequest(model="qwen3-vl", messages=[]))

    async def test_chat_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ModelError):
            await _ollama(handler).chat(ChatRequest(model="qwen3-vl", messages=[]))

    @pytest.mark.parametrize("name,expected", [
        ("qwen3-vl", True),
        ("qwen3-vl:8b", True),
        ("LLAMA3", True),
        ("mistral", False),
        ("", False),
    ])
    async def test_model_exists(self, name: str, expected: bool) -> None:
        client = _ollama(lambda request: httpx.Response(200, json=TAGS))

        assert await client.model_exists(name) is expected

    async def test_model_exists_when_daemon_is_down(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert await _ollama(handler).model_exists("qwen3-vl") is False


class TestOpenAICompatibleClient:
    async def test_chat_filters_options(self) -> None:
        completion = MagicMock()
        completion.model = "gpt-4o-mini"
        completion.choices = [MagicMock(message=MagicMock(content="Hi", role="assistant"))]

        sdk = MagicMock()
        sdk.chat.completions.create = AsyncMock(return_value=completion)

        client = OpenAICompatibleClient(api_key="sk-test", model="gpt-4o-mini", client=sdk)
        reply = await client.chat(ChatRequest(
            model="gpt-4o-mini",
            messages=[{"role": "user", "content": "hello"}],
            options={"temperature": 0.1, "num_ctx": 4096},
        ))

        assert reply.content == "Hi"
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert "num_ctx" not in kwargs

    async def test_no_choices(self) -> None:
        completion = MagicMock(choices=[])
        sdk = MagicMock()
        sdk.chat.completions.create = AsyncMock(return_value=completion)

        client = OpenAICompatibleClient(api_key="sk-test", model="gpt-4o-mini", client=sdk)

        with pytest.raises(ModelError):
            await client.chat(ChatRequest(model="gpt-4o-mini", messages=[]))


class TestFactory:
    def test_ollama(self) -> None:
        client = create_model_client(_model_config(port=11500))

        assert isinstance(client, OllamaClient)
        assert client.base_url == "http://localhost:11500"

    def test_openai(self) -> None:
        client = create_model_client(_model_config(type="openai", name="gpt-4o-mini", api_key="sk-test"))

        assert isinstance(client, OpenAICompatibleClient)
        assert client.model_name == "gpt-4o-mini"

    def test_minimax_uses_openai_compatible_client(self) -> None:
        client = create_model_client(_model_config(type="minimax", name="abab6.5-chat", api_key="mm-test"))

        assert isinstance(client, OpenAICompatibleClient)
        assert client.model_name == "abab6.5-chat"
        assert str(client._client.base_url).startswith(MINIMAX_BASE_URL)

    def test_unsupported(self) -> None:
        with pytest.raises(ValueError):
            create_model_client(_model_config(type="carrier-pigeon"))


async def test_backends_without_model_check_count_as_available() -> None:
    assert await check_model_available(FakeModelClient(), "anything") is True
