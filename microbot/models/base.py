"""
Model Client Interface
======================

The capability the tool-call loop needs from a backend:

    chat(ChatRequest) -> ChatReply          required
    model_exists(name) -> bool              optional

Only some providers can tell whether a model is installed (Ollama can, a
hosted OpenAI-compatible API generally cannot). The optional operation is
its own protocol, and check_model_available() treats a backend that does not
implement it as "available".
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ChatRequest:
    """
    One chat call.

    Attributes:
        model: Model identifier
        messages: [{"role": ..., "content": ...}, ...]
        options: Sampling options (temperature, max_tokens, ...)
    """
    model: str
    messages: list[dict[str, str]]
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatReply:
    """Normalized backend reply."""
    content: str
    role: str = "assistant"


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can answer a chat request."""

    model_name: str

    async def chat(self, request: ChatRequest) -> ChatReply:
        ...


@runtime_checkable
class SupportsModelExists(Protocol):
    """Backends that can check whether a model is installed."""

    async def model_exists(self, name: str) -> bool:
        ...


async def check_model_available(client: ModelClient, name: str) -> bool:
    """
    Ask the backend whether `name` is available.

    Returns:
        The backend's answer, or True for backends without the capability
    """
    if not isinstance(client, SupportsModelExists):
        return True
    return await client.model_exists(name)
