"""
Model Backends
==============

Provider-agnostic chat interface plus the adapters that ship with microbot:
- OllamaClient: local Ollama daemon over its HTTP API
- OpenAICompatibleClient: any OpenAI-compatible chat completions endpoint

Each adapter normalizes its provider's response into a ChatReply, so the
tool-call loop only ever sees {role, content}.
"""

from microbot.models.base import (
    ChatReply,
    ChatRequest,
    ModelClient,
    SupportsModelExists,
    check_model_available,
)
from microbot.models.factory import create_model_client

__all__ = [
    "ChatReply",
    "ChatRequest",
    "ModelClient",
    "SupportsModelExists",
    "check_model_available",
    "create_model_client",
]
