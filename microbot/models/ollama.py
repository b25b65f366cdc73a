"""
Ollama Backend
==============

Chat client for a local (or remote) Ollama daemon.

Endpoints used:
- POST /api/chat   non-streaming chat completion
- GET  /api/tags   installed models, for model_exists()

Ollama reports model names with tags and registry prefixes
("registry.ollama.ai/library/qwen3-vl:8b"), so model_exists() accepts a
match in either direction of a case-insensitive substring comparison.
"""

import httpx

from microbot.errors import ModelError
from microbot.models.base import ChatReply, ChatRequest
from microbot.utils.logger import Logger

logger = Logger("Ollama")


class OllamaClient:
    """
    Async Ollama client.

    Example:
        client = OllamaClient("http://localhost:11434", model="qwen3-vl")

        if await client.model_exists("qwen3-vl"):
            reply = await client.chat(ChatRequest(
                model="qwen3-vl",
                messages=[{"role": "user", "content": "hello"}],
            ))
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "qwen3-vl",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None
    ):
        """
        Args:
            base_url: Daemon URL (protocol://host:port)
            model: Default model name
            timeout: Seconds allowed per HTTP request
            http_client: Optional preconfigured client (tests inject one)
        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def chat(self, request: ChatRequest) -> ChatReply:
        """
        Send a chat request.

        Raises:
            ModelError: On transport failure, an HTTP error status, or a
                response without a message
        """
        logger.debug(f"Sending chat request to Ollama: {self.base_url}/api/chat")

        body = {
            "model": request.model or self.model_name,
            "messages": request.messages,
            "stream": False,
        }
        if request.options:
            body["options"] = _ollama_options(request.options)

        try:
            response = await self._client.post("/api/chat", json=body)
        except httpx.HTTPError as e:
            raise ModelError(f"Ollama chat request failed: {e}") from e

        if response.status_code >= 400:
            raise ModelError(
                f"Ollama chat request failed: {response.status_code} {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelError(f"Ollama returned invalid JSON: {e}") from e

        message = data.get("message") or {}
        logger.debug(f"Received chat response from Ollama model: {data.get('model', body['model'])}")
        return ChatReply(
            content=message.get("content") or data.get("response") or "",
            role=message.get("role") or "assistant",
        )

    async def list_models(self) -> list[str]:
        """
        Names of the installed models.

        Raises:
            ModelError: If the daemon cannot be reached
        """
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ModelError(f"Ollama list models failed: {e}") from e

        models = [m.get("name", "") for m in data.get("models") or []]
        logger.debug(f"Found {len(models)} Ollama models")
        return models

    async def model_exists(self, name: str) -> bool:
        """
        Check whether a model is installed.

        Returns:
            False when the daemon cannot be reached
        """
        try:
            models = await self.list_models()
        except ModelError as e:
            logger.error("Error checking if model exists", e)
            return False

        wanted = name.lower().strip()
        if not wanted:
            return False
        for model in models:
            candidate = model.lower().strip()
            if candidate and (wanted in candidate or candidate in wanted):
                return True
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


def _ollama_options(options: dict) -> dict:
    """Ollama calls max_tokens num_predict."""
    converted = dict(options)
    if "max_tokens" in converted:
        converted["num_predict"] = converted.pop("max_tokens")
    return converted
