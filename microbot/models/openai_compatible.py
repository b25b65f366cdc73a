"""
OpenAI-Compatible Backend
=========================

Chat client for any endpoint that speaks the OpenAI chat completions API
(OpenAI itself, MiniMax, vLLM, LM Studio, ...). Point MODEL_BASE_URL at
the provider and set MODEL_API_KEY.

There is no cheap, portable way to ask these providers whether a model
exists, so this client does not implement model_exists().
"""

from openai import AsyncOpenAI, OpenAIError

from microbot.errors import ModelError
from microbot.models.base import ChatReply, ChatRequest
from microbot.utils.logger import Logger

logger = Logger("OpenAI")

# Options forwarded to chat.completions.create(); anything else is dropped
_SUPPORTED_OPTIONS = ("temperature", "max_tokens", "top_p", "stop", "presence_penalty", "frequency_penalty")


class OpenAICompatibleClient:
    """
    Async client for OpenAI-compatible chat completions.

    Example:
        client = OpenAICompatibleClient(api_key="sk-...", model="gpt-4o-mini")
        reply = await client.chat(ChatRequest(
            model="gpt-4o-mini",
            messages=[{"role": "user", "content": "hello"}],
        ))
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float = 120.0,
        client: AsyncOpenAI | None = None
    ):
        self.model_name = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    async def chat(self, request: ChatRequest) -> ChatReply:
        """
        Send a chat request and normalize the first choice.

        Raises:
            ModelError: If the API call fails or returns no choices
        """
        options = {k: v for k, v in request.options.items() if k in _SUPPORTED_OPTIONS}

        try:
            response = await self._client.chat.completions.create(
                model=request.model or self.model_name,
                messages=request.messages,
                **options
            )
        except OpenAIError as e:
            raise ModelError(f"Chat completion failed: {e}") from e

        if not response.choices:
            raise ModelError("Chat completion returned no choices")

        message = response.choices[0].message
        logger.debug(f"Received chat response from model: {response.model}")
        return ChatReply(content=message.content or "", role=message.role or "assistant")

    async def aclose(self) -> None:
        await self._client.close()
