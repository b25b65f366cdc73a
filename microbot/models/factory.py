"""
Model client factory: picks an adapter from ModelConfig.type.
"""

from microbot.models.base import ModelClient
from microbot.models.ollama import OllamaClient
from microbot.models.openai_compatible import OpenAICompatibleClient
from microbot.utils.config import ModelConfig
from microbot.utils.logger import Logger

logger = Logger("ModelFactory")

SUPPORTED_TYPES = ("ollama", "openai", "minimax")

# MiniMax speaks the OpenAI chat completions API
MINIMAX_BASE_URL = "https://api.minimax.chat/v1"


def create_model_client(config: ModelConfig, timeout: float = 120.0) -> ModelClient:
    """
    Build the model client described by the configuration.

    Args:
        config: Model section of the app config
        timeout: Per-request HTTP timeout in seconds

    Returns:
        A ModelClient for the configured backend

    Raises:
        ValueError: If the backend type is not supported
    """
    if config.type == "ollama":
        logger.info(f"Using Ollama backend at {config.ollama_url} with model {config.name}")
        return OllamaClient(config.ollama_url, model=config.name, timeout=timeout)

    if config.type == "openai":
        logger.info(f"Using OpenAI-compatible backend with model {config.name}")
        return OpenAICompatibleClient(
            api_key=config.api_key or "",
            model=config.name,
            base_url=config.base_url,
            timeout=timeout,
        )

    if config.type == "minimax":
        base_url = config.base_url or MINIMAX_BASE_URL
        logger.info(f"Using MiniMax backend at {base_url} with model {config.name}")
        return OpenAICompatibleClient(
            api_key=config.api_key or "",
            model=config.name,
            base_url=base_url,
            timeout=timeout,
        )

    raise ValueError(
        f"Unsupported model type: {config.type} (expected one of {', '.join(SUPPORTED_TYPES)})"
    )
