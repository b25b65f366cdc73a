"""
Configuration Management
========================

Centralized configuration for microbot. Every environment variable the
process reads is declared here, typed, and given a default.

Nothing is strictly required: with an empty environment the bot talks to a
local Ollama daemon, listens for WebSocket clients on port 8080, and keeps
its skills, sessions and memory under the current working directory. The
Slack transport is switched on only when its tokens are present.

Usage:
    from microbot.utils.config import get_config

    config = get_config()
    print(config.model.name)
    print(config.loop.max_iterations)
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _required(name: str) -> str:
    """
    Get a required environment variable.

    Args:
        name: The environment variable name

    Returns:
        The value of the environment variable

    Raises:
        ValueError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        raise ValueError(
            f"Missing required environment variable: {name}\n"
            f"Please ensure {name} is set in your .env file."
        )
    return value


def _optional(name: str, default: str) -> str:
    """Get an optional environment variable with a default."""
    return os.getenv(name) or default


def _optional_int(name: str, default: int) -> int:
    """
    Get an optional integer environment variable.

    Args:
        name: The environment variable name
        default: Default value if not set or invalid

    Returns:
        The integer value or the default
    """
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Get an optional float environment variable (seconds, temperatures)."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    """
    Get an optional boolean environment variable.

    Returns:
        True if value is 'true', '1' or 'yes' (case-insensitive)
    """
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("true", "1", "yes")


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class ModelConfig:
    """Model backend configuration."""
    type: str               # "ollama", "openai" or "minimax"
    name: str               # Model identifier sent with every request
    api_key: str | None     # API key for hosted backends
    base_url: str | None    # Override for OpenAI-compatible endpoints
    host: str               # Ollama host
    port: int               # Ollama port
    protocol: str           # Ollama protocol (http/https)
    temperature: float
    max_tokens: int

    @property
    def ollama_url(self) -> str:
        """Base URL of the Ollama HTTP API."""
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass(frozen=True)
class LoopConfig:
    """Tool-call loop bounds."""
    max_iterations: int     # Hard cap on model calls per inbound message
    model_timeout: float    # Seconds allowed for one model call
    tool_timeout: float     # Seconds allowed for one skill execution


@dataclass(frozen=True)
class PathsConfig:
    """Where skills, sessions, memory and the identity prompt live."""
    skills_dir: Path
    sessions_dir: Path
    memory_dir: Path
    soul_file: Path


@dataclass(frozen=True)
class WebSocketConfig:
    """WebSocket transport configuration."""
    host: str
    port: int
    enabled: bool


@dataclass(frozen=True)
class SlackConfig:
    """Slack transport configuration (optional)."""
    bot_token: str | None       # xoxb-... token for bot operations
    app_token: str | None       # xapp-... token for Socket Mode
    signing_secret: str | None  # For verifying Slack requests


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

    Access via:
        config = get_config()
        config.model.type
        config.paths.skills_dir
        config.websocket.port
    """
    model: ModelConfig
    loop: LoopConfig
    paths: PathsConfig
    websocket: WebSocketConfig
    slack: SlackConfig
    log_level: str


def load_config(base_dir: Path | None = None) -> Config:
    """
    Load and validate all configuration from environment.

    Args:
        base_dir: Directory relative paths are resolved against
            (defaults to the current working directory)

    Returns:
        Config: The validated configuration
    """
    load_dotenv()

    root = base_dir or Path.cwd()
    model_type = _optional("MODEL_TYPE", "ollama").lower()

    # Hosted backends cannot work without a key; fail at startup, not mid-turn
    if model_type in ("openai", "minimax"):
        api_key = _required("MODEL_API_KEY")
    else:
        api_key = os.getenv("MODEL_API_KEY")

    def _path(name: str, default: str) -> Path:
        path = Path(_optional(name, default)).expanduser()
        return path if path.is_absolute() else root / path

    return Config(
        model=ModelConfig(
            type=model_type,
            name=_optional("MODEL_NAME", "qwen3-vl"),
            api_key=api_key,
            base_url=os.getenv("MODEL_BASE_URL"),
            host=_optional("OLLAMA_HOST", "localhost"),
            port=_optional_int("OLLAMA_PORT", 11434),
            protocol=_optional("OLLAMA_PROTOCOL", "http"),
            temperature=_optional_float("MODEL_TEMPERATURE", 0.7),
            max_tokens=_optional_int("MODEL_MAX_TOKENS", 1024),
        ),
        loop=LoopConfig(
            max_iterations=_optional_int("MAX_TOOL_ITERATIONS", 10),
            model_timeout=_optional_float("MODEL_TIMEOUT_SECONDS", 120.0),
            tool_timeout=_optional_float("TOOL_TIMEOUT_SECONDS", 30.0),
        ),
        paths=PathsConfig(
            skills_dir=_path("SKILLS_DIR", "skills"),
            sessions_dir=_path("SESSIONS_DIR", "sessions"),
            memory_dir=_path("MEMORY_DIR", "memory"),
            soul_file=_path("SOUL_FILE", "soul.md"),
        ),
        websocket=WebSocketConfig(
            host=_optional("WEBSOCKET_HOST", "0.0.0.0"),
            port=_optional_int("WEBSOCKET_PORT", 8080),
            enabled=_optional_bool("WEBSOCKET_ENABLED", True),
        ),
        slack=SlackConfig(
            bot_token=os.getenv("SLACK_BOT_TOKEN"),
            app_token=os.getenv("SLACK_APP_TOKEN"),
            signing_secret=os.getenv("SLACK_SIGNING_SECRET"),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """
    Get the singleton configuration instance.

    The configuration is loaded on first access and cached afterwards.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads it."""
    global _config_instance
    _config_instance = None


# ==============================================================================
# Helper Functions
# ==============================================================================

def is_slack_configured(config: Config | None = None) -> bool:
    """Check if the Slack transport has the tokens it needs."""
    config = config or get_config()
    return bool(config.slack.bot_token and config.slack.app_token)
