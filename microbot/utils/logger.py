"""
Logger Utility
==============

Context-aware terminal logging shared by every component.

Each module creates its own logger with a component name, so a single turn
can be followed through the log as it moves from transport to agent to loop
to skill:

    [2026-01-31T10:30:00] [INFO] [Loop] Iteration 1/10
    [2026-01-31T10:30:02] [INFO] [Dispatcher] Executing skill: data-analyzer

Model replies and tool output can be very long, so `truncate()` is used
wherever such text ends up in a log line.

Usage:
    from microbot.utils.logger import Logger, truncate

    logger = Logger("Loop")
    logger.info(f"Model reply: {truncate(reply, 100)}")

    child = logger.child("DataAnalyzer")
    child.debug("Parsed params", {"path": "test-data.json"})
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """
    Log levels with numeric values for comparison.
    Higher values = more severe = always shown.
    """
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}

# Process-wide override set by set_log_level(); None means "read LOG_LEVEL"
_level_override: LogLevel | None = None


def parse_log_level(value: str | None) -> LogLevel:
    """
    Convert a level name into a LogLevel.

    Args:
        value: Level name such as "debug" or "WARN" (case-insensitive)

    Returns:
        The matching LogLevel, INFO for unknown or empty values
    """
    if not value:
        return LogLevel.INFO
    return _LEVEL_NAMES.get(value.strip().upper(), LogLevel.INFO)


def set_log_level(value: str | LogLevel) -> None:
    """Set the minimum level for every logger in the process."""
    global _level_override
    if isinstance(value, LogLevel):
        _level_override = value
    else:
        _level_override = parse_log_level(value)


def _current_level() -> LogLevel:
    if _level_override is not None:
        return _level_override
    return parse_log_level(os.getenv("LOG_LEVEL"))


def truncate(text: Any, limit: int = 100) -> str:
    """
    Shorten text for log output.

    Args:
        text: The value to shorten (non-strings are converted with str())
        limit: Maximum number of characters kept before the ellipsis

    Returns:
        The text unchanged if it fits, otherwise the first `limit`
        characters followed by "..."
    """
    if not isinstance(text, str):
        text = str(text)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class Logger:
    """
    A context-aware logger with colored output.

    The logger supports:
    - Multiple log levels (debug, info, warning, error)
    - Context prefixes for tracing a turn across components
    - Optional structured data printed as JSON under the message
    - Child loggers for nested contexts

    The minimum level is resolved on every call, so set_log_level() applied
    after a module-level logger was created still takes effect.

    Example:
        logger = Logger("Agent")
        logger.info("Processing message")

        child = logger.child("Loop")   # logs as [Agent:Loop]
        child.warning("Reached max tool iterations")
    """

    def __init__(self, context: str = ""):
        """
        Initialize a logger with an optional context.

        Args:
            context: A string prefix for all log messages (e.g., "Agent")
        """
        self.context = context

    def child(self, child_context: str) -> "Logger":
        """
        Create a child logger with additional context.

        Args:
            child_context: Additional context to append

        Returns:
            A new Logger with combined context
        """
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context)

    def is_enabled_for(self, level: LogLevel) -> bool:
        """Check whether a message at `level` would be printed."""
        return level >= _current_level()

    def _format_message(self, level: str, message: str, color: str) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if not self.is_enabled_for(level):
            return

        # Errors go to stderr so they survive stdout redirection
        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        print(self._format_message(level_name, message, color), file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
            print(f"{Colors.DIM}{data_str}{Colors.RESET}", file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """
        Log a debug message.

        Only shown when LOG_LEVEL=debug.

        Args:
            message: The debug message
            data: Optional structured data to log
        """
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """
        Log an info message.

        Args:
            message: The info message
            data: Optional structured data to log
        """
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """
        Log a warning message.

        Warnings mark degraded behavior that does not stop the turn: a missing
        identity file, a skipped skill document, a truncated tool loop.

        Args:
            message: The warning message
            data: Optional structured data to log
        """
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(self, message: str, error: BaseException | None = None) -> None:
        """
        Log an error message.

        Args:
            message: The error message
            error: Optional exception to include details from
        """
        data = None
        if error is not None:
            data = {
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, data)


# Default logger instance for general use
logger = Logger("Microbot")
