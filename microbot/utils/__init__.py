"""
Utilities Module
================

Common utilities shared across the application:
- logger: Context-aware logging and log-line truncation
- config: Centralized configuration management
"""

from microbot.utils.logger import Logger, logger, truncate
from microbot.utils.config import get_config, Config

__all__ = ["Logger", "logger", "truncate", "get_config", "Config"]
