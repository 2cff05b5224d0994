"""Configuration glue for neo-kv: environment settings and logging."""

from .logging_config import (
    LogFormat,
    LoggingConfig,
    LogLevel,
    LogVerbosity,
    get_logger,
    setup_logging,
)
from .settings import CacheClientSettings, load_client_config

__all__ = [
    "LogFormat",
    "LoggingConfig",
    "LogLevel",
    "LogVerbosity",
    "get_logger",
    "setup_logging",
    "CacheClientSettings",
    "load_client_config",
]
