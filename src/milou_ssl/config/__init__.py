"""Config module.

This module provides configuration management functionality.
"""

from milou_ssl.config.manager import build_lifecycle_context, load_config
from milou_ssl.config.schema import (
    AcmeConfig,
    Config,
    ContainerConfig,
    LoggingConfig,
    SSLConfig,
)

__all__ = [
    # Main configuration loading
    "load_config",
    "build_lifecycle_context",
    # Configuration models
    "Config",
    "SSLConfig",
    "AcmeConfig",
    "ContainerConfig",
    "LoggingConfig",
]
