"""
Utility Functions Module

- Logging setup
- YAML/pydantic configuration
"""

from .logging import setup_logger, setup_logger_from_config
from .config import (
    AcceleratorConfig,
    BlockConfig,
    EngineConfig,
    LoggingConfig,
    OperatorConfig,
    load_config,
)

__all__ = [
    "setup_logger",
    "setup_logger_from_config",
    "AcceleratorConfig",
    "BlockConfig",
    "EngineConfig",
    "LoggingConfig",
    "OperatorConfig",
    "load_config",
]
