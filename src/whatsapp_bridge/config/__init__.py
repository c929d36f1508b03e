"""
WhatsApp Bridge Configuration Module

Provides centralized configuration management for the bridge.
"""

from .schema import (
    BridgeConfig,
    BridgeServiceConfig,
    LLMConfig,
    ProactiveConfig,
    RelayConfig,
    StorageConfig,
)
from .loader import create_default_config, load_config, load_config_from_file

__all__ = [
    "BridgeConfig",
    "BridgeServiceConfig",
    "LLMConfig",
    "ProactiveConfig",
    "RelayConfig",
    "StorageConfig",
    "create_default_config",
    "load_config",
    "load_config_from_file",
]
