"""
toolbridge validation module.

This module provides configuration loading, validation and server import.
"""

from toolbridge.validation.config import (
    Config,
    ConfigError,
    ProviderSettings,
    ToolPolicy,
    ToolSettings,
    parse_servers_payload,
)

__all__ = ["Config", "ConfigError", "ProviderSettings", "ToolPolicy", "ToolSettings", "parse_servers_payload"]
