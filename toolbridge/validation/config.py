"""
toolbridge Configuration - Configuration loading and validation.

This module provides the Config class for managing toolbridge configuration
from both global (~/.toolbridge/config.yaml) and local (.toolbridge/config.yaml)
sources, plus the importer that turns the common MCP config file shapes into
ServerConfig models.
"""

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolbridge.mcp.allowlist import is_allowed_command
from toolbridge.mcp.schema import (
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    REMOTE_BRIDGE_TIMEOUT_MS,
    ServerConfig,
)


logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


DEFAULT_MAX_TOOL_CALLS = 4
MAX_TOOL_CALLS_LIMIT = 12
CONSERVATIVE_MAX_TOOL_CALLS = 2


class ToolPolicy(str, Enum):
    """How eagerly the model is steered toward calling tools."""

    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class ToolSettings(BaseModel):
    """Tool-calling settings consumed by the orchestrator."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    auto_attach_tools: bool = True
    policy: ToolPolicy = ToolPolicy.BALANCED
    max_tool_calls_per_turn: int = DEFAULT_MAX_TOOL_CALLS
    tool_allowlist: List[str] = Field(default_factory=list)
    tool_denylist: List[str] = Field(default_factory=list)
    tool_states: Dict[str, bool] = Field(default_factory=dict)
    servers: List[ServerConfig] = Field(default_factory=list)

    @field_validator("policy", mode="before")
    @classmethod
    def _coerce_policy(cls, value: Any) -> ToolPolicy:
        try:
            return ToolPolicy(value)
        except ValueError:
            return ToolPolicy.BALANCED

    @field_validator("servers", mode="before")
    @classmethod
    def _normalize_servers(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        servers = []
        for idx, item in enumerate(value, 1):
            if isinstance(item, ServerConfig):
                servers.append(item)
                continue
            server = normalize_server(item, idx)
            if server is None:
                logger.warning("Ignoring MCP server entry %d: missing or disallowed command", idx)
                continue
            servers.append(server)
        return servers

    @field_validator("max_tool_calls_per_turn", mode="before")
    @classmethod
    def _clamp_tool_calls(cls, value: Any) -> int:
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_MAX_TOOL_CALLS
        return max(1, min(MAX_TOOL_CALLS_LIMIT, number))

    @property
    def effective_max_tool_calls(self) -> int:
        if self.policy is ToolPolicy.CONSERVATIVE:
            return min(CONSERVATIVE_MAX_TOOL_CALLS, self.max_tool_calls_per_turn)
        return self.max_tool_calls_per_turn

    def get_server(self, server_id: str) -> Optional[ServerConfig]:
        for server in self.servers:
            if server.id == server_id:
                return server
        return None


class ProviderSettings(BaseModel):
    """Configuration for the OpenAI-compatible completion endpoint."""

    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout: int = 120
    temperature: float = 0.9
    top_p: float = 1.0
    max_tokens: int = 2048
    stop: List[str] = Field(default_factory=list)


class ToolBridgeConfig(BaseModel):
    """Complete toolbridge configuration schema."""

    tools: ToolSettings = Field(default_factory=ToolSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)


# ---------------------------------------------------------------------------
# Server import
# ---------------------------------------------------------------------------


def normalize_server(raw: Any, fallback_index: int = 1) -> Optional[ServerConfig]:
    """
    Build a ServerConfig from a loosely-shaped dict.

    Accepts the aliases found in common MCP config files (``serverId``,
    ``displayName``, ``cmd``, ``arguments``) and a ``url`` shorthand that
    launches the ``mcp-remote`` bridge. Returns None for entries without a
    usable or allowed command.
    """
    if not isinstance(raw, dict):
        return None

    server_id = str(raw.get("id") or raw.get("serverId") or "").strip() or f"mcp-{fallback_index}"
    name = str(raw.get("name") or raw.get("displayName") or server_id).strip() or server_id
    url = str(raw.get("url") or "").strip()
    command = str(raw.get("command") or raw.get("cmd") or ("npx" if url else "")).strip()
    if not command or not is_allowed_command(command):
        return None

    args = raw.get("args", raw.get("arguments"))
    if isinstance(args, list):
        args = " ".join(f'"{a}"' if " " in str(a) else str(a) for a in args)
    args = str(args or (f"-y mcp-remote {url}" if url else "")).strip()

    env = raw.get("env") or ""
    if isinstance(env, dict):
        env = "\n".join(f"{key}={value}" for key, value in env.items())

    default_timeout = REMOTE_BRIDGE_TIMEOUT_MS if url else DEFAULT_TIMEOUT_MS
    try:
        timeout_ms = int(float(raw.get("timeoutMs", raw.get("timeout_ms"))))
        timeout_ms = max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, timeout_ms))
    except (TypeError, ValueError, OverflowError):
        timeout_ms = default_timeout

    return ServerConfig(
        id=server_id,
        name=name,
        command=command,
        args=args,
        env=str(env).strip(),
        enabled=raw.get("enabled") is not False,
        timeout_ms=timeout_ms,
    )


def parse_servers_payload(payload: Any) -> List[ServerConfig]:
    """Extract server configs from any supported import shape."""
    if isinstance(payload, list):
        servers = [normalize_server(item, idx) for idx, item in enumerate(payload, 1)]
        return [s for s in servers if s is not None]

    if isinstance(payload, str):
        text = payload.strip()
        if re.match(r"^https?://", text, re.IGNORECASE):
            host = urlparse(text).hostname
            one = normalize_server({"id": host or "mcp-http", "name": host or "MCP HTTP", "url": text})
            return [one] if one else []
        return []

    if not isinstance(payload, dict) or not payload:
        return []

    for key in ("mcpServers", "servers"):
        if key in payload:
            return parse_servers_payload(payload[key])
    if "server" in payload:
        return parse_servers_payload([payload["server"]])

    # Dictionary shape: {"name": {...config}}
    if all(isinstance(value, dict) for value in payload.values()):
        servers = [
            normalize_server({**value, "id": key, "name": key}, idx)
            for idx, (key, value) in enumerate(payload.items(), 1)
        ]
        return [s for s in servers if s is not None]

    one = normalize_server(payload)
    return [one] if one else []


# ---------------------------------------------------------------------------
# Config manager
# ---------------------------------------------------------------------------


class Config:
    """
    toolbridge configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.toolbridge/config.yaml
    - Local: .toolbridge/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> settings = config.tool_settings
        >>> config.set_policy("aggressive")
        >>> config.save()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".toolbridge"
    LOCAL_CONFIG_DIR = Path(".toolbridge")
    API_KEY_ENV_VARS = ("TOOLBRIDGE_API_KEY", "OPENAI_API_KEY")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        local_path: Optional[Path] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            local_path: File the local configuration is saved to.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._local_path = Path(local_path) if local_path else None
        self._merged: Optional[ToolBridgeConfig] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """
        Load configuration from default locations.

        Args:
            path: Explicit config file used instead of the project file.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_path = Path(path) if path else cls._find_local_config()
        if path and not local_path.exists():
            raise ConfigError(f"Config file not found: {local_path}")
        local_config = cls._load_yaml(local_path)

        return cls(global_config=global_config, local_config=local_config, local_path=local_path)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / ".toolbridge" / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> ToolBridgeConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = ToolBridgeConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    @property
    def tool_settings(self) -> ToolSettings:
        return self.merged.tools

    @property
    def provider_settings(self) -> ProviderSettings:
        return self.merged.provider

    def get_api_key(self) -> Optional[str]:
        """
        Get the completion API key.

        Checks config first, then environment variables.
        """
        if self.merged.provider.api_key:
            return self.merged.provider.api_key
        for env_var in self.API_KEY_ENV_VARS:
            value = os.environ.get(env_var)
            if value:
                return value
        return None

    def set_policy(self, policy: str, global_: bool = False) -> None:
        """
        Set the tool-calling policy.

        Args:
            policy: conservative, balanced or aggressive.
            global_: Whether to set globally or locally.
        """
        config = self._global_config if global_ else self._local_config
        config.setdefault("tools", {})["policy"] = ToolPolicy(policy).value
        self._merged = None  # Reset cache

    def add_servers(self, servers: List[ServerConfig], global_: bool = False) -> None:
        """Append imported servers, replacing any with the same id."""
        config = self._global_config if global_ else self._local_config
        tools = config.setdefault("tools", {})
        incoming = {server.id for server in servers}
        kept = [row for row in tools.get("servers", []) if row.get("id") not in incoming]
        tools["servers"] = kept + [server.model_dump(by_alias=False) for server in servers]
        self._merged = None

    def save(self) -> None:
        """Save configuration to files."""
        self._save_yaml(self.GLOBAL_CONFIG_DIR / "config.yaml", self._global_config)

        local_path = self._local_path or self._find_local_config() or self.LOCAL_CONFIG_DIR / "config.yaml"
        self._save_yaml(local_path, self._local_config)

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        """Save data to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
