"""Tests for configuration management."""

import tempfile
from pathlib import Path

import pytest
import yaml

from toolbridge.validation.config import (
    Config,
    ConfigError,
    ToolBridgeConfig,
    ToolPolicy,
    ToolSettings,
    normalize_server,
    parse_servers_payload,
)


class TestConfig:
    """Tests for Config class."""

    @pytest.fixture
    def temp_config_dir(self):
        """Create a temporary config directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_deep_merge(self):
        """Test deep merging of dictionaries."""
        config = Config()

        base = {
            "a": 1,
            "b": {"c": 2, "d": 3},
            "e": [1, 2, 3],
        }

        override = {
            "b": {"c": 10, "f": 5},
            "g": "new",
        }

        result = config._deep_merge(base, override)

        assert result["a"] == 1
        assert result["b"]["c"] == 10
        assert result["b"]["d"] == 3
        assert result["b"]["f"] == 5
        assert result["e"] == [1, 2, 3]
        assert result["g"] == "new"

    def test_get_merged_config(self):
        """Test getting merged configuration."""
        global_config = {
            "provider": {"base_url": "https://api.example.com/v1", "model": "gpt-4o"},
            "tools": {"policy": "conservative"},
        }

        local_config = {
            "provider": {"model": "local-model"},
        }

        config = Config(global_config=global_config, local_config=local_config)
        merged = config.get_merged_config()

        # Local should override global
        assert merged["provider"]["model"] == "local-model"
        # Global should be preserved
        assert merged["provider"]["base_url"] == "https://api.example.com/v1"
        assert config.tool_settings.policy is ToolPolicy.CONSERVATIVE

    def test_servers_from_yaml_rows(self):
        """Server rows accept list args, dict env and drop disallowed commands."""
        config = Config(global_config={
            "tools": {
                "servers": [
                    {"id": "fs", "command": "npx", "args": ["-y", "server fs"], "env": {"ROOT": "/tmp"}},
                    {"id": "evil", "command": "bash", "args": "-c true"},
                    {"id": "slow", "command": "uvx", "timeoutMs": 500000},
                ]
            }
        })

        servers = config.tool_settings.servers
        assert [s.id for s in servers] == ["fs", "slow"]
        assert servers[0].argv() == ["-y", "server fs"]
        assert servers[0].env_overrides() == {"ROOT": "/tmp"}
        assert servers[1].timeout_ms == 120000
        assert config.tool_settings.get_server("slow") is servers[1]
        assert config.tool_settings.get_server("evil") is None

    def test_invalid_config_raises(self):
        """Invalid values surface as ConfigError."""
        config = Config(local_config={"provider": {"temperature": "hot"}})
        with pytest.raises(ConfigError):
            config.merged

    def test_get_api_key_from_env(self, monkeypatch):
        """Test API key lookup falls back to the environment."""
        monkeypatch.delenv("TOOLBRIDGE_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert Config().get_api_key() == "sk-env"

        monkeypatch.setenv("TOOLBRIDGE_API_KEY", "sk-tb")
        assert Config().get_api_key() == "sk-tb"

        config = Config(local_config={"provider": {"api_key": "sk-file"}})
        assert config.get_api_key() == "sk-file"

    def test_set_policy(self):
        """Test setting the policy."""
        config = Config(global_config={}, local_config={})

        config.set_policy("aggressive", global_=False)
        assert config._local_config["tools"]["policy"] == "aggressive"
        assert config.tool_settings.policy is ToolPolicy.AGGRESSIVE

        with pytest.raises(ValueError):
            config.set_policy("reckless")

    def test_add_servers_replaces_same_id(self):
        """Re-importing a server replaces the existing row."""
        config = Config(local_config={"tools": {"servers": [{"id": "fs", "command": "node"}]}})

        config.add_servers(parse_servers_payload({"mcpServers": {"fs": {"command": "npx"}, "git": {"command": "uvx"}}}))

        servers = config.tool_settings.servers
        assert [(s.id, s.command) for s in servers] == [("fs", "npx"), ("git", "uvx")]

    def test_load_and_save_round_trip(self, temp_config_dir, monkeypatch):
        """Test loading an explicit file and saving back to it."""
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_config_dir / "global")
        path = temp_config_dir / "project.yaml"
        path.write_text(yaml.dump({"tools": {"max_tool_calls_per_turn": 6}}))

        config = Config.load(path)
        assert config.tool_settings.max_tool_calls_per_turn == 6

        config.set_policy("conservative")
        config.save()

        saved = yaml.safe_load(path.read_text())
        assert saved["tools"] == {"max_tool_calls_per_turn": 6, "policy": "conservative"}
        assert (temp_config_dir / "global" / "config.yaml").exists()

    def test_load_missing_explicit_file(self, temp_config_dir):
        with pytest.raises(ConfigError, match="not found"):
            Config.load(temp_config_dir / "missing.yaml")


class TestToolSettings:
    """Tests for ToolSettings schema."""

    def test_default_config(self):
        """Test creating default configuration."""
        config = ToolBridgeConfig()

        assert config.tools.auto_attach_tools is True
        assert config.tools.policy is ToolPolicy.BALANCED
        assert config.tools.max_tool_calls_per_turn == 4
        assert config.provider.max_tokens == 2048
        assert len(config.tools.servers) == 0

    @pytest.mark.parametrize("raw,expected", [(0, 1), (-5, 1), (7, 7), (99, 12), ("3", 3), ("lots", 4), (None, 4)])
    def test_max_tool_calls_clamped(self, raw, expected):
        assert ToolSettings(max_tool_calls_per_turn=raw).max_tool_calls_per_turn == expected

    def test_unknown_policy_is_balanced(self):
        assert ToolSettings(policy="yolo").policy is ToolPolicy.BALANCED

    def test_conservative_cap(self):
        settings = ToolSettings(policy="conservative", max_tool_calls_per_turn=9)
        assert settings.effective_max_tool_calls == 2
        assert ToolSettings(policy="conservative", max_tool_calls_per_turn=1).effective_max_tool_calls == 1
        assert ToolSettings(policy="aggressive", max_tool_calls_per_turn=9).effective_max_tool_calls == 9


class TestServerImport:
    """Tests for importing servers from MCP config shapes."""

    def test_mcp_servers_dict(self):
        payload = {
            "mcpServers": {
                "memory": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-memory"]},
                "shell": {"command": "sh", "args": ["-c", "echo"]},
            }
        }
        servers = parse_servers_payload(payload)
        assert [(s.id, s.name) for s in servers] == [("memory", "memory")]
        assert servers[0].args == "-y @modelcontextprotocol/server-memory"

    def test_list_with_aliases(self):
        servers = parse_servers_payload([
            {"serverId": "a", "displayName": "Alpha", "cmd": "node", "arguments": "index.js"},
            {"command": "deno", "enabled": False},
        ])
        assert [(s.id, s.label, s.command, s.enabled) for s in servers] == [
            ("a", "Alpha", "node", True),
            ("mcp-2", "mcp-2", "deno", False),
        ]

    def test_url_string_becomes_bridge(self):
        servers = parse_servers_payload("https://tools.example.com/sse")
        assert len(servers) == 1
        server = servers[0]
        assert server.id == "tools.example.com"
        assert server.command == "npx"
        assert server.args == "-y mcp-remote https://tools.example.com/sse"
        assert server.is_remote_bridge
        assert server.timeout_ms == 45000

    def test_single_server_key(self):
        servers = parse_servers_payload({"server": {"id": "x", "command": "pwsh"}})
        assert [s.id for s in servers] == ["x"]

    def test_single_object(self):
        servers = parse_servers_payload({"id": "solo", "command": "python3", "timeoutMs": 100})
        assert servers[0].timeout_ms == 1000

    def test_nothing_usable(self):
        assert parse_servers_payload("not a url") == []
        assert parse_servers_payload({}) == []
        assert parse_servers_payload(None) == []

    def test_normalize_quotes_args_with_spaces(self):
        server = normalize_server({"id": "p", "command": "python", "args": ["my server.py", "-v"]})
        assert server.argv() == ["my server.py", "-v"]
