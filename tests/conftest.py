"""Shared fixtures: a spawnable fake MCP server."""

import shutil
import sys
from pathlib import Path

import pytest

from toolbridge.mcp.allowlist import is_allowed_command
from toolbridge.mcp.schema import ServerConfig

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_mcp_server.py"


def _find_python() -> str:
    """An interpreter path whose basename passes the allowlist."""
    if is_allowed_command(sys.executable):
        return sys.executable
    for name in ("python3", "python"):
        found = shutil.which(name)
        if found:
            return found
    return ""


@pytest.fixture
def python_command():
    command = _find_python()
    if not command:
        pytest.skip("no allowlisted python interpreter on PATH")
    return command


@pytest.fixture
def make_server(python_command):
    """Build a ServerConfig that launches the fake server."""

    def _make(server_id="fake", extra_args="", name=None, **kwargs):
        return ServerConfig(
            id=server_id,
            name=name or server_id,
            command=python_command,
            args=f'"{FAKE_SERVER}" {extra_args}'.strip(),
            **kwargs,
        )

    return _make
