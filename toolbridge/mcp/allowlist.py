"""Launch-command gate for MCP servers."""

from __future__ import annotations

import re
from typing import Any

ALLOWED_MCP_COMMANDS = frozenset({
    "npx",
    "node",
    "bunx",
    "uvx",
    "python",
    "python3",
    "deno",
    "cmd",
    "powershell",
    "pwsh",
})


def command_basename(command: str) -> str:
    """Return the executable name without directory or ``.exe`` suffix."""
    base = re.split(r"[\\/]", command.strip())[-1]
    return re.sub(r"\.exe$", "", base.lower())


def is_allowed_command(raw: Any) -> bool:
    """Check whether *raw* names one of the allowed interpreters/runtimes."""
    command = str(raw or "").strip()
    if not command:
        return False
    return command_basename(command) in ALLOWED_MCP_COMMANDS
