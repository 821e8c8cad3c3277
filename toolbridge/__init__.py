"""
toolbridge - MCP tool-calling core for chat completion back-ends.

Launches MCP tool servers as stdio subprocesses, aggregates their tools
into one per-turn catalog and drives a bounded tool-calling loop between
an OpenAI-compatible completion endpoint and those tools.

Architecture:
- Servers are gated by a command allowlist before anything is spawned
- One subprocess per server per turn, torn down when the turn ends
- Tool failures become text for the model, never exceptions
- Configuration lives in ~/.toolbridge/ and .toolbridge/ YAML files
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from toolbridge.core.orchestrator import (
    OrchestrationOutcome,
    OrchestrationResult,
    ToolCallingOrchestrator,
)
from toolbridge.mcp import MCPTransport, ToolExecutor, ToolRegistry
from toolbridge.validation.config import Config

__all__ = [
    "Config",
    "MCPTransport",
    "OrchestrationOutcome",
    "OrchestrationResult",
    "ToolCallingOrchestrator",
    "ToolExecutor",
    "ToolRegistry",
    "__version__",
]
