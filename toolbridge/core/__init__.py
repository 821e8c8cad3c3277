"""
toolbridge core module.

Provides the per-turn tool-calling orchestrator and tool filtering.
"""

from toolbridge.core.filters import filter_tools_for_model, match_tool_pattern
from toolbridge.core.orchestrator import (
    OrchestrationOutcome,
    OrchestrationResult,
    ToolCallEvent,
    ToolCallingOrchestrator,
)

__all__ = [
    "OrchestrationOutcome",
    "OrchestrationResult",
    "ToolCallEvent",
    "ToolCallingOrchestrator",
    "filter_tools_for_model",
    "match_tool_pattern",
]
