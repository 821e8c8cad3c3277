"""
toolbridge providers module.

This module provides the completion back-end used by the orchestrator.
"""

from toolbridge.providers.base import (
    ChatCompletionProvider,
    CompletionProvider,
    CompletionResult,
    ProviderError,
    ToolCall,
)

__all__ = ["ChatCompletionProvider", "CompletionProvider", "CompletionResult", "ProviderError", "ToolCall"]
