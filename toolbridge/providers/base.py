"""
toolbridge Provider Base - completion-call abstraction used by the orchestrator.

This module defines the interface the tool-calling loop needs from a
language model back-end (messages + tool definitions in, text or tool calls
out) and an implementation for OpenAI-compatible chat completion APIs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from toolbridge.validation.config import ProviderSettings


class ProviderError(Exception):
    """Raised when the completion back-end rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ToolCall:
    """A function call requested by the model."""

    id: str
    name: str
    arguments: str = ""

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class CompletionResult:
    """Response from a completion call."""

    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    model: str = ""
    finish_reason: str = "stop"
    token_usage: int = 0


def normalize_assistant_content(content: Any) -> str:
    """Assistant content as text; list-of-parts content keeps only text parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(item.get("text") or "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(p for p in parts if p).strip()
    if content is None:
        return ""
    return str(content)


def parse_tool_calls(raw: Any) -> List[ToolCall]:
    calls = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        function = item.get("function") or {}
        arguments = function.get("arguments")
        calls.append(ToolCall(
            id=str(item.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments if isinstance(arguments, str) else ("" if arguments is None else str(arguments)),
        ))
    return calls


class CompletionProvider(ABC):
    """
    Abstract base class for completion back-ends.

    Instances are callables so they can be handed straight to the
    orchestrator as its completion capability.

    Example:
        >>> class EchoProvider(CompletionProvider):
        ...     async def complete(self, messages, tools=None, tool_choice=None):
        ...         return CompletionResult(content=messages[-1]["content"])
    """

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
    ) -> CompletionResult:
        """
        Request one non-streaming completion.

        Args:
            messages: Chat messages, including tool and assistant turns.
            tools: OpenAI-style function definitions to attach.
            tool_choice: Optional tool_choice value (e.g. "auto").

        Returns:
            CompletionResult with text and/or requested tool calls.
        """
        pass

    async def __call__(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
    ) -> CompletionResult:
        return await self.complete(messages, tools, tool_choice)


class ChatCompletionProvider(CompletionProvider):
    """
    Provider for any OpenAI-compatible ``/chat/completions`` endpoint.

    Uses httpx so no vendor SDK is required.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.api_key = api_key or settings.api_key
        self._client = client

    def _build_body(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
    ) -> Dict[str, Any]:
        sc = self.settings
        body: Dict[str, Any] = {
            "model": sc.model,
            "messages": messages,
            "stream": False,
            "temperature": sc.temperature,
            "top_p": sc.top_p,
            "max_tokens": sc.max_tokens,
        }
        if sc.stop:
            body["stop"] = sc.stop
        if tools:
            body["tools"] = tools
            if tool_choice:
                body["tool_choice"] = tool_choice
        return body

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
    ) -> CompletionResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.settings.base_url.rstrip('/')}/chat/completions"
        body = self._build_body(messages, tools, tool_choice)

        if self._client is not None:
            response = await self._client.post(url, headers=headers, json=body, timeout=self.settings.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, headers=headers, json=body, timeout=self.settings.timeout)

        if response.status_code >= 400:
            raise ProviderError(
                f"[API Error: {response.status_code}] {response.text[:500]}",
                status_code=response.status_code,
            )
        data = response.json()

        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        usage = data.get("usage") or {}

        return CompletionResult(
            content=normalize_assistant_content(message.get("content")),
            tool_calls=parse_tool_calls(message.get("tool_calls")),
            model=data.get("model", self.settings.model),
            finish_reason=choice.get("finish_reason") or "stop",
            token_usage=usage.get("total_tokens", 0),
        )
