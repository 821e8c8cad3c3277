"""
toolbridge Orchestrator - bounded tool-calling loop for one conversation turn.

Alternates between a completion call (with the tool catalog attached) and
the tool executor until the model answers without tools or the per-turn
tool budget runs out. The outcome tells the caller how to produce the
user-visible answer:

    NO_ORCHESTRATION  - tools contributed nothing; run a plain completion
    FINAL_TEXT        - the model answered after using tools
    NEEDS_FINAL_PASS  - budget exhausted; run one final completion over
                        the accumulated messages
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from toolbridge.core.filters import filter_tools_for_model
from toolbridge.mcp.errors import MCPCancelledError
from toolbridge.mcp.executor import ToolExecutor
from toolbridge.mcp.registry import ToolRegistry
from toolbridge.mcp.schema import ToolCallTrace
from toolbridge.mcp.signals import CancelSignal
from toolbridge.validation.config import ToolPolicy, ToolSettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

POLICY_INSTRUCTIONS: Dict[ToolPolicy, str] = {
    ToolPolicy.CONSERVATIVE: (
        "Use tools only when strictly necessary. "
        "If a direct answer is sufficient, do not call tools."
    ),
    ToolPolicy.BALANCED: "Use tools only when they clearly help produce a better answer.",
    ToolPolicy.AGGRESSIVE: (
        "Prefer using tools when they can improve accuracy, freshness, "
        "or completeness of the answer."
    ),
}

# Back-end errors matching this mean "no tool support"; the turn degrades silently.
UNSUPPORTED_TOOLS_RE = re.compile(r"tool|function.?call|tool_choice|unsupported", re.IGNORECASE)

SKIPPED_CALL_TEXT = "Tool call skipped: the tool call limit for this turn was reached."


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

class OrchestrationOutcome(str, Enum):
    NO_ORCHESTRATION = "no_orchestration"
    FINAL_TEXT = "final_text"
    NEEDS_FINAL_PASS = "needs_final_pass"


@dataclass
class ToolCallEvent:
    """Progress notification emitted around each tool execution."""

    phase: str  # "start" or "done"
    call_id: str
    name: str
    args: str
    result: Optional[str] = None


@dataclass
class OrchestrationResult:
    """Outcome of one orchestrated turn."""

    outcome: OrchestrationOutcome
    content: str = ""
    traces: List[ToolCallTrace] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def orchestrated(self) -> bool:
        return self.outcome is not OrchestrationOutcome.NO_ORCHESTRATION

    @classmethod
    def skipped(cls) -> "OrchestrationResult":
        return cls(outcome=OrchestrationOutcome.NO_ORCHESTRATION)


CompleteFn = Callable[..., Awaitable[Any]]
ToolEventFn = Callable[[ToolCallEvent], None]


# ---------------------------------------------------------------------------
# ToolCallingOrchestrator
# ---------------------------------------------------------------------------

class ToolCallingOrchestrator:
    """
    Drives the tool-calling loop for a single turn.

    ``complete`` is any awaitable callable taking ``(messages, tools,
    tool_choice)`` and returning an object with ``content`` and
    ``tool_calls`` (see ``providers.base.CompletionResult``). Tool calls
    within one round run sequentially.
    """

    def __init__(
        self,
        settings: ToolSettings,
        complete: CompleteFn,
        on_tool_event: Optional[ToolEventFn] = None,
    ):
        self.settings = settings
        self.complete = complete
        self.on_tool_event = on_tool_event

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        messages: List[Dict[str, Any]],
        signal: Optional[CancelSignal] = None,
    ) -> OrchestrationResult:
        """Prepare this turn's tool registry, run the loop, then shut every server down."""
        if not self.settings.auto_attach_tools:
            return OrchestrationResult.skipped()
        servers = [s for s in self.settings.servers if s.enabled and s.command.strip()]
        if not servers:
            return OrchestrationResult.skipped()

        registry = await ToolRegistry.prepare(servers, signal=signal)
        try:
            return await self.run_with_registry(registry, messages, signal=signal)
        finally:
            await registry.close()

    async def run_with_registry(
        self,
        registry: ToolRegistry,
        messages: List[Dict[str, Any]],
        signal: Optional[CancelSignal] = None,
    ) -> OrchestrationResult:
        """Run the loop against an already prepared registry. The caller closes it."""
        tools = filter_tools_for_model(
            registry.tool_definitions(),
            self.settings.tool_allowlist,
            self.settings.tool_denylist,
            self.settings.tool_states,
        )
        if not tools:
            return OrchestrationResult.skipped()

        try:
            return await self._loop(ToolExecutor(registry), tools, messages, signal)
        except MCPCancelledError:
            raise
        except Exception as exc:
            if UNSUPPORTED_TOOLS_RE.search(str(exc)):
                logger.info("Back-end rejected tool calling, falling back: %s", exc)
                return OrchestrationResult.skipped()
            raise

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _loop(
        self,
        executor: ToolExecutor,
        tools: List[Dict[str, Any]],
        messages: List[Dict[str, Any]],
        signal: Optional[CancelSignal],
    ) -> OrchestrationResult:
        policy = self.settings.policy
        max_calls = self.settings.effective_max_tool_calls
        tool_choice = "auto" if policy is ToolPolicy.AGGRESSIVE else None

        working = list(messages)
        working.append({"role": "system", "content": POLICY_INSTRUCTIONS[policy]})
        traces: List[ToolCallTrace] = []
        executed = 0
        first_round = True

        while executed < max_calls:
            self._check_cancelled(signal)
            response = await self.complete(working, tools, tool_choice)
            content = getattr(response, "content", "") or ""
            tool_calls = list(getattr(response, "tool_calls", None) or [])

            if not tool_calls:
                if first_round:
                    return OrchestrationResult.skipped()
                return OrchestrationResult(
                    outcome=OrchestrationOutcome.FINAL_TEXT,
                    content=content,
                    traces=traces,
                    messages=working,
                )
            first_round = False

            call_ids = [
                call.id or f"{call.name or 'tool'}_{executed + index + 1}"
                for index, call in enumerate(tool_calls)
            ]
            requested = []
            for call, call_id in zip(tool_calls, call_ids):
                entry = call.to_message()
                entry["id"] = call_id
                requested.append(entry)
            working.append({"role": "assistant", "content": content, "tool_calls": requested})

            for call, call_id in zip(tool_calls, call_ids):
                if executed >= max_calls:
                    working.append({"role": "tool", "tool_call_id": call_id, "content": SKIPPED_CALL_TEXT})
                    continue

                self._check_cancelled(signal)
                self._emit(ToolCallEvent(phase="start", call_id=call_id, name=call.name, args=call.arguments))
                result = await executor.execute(call.name, call.arguments, signal=signal)
                self._emit(ToolCallEvent(
                    phase="done", call_id=call_id, name=call.name, args=call.arguments, result=result,
                ))

                traces.append(ToolCallTrace(call_id=call_id, name=call.name, args=call.arguments, result=result))
                working.append({"role": "tool", "tool_call_id": call_id, "content": result})
                executed += 1

        logger.info("Tool budget of %d calls reached; final pass required", max_calls)
        return OrchestrationResult(
            outcome=OrchestrationOutcome.NEEDS_FINAL_PASS,
            traces=traces,
            messages=working,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancelled(signal: Optional[CancelSignal]) -> None:
        if signal is not None and signal.cancelled:
            raise MCPCancelledError(signal.reason or "Aborted")

    def _emit(self, event: ToolCallEvent) -> None:
        if self.on_tool_event is None:
            return
        try:
            self.on_tool_event(event)
        except Exception:
            logger.exception("Tool event callback failed")
