"""Allow/deny filtering of the tool definitions exposed to the model."""

import re
from typing import Any, Dict, Iterable, List, Optional


def parse_tool_name_list(raw: Any) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(item).strip().lower() for item in raw if item is not None and str(item).strip()]


def parse_tool_states(raw: Any) -> Dict[str, bool]:
    if not isinstance(raw, dict):
        return {}
    return {
        str(key).strip(): value
        for key, value in raw.items()
        if str(key).strip() and isinstance(value, bool)
    }


def match_tool_pattern(tool_name: str, pattern: str) -> bool:
    """Case-insensitive match where ``*`` stands for any run of characters."""
    name = tool_name.lower()
    pattern = pattern.lower()
    if not pattern:
        return False
    if "*" not in pattern:
        return name == pattern
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, name) is not None


def filter_tools_for_model(
    tools: Iterable[Dict[str, Any]],
    allowlist: Optional[Iterable[str]] = None,
    denylist: Optional[Iterable[str]] = None,
    states: Optional[Dict[str, bool]] = None,
) -> List[Dict[str, Any]]:
    """
    Drop tools the user switched off or excluded by pattern.

    A tool survives when it is not disabled in *states*, matches the
    allowlist (an empty allowlist allows everything) and matches no
    denylist pattern.
    """
    allow = parse_tool_name_list(list(allowlist or []))
    deny = parse_tool_name_list(list(denylist or []))
    enabled = parse_tool_states(states or {})

    kept = []
    for tool in tools:
        name = str((tool.get("function") or {}).get("name") or "").strip()
        if not name:
            continue
        if enabled.get(name) is False:
            continue
        if allow and not any(match_tool_pattern(name, p) for p in allow):
            continue
        if any(match_tool_pattern(name, p) for p in deny):
            continue
        kept.append(tool)
    return kept
