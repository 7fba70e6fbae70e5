"""Hook input parsing.

Claude Code passes hook input as a JSON object on stdin, and older hook
setups pass it through environment variables. Field names differ between
events and host versions, so HookPayload normalizes every known spelling
into one shape.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "hub-controller"
ROUTE_MARKER = re.compile(r"ROUTE TO|HANDOFF TO", re.IGNORECASE)


def _first_str(data: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _tool_response_text(data: Mapping[str, Any]) -> str:
    response = data.get("tool_response")
    if not isinstance(response, dict):
        return ""
    content = response.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return ""


def read_transcript_tail(path: Path, lines: int = 50) -> str:
    """Find the most recent routing instruction in a JSONL transcript.

    Looks at the last ``lines`` lines for assistant messages whose string
    content mentions ROUTE TO or HANDOFF TO, falling back to the last raw
    line that does.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            tail = list(deque(f, maxlen=lines))
    except OSError as e:
        logger.debug("Cannot read transcript %s: %s", path, e)
        return ""

    found = ""
    for line in tail:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or entry.get("type") != "assistant":
            continue
        message = entry.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            content = [content]
        if not isinstance(content, list):
            continue
        for item in content:
            if isinstance(item, str) and ROUTE_MARKER.search(item):
                found = item
    if found:
        return found

    for line in reversed(tail):
        if ROUTE_MARKER.search(line):
            return line.rstrip("\n")
    return ""


@dataclass
class HookPayload:
    """Normalized hook input.

    Attributes:
        event: Hook event name (SessionStart, PreToolUse, SubagentStop, ...).
        tool_name: Tool that triggered the hook, if any.
        agent_name: Agent that produced the event; hub-controller by default.
        prompt: User or Task prompt text.
        agent_output: Final text of the agent, for SubagentStop.
        tool_input: Raw tool_input object.
        session_id: Claude session identifier or "unknown".
        transcript_path: Path to the session transcript, when provided.
        raw: The parsed JSON object.
    """

    event: str = ""
    tool_name: str = ""
    agent_name: str = DEFAULT_AGENT
    prompt: str = ""
    agent_output: str = ""
    tool_input: dict[str, Any] = field(default_factory=dict)
    session_id: str = "unknown"
    transcript_path: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_input(
        cls,
        raw_text: str,
        env: Optional[Mapping[str, str]] = None,
        transcript_tail_lines: int = 50,
    ) -> "HookPayload":
        env = env or {}
        data: dict[str, Any] = {}
        if raw_text and raw_text.strip():
            try:
                parsed = json.loads(raw_text)
            except json.JSONDecodeError as e:
                logger.warning("Hook input is not valid JSON: %s", e)
                parsed = {}
            if isinstance(parsed, dict):
                data = parsed

        tool_input = data.get("tool_input")
        if not isinstance(tool_input, dict):
            tool_input = {}

        prompt = env.get("USER_PROMPT") or ""
        if not prompt:
            prompt = _first_str(tool_input, "prompt") or _first_str(data, "prompt")

        transcript_path = _first_str(data, "transcript_path") or None

        agent_output = _first_str(data, "agent_output") or _tool_response_text(data)
        if not agent_output:
            agent_output = _first_str(data, "content", "text", "output", "response")
        if not agent_output and transcript_path and Path(transcript_path).is_file():
            agent_output = read_transcript_tail(Path(transcript_path), transcript_tail_lines)

        return cls(
            event=_first_str(data, "event", "hook_event_name", "type"),
            tool_name=_first_str(data, "tool_name") or env.get("TOOL_NAME", ""),
            agent_name=(
                _first_str(data, "subagent_name", "agent_name", "agent", "subagent")
                or env.get("AGENT_NAME")
                or DEFAULT_AGENT
            ),
            prompt=prompt,
            agent_output=agent_output,
            tool_input=tool_input,
            session_id=_first_str(data, "session_id") or env.get("CLAUDE_SESSION_ID") or "unknown",
            transcript_path=transcript_path,
            raw=data,
        )

    @property
    def file_path(self) -> str:
        return _first_str(self.tool_input, "file_path", "path", "notebook_path")


__all__ = ["HookPayload", "read_transcript_tail", "DEFAULT_AGENT"]
