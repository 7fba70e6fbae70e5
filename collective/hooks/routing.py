"""routing-executor hook.

Runs after Task/Agent tool calls. Detects explicit ``ROUTE TO: @agent``
instructions or infers a route from the task wording, records every
decision, and writes a pending route instruction for the target agent.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from collective.core.storage import append_json_array, unique_path, write_json
from collective.hooks.payload import HookPayload
from collective.hooks.runner import HookContext, HookResult, register_hook

logger = logging.getLogger(__name__)

ROUTING_TOOLS = ("Task", "Agent")

EXPLICIT_ROUTE = re.compile(r"ROUTE TO:|route.*to.*@|handoff.*to.*@", re.IGNORECASE)
AGENT_MENTION = re.compile(r"@[a-z-]*agent")

IMPLICIT_ROUTES = [
    (re.compile(r"implement|create.*code|build.*component", re.IGNORECASE), "@implementation-agent"),
    (re.compile(r"test|validate|verify", re.IGNORECASE), "@testing-agent"),
    (re.compile(r"research|analyze|investigate", re.IGNORECASE), "@research-agent"),
]


def detect_route(prompt: str) -> Optional[tuple[str, str]]:
    """Return ``(route_type, target)`` or None when no routing applies.

    route_type is "explicit" or "implicit". An explicit instruction with
    no ``@...agent`` mention yields an empty target.
    """
    if EXPLICIT_ROUTE.search(prompt):
        match = AGENT_MENTION.search(prompt)
        return "explicit", match.group(0) if match else ""
    for pattern, target in IMPLICIT_ROUTES:
        if pattern.search(prompt):
            return "implicit", target
    return None


@register_hook("routing-executor")
def routing_executor(payload: HookPayload, ctx: HookContext) -> HookResult:
    if payload.tool_name not in ROUTING_TOOLS:
        logger.debug("Tool %s does not require routing", payload.tool_name)
        return HookResult()

    route = detect_route(payload.prompt)
    if route is None:
        logger.debug("No routing instruction detected")
        return HookResult()

    route_type, target = route
    routing_dir = ctx.collective_dir / "routing"
    append_json_array(
        routing_dir / "routing-decisions.json",
        {
            "timestamp": ctx.now_iso(),
            "from_agent": payload.agent_name,
            "route_type": route_type,
            "target_agent": target,
            "prompt_length": len(payload.prompt),
            "tool": payload.tool_name,
            "session_id": payload.session_id,
        },
    )
    logger.info("Routing decision logged: %s %s", route_type, target or "(no target)")

    if not target:
        return HookResult()

    route_file = unique_path(routing_dir, "route")
    write_json(
        route_file,
        {
            "timestamp": ctx.now_iso(),
            "from_agent": payload.agent_name,
            "to_agent": target,
            "context": payload.prompt,
            "routing_type": "hub_and_spoke",
            "status": "pending_execution",
        },
    )
    logger.info("Created routing instruction: %s", route_file.name)

    return HookResult(
        stdout="\n".join(
            [
                "🔄 ROUTING EXECUTION:",
                f"   From: {payload.agent_name}",
                f"   To: {target}",
                "   Context: Hub-and-spoke coordination pattern",
                "   Status: Routing instruction logged",
            ]
        )
    )


__all__ = ["routing_executor", "detect_route", "IMPLICIT_ROUTES"]
