"""directive-enforcer hook.

Runs before Write, Edit and MultiEdit. Agents must not rewrite the
machinery that governs them, so edits that land inside a protected path
(by default the hooks directory and settings.json) are blocked with exit
code 2, which Claude Code reports back to the agent as feedback. Agents
listed in ``hooks.allowed_agents`` (the hook-integration agent by default)
are the exception.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from collective.core.storage import append_json_line
from collective.hooks.payload import HookPayload
from collective.hooks.runner import EXIT_BLOCK, HookContext, HookResult, register_hook

logger = logging.getLogger(__name__)

ENFORCED_TOOLS = ("Write", "Edit", "MultiEdit")


def resolve_target(file_path: str, project_dir: Path) -> Path:
    path = Path(file_path).expanduser()
    if not path.is_absolute():
        path = project_dir / path
    return path.resolve()


def find_protected_match(target: Path, project_dir: Path, protected: list[str]) -> Optional[str]:
    """Return the protected entry covering ``target``, if any.

    Entries ending in ``/`` protect a directory tree; others protect a
    single file. Entries are relative to the project root.
    """
    for entry in protected:
        protected_path = (project_dir / entry.rstrip("/")).resolve()
        if entry.endswith("/"):
            if target == protected_path or protected_path in target.parents:
                return entry
        elif target == protected_path:
            return entry
    return None


def is_allowed_agent(agent_name: str, allowed: list[str]) -> bool:
    normalized = agent_name.lstrip("@").lower()
    return any(normalized == entry.lstrip("@").lower() for entry in allowed)


@register_hook("directive-enforcer")
def directive_enforcer(payload: HookPayload, ctx: HookContext) -> HookResult:
    file_path = payload.file_path
    if payload.tool_name not in ENFORCED_TOOLS or not file_path:
        return HookResult()

    hook_settings = ctx.settings.hooks
    target = resolve_target(file_path, ctx.project_dir)
    match = find_protected_match(target, ctx.project_dir, hook_settings.protected_paths)
    permitted = bool(match) and is_allowed_agent(payload.agent_name, hook_settings.allowed_agents)
    blocked = bool(match) and hook_settings.enforce_directives and not permitted

    if not match:
        decision = "allowed"
    elif permitted:
        decision = "permitted"
    else:
        decision = "blocked" if blocked else "warned"

    append_json_line(
        ctx.metrics_dir / "directive-metrics.jsonl",
        {
            "timestamp": ctx.now_iso(),
            "agent": payload.agent_name,
            "tool": payload.tool_name,
            "file_path": str(target),
            "protected_match": match,
            "decision": decision,
            "session_id": payload.session_id,
        },
    )

    if not match:
        return HookResult()
    if permitted:
        logger.info("%s may edit protected path %s", payload.agent_name, target)
        return HookResult()

    if hook_settings.allowed_agents:
        delegate = "@" + hook_settings.allowed_agents[0].lstrip("@")
    else:
        delegate = "the installer"
    message = (
        f"🚫 DIRECTIVE VIOLATION: {payload.tool_name} on protected path {match}\n"
        f"   File: {target}\n"
        "   Collective hooks and settings may only be changed by the installer\n"
        "   or a configuration agent.\n"
        f"   Route configuration changes to {delegate} instead."
    )
    if not blocked:
        logger.warning("Protected path edit allowed (enforcement disabled): %s", target)
        return HookResult(stderr=message)

    logger.warning("Blocked %s on protected path %s", payload.tool_name, target)
    return HookResult(exit_code=EXIT_BLOCK, stderr=message)


__all__ = [
    "directive_enforcer",
    "find_protected_match",
    "is_allowed_agent",
    "resolve_target",
    "ENFORCED_TOOLS",
]
