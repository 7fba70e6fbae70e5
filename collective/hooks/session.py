"""Session hooks: load-behavioral-system and agent-detection."""

from __future__ import annotations

import logging
import re

from collective.hooks.payload import HookPayload
from collective.hooks.runner import HookContext, HookResult, register_hook

logger = logging.getLogger(__name__)

BEHAVIORAL_DOCS = ["CLAUDE.md", "DECISION.md", "agents.md", "hooks.md", "quality.md", "research.md"]

AGENT_CALL = re.compile(r"@agent-[\w-]+|@[\w-]+-agent\b", re.IGNORECASE)


@register_hook("load-behavioral-system")
def load_behavioral_system(payload: HookPayload, ctx: HookContext) -> HookResult:
    """Print the behavioral documents so they enter the session context."""
    sections = []
    for name in BEHAVIORAL_DOCS:
        path = ctx.collective_dir / name
        if not path.is_file():
            continue
        sections.append(f"=== {path.relative_to(ctx.project_dir)} ===\n\n{path.read_text(encoding='utf-8').strip()}\n")

    if not sections:
        logger.warning("No behavioral documents found in %s", ctx.collective_dir)
        return HookResult(
            stdout="⚠️  Collective behavioral system not found. "
            "Run `claude-code-collective install` in this project."
        )

    logger.info("Loaded %d behavioral documents", len(sections))
    header = "🧠 COLLECTIVE BEHAVIORAL SYSTEM LOADED\n"
    return HookResult(stdout=header + "\n" + "\n".join(sections))


@register_hook("agent-detection")
def agent_detection(payload: HookPayload, ctx: HookContext) -> HookResult:
    match = AGENT_CALL.search(payload.prompt)
    if not match:
        return HookResult()

    logger.info("Agent call detected: %s", match.group(0))
    return HookResult(
        stdout="\n".join(
            [
                "",
                "✅ AGENT CALL DETECTED",
                "📋 REMINDER: You must immediately use the Task tool with the requested agent",
                "🎯 STATUS: Review .claude-collective/agents.md for complete compliance requirements",
                "",
                "⚠️  DO NOT respond directly - use Task tool FIRST!",
                "",
            ]
        )
    )


__all__ = ["load_behavioral_system", "agent_detection", "BEHAVIORAL_DOCS"]
