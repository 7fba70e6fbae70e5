"""Handoff hooks: test-driven-handoff and handoff-automation.

test-driven-handoff records a contract for every detected handoff and
checks its preconditions. handoff-automation reads the final output of a
subagent on SubagentStop and, when it ends with a ``ROUTE TO: @agent``
instruction, prints the Task(...) call the hub should make next.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from collective.core.storage import append_json_array, append_json_line, unique_path, write_json
from collective.hooks.payload import HookPayload
from collective.hooks.runner import HookContext, HookResult, register_hook

logger = logging.getLogger(__name__)

AGENT_MENTION = re.compile(r"@[a-z-]*agent")
HANDOFF_INTENT = re.compile(r"handoff|transfer|route.*to", re.IGNORECASE)
TASK_INTENT = re.compile(r"implement|create|build|test|analyze|research", re.IGNORECASE)
MIN_CONTEXT_LENGTH = 10

ROUTE_LINE = re.compile(r"(\*\*)?ROUTE TO(\*\*)?:|(\*\*)?HANDOFF TO(\*\*)?:", re.IGNORECASE)
FULL_AGENT = re.compile(r"@([a-zA-Z][a-zA-Z0-9-]*-agent)")
HYPHENATED = re.compile(r"@([a-zA-Z][a-zA-Z0-9-]*-[a-zA-Z]*)")
ROUTE_WORD = re.compile(r"ROUTE TO: *@([a-zA-Z0-9-]+)", re.IGNORECASE)

FINAL_COMPLETION = re.compile(
    r"COMPLETE.*NO.*HANDOFF|FINAL.*COMPLETE|WORKFLOW.*COMPLETE|PROJECT.*COMPLETE",
    re.IGNORECASE,
)
TASK_ID_LINE = re.compile(r"^\s*[-*]?\s*Task ID:\s*[0-9]+(\.[0-9]+)*", re.IGNORECASE | re.MULTILINE)
TASK_ID = re.compile(r"[0-9]+(?:\.[0-9]+)*")

RESEARCH_SECTION = re.compile(r"research.*context|research.*findings|research.*cache", re.IGNORECASE)
TASK_SECTION = re.compile(r"task.*generated|tasks.*created|implementation.*ready", re.IGNORECASE)
COMPLETION_SECTION = re.compile(r"COMPLETE|DELIVERED|FINISHED", re.IGNORECASE)
TASKMASTER_MENTION = re.compile(r"taskmaster|task.*coordination", re.IGNORECASE)


# =============================================================================
# test-driven-handoff
# =============================================================================


def check_preconditions(target_agent: str, context: str) -> list[str]:
    violations = []
    if not target_agent:
        violations.append("No target agent specified")
    if len(context) < MIN_CONTEXT_LENGTH:
        violations.append("Insufficient context provided")
    if not TASK_INTENT.search(context):
        violations.append("No clear task intent identified")
    return violations


@register_hook("test-driven-handoff")
def handoff_contract(payload: HookPayload, ctx: HookContext) -> HookResult:
    text = payload.prompt or payload.agent_output
    if not HANDOFF_INTENT.search(text):
        logger.debug("No handoff detected in prompt")
        return HookResult()

    match = AGENT_MENTION.search(text)
    target_agent = match.group(0) if match else ""
    violations = check_preconditions(target_agent, text)

    contract_file = unique_path(ctx.collective_dir / "handoffs", "handoff")
    write_json(
        contract_file,
        {
            "timestamp": ctx.now_iso(),
            "from_agent": payload.agent_name,
            "to_agent": target_agent,
            "context": text,
            "preconditions": {
                "context_provided": len(text) >= MIN_CONTEXT_LENGTH,
                "target_agent_available": bool(target_agent),
                "route_valid": bool(TASK_INTENT.search(text)),
            },
            "postconditions": {
                "handoff_successful": False,
                "context_preserved": False,
                "task_completed": False,
            },
            "violations": violations,
            "validation_status": "failed" if violations else "passed",
        },
    )
    append_json_line(
        ctx.metrics_dir / "contract-metrics.jsonl",
        {
            "timestamp": ctx.now_iso(),
            "type": "contract",
            "from_agent": payload.agent_name,
            "to_agent": target_agent,
            "validation_status": "failed" if violations else "passed",
            "violations": len(violations),
            "session_id": payload.session_id,
        },
    )
    logger.info("Created handoff contract %s for %s", contract_file.name, target_agent or "(none)")

    if violations:
        logger.warning("Precondition violations: %s", "; ".join(violations))
        lines = ["❌ TEST CONTRACT VIOLATIONS:"]
        lines.extend(f"  - {v}" for v in violations)
        lines.append("⚠️  TEST CONTRACT: Handoff validation issues detected")
    else:
        lines = [
            "✅ TEST CONTRACT: Handoff preconditions validated",
            f"📋 Contract: {contract_file}",
            f"🔄 Handoff: {payload.agent_name} → {target_agent}",
        ]
    return HookResult(stdout="\n".join(lines))


# =============================================================================
# handoff-automation
# =============================================================================


def is_completion_without_handoff(output: str) -> bool:
    if FINAL_COMPLETION.search(output):
        return True
    return "COMPLETE" in output.upper() and not ROUTE_LINE.search(output)


def extract_routing_target(output: str) -> Optional[str]:
    """Return the agent named by the first ROUTE TO/HANDOFF TO line, without the @."""
    route_line = next((line for line in output.splitlines() if ROUTE_LINE.search(line)), None)
    if route_line is None:
        return None

    for pattern, text in ((FULL_AGENT, output), (HYPHENATED, route_line), (ROUTE_WORD, route_line)):
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_task_id(output: str) -> Optional[str]:
    line_match = TASK_ID_LINE.search(output)
    if line_match:
        task_id = TASK_ID.search(line_match.group(0))
        if task_id:
            return task_id.group(0)
    for line in output.splitlines():
        if "implement task id" in line.lower():
            task_id = TASK_ID.search(line)
            if task_id:
                return task_id.group(0)
    return None


def grep_context(lines: list[str], pattern: re.Pattern, before: int, after: int, limit: int) -> str:
    """Lines matching ``pattern`` with surrounding context, like grep -B/-A."""
    selected: list[int] = []
    for index, line in enumerate(lines):
        if pattern.search(line):
            for i in range(max(0, index - before), min(len(lines), index + after + 1)):
                if i not in selected:
                    selected.append(i)
    return "\n".join(lines[i] for i in sorted(selected)[:limit])


def build_handoff_context(output: str, source_agent: str) -> str:
    lines = output.splitlines()
    parts = [f"HANDOFF CONTEXT FROM: {source_agent}", ""]

    completion = grep_context(lines, COMPLETION_SECTION, 3, 3, 10)
    if completion:
        parts.extend(["COMPLETION STATUS:", completion, ""])
    research = grep_context(lines, RESEARCH_SECTION, 5, 5, 20)
    if research:
        parts.extend(["RESEARCH CONTEXT:", research, ""])
    task = grep_context(lines, TASK_SECTION, 5, 5, 20)
    if task:
        parts.extend(["TASK CONTEXT:", task, ""])
    if TASKMASTER_MENTION.search(output):
        parts.extend(["TASKMASTER STATUS: Integration active - use TaskMaster tools for coordination", ""])

    return "\n".join(parts)


def implementation_prompt(target_agent: str, source_agent: str, task_id: str, project_root: str, context: str) -> str:
    return f"""🚨 AUTOMATIC HANDOFF DETECTED 🚨

The {source_agent} has assigned Task ID {task_id} for implementation.

🎯 REQUIRED IMMEDIATE ACTION:
Use the Task tool now with these exact parameters:

Task(
    subagent_type="{target_agent}",
    description="Implement Task ID {task_id}",
    prompt="TASK ID: {task_id}
PROJECT ROOT: {project_root}

MANDATORY FIRST ACTION:
Execute: mcp__task-master__get_task --id={task_id} --projectRoot={project_root}

Then implement according to the task's acceptance criteria using TDD methodology.
When complete, execute: mcp__task-master__set_task_status --id={task_id} --status=done --projectRoot={project_root}

{context}"
)

🚀 DO NOT IMPLEMENT DIRECTLY - USE THE TASK TOOL NOW"""


def continuation_prompt(target_agent: str, source_agent: str, context: str, request: str) -> str:
    return f"""🚨 AUTOMATIC HANDOFF DETECTED 🚨

The {source_agent} has completed its work and requested handoff to: @{target_agent}

{context}

🎯 REQUIRED IMMEDIATE ACTION:
Use the Task tool now with these exact parameters:

Task(
    subagent_type="{target_agent}",
    description="Continue from {source_agent} handoff",
    prompt="{request}

HANDOFF CONTEXT: The {source_agent} has completed its phase and is handing off to you. Continue the work with the above context and research findings. Apply your specialized capabilities to complete the next phase of the request."
)

🚀 DO NOT IMPLEMENT DIRECTLY - USE THE TASK TOOL NOW"""


def _record_automation(ctx: HookContext, payload: HookPayload, status: str, **fields: object) -> None:
    append_json_array(
        ctx.collective_dir / "handoffs" / "automation-log.json",
        {
            "timestamp": ctx.now_iso(),
            "source_agent": payload.agent_name,
            "session_id": payload.session_id,
            "status": status,
            **fields,
        },
    )


@register_hook("handoff-automation")
def handoff_automation(payload: HookPayload, ctx: HookContext) -> HookResult:
    if payload.event != "SubagentStop":
        logger.debug("Skipping automation, not a SubagentStop event (%r)", payload.event)
        return HookResult()

    output = payload.agent_output
    if not output:
        logger.debug("No agent output to process")
        return HookResult()

    if is_completion_without_handoff(output):
        _record_automation(ctx, payload, "complete")
        return HookResult(
            stdout="✅ WORKFLOW COMPLETE: Agent finished task successfully\n"
            "📋 Status: No further handoff required"
        )

    target_agent = extract_routing_target(output)
    if not target_agent:
        logger.info("No routing target found in agent output")
        return HookResult(stdout="ℹ️  NO HANDOFF DETECTED: Agent completed without routing instruction")

    task_id = None
    if target_agent.endswith("-implementation-agent"):
        task_id = extract_task_id(output)
        if not task_id:
            logger.warning("No Task ID found for %s, handoff aborted", target_agent)
            _record_automation(ctx, payload, "blocked", target_agent=target_agent)
            return HookResult(
                stdout="\n".join(
                    [
                        "⚠️  HANDOFF BLOCKED: NO TASK ID FOR IMPLEMENTATION AGENT",
                        "",
                        "Implementation agents REQUIRE a Task ID to fetch from TaskMaster.",
                        "The orchestrator must provide 'Task ID: X' in the assignment.",
                        "",
                        "Handoff aborted to ensure deterministic task execution.",
                    ]
                )
            )

    context = build_handoff_context(output, payload.agent_name)
    if task_id:
        prompt = implementation_prompt(target_agent, payload.agent_name, task_id, str(ctx.project_dir), context)
    else:
        request = "Continue the work from the previous agent with the provided context"
        if payload.agent_name == "prd-research-agent" and "PRD" in output.upper():
            request = "Execute the tasks generated from the PRD analysis with research-backed implementation"
        prompt = continuation_prompt(target_agent, payload.agent_name, context, request)

    _record_automation(ctx, payload, "handoff_generated", target_agent=target_agent, task_id=task_id)
    logger.info("Generated handoff prompt: %s -> %s", payload.agent_name, target_agent)
    return HookResult(stdout=f"\n{prompt}\n")


__all__ = [
    "handoff_contract",
    "handoff_automation",
    "check_preconditions",
    "extract_routing_target",
    "extract_task_id",
    "build_handoff_context",
    "is_completion_without_handoff",
]
