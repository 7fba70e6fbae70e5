"""collective-metrics hook.

Records one basic entry per tool call into a dated JSON array and, for
the research hypotheses, appends JIT, routing, handoff and performance
events to JSON Lines streams in the metrics directory. Expired top-level
metric files are removed on every run.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path

from collective.core.storage import append_json_array, append_json_line
from collective.hooks.payload import HookPayload
from collective.hooks.runner import HookContext, HookResult, register_hook

logger = logging.getLogger(__name__)

ROUTING_MENTION = re.compile(r"@.*-agent", re.IGNORECASE)
HANDOFF_MENTION = re.compile(r"handoff|test.*contract|validate", re.IGNORECASE)
TEST_VALIDATION = re.compile(r"test|validate|contract", re.IGNORECASE)


def daily_metrics_file(metrics_dir: Path, now: datetime) -> Path:
    return metrics_dir / f"{now:%Y-%m-%d}-metrics.json"


def cleanup_expired(metrics_dir: Path, retention_days: int) -> list[Path]:
    """Delete top-level dated metric arrays and event streams past retention."""
    cutoff = time.time() - retention_days * 86400
    removed = []
    for pattern in ("*-metrics.json", "*.jsonl"):
        for path in metrics_dir.glob(pattern):
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
    return removed


@register_hook("collective-metrics")
def collective_metrics(payload: HookPayload, ctx: HookContext) -> HookResult:
    metrics_dir = ctx.metrics_dir
    timestamp = ctx.now_iso()
    prompt = payload.prompt

    append_json_array(
        daily_metrics_file(metrics_dir, datetime.now(timezone.utc)),
        {
            "timestamp": timestamp,
            "event": payload.event,
            "agent": payload.agent_name,
            "tool": payload.tool_name,
            "prompt_length": len(prompt),
            "session_id": payload.session_id,
        },
    )

    if payload.tool_name == "Task":
        context_size = len(prompt.encode("utf-8"))
        append_json_line(
            metrics_dir / "jit-metrics.jsonl",
            {
                "timestamp": timestamp,
                "context_size": context_size,
                "token_estimate": context_size // 4,
                "session_id": payload.session_id,
            },
        )

    if ROUTING_MENTION.search(prompt):
        append_json_line(
            metrics_dir / "routing-metrics.jsonl",
            {
                "timestamp": timestamp,
                "type": "routing",
                "from_agent": payload.agent_name,
                "routing_detected": True,
                "pattern_compliance": True,
                "session_id": payload.session_id,
            },
        )

    if HANDOFF_MENTION.search(prompt):
        append_json_line(
            metrics_dir / "handoff-metrics.jsonl",
            {
                "timestamp": timestamp,
                "type": "handoff",
                "agent": payload.agent_name,
                "has_test_validation": bool(TEST_VALIDATION.search(prompt)),
                "session_id": payload.session_id,
            },
        )

    now_ms = int(time.time() * 1000)
    try:
        start_ms = int(ctx.env.get("CLAUDE_TOOL_START_TIME") or now_ms)
    except ValueError:
        start_ms = now_ms
    append_json_line(
        metrics_dir / "performance-metrics.jsonl",
        {
            "timestamp": timestamp,
            "tool": payload.tool_name,
            "duration_ms": now_ms - start_ms,
            "agent": payload.agent_name,
            "session_id": payload.session_id,
        },
    )

    removed = cleanup_expired(metrics_dir, ctx.settings.metrics.hook_retention_days)
    if removed:
        logger.info("Removed %d expired metrics files", len(removed))
    logger.debug("Metrics collected for %s using %s", payload.agent_name, payload.tool_name)
    return HookResult()


__all__ = ["collective_metrics", "cleanup_expired", "daily_metrics_file"]
