"""Python handlers for the collective's Claude Code hooks.

Each installed ``.claude/hooks/<name>.sh`` is a thin shim that runs
``python -m collective hook <name>``. Importing this package registers
every handler.

Hooks:
    load-behavioral-system   SessionStart: print the behavioral documents
    agent-detection          UserPromptSubmit: remind the hub to use Task
    directive-enforcer       PreToolUse: block edits to protected paths
    collective-metrics       Pre/PostToolUse, SubagentStop: research metrics
    routing-executor         PostToolUse(Task): record routing decisions
    test-driven-handoff      PostToolUse(Task), SubagentStop: handoff contracts
    handoff-automation       SubagentStop: generate the next Task(...) call

Usage:
    from collective.hooks import run_hook

    result = run_hook("routing-executor", stdin_text)
    print(result.stdout)
"""

from collective.hooks.payload import HookPayload, read_transcript_tail
from collective.hooks.runner import (
    EXIT_BLOCK,
    EXIT_OK,
    HookContext,
    HookResult,
    available_hooks,
    get_hook,
    register_hook,
    run_hook,
)

# handler modules register themselves on import
from collective.hooks import enforcement, handoffs, metrics, routing, session  # noqa: F401,E402

__all__ = [
    "HookPayload",
    "HookContext",
    "HookResult",
    "read_transcript_tail",
    "register_hook",
    "available_hooks",
    "get_hook",
    "run_hook",
    "EXIT_OK",
    "EXIT_BLOCK",
]
