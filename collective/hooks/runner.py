"""Hook registry and dispatch.

Every installed ``.claude/hooks/<name>.sh`` shim runs
``python -m collective hook <name>``; the CLI forwards stdin to
``run_hook`` which parses the payload, calls the registered handler and
returns a HookResult for the CLI to print.

A broken hook must never block Claude Code, so unexpected exceptions are
logged and converted into exit code 0. Exit code 2 is reserved for a
deliberate block (see the directive enforcer).

Example:
    >>> @register_hook("agent-detection")
    ... def detect(payload: HookPayload, ctx: HookContext) -> HookResult:
    ...     return HookResult(stdout="...")
    >>> result = run_hook("agent-detection", '{"prompt": "@research-agent"}')
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping, Optional

from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import UnknownHookError
from collective.hooks.payload import HookPayload

logger = logging.getLogger(__name__)

HOOK_LOGGER_NAME = "collective.hooks"

EXIT_OK = 0
EXIT_BLOCK = 2


@dataclass
class HookResult:
    """What a hook prints and how it exits."""

    exit_code: int = EXIT_OK
    stdout: str = ""
    stderr: str = ""

    @property
    def blocked(self) -> bool:
        return self.exit_code == EXIT_BLOCK


@dataclass
class HookContext:
    """Execution context shared by hook handlers.

    Attributes:
        project_dir: Project root (CLAUDE_PROJECT_DIR or the working directory).
        settings: Active collective settings.
        env: Environment the hook was started with.
    """

    project_dir: Path
    settings: CollectiveSettings
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def collective_dir(self) -> Path:
        return self.settings.paths.resolve_collective_dir(self.project_dir)

    @property
    def claude_dir(self) -> Path:
        return self.settings.paths.resolve_claude_dir(self.project_dir)

    @property
    def metrics_dir(self) -> Path:
        return self.collective_dir / "metrics"

    @staticmethod
    def now_iso() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


HookHandler = Callable[[HookPayload, HookContext], HookResult]

_HOOKS: dict[str, HookHandler] = {}


def register_hook(name: str) -> Callable[[HookHandler], HookHandler]:
    """Register a handler under the hook's installed file name (without .sh)."""

    def decorator(func: HookHandler) -> HookHandler:
        _HOOKS[name] = func
        return func

    return decorator


def available_hooks() -> list[str]:
    return sorted(_HOOKS)


def get_hook(name: str) -> HookHandler:
    normalized = name[:-3] if name.endswith(".sh") else name
    try:
        return _HOOKS[normalized]
    except KeyError:
        raise UnknownHookError(name, available=available_hooks()) from None


def resolve_project_dir(env: Mapping[str, str], project_dir: Optional[Path] = None) -> Path:
    if project_dir is not None:
        return Path(project_dir).resolve()
    if env.get("CLAUDE_PROJECT_DIR"):
        return Path(env["CLAUDE_PROJECT_DIR"]).resolve()
    return Path.cwd().resolve()


def _configure_hook_logging(ctx: HookContext) -> None:
    # only log to file for installed projects; never create dirs elsewhere
    if not ctx.collective_dir.is_dir():
        return
    from collective.cli.logging import LOG_LEVELS, setup_file_logging

    setup_file_logging(
        ctx.settings.paths.resolve_log_dir(ctx.project_dir) / ctx.settings.hooks.log_file,
        name=HOOK_LOGGER_NAME,
        level=LOG_LEVELS.get(ctx.settings.log_level, logging.INFO),
    )


def run_hook(
    name: str,
    raw_input: str = "",
    env: Optional[Mapping[str, str]] = None,
    project_dir: Optional[Path] = None,
    settings: Optional[CollectiveSettings] = None,
) -> HookResult:
    """Parse the payload, dispatch to the named handler and return its result.

    Raises:
        UnknownHookError: If no handler is registered under ``name``.
    """
    handler = get_hook(name)
    env = dict(os.environ) if env is None else env
    settings = settings or get_settings()
    ctx = HookContext(project_dir=resolve_project_dir(env, project_dir), settings=settings, env=env)
    _configure_hook_logging(ctx)

    payload = HookPayload.from_input(
        raw_input, env=env, transcript_tail_lines=settings.hooks.transcript_tail_lines
    )
    logger.info(
        "Hook triggered",
        extra={
            "hook": name,
            "status": "start",
            "metadata": {"event": payload.event, "tool": payload.tool_name, "agent": payload.agent_name},
        },
    )

    start = time.perf_counter()
    try:
        result = handler(payload, ctx)
    except Exception as e:
        logger.exception(
            "Hook failed",
            extra={"hook": name, "status": "error", "error": str(e), "error_type": type(e).__name__},
        )
        return HookResult(exit_code=EXIT_OK)

    logger.info(
        "Hook finished",
        extra={
            "hook": name,
            "status": "complete",
            "exit_code": result.exit_code,
            "duration_ms": int((time.perf_counter() - start) * 1000),
        },
    )
    return result


__all__ = [
    "HookResult",
    "HookContext",
    "HookHandler",
    "register_hook",
    "available_hooks",
    "get_hook",
    "run_hook",
    "resolve_project_dir",
    "EXIT_OK",
    "EXIT_BLOCK",
]
