"""Shared pytest fixtures for claude-code-collective tests.

This module provides common fixtures used across all test modules:
- Settings cache and logging isolation between tests
- A clean environment with no COLLECTIVE_ variables and no project .env
- Empty and fully installed temporary projects
- Hook payload and context builders
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

import pytest

from collective.cli.logging import reset_logging
from collective.config.settings import CollectiveSettings, clear_settings_cache
from collective.hooks.runner import HookContext
from collective.install import CollectiveInstaller, InstallOptions


# -----------------------------------------------------------------------------
# Test Isolation Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear the settings and logging caches before and after each test."""
    clear_settings_cache()
    reset_logging()
    yield
    clear_settings_cache()
    reset_logging()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Remove COLLECTIVE_ env vars and run each test from an empty directory.

    pydantic-settings reads ``.env`` from the working directory, so each test
    runs from a scratch directory holding an empty one.
    """
    for key in [k for k in os.environ if k.startswith("COLLECTIVE_")]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("CLAUDE_PROJECT_DIR", raising=False)

    workdir = tmp_path / "cwd"
    workdir.mkdir()
    (workdir / ".env").write_text("")
    monkeypatch.chdir(workdir)
    return workdir


# -----------------------------------------------------------------------------
# Project Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def settings() -> CollectiveSettings:
    return CollectiveSettings()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """An empty target project."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def installed_project(project_dir, settings) -> Path:
    """A project with a full express installation and no backups."""
    options = InstallOptions(target_path=project_dir, express=True, backup="none")
    CollectiveInstaller(options, settings=settings).install()
    return project_dir


@pytest.fixture
def collective_dir(project_dir) -> Path:
    path = project_dir / ".claude-collective"
    path.mkdir(exist_ok=True)
    return path


# -----------------------------------------------------------------------------
# Hook Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def hook_env(project_dir) -> dict[str, str]:
    return {"CLAUDE_PROJECT_DIR": str(project_dir)}


@pytest.fixture
def hook_context(project_dir, settings, hook_env) -> HookContext:
    return HookContext(project_dir=project_dir, settings=settings, env=hook_env)


@pytest.fixture
def make_payload():
    """Build the JSON text Claude Code sends to a hook on stdin."""

    def _make(
        event: str = "PostToolUse",
        tool_name: str = "Task",
        prompt: Optional[str] = None,
        **extra: Any,
    ) -> str:
        data: dict[str, Any] = {"hook_event_name": event, "tool_name": tool_name, "session_id": "sess-1"}
        if prompt is not None:
            data["tool_input"] = {"prompt": prompt, **extra.pop("tool_input", {})}
        elif "tool_input" in extra:
            data["tool_input"] = extra.pop("tool_input")
        data.update(extra)
        return json.dumps(data)

    return _make


def read_json_file(path: Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))
