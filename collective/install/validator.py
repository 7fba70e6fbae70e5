"""Installation validation for the collective.

Checks that an installed project has every file the workflow depends on,
that hooks are executable and syntactically valid, that settings.json has
the hook structure Claude Code expects, and that agent definitions parse.

Key Components:
    - CheckResult: Outcome of one validation check
    - CollectiveValidator: Runs the checks against a project
    - parse_frontmatter: Extracts YAML frontmatter from agent markdown

Example:
    >>> validator = CollectiveValidator(Path("/work/app"))
    >>> summary = validator.summarize(validator.validate_installation())
    >>> summary["valid"]
    True
"""

from __future__ import annotations

import configparser
import json
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

EXPECTED_HOOKS = [
    "directive-enforcer.sh",
    "collective-metrics.sh",
    "test-driven-handoff.sh",
    "routing-executor.sh",
]

REQUIRED_HOOK_EVENTS = ("PreToolUse", "PostToolUse", "SubagentStop")

COLLECT_TIMEOUT = 30


@dataclass
class CheckResult:
    """Outcome of a single validation check."""

    name: str
    passed: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "error": self.error}


def parse_frontmatter(content: str) -> Optional[dict[str, Any]]:
    """Parse the ``---`` delimited YAML block at the top of a markdown file.

    Returns:
        The frontmatter mapping, or None when the file has no frontmatter.

    Raises:
        yaml.YAMLError: If the frontmatter is not valid YAML.
        ValueError: If the frontmatter is not a mapping or is unterminated.
    """
    if not content.startswith("---"):
        return None

    lines = content.splitlines()
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            data = yaml.safe_load("\n".join(lines[1:index])) or {}
            if not isinstance(data, dict):
                raise ValueError("frontmatter is not a mapping")
            return data
    raise ValueError("frontmatter is not terminated")


class CollectiveValidator:
    """Validates a collective installation.

    Attributes:
        project_dir: Root of the project being validated.
        claude_dir: The project's ``.claude`` directory.
        collective_dir: The project's ``.claude-collective`` directory.
    """

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = Path(project_dir).resolve()
        self.claude_dir = self.project_dir / ".claude"
        self.collective_dir = self.project_dir / ".claude-collective"

    def validate_installation(self, run_suite: bool = False) -> dict[str, list[CheckResult]]:
        """Run every installation check."""
        results: list[CheckResult] = []

        file_checks = [
            ("CLAUDE.md exists", "CLAUDE.md"),
            ("Settings configuration", ".claude/settings.json"),
            ("Hooks directory", ".claude/hooks"),
            ("Agents directory", ".claude/agents"),
            ("Tests directory", ".claude-collective/tests"),
            ("pytest configuration", ".claude-collective/pytest.ini"),
            ("Test fixtures", ".claude-collective/tests/conftest.py"),
        ]
        for name, relative in file_checks:
            exists = (self.project_dir / relative).exists()
            results.append(CheckResult(name, exists, None if exists else f"Missing: {relative}"))

        results.extend(self.validate_hooks())
        results.append(self.validate_settings())
        results.extend(self.validate_agents())
        results.append(self.validate_test_framework(run_suite=run_suite))

        return {"tests": results}

    def validate_hooks(self) -> list[CheckResult]:
        hooks_dir = self.claude_dir / "hooks"
        if not hooks_dir.is_dir():
            return [CheckResult("Hooks directory validation", False, "Hooks directory does not exist")]

        results = []
        for hook in EXPECTED_HOOKS:
            hook_path = hooks_dir / hook
            if not hook_path.exists():
                results.append(CheckResult(f"Hook {hook} exists", False, f"Missing hook: {hook}"))
                continue
            try:
                executable = bool(hook_path.stat().st_mode & 0o111)
            except OSError as e:
                results.append(
                    CheckResult(f"Hook {hook} validation", False, f"Error checking {hook}: {e}")
                )
                continue
            results.append(
                CheckResult(
                    f"Hook {hook} executable",
                    executable,
                    None if executable else f"Hook {hook} is not executable",
                )
            )
        return results

    def validate_settings(self) -> CheckResult:
        settings_path = self.claude_dir / "settings.json"
        if not settings_path.exists():
            return CheckResult("Settings JSON validation", False, "settings.json does not exist")

        try:
            settings = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            return CheckResult("Settings JSON validation", False, f"Invalid JSON: {e}")

        hooks = settings.get("hooks") if isinstance(settings, dict) else None
        if not isinstance(hooks, dict) or not all(
            isinstance(hooks.get(event), list) for event in REQUIRED_HOOK_EVENTS
        ):
            return CheckResult(
                "Settings JSON structure",
                False,
                "settings.json missing required hook configuration",
            )
        return CheckResult("Settings JSON validation", True)

    def validate_agents(self) -> list[CheckResult]:
        agents_dir = self.claude_dir / "agents"
        if not agents_dir.is_dir():
            return [CheckResult("Agents directory validation", False, "Agents directory does not exist")]

        agent_files = sorted(
            p for p in agents_dir.iterdir() if p.is_file() and p.suffix in (".json", ".md")
        )
        if not agent_files:
            return [CheckResult("Agent definitions exist", False, "No agent definition files found")]

        results = [self._validate_agent_file(path) for path in agent_files]
        results.append(CheckResult("Agent definitions exist", True))
        return results

    def _validate_agent_file(self, path: Path) -> CheckResult:
        name = f"Agent {path.name} validation"
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            return CheckResult(name, False, f"Agent validation error: {e}")

        if path.suffix == ".json":
            try:
                agent = json.loads(content)
            except json.JSONDecodeError as e:
                return CheckResult(name, False, f"Agent validation error: {e}")
            ok = (
                isinstance(agent, dict)
                and isinstance(agent.get("name"), str) and bool(agent["name"])
                and isinstance(agent.get("description"), str) and bool(agent["description"])
            )
            return CheckResult(name, ok, None if ok else f"Agent {path.name} missing required fields")

        if not content.strip():
            return CheckResult(name, False, f"Agent {path.name} is empty")
        try:
            frontmatter = parse_frontmatter(content)
        except (yaml.YAMLError, ValueError) as e:
            return CheckResult(name, False, f"Agent {path.name} has invalid frontmatter: {e}")
        if frontmatter is not None and not frontmatter.get("name"):
            return CheckResult(name, False, f"Agent {path.name} frontmatter missing name")
        return CheckResult(name, True)

    def validate_test_framework(self, run_suite: bool = False) -> CheckResult:
        """Check the pytest harness and optionally collect its tests."""
        ini_path = self.collective_dir / "pytest.ini"
        if not ini_path.exists():
            return CheckResult("Test framework validation", False, "pytest.ini does not exist")

        parser = configparser.ConfigParser()
        try:
            parser.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            return CheckResult("Test framework validation", False, f"Invalid pytest.ini: {e}")

        if not parser.has_section("pytest") or not parser.has_option("pytest", "testpaths"):
            return CheckResult(
                "Test framework validation", False, "pytest.ini missing [pytest] testpaths"
            )

        if run_suite:
            try:
                proc = subprocess.run(
                    [sys.executable, "-m", "pytest", "--collect-only", "-q"],
                    cwd=self.collective_dir,
                    capture_output=True,
                    text=True,
                    timeout=COLLECT_TIMEOUT,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                return CheckResult("Test framework execution", False, f"Test collection failed: {e}")
            # 5 means no tests were collected, which is fine for a fresh project
            if proc.returncode not in (0, 5):
                tail = (proc.stdout or proc.stderr).strip().splitlines()[-1:] or [""]
                return CheckResult(
                    "Test framework execution", False, f"Test collection failed: {tail[0]}"
                )

        return CheckResult("Test framework validation", True)

    def validate_syntax(self) -> list[CheckResult]:
        """Run ``bash -n`` over every installed shell hook."""
        hooks_dir = self.claude_dir / "hooks"
        if not hooks_dir.is_dir():
            return []

        results = []
        for hook in sorted(hooks_dir.glob("*.sh")):
            try:
                proc = subprocess.run(
                    ["bash", "-n", str(hook)], capture_output=True, text=True, timeout=10
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                results.append(CheckResult(f"{hook.name} syntax", False, str(e)))
                continue
            results.append(
                CheckResult(
                    f"{hook.name} syntax",
                    proc.returncode == 0,
                    None if proc.returncode == 0 else proc.stderr.strip(),
                )
            )
        return results

    @staticmethod
    def summarize(results: dict[str, list[CheckResult]]) -> dict[str, Any]:
        tests = results.get("tests", [])
        failures = [t for t in tests if not t.passed]
        return {
            "valid": not failures,
            "tests": [t.to_dict() for t in tests],
            "failures": [t.to_dict() for t in failures],
        }


__all__ = ["CheckResult", "CollectiveValidator", "parse_frontmatter", "EXPECTED_HOOKS"]
