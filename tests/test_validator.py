"""Tests for installation validation.

Test Coverage:
- A fresh installation passes every check
- Missing files, non-executable hooks and broken settings fail
- Agent frontmatter parsing and agent checks
- pytest.ini structure check
- bash -n syntax checks over hooks
- Summary shape
"""

from __future__ import annotations

import shutil

import pytest
import yaml

from collective.install.validator import CheckResult, CollectiveValidator, parse_frontmatter


def failures(validator, **kwargs):
    summary = CollectiveValidator.summarize(validator.validate_installation(**kwargs))
    return {f["name"]: f["error"] for f in summary["failures"]}


class TestParseFrontmatter:
    def test_no_frontmatter(self):
        assert parse_frontmatter("# Agent\n") is None

    def test_mapping(self):
        content = "---\nname: research-agent\ntools: Read, Grep\n---\n# Body\n"

        assert parse_frontmatter(content) == {"name": "research-agent", "tools": "Read, Grep"}

    def test_empty_block(self):
        assert parse_frontmatter("---\n---\nbody") == {}

    def test_unterminated(self):
        with pytest.raises(ValueError, match="not terminated"):
            parse_frontmatter("---\nname: x\n")

    def test_not_a_mapping(self):
        with pytest.raises(ValueError, match="not a mapping"):
            parse_frontmatter("---\n- a\n- b\n---\n")

    def test_invalid_yaml(self):
        with pytest.raises(yaml.YAMLError):
            parse_frontmatter("---\nname: [unclosed\n---\n")


class TestValidateInstallation:
    def test_fresh_install_is_valid(self, installed_project):
        summary = CollectiveValidator.summarize(CollectiveValidator(installed_project).validate_installation())

        assert summary["valid"] is True, summary["failures"]
        assert len(summary["tests"]) > 20

    def test_empty_project(self, project_dir):
        failed = failures(CollectiveValidator(project_dir))

        assert failed["CLAUDE.md exists"] == "Missing: CLAUDE.md"
        assert "Hooks directory validation" in failed
        assert "Agents directory validation" in failed
        assert failed["Test framework validation"] == "pytest.ini does not exist"

    def test_missing_hook(self, installed_project):
        (installed_project / ".claude" / "hooks" / "routing-executor.sh").unlink()

        failed = failures(CollectiveValidator(installed_project))

        assert failed == {"Hook routing-executor.sh exists": "Missing hook: routing-executor.sh"}

    def test_hook_not_executable(self, installed_project):
        (installed_project / ".claude" / "hooks" / "directive-enforcer.sh").chmod(0o644)

        failed = failures(CollectiveValidator(installed_project))

        assert "Hook directive-enforcer.sh executable" in failed

    def test_invalid_settings_json(self, installed_project):
        (installed_project / ".claude" / "settings.json").write_text("{nope")

        failed = failures(CollectiveValidator(installed_project))

        assert failed["Settings JSON validation"].startswith("Invalid JSON")

    def test_settings_missing_hook_events(self, installed_project):
        (installed_project / ".claude" / "settings.json").write_text('{"hooks": {"PreToolUse": []}}')

        failed = failures(CollectiveValidator(installed_project))

        assert failed["Settings JSON structure"] == "settings.json missing required hook configuration"

    def test_agent_without_name(self, installed_project):
        (installed_project / ".claude" / "agents" / "broken.md").write_text("---\ndescription: x\n---\n")

        failed = failures(CollectiveValidator(installed_project))

        assert failed["Agent broken.md validation"] == "Agent broken.md frontmatter missing name"

    def test_json_agent(self, installed_project):
        agents = installed_project / ".claude" / "agents"
        (agents / "good.json").write_text('{"name": "good", "description": "ok"}')
        (agents / "bad.json").write_text('{"name": ""}')

        failed = failures(CollectiveValidator(installed_project))

        assert "Agent good.json validation" not in failed
        assert failed["Agent bad.json validation"] == "Agent bad.json missing required fields"

    def test_no_agents(self, installed_project):
        shutil.rmtree(installed_project / ".claude" / "agents")
        (installed_project / ".claude" / "agents").mkdir()

        failed = failures(CollectiveValidator(installed_project))

        assert failed["Agent definitions exist"] == "No agent definition files found"

    def test_pytest_ini_without_testpaths(self, installed_project):
        (installed_project / ".claude-collective" / "pytest.ini").write_text("[pytest]\naddopts = -q\n")

        failed = failures(CollectiveValidator(installed_project))

        assert failed["Test framework validation"] == "pytest.ini missing [pytest] testpaths"


@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
class TestValidateSyntax:
    def test_installed_hooks_parse(self, installed_project):
        results = CollectiveValidator(installed_project).validate_syntax()

        assert len(results) == 7
        assert all(r.passed for r in results)

    def test_syntax_error_reported(self, installed_project):
        (installed_project / ".claude" / "hooks" / "broken.sh").write_text("if then fi (\n")

        results = {r.name: r for r in CollectiveValidator(installed_project).validate_syntax()}

        assert results["broken.sh syntax"].passed is False
        assert results["broken.sh syntax"].error

    def test_no_hooks_dir(self, project_dir):
        assert CollectiveValidator(project_dir).validate_syntax() == []


class TestSummary:
    def test_summarize(self):
        results = {"tests": [CheckResult("a", True), CheckResult("b", False, "boom")]}

        summary = CollectiveValidator.summarize(results)

        assert summary["valid"] is False
        assert summary["failures"] == [{"name": "b", "passed": False, "error": "boom"}]
        assert len(summary["tests"]) == 2
