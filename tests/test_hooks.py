"""Tests for the Claude Code hook handlers.

Test Coverage:
- HookPayload normalization of stdin JSON, env fallbacks and transcripts
- Runner dispatch, unknown hooks, crash containment and hook logging
- load-behavioral-system and agent-detection
- directive-enforcer blocking with exit code 2 and the configuration-agent allow-list
- routing-executor explicit and implicit routes
- test-driven-handoff contracts, contract metrics and precondition violations
- Route and contract files created within one millisecond never overwrite
- handoff-automation Task(...) generation, completion and blocking
- collective-metrics event streams and retention
"""

from __future__ import annotations

import json
import os
import time
from types import SimpleNamespace

import pytest

from collective.config.settings import CollectiveSettings
from collective.core.exceptions import UnknownHookError
from collective.core import storage
from collective.hooks import EXIT_BLOCK, EXIT_OK, HookPayload, HookResult, available_hooks, run_hook
from collective.hooks import runner
from collective.hooks.handoffs import extract_routing_target, extract_task_id
from collective.hooks.payload import DEFAULT_AGENT, read_transcript_tail
from collective.hooks.routing import detect_route

from conftest import read_json_file


def run(name, project_dir, settings, raw="", env=None):
    env = {"CLAUDE_PROJECT_DIR": str(project_dir), **(env or {})}
    return run_hook(name, raw, env=env, settings=settings)


def subagent_stop(output, agent="research-agent"):
    return json.dumps(
        {"hook_event_name": "SubagentStop", "subagent_name": agent, "agent_output": output, "session_id": "s"}
    )


# =============================================================================
# Payload
# =============================================================================


class TestHookPayload:
    def test_empty_input(self):
        payload = HookPayload.from_input("")

        assert payload.event == ""
        assert payload.agent_name == DEFAULT_AGENT
        assert payload.session_id == "unknown"

    def test_invalid_json(self):
        assert HookPayload.from_input("{not json").raw == {}

    def test_stdin_fields(self, make_payload):
        payload = HookPayload.from_input(
            make_payload(prompt="ROUTE TO: @testing-agent", subagent_name="research-agent")
        )

        assert payload.event == "PostToolUse"
        assert payload.tool_name == "Task"
        assert payload.prompt == "ROUTE TO: @testing-agent"
        assert payload.agent_name == "research-agent"
        assert payload.session_id == "sess-1"

    def test_event_spellings(self):
        assert HookPayload.from_input('{"event": "SubagentStop"}').event == "SubagentStop"
        assert HookPayload.from_input('{"type": "SessionStart"}').event == "SessionStart"

    def test_env_fallbacks(self):
        env = {"USER_PROMPT": "from env", "TOOL_NAME": "Task", "AGENT_NAME": "testing-agent", "CLAUDE_SESSION_ID": "e"}

        payload = HookPayload.from_input("{}", env=env)

        assert payload.prompt == "from env"
        assert payload.tool_name == "Task"
        assert payload.agent_name == "testing-agent"
        assert payload.session_id == "e"

    def test_agent_output_from_tool_response(self):
        raw = json.dumps({"tool_response": {"content": [{"type": "text", "text": "ROUTE TO: @x-agent"}]}})

        assert HookPayload.from_input(raw).agent_output == "ROUTE TO: @x-agent"

    def test_agent_output_fallback_keys(self):
        assert HookPayload.from_input('{"output": "done"}').agent_output == "done"

    def test_file_path(self):
        payload = HookPayload.from_input('{"tool_input": {"notebook_path": "a.ipynb"}}')

        assert payload.file_path == "a.ipynb"

    def test_transcript_tail(self, tmp_path):
        transcript = tmp_path / "transcript.jsonl"
        lines = [
            {"type": "user", "message": {"content": "ROUTE TO: @ignored-agent"}},
            {"type": "assistant", "message": {"content": ["Working", "ROUTE TO: @testing-agent"]}},
            {"type": "assistant", "message": {"content": "All good"}},
        ]
        transcript.write_text("\n".join(json.dumps(line) for line in lines) + "\n")

        payload = HookPayload.from_input(json.dumps({"transcript_path": str(transcript)}))

        assert payload.agent_output == "ROUTE TO: @testing-agent"

    def test_transcript_raw_line_fallback(self, tmp_path):
        transcript = tmp_path / "transcript.jsonl"
        transcript.write_text('not json but HANDOFF TO: @a-agent\n{"type": "assistant"}\n')

        assert read_transcript_tail(transcript) == "not json but HANDOFF TO: @a-agent"

    def test_missing_transcript(self, tmp_path):
        assert read_transcript_tail(tmp_path / "missing.jsonl") == ""


# =============================================================================
# Runner
# =============================================================================


class TestRunner:
    def test_registered_hooks(self):
        assert available_hooks() == [
            "agent-detection",
            "collective-metrics",
            "directive-enforcer",
            "handoff-automation",
            "load-behavioral-system",
            "routing-executor",
            "test-driven-handoff",
        ]

    def test_unknown_hook(self, project_dir, settings):
        with pytest.raises(UnknownHookError) as exc_info:
            run("nope", project_dir, settings)

        assert "routing-executor" in exc_info.value.context["available"]

    def test_sh_suffix_accepted(self, project_dir, settings):
        assert run("agent-detection.sh", project_dir, settings).exit_code == EXIT_OK

    def test_handler_crash_exits_zero(self, monkeypatch, project_dir, settings):
        def boom(payload, ctx):
            raise RuntimeError("kaboom")

        monkeypatch.setitem(runner._HOOKS, "boom", boom)

        result = run("boom", project_dir, settings)

        assert result.exit_code == EXIT_OK
        assert result.stdout == ""

    def test_project_dir_from_env(self, project_dir):
        assert runner.resolve_project_dir({"CLAUDE_PROJECT_DIR": str(project_dir)}) == project_dir.resolve()

    def test_project_dir_defaults_to_cwd(self, clean_env):
        assert runner.resolve_project_dir({}) == clean_env.resolve()

    def test_hook_log_written_for_installed_project(self, installed_project, settings, make_payload):
        run("routing-executor", installed_project, settings, make_payload(prompt="ROUTE TO: @testing-agent"))

        log_file = installed_project / ".claude-collective" / "logs" / "hooks.log"
        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        finished = [e for e in entries if e["message"] == "Hook finished"]
        assert finished[0]["hook"] == "routing-executor"
        assert finished[0]["exit_code"] == 0

    def test_no_log_dir_for_uninstalled_project(self, project_dir, settings):
        run("agent-detection", project_dir, settings, '{"prompt": "hi"}')

        assert not (project_dir / ".claude-collective").exists()

    def test_blocked_property(self):
        assert HookResult(exit_code=EXIT_BLOCK).blocked is True
        assert HookResult().blocked is False


# =============================================================================
# Session Hooks
# =============================================================================


class TestSessionHooks:
    def test_loads_behavioral_documents(self, installed_project, settings):
        result = run("load-behavioral-system", installed_project, settings, '{"hook_event_name": "SessionStart"}')

        assert result.stdout.startswith("🧠 COLLECTIVE BEHAVIORAL SYSTEM LOADED")
        assert "=== .claude-collective/CLAUDE.md ===" in result.stdout
        assert "=== .claude-collective/DECISION.md ===" in result.stdout

    def test_behavioral_system_missing(self, project_dir, settings):
        result = run("load-behavioral-system", project_dir, settings)

        assert "behavioral system not found" in result.stdout
        assert result.exit_code == EXIT_OK

    @pytest.mark.parametrize("prompt", ["@research-agent look into caching", "use @agent-testing please"])
    def test_agent_call_detected(self, project_dir, settings, prompt):
        result = run("agent-detection", project_dir, settings, json.dumps({"prompt": prompt}))

        assert "AGENT CALL DETECTED" in result.stdout

    def test_no_agent_call(self, project_dir, settings):
        assert run("agent-detection", project_dir, settings, '{"prompt": "fix the bug"}').stdout == ""


# =============================================================================
# directive-enforcer
# =============================================================================


class TestDirectiveEnforcer:
    def _write(self, file_path, tool="Write", agent=None):
        data = {"hook_event_name": "PreToolUse", "tool_name": tool, "tool_input": {"file_path": file_path}}
        if agent:
            data["subagent_name"] = agent
        return json.dumps(data)

    def test_blocks_hook_edit(self, project_dir, settings):
        target = project_dir / ".claude" / "hooks" / "routing-executor.sh"

        result = run("directive-enforcer", project_dir, settings, self._write(str(target)))

        assert result.exit_code == EXIT_BLOCK
        assert "DIRECTIVE VIOLATION" in result.stderr
        assert ".claude/hooks/" in result.stderr
        record = json.loads((project_dir / ".claude-collective" / "metrics" / "directive-metrics.jsonl").read_text())
        assert record["decision"] == "blocked"

    def test_blocks_relative_settings_edit(self, project_dir, settings):
        result = run("directive-enforcer", project_dir, settings, self._write(".claude/settings.json", tool="Edit"))

        assert result.blocked

    def test_allows_source_edit(self, project_dir, settings):
        result = run("directive-enforcer", project_dir, settings, self._write("src/app.py", tool="MultiEdit"))

        assert result.exit_code == EXIT_OK
        assert result.stderr == ""

    def test_similar_name_not_protected(self, project_dir, settings):
        result = run("directive-enforcer", project_dir, settings, self._write(".claude/hooks-notes.md"))

        assert result.exit_code == EXIT_OK

    def test_enforcement_disabled_warns(self, project_dir, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_HOOKS__ENFORCE_DIRECTIVES", "false")

        result = run("directive-enforcer", project_dir, CollectiveSettings(), self._write(".claude/settings.json"))

        assert result.exit_code == EXIT_OK
        assert "DIRECTIVE VIOLATION" in result.stderr

    def test_other_tools_ignored(self, project_dir, settings):
        result = run("directive-enforcer", project_dir, settings, self._write(".claude/settings.json", tool="Read"))

        assert result.exit_code == EXIT_OK
        assert not (project_dir / ".claude-collective").exists()

    def test_configuration_agent_may_edit_hooks(self, project_dir, settings):
        target = ".claude/hooks/routing-executor.sh"

        result = run("directive-enforcer", project_dir, settings, self._write(target, agent="hook-integration-agent"))

        assert result.exit_code == EXIT_OK
        assert result.stderr == ""
        record = json.loads((project_dir / ".claude-collective" / "metrics" / "directive-metrics.jsonl").read_text())
        assert record["decision"] == "permitted"
        assert record["agent"] == "hook-integration-agent"

    def test_other_agents_still_blocked(self, project_dir, settings):
        result = run(
            "directive-enforcer",
            project_dir,
            settings,
            self._write(".claude/hooks/routing-executor.sh", agent="implementation-agent"),
        )

        assert result.blocked
        assert "Route configuration changes to @hook-integration-agent instead." in result.stderr

    def test_allowed_agents_are_configurable(self, project_dir, monkeypatch):
        monkeypatch.setenv("COLLECTIVE_HOOKS__ALLOWED_AGENTS", '["@infra-agent"]')

        settings = CollectiveSettings()
        permitted = run("directive-enforcer", project_dir, settings, self._write(".claude/settings.json", agent="infra-agent"))
        blocked = run(
            "directive-enforcer",
            project_dir,
            settings,
            self._write(".claude/settings.json", agent="hook-integration-agent"),
        )

        assert permitted.exit_code == EXIT_OK
        assert blocked.blocked
        assert "@infra-agent" in blocked.stderr


# =============================================================================
# routing-executor
# =============================================================================


class TestRoutingExecutor:
    def test_detect_route(self):
        assert detect_route("ROUTE TO: @research-agent") == ("explicit", "@research-agent")
        assert detect_route("route this to @testing-agent") == ("explicit", "@testing-agent")
        assert detect_route("ROUTE TO: somebody") == ("explicit", "")
        assert detect_route("Please implement login") == ("implicit", "@implementation-agent")
        assert detect_route("verify the build output") == ("implicit", "@testing-agent")
        assert detect_route("investigate the outage") == ("implicit", "@research-agent")
        assert detect_route("hello there") is None

    def test_explicit_route(self, project_dir, settings, make_payload):
        result = run("routing-executor", project_dir, settings, make_payload(prompt="ROUTE TO: @research-agent now"))

        routing_dir = project_dir / ".claude-collective" / "routing"
        decisions = read_json_file(routing_dir / "routing-decisions.json")
        assert decisions[0]["route_type"] == "explicit"
        assert decisions[0]["target_agent"] == "@research-agent"
        assert decisions[0]["session_id"] == "sess-1"
        route = read_json_file(next(routing_dir.glob("route-*.json")))
        assert route["to_agent"] == "@research-agent"
        assert route["status"] == "pending_execution"
        assert "To: @research-agent" in result.stdout

    def test_implicit_route_appends(self, project_dir, settings, make_payload):
        run("routing-executor", project_dir, settings, make_payload(prompt="implement the parser"))
        run("routing-executor", project_dir, settings, make_payload(prompt="research parsers"))

        decisions = read_json_file(project_dir / ".claude-collective" / "routing" / "routing-decisions.json")
        assert [d["target_agent"] for d in decisions] == ["@implementation-agent", "@research-agent"]

    def test_explicit_without_target(self, project_dir, settings, make_payload):
        result = run("routing-executor", project_dir, settings, make_payload(prompt="ROUTE TO: whoever"))

        routing_dir = project_dir / ".claude-collective" / "routing"
        assert read_json_file(routing_dir / "routing-decisions.json")[0]["target_agent"] == ""
        assert list(routing_dir.glob("route-*.json")) == []
        assert result.stdout == ""

    def test_routes_in_same_millisecond_kept(self, monkeypatch, project_dir, settings, make_payload):
        monkeypatch.setattr(storage, "time", SimpleNamespace(time=lambda: 1700000000.5))

        run("routing-executor", project_dir, settings, make_payload(prompt="ROUTE TO: @research-agent"))
        run("routing-executor", project_dir, settings, make_payload(prompt="ROUTE TO: @testing-agent"))

        routing_dir = project_dir / ".claude-collective" / "routing"
        names = sorted(p.name for p in routing_dir.glob("route-*.json"))
        assert names == ["route-1700000000500-1.json", "route-1700000000500.json"]
        assert read_json_file(routing_dir / "route-1700000000500.json")["to_agent"] == "@research-agent"

    def test_non_task_tool_ignored(self, project_dir, settings, make_payload):
        run("routing-executor", project_dir, settings, make_payload(tool_name="Write", prompt="ROUTE TO: @a-agent"))

        assert not (project_dir / ".claude-collective" / "routing").exists()


# =============================================================================
# test-driven-handoff
# =============================================================================


class TestHandoffContract:
    def test_valid_contract(self, project_dir, settings, make_payload):
        prompt = "handoff to @testing-agent to test the login flow"

        result = run("test-driven-handoff", project_dir, settings, make_payload(prompt=prompt))

        contract = read_json_file(next((project_dir / ".claude-collective" / "handoffs").glob("handoff-*.json")))
        assert contract["to_agent"] == "@testing-agent"
        assert contract["validation_status"] == "passed"
        assert contract["preconditions"] == {
            "context_provided": True,
            "target_agent_available": True,
            "route_valid": True,
        }
        assert "Handoff preconditions validated" in result.stdout

    def test_violations(self, project_dir, settings, make_payload):
        result = run("test-driven-handoff", project_dir, settings, make_payload(prompt="handoff now"))

        contract = read_json_file(next((project_dir / ".claude-collective" / "handoffs").glob("handoff-*.json")))
        assert contract["validation_status"] == "failed"
        assert contract["violations"] == ["No target agent specified", "No clear task intent identified"]
        assert "TEST CONTRACT VIOLATIONS" in result.stdout
        assert result.exit_code == EXIT_OK

    def test_reads_agent_output_on_subagent_stop(self, project_dir, settings):
        output = "Research complete. Transfer to @feature-implementation-agent to build it."

        result = run("test-driven-handoff", project_dir, settings, subagent_stop(output))

        assert "research-agent → @feature-implementation-agent" in result.stdout

    def test_contracts_recorded_as_metrics(self, project_dir, settings, make_payload):
        run("test-driven-handoff", project_dir, settings, make_payload(prompt="handoff to @testing-agent to test it"))
        run("test-driven-handoff", project_dir, settings, make_payload(prompt="handoff now"))

        lines = (project_dir / ".claude-collective" / "metrics" / "contract-metrics.jsonl").read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["validation_status"] for r in records] == ["passed", "failed"]
        assert records[0]["to_agent"] == "@testing-agent"
        assert records[1]["violations"] == 2
        assert {r["session_id"] for r in records} == {"sess-1"}

    def test_contracts_in_same_millisecond_kept(self, monkeypatch, project_dir, settings, make_payload):
        monkeypatch.setattr(storage, "time", SimpleNamespace(time=lambda: 1700000000.5))
        prompt = "handoff to @testing-agent to test the login flow"

        run("test-driven-handoff", project_dir, settings, make_payload(prompt=prompt))
        run("test-driven-handoff", project_dir, settings, make_payload(prompt=prompt))

        handoffs = list((project_dir / ".claude-collective" / "handoffs").glob("handoff-*.json"))
        assert len(handoffs) == 2

    def test_no_handoff(self, project_dir, settings, make_payload):
        result = run("test-driven-handoff", project_dir, settings, make_payload(prompt="build the form"))

        assert result.stdout == ""
        assert not (project_dir / ".claude-collective" / "handoffs").exists()


# =============================================================================
# handoff-automation
# =============================================================================


class TestHandoffAutomation:
    def test_extract_routing_target(self):
        assert extract_routing_target("done\n**ROUTE TO**: @testing-agent") == "testing-agent"
        assert extract_routing_target("HANDOFF TO: @quality-gate") == "quality-gate"
        assert extract_routing_target("ROUTE TO: @reviewer") == "reviewer"
        assert extract_routing_target("no routing here @testing-agent") is None

    def test_extract_task_id(self):
        assert extract_task_id("Summary\n- Task ID: 4.2\n") == "4.2"
        assert extract_task_id("Please implement Task ID 7 next") == "7"
        assert extract_task_id("nothing") is None

    def test_ignores_other_events(self, project_dir, settings, make_payload):
        result = run("handoff-automation", project_dir, settings, make_payload(prompt="ROUTE TO: @testing-agent"))

        assert result.stdout == ""

    def test_implementation_handoff(self, project_dir, settings):
        output = "Tasks generated and implementation ready.\nTask ID: 3.2\nROUTE TO: @feature-implementation-agent"

        result = run("handoff-automation", project_dir, settings, subagent_stop(output, agent="enhanced-project-manager-agent"))

        assert 'subagent_type="feature-implementation-agent"' in result.stdout
        assert f"mcp__task-master__get_task --id=3.2 --projectRoot={project_dir.resolve()}" in result.stdout
        assert "TASK CONTEXT:" in result.stdout
        log = read_json_file(project_dir / ".claude-collective" / "handoffs" / "automation-log.json")
        assert log[0]["status"] == "handoff_generated"
        assert log[0]["task_id"] == "3.2"

    def test_implementation_handoff_without_task_id(self, project_dir, settings):
        result = run("handoff-automation", project_dir, settings, subagent_stop("ROUTE TO: @component-implementation-agent"))

        assert "HANDOFF BLOCKED" in result.stdout
        log = read_json_file(project_dir / ".claude-collective" / "handoffs" / "automation-log.json")
        assert log[0]["status"] == "blocked"

    def test_continuation_handoff(self, project_dir, settings):
        output = "Research findings: use JWT.\nROUTE TO: @testing-agent"

        result = run("handoff-automation", project_dir, settings, subagent_stop(output))

        assert "requested handoff to: @testing-agent" in result.stdout
        assert "RESEARCH CONTEXT:" in result.stdout
        assert "Continue the work from the previous agent" in result.stdout

    def test_prd_research_request(self, project_dir, settings):
        output = "PRD parsed.\nROUTE TO: @enhanced-project-manager-agent"

        result = run("handoff-automation", project_dir, settings, subagent_stop(output, agent="prd-research-agent"))

        assert "Execute the tasks generated from the PRD analysis" in result.stdout

    def test_workflow_complete(self, project_dir, settings):
        result = run("handoff-automation", project_dir, settings, subagent_stop("All done. WORKFLOW COMPLETE"))

        assert "WORKFLOW COMPLETE" in result.stdout
        log = read_json_file(project_dir / ".claude-collective" / "handoffs" / "automation-log.json")
        assert log[0]["status"] == "complete"

    def test_no_routing_instruction(self, project_dir, settings):
        result = run("handoff-automation", project_dir, settings, subagent_stop("Wrote three files."))

        assert "NO HANDOFF DETECTED" in result.stdout

    def test_output_from_transcript(self, project_dir, settings, tmp_path):
        transcript = tmp_path / "t.jsonl"
        transcript.write_text(
            json.dumps({"type": "assistant", "message": {"content": "ROUTE TO: @testing-agent"}}) + "\n"
        )
        raw = json.dumps({"hook_event_name": "SubagentStop", "transcript_path": str(transcript)})

        result = run("handoff-automation", project_dir, settings, raw)

        assert 'subagent_type="testing-agent"' in result.stdout


# =============================================================================
# collective-metrics
# =============================================================================


class TestCollectiveMetrics:
    def test_task_call_streams(self, project_dir, settings, make_payload):
        run("collective-metrics", project_dir, settings, make_payload(prompt="@testing-agent validate the contract"))

        metrics_dir = project_dir / ".claude-collective" / "metrics"
        daily = next(metrics_dir.glob("*-metrics.json"))
        assert read_json_file(daily)[0]["tool"] == "Task"
        for stream in ("jit", "routing", "handoff", "performance"):
            assert (metrics_dir / f"{stream}-metrics.jsonl").exists(), stream
        jit = json.loads((metrics_dir / "jit-metrics.jsonl").read_text())
        assert jit["token_estimate"] == jit["context_size"] // 4
        assert jit["session_id"] == "sess-1"
        handoff = json.loads((metrics_dir / "handoff-metrics.jsonl").read_text())
        assert handoff["has_test_validation"] is True

    def test_plain_tool_call(self, project_dir, settings, make_payload):
        run("collective-metrics", project_dir, settings, make_payload(event="PreToolUse", tool_name="Write"))
        run("collective-metrics", project_dir, settings, make_payload(event="PreToolUse", tool_name="Write"))

        metrics_dir = project_dir / ".claude-collective" / "metrics"
        assert len(read_json_file(next(metrics_dir.glob("*-metrics.json")))) == 2
        assert not (metrics_dir / "jit-metrics.jsonl").exists()
        assert len((metrics_dir / "performance-metrics.jsonl").read_text().splitlines()) == 2

    def test_tool_start_time(self, project_dir, settings, make_payload):
        start = int(time.time() * 1000) - 5000

        run("collective-metrics", project_dir, settings, make_payload(), env={"CLAUDE_TOOL_START_TIME": str(start)})

        perf = json.loads((project_dir / ".claude-collective" / "metrics" / "performance-metrics.jsonl").read_text())
        assert perf["duration_ms"] >= 5000

    def test_expired_files_removed(self, project_dir, settings, make_payload):
        metrics_dir = project_dir / ".claude-collective" / "metrics"
        metrics_dir.mkdir(parents=True)
        old = metrics_dir / "2020-01-01-metrics.json"
        old.write_text("[]")
        baseline = metrics_dir / "baseline.json"
        baseline.write_text("{}")
        stale = time.time() - 8 * 86400
        os.utime(old, (stale, stale))
        os.utime(baseline, (stale, stale))

        run("collective-metrics", project_dir, settings, make_payload())

        assert not old.exists()
        assert baseline.exists()
