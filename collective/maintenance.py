"""Van maintenance: health checks, auto-repair and housekeeping.

Keeps an installed collective healthy. A maintenance cycle runs every
health check, repairs the issues it knows how to fix from the packaged
templates, archives or removes stale data, and writes a JSON report.

Key Components:
    - HealthCheck: A named check with a criticality weight
    - MaintenanceSystem: Runs checks, repairs, optimizations and reports
    - score_color: Colour band for a health score

Health Score:
    Each check scores 0-100. Critical checks weigh 2, others 1, and the
    overall score is the weighted mean rounded to an integer.

Example:
    >>> system = MaintenanceSystem(Path("/work/app"))
    >>> report = system.perform_maintenance(auto_repair=True)
    >>> report["final_score"]
    100
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from collective.config.settings import CollectiveSettings, get_settings
from collective.core.exceptions import CollectiveError, StorageError
from collective.core.storage import read_json, write_json
from collective.install.file_mapping import HOOK_FILES, FileMappingEntry, render_template
from collective.install.installer import CollectiveInstaller, InstallOptions
from collective.install.validator import parse_frontmatter

logger = logging.getLogger(__name__)

REQUIRED_AGENTS = ["routing-agent.md", "van-maintenance-agent.md"]
REQUIRED_AGENT_FIELDS = ("name", "description", "tools")
REQUIRED_CLAUDE_SECTIONS = ["Collective Controller", "NEVER IMPLEMENT DIRECTLY"]
EXECUTION_RULE = "**CRITICAL EXECUTION RULE**"

MERMAID_BLOCK = re.compile(r"(```mermaid\n)([\s\S]*?)(\n```)")
DECISION_NODE = re.compile(r"(\w+)\{([^}]*)\}")
MAX_NODE_LENGTH = 100

METRICS_ARCHIVE_DAYS = 30
CACHE_RETENTION_DAYS = 7
DATED_FILE = re.compile(r"(\d{4}-\d{2}-\d{2})")

REPAIR_KEYS = {
    "missing-file": "missing-files",
    "missing-agents-dir": "missing-files",
    "missing-tests-dir": "missing-files",
    "permission": "permissions",
    "hook-not-executable": "permissions",
    "missing-pytest-config": "test-config",
    "missing-hooks-dir": "hook-config",
    "missing-settings": "hook-config",
    "invalid-settings-json": "hook-config",
    "missing-hook-file": "hook-config",
    "no-hooks-configured": "hook-config",
    "missing-agent": "agent-contracts",
    "mermaid-syntax-error": "agent-contracts",
    "missing-claude-md": "doc-sync",
    "missing-section": "doc-sync",
}


def score_color(score: int) -> str:
    """Return the click colour for a health score."""
    if score >= 90:
        return "green"
    if score >= 70:
        return "yellow"
    if score >= 50:
        return "magenta"
    return "red"


def _result(issues: list[dict[str, Any]], penalty: int, healthy: Optional[bool] = None, **extra: Any) -> dict[str, Any]:
    if healthy is None:
        healthy = not any(i["severity"] in ("high", "critical") for i in issues)
    return {"healthy": healthy, "issues": issues, "score": max(0, 100 - len(issues) * penalty), **extra}


def is_bad_decision_node(body: str) -> bool:
    return '"' in body or "\\n" in body or len(body) > MAX_NODE_LENGTH


@dataclass
class HealthCheck:
    id: str
    name: str
    check: Callable[[], dict[str, Any]]
    critical: bool = False

    @property
    def weight(self) -> int:
        return 2 if self.critical else 1


class MaintenanceSystem:
    """Health checks, repairs and optimizations for one project.

    Attributes:
        project_dir: Project root.
        claude_dir: The project's ``.claude`` directory.
        collective_dir: The project's ``.claude-collective`` directory.
    """

    def __init__(self, project_dir: Optional[Path] = None, settings: Optional[CollectiveSettings] = None) -> None:
        self.settings = settings or get_settings()
        self.project_dir = Path(project_dir or Path.cwd()).resolve()
        self.claude_dir = self.settings.paths.resolve_claude_dir(self.project_dir)
        self.collective_dir = self.settings.paths.resolve_collective_dir(self.project_dir)
        self.metrics_dir = self.collective_dir / "metrics"

        # template rendering shares the installer's variables and mapping
        self.installer = CollectiveInstaller(InstallOptions(target_path=self.project_dir), settings=self.settings)

        self.health_checks = [
            HealthCheck("filesystem", "File System Integrity", self.check_filesystem, critical=True),
            HealthCheck("agents", "Agent Ecosystem", self.check_agents, critical=True),
            HealthCheck("tests", "Test Framework", self.check_tests),
            HealthCheck("hooks", "Hook System", self.check_hooks, critical=True),
            HealthCheck("documentation", "Documentation Sync", self.check_documentation),
            HealthCheck("metrics", "Metrics Collection", self.check_metrics),
        ]
        self.repairs: dict[str, tuple[str, Callable[[list[dict[str, Any]]], dict[str, Any]]]] = {
            "missing-files": ("Restore Missing Files", self.repair_missing_files),
            "permissions": ("Fix File Permissions", self.repair_permissions),
            "test-config": ("Restore Test Configuration", self.repair_test_config),
            "hook-config": ("Fix Hook Configuration", self.repair_hooks),
            "agent-contracts": ("Fix Agent Contracts", self.repair_agent_contracts),
            "doc-sync": ("Sync Documentation", self.repair_documentation),
        }
        self.optimizations: dict[str, tuple[str, Callable[[], dict[str, Any]]]] = {
            "metrics-storage": ("Metrics Storage Optimization", self.optimize_metrics_storage),
            "cache": ("Cache Optimization", self.optimize_cache),
        }

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.project_dir).as_posix()

    # =========================================================================
    # Health Checks
    # =========================================================================

    def run_health_checks(self) -> dict[str, Any]:
        results: dict[str, Any] = {"healthy": True, "checks": [], "issues": [], "score": 100}
        total_weight = 0
        weighted = 0

        for health_check in self.health_checks:
            try:
                outcome = health_check.check()
            except (OSError, ValueError) as e:
                logger.exception("Health check %s failed", health_check.id)
                outcome = {"healthy": False, "issues": [], "score": 0, "error": str(e)}

            total_weight += health_check.weight
            weighted += health_check.weight * outcome["score"]
            results["checks"].append({"id": health_check.id, "name": health_check.name, **outcome})

            if not outcome["healthy"]:
                results["healthy"] = False
                results["issues"].append(
                    {
                        "check_id": health_check.id,
                        "name": health_check.name,
                        "issues": outcome["issues"],
                        "critical": health_check.critical,
                        **({"error": outcome["error"]} if "error" in outcome else {}),
                    }
                )
            logger.info("%s: %s (%d)", health_check.name, "healthy" if outcome["healthy"] else "issues", outcome["score"])

        results["score"] = int(weighted / total_weight + 0.5) if total_weight else 0
        return results

    def check_filesystem(self) -> dict[str, Any]:
        paths = self.settings.paths
        required = [
            paths.claude_dir / "agents",
            paths.claude_dir / "hooks",
            paths.claude_dir / "docs",
            paths.collective_dir,
            paths.collective_dir / "tests",
            paths.collective_dir / "metrics",
            Path("CLAUDE.md"),
        ]
        issues = [
            {"type": "missing-file", "path": relative.as_posix(), "severity": "high"}
            for relative in required
            if not (self.project_dir / relative).exists()
        ]

        hooks_dir = self.claude_dir / "hooks"
        if hooks_dir.is_dir():
            for hook in sorted(hooks_dir.glob("*.sh")):
                if not hook.stat().st_mode & 0o111:
                    issues.append({"type": "permission", "path": self._rel(hook), "severity": "medium"})

        return _result(issues, 10, healthy=not issues)

    def check_agents(self) -> dict[str, Any]:
        agents_dir = self.claude_dir / "agents"
        if not agents_dir.is_dir():
            return {
                "healthy": False,
                "issues": [{"type": "missing-agents-dir", "path": self._rel(agents_dir), "severity": "critical"}],
                "score": 0,
            }

        agent_files = sorted(p for p in agents_dir.iterdir() if p.is_file())
        names = {p.name for p in agent_files}
        issues = [
            {"type": "missing-agent", "agent": required, "severity": "high"}
            for required in REQUIRED_AGENTS
            if required not in names
        ]
        for path in agent_files:
            if path.suffix == ".md":
                issues.extend(self._agent_issues(path))

        return _result(issues, 5, agent_count=len(agent_files))

    def _agent_issues(self, path: Path) -> list[dict[str, Any]]:
        content = path.read_text(encoding="utf-8")
        issues: list[dict[str, Any]] = []

        try:
            frontmatter = parse_frontmatter(content)
        except (yaml.YAMLError, ValueError) as e:
            frontmatter = None
            issues.append({"type": "incomplete-agent", "agent": path.name, "missing": f"frontmatter ({e})", "severity": "medium"})
        else:
            if frontmatter is None:
                issues.append({"type": "incomplete-agent", "agent": path.name, "missing": "frontmatter", "severity": "medium"})
        if frontmatter:
            issues.extend(
                {"type": "incomplete-agent", "agent": path.name, "missing": f"{key}:", "severity": "medium"}
                for key in REQUIRED_AGENT_FIELDS
                if not frontmatter.get(key)
            )

        if EXECUTION_RULE not in content:
            issues.append({"type": "incomplete-agent", "agent": path.name, "missing": EXECUTION_RULE, "severity": "low"})

        block = MERMAID_BLOCK.search(content)
        if block is None:
            issues.append({"type": "incomplete-agent", "agent": path.name, "missing": "```mermaid", "severity": "low"})
        else:
            for node in DECISION_NODE.finditer(block.group(2)):
                if is_bad_decision_node(node.group(2)):
                    issues.append(
                        {"type": "mermaid-syntax-error", "agent": path.name, "node": node.group(0), "severity": "high"}
                    )
        return issues

    def check_tests(self) -> dict[str, Any]:
        tests_dir = self.collective_dir / "tests"
        if not tests_dir.is_dir():
            return {
                "healthy": False,
                "issues": [{"type": "missing-tests-dir", "path": self._rel(tests_dir), "severity": "high"}],
                "score": 0,
            }

        issues = []
        if not (self.collective_dir / "pytest.ini").exists():
            issues.append({"type": "missing-pytest-config", "severity": "medium"})
        if not any(tests_dir.rglob("test_*.py")):
            issues.append({"type": "no-tests", "severity": "low"})
        return _result(issues, 8)

    def check_hooks(self) -> dict[str, Any]:
        hooks_dir = self.claude_dir / "hooks"
        if not hooks_dir.is_dir():
            return {"healthy": False, "issues": [{"type": "missing-hooks-dir", "severity": "critical"}], "score": 0}

        issues: list[dict[str, Any]] = []
        settings_path = self.claude_dir / "settings.json"
        if not settings_path.exists():
            issues.append({"type": "missing-settings", "severity": "critical"})
        else:
            try:
                settings = read_json(settings_path)
            except StorageError as e:
                issues.append({"type": "invalid-settings-json", "error": str(e), "severity": "critical"})
            else:
                if not isinstance(settings, dict) or not settings.get("hooks"):
                    issues.append({"type": "no-hooks-configured", "severity": "high"})

        for name, required, _ in HOOK_FILES:
            hook = hooks_dir / f"{name}.sh"
            if required and not hook.exists():
                issues.append({"type": "missing-hook-file", "hook": hook.name, "severity": "high"})

        hooks = sorted(hooks_dir.glob("*.sh"))
        for hook in hooks:
            if not hook.stat().st_mode & 0o111:
                issues.append({"type": "hook-not-executable", "hook": hook.name, "severity": "medium"})

        return _result(issues, 10, hook_count=len(hooks))

    def check_documentation(self) -> dict[str, Any]:
        claude_md = self.project_dir / "CLAUDE.md"
        if not claude_md.exists():
            issues = [{"type": "missing-claude-md", "severity": "critical"}]
        else:
            content = claude_md.read_text(encoding="utf-8")
            issues = [
                {"type": "missing-section", "missing": section, "severity": "medium"}
                for section in REQUIRED_CLAUDE_SECTIONS
                if section not in content
            ]
        return _result(issues, 7, healthy=not any(i["severity"] == "critical" for i in issues))

    def check_metrics(self) -> dict[str, Any]:
        issues = []
        if not self.metrics_dir.is_dir():
            issues.append({"type": "missing-metrics-dir", "severity": "low"})
        elif not (self.metrics_dir / "baseline.json").exists():
            issues.append({"type": "missing-baseline", "severity": "low"})
        # metrics are informational and never make the project unhealthy
        return _result(issues, 3, healthy=True)

    # =========================================================================
    # Repairs
    # =========================================================================

    def run_auto_repairs(self, checks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Group the issues of every check by repair and run each repair once."""
        grouped: dict[str, list[dict[str, Any]]] = {}
        for check in checks:
            for issue in check["issues"]:
                key = REPAIR_KEYS.get(issue["type"])
                if key:
                    grouped.setdefault(key, []).append(issue)

        results = []
        for key, issues in grouped.items():
            name, repair = self.repairs[key]
            try:
                outcome = repair(issues)
            except (OSError, CollectiveError) as e:
                logger.exception("Repair %s failed", key)
                results.append({"type": key, "name": name, "success": False, "error": str(e)})
                continue
            logger.info("%s: fixed %d issues", name, outcome["fixed"])
            results.append({"type": key, "name": name, "success": True, **outcome})
        return results

    def _template_entry(self, target: Path) -> Optional[FileMappingEntry]:
        for entry in self.installer.file_mapping.get_file_mapping():
            if entry.target == target.resolve():
                return entry
        return None

    def _restore(self, target: Path) -> bool:
        """Re-render ``target`` from its packaged template."""
        entry = self._template_entry(target)
        if entry is None:
            return False
        content = render_template(entry.source, self.installer.config, self.installer.template_dir)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        if entry.executable:
            os.chmod(target, 0o755)
        return True

    def repair_missing_files(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        fixed, details = 0, []
        for issue in issues:
            relative = issue.get("path")
            if not relative:
                continue
            full_path = self.project_dir / relative
            if relative.endswith(".md"):
                if not self._restore(full_path):
                    details.append(f"No template for {relative}")
                    continue
                details.append(f"Created {relative} from template")
            else:
                full_path.mkdir(parents=True, exist_ok=True)
                details.append(f"Created directory {relative}")
            fixed += 1
        return {"fixed": fixed, "details": details}

    def repair_permissions(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        fixed, details = 0, []
        targets = {
            self.project_dir / issue["path"] if "path" in issue else self.claude_dir / "hooks" / issue["hook"]
            for issue in issues
        }
        for target in sorted(targets):
            os.chmod(target, 0o755)
            details.append(f"Fixed permissions for {self._rel(target)}")
            fixed += 1
        return {"fixed": fixed, "details": details}

    def repair_test_config(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        if self._restore(self.collective_dir / "pytest.ini"):
            return {"fixed": 1, "details": ["Restored pytest.ini from template"]}
        return {"fixed": 0, "details": ["No template for pytest.ini"]}

    def repair_hooks(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        fixed, details = 0, []
        types = {issue["type"] for issue in issues}
        settings_path = self.claude_dir / "settings.json"

        if types & {"missing-hooks-dir", "missing-hook-file"}:
            wanted = {issue["hook"] for issue in issues if issue["type"] == "missing-hook-file"}
            for name, required, _ in HOOK_FILES:
                hook = self.claude_dir / "hooks" / f"{name}.sh"
                if hook.exists() or not (required or hook.name in wanted):
                    continue
                if self._restore(hook):
                    details.append(f"Reinstalled hook {hook.name}")
                    fixed += 1

        if types & {"missing-settings", "invalid-settings-json"}:
            self._restore(settings_path)
            details.append("Restored settings.json from template")
            fixed += 1
        elif "no-hooks-configured" in types:
            settings = read_json(settings_path, default={}, tolerant=True)
            if not isinstance(settings, dict):
                settings = {}
            settings["hooks"] = {"PreToolUse": [], "PostToolUse": [], "SubagentStop": []}
            write_json(settings_path, settings)
            details.append("Initialized hooks configuration")
            fixed += 1

        return {"fixed": fixed, "details": details}

    def repair_agent_contracts(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        fixed, details = 0, []
        agents_dir = self.claude_dir / "agents"

        for issue in issues:
            if issue["type"] != "missing-agent":
                continue
            if self._restore(agents_dir / issue["agent"]):
                details.append(f"Restored {issue['agent']} from template")
                fixed += 1

        broken = sorted({issue["agent"] for issue in issues if issue["type"] == "mermaid-syntax-error"})
        for agent in broken:
            path = agents_dir / agent
            content = path.read_text(encoding="utf-8")
            block = MERMAID_BLOCK.search(content)
            if block is None:
                continue
            repaired = DECISION_NODE.sub(self._fix_decision_node, block.group(2))
            path.write_text(
                content[: block.start()] + block.group(1) + repaired + block.group(3) + content[block.end():],
                encoding="utf-8",
            )
            details.append(f"Fixed Mermaid syntax in {agent}")
            fixed += 1

        return {"fixed": fixed, "details": details}

    @staticmethod
    def _fix_decision_node(match: re.Match) -> str:
        name, body = match.group(1), match.group(2)
        if not is_bad_decision_node(body):
            return match.group(0)
        return f"{name}{{ DETERMINE {name.replace('_', ' ').upper()} }}"

    def repair_documentation(self, issues: list[dict[str, Any]]) -> dict[str, Any]:
        claude_md = self.project_dir / "CLAUDE.md"
        types = {issue["type"] for issue in issues}

        if "missing-claude-md" in types:
            self._restore(claude_md)
            return {"fixed": 1, "details": ["Regenerated CLAUDE.md"]}

        if "missing-section" in types:
            entry = self._template_entry(claude_md)
            if entry is None:
                return {"fixed": 0, "details": ["No template for CLAUDE.md"]}
            template = render_template(entry.source, self.installer.config, self.installer.template_dir)
            existing = claude_md.read_text(encoding="utf-8")
            claude_md.write_text(existing.rstrip("\n") + "\n\n" + template, encoding="utf-8")
            return {"fixed": 1, "details": ["Appended collective directives to CLAUDE.md"]}

        return {"fixed": 0, "details": []}

    # =========================================================================
    # Optimizations
    # =========================================================================

    def run_optimizations(self) -> list[dict[str, Any]]:
        results = []
        for key, (name, optimize) in self.optimizations.items():
            try:
                outcome = optimize()
            except OSError as e:
                logger.exception("Optimization %s failed", key)
                results.append({"id": key, "name": name, "success": False, "error": str(e)})
                continue
            results.append({"id": key, "name": name, "success": True, **outcome})
        return results

    def optimize_metrics_storage(self) -> dict[str, Any]:
        """Move dated metrics files older than 30 days into metrics/archive/."""
        archived = 0
        if self.metrics_dir.is_dir():
            today = datetime.now(timezone.utc).date()
            archive_dir = self.metrics_dir / "archive"
            for path in sorted(self.metrics_dir.iterdir()):
                match = DATED_FILE.search(path.name)
                if not path.is_file() or not match:
                    continue
                try:
                    file_date = datetime.strptime(match.group(1), "%Y-%m-%d").date()
                except ValueError:
                    continue
                if (today - file_date).days > METRICS_ARCHIVE_DAYS:
                    archive_dir.mkdir(exist_ok=True)
                    os.replace(path, archive_dir / path.name)
                    archived += 1
        return {"improved": archived > 0, "files_archived": archived}

    def optimize_cache(self) -> dict[str, Any]:
        cache_dir = self.collective_dir / ".cache"
        removed = 0
        if cache_dir.is_dir():
            cutoff = time.time() - CACHE_RETENTION_DAYS * 86400
            for path in cache_dir.iterdir():
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
        return {"improved": removed > 0, "files_removed": removed}

    # =========================================================================
    # Full Cycle and Reports
    # =========================================================================

    def perform_maintenance(self, auto_repair: bool = True) -> dict[str, Any]:
        """Run health checks, repairs and optimizations and save the report."""
        report: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "project_dir": str(self.project_dir),
            "health": self.run_health_checks(),
            "repairs": [],
            "optimizations": [],
        }

        if auto_repair and any(check["issues"] for check in report["health"]["checks"]):
            report["repairs"] = self.run_auto_repairs(report["health"]["checks"])

        report["optimizations"] = self.run_optimizations()

        if any(r["success"] and r.get("fixed") for r in report["repairs"]):
            report["final_health"] = self.run_health_checks()
            report["final_score"] = report["final_health"]["score"]
        else:
            report["final_score"] = report["health"]["score"]

        report["report_path"] = str(self.save_report(report))
        return report

    def save_report(self, report: dict[str, Any]) -> Path:
        path = self.collective_dir / "maintenance-reports" / f"report-{datetime.now(timezone.utc):%Y-%m-%d}.json"
        write_json(path, report)
        return path

    @staticmethod
    def generate_summary(report: dict[str, Any]) -> list[str]:
        health = report["health"]
        successful = [r for r in report["repairs"] if r["success"]]
        lines = [
            f"Health Score: {health['score']}/100",
            f"Issues Found: {len(health['issues'])}",
            f"Repairs Made: {len(successful)}",
            f"Optimizations: {len([o for o in report['optimizations'] if o['success']])}",
        ]
        if "final_health" in report:
            lines.append(f"Score After Repairs: {report['final_score']}/100")

        if health["issues"]:
            lines.extend(["", "Top Issues:"])
            lines.extend(f"  - {issue['name']}: {len(issue['issues'])} problems" for issue in health["issues"][:3])

        if successful:
            lines.extend(["", "Repairs Performed:"])
            lines.extend(f"  ✅ {repair['name']}: Fixed {repair['fixed']} issues" for repair in successful)

        return lines


__all__ = ["MaintenanceSystem", "HealthCheck", "score_color", "REPAIR_KEYS", "REQUIRED_AGENTS"]
