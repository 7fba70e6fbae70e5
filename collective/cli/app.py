"""claude-code-collective CLI Application.

This module implements the ``claude-code-collective`` command line
interface: installing the collective into a project, inspecting and
validating an installation, running the hook handlers invoked by the
installed shell shims, and driving experiments, metrics and van
maintenance.

Commands:
    install (init): Install the collective into a project
    status: Show installation status
    validate: Validate an installation
    info / version: Package information
    maintain: Run health checks, auto-repairs and optimizations
    hook: Run a hook handler (called by .claude/hooks/*.sh)
    experiment: Create, run and analyze A/B experiments
    metrics: Export, aggregate and clean up research metrics

Usage:
    claude-code-collective install --yes
    claude-code-collective validate --detailed
    echo '{"tool_name": "Task"}' | claude-code-collective hook routing-executor

Example:
    $ python -m collective status /work/app
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
from dotenv import load_dotenv

from collective import __version__, get_info
from collective.cli.logging import log_command
from collective.core.exceptions import CollectiveError, UnknownHookError


# =============================================================================
# Module Logger
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PROG_NAME = "claude-code-collective"

# ANSI color codes for terminal output
COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
}


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    if not sys.stdout.isatty():
        return text
    return f"{COLORS.get(color, '')}{text}{COLORS['reset']}"


def _header(title: str) -> None:
    click.echo()
    click.echo(colorize(title, "bold"))
    click.echo(colorize("=" * 50, "cyan"))
    click.echo()


def _fail(message: str) -> None:
    click.echo()
    click.echo(colorize(f"ERROR: {message}", "red"))
    click.echo()
    raise SystemExit(1)


def _yes_no(flag: bool) -> str:
    return colorize("yes", "green") if flag else colorize("no", "red")


# =============================================================================
# CLI Application
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name=PROG_NAME)
@click.option("--verbose", "-v", is_flag=True, help="Show informational log output")
@click.option("--debug/--no-debug", default=False, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """claude-code-collective - Hub-and-spoke agent collective for Claude Code.

    Install TDD-focused sub-agents, hooks and handoff contracts into a
    project and keep them healthy.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["verbose"] = verbose

    load_dotenv(Path.cwd() / ".env")

    if debug:
        log_level = logging.DEBUG
    elif verbose:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# =============================================================================
# Installation Commands
# =============================================================================


@cli.command()
@click.argument("path", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Express installation without prompts")
@click.option("--force", "-f", is_flag=True, help="Overwrite existing files, including CLAUDE.md")
@click.option("--minimal", is_flag=True, help="Install only the required files")
@click.option("--interactive", is_flag=True, help="Resolve conflicts interactively")
@click.option(
    "--mode",
    type=click.Choice(["smart-merge", "force", "skip-conflicts"]),
    default=None,
    help="How to treat existing configuration",
)
@click.option(
    "--backup",
    type=click.Choice(["full", "simple", "none"]),
    default=None,
    help="Backup strategy for replaced files",
)
@log_command("install")
def install(
    path: Path,
    yes: bool,
    force: bool,
    minimal: bool,
    interactive: bool,
    mode: Optional[str],
    backup: Optional[str],
) -> None:
    """Install the collective into PATH (default: current directory)."""
    from collective.install import CollectiveInstaller, InstallOptions, InteractiveInstaller

    options = InstallOptions(
        target_path=path,
        force=force,
        minimal=minimal,
        mode=mode,
        backup=backup,
        express=yes and not interactive,
    )

    try:
        if options.express:
            click.echo(colorize("Installing claude-code-collective...", "cyan"))
            result = CollectiveInstaller(options).install()
        else:
            result = InteractiveInstaller(options).run()
    except CollectiveError as e:
        logger.exception("Installation failed")
        _fail(str(e))
        return

    if result is None:
        return

    report = result.report
    click.echo()
    click.echo(colorize("✅ Installation complete", "green"))
    click.echo(f"  Installed: {len(report.installed)} files")
    if report.merged:
        click.echo(f"  Merged:    {', '.join(report.merged)}")
    if report.skipped:
        click.echo(f"  Skipped:   {len(report.skipped)} files")
    if report.backup_dir:
        click.echo(f"  Backup:    {report.backup_dir}")

    if result.express_mode:
        click.echo()
        click.echo(colorize("Next steps:", "bold"))
        click.echo("  1. Restart Claude Code so the hooks are loaded")
        click.echo(f"  2. Run '{PROG_NAME} validate' to check the installation")
        click.echo("  3. Try: \"Use @routing-agent to plan my feature\"")


cli.add_command(install, name="init")


@cli.command()
@click.argument("path", default=".", type=click.Path(file_okay=False, path_type=Path))
@log_command("status")
def status(path: Path) -> None:
    """Show the installation status of PATH."""
    from collective.install import CollectiveInstaller, InstallOptions

    installer = CollectiveInstaller(InstallOptions(target_path=path))
    state = installer.get_installation_status()

    _header("COLLECTIVE STATUS")
    click.echo(f"  Project:           {installer.project_dir}")
    click.echo(f"  Version:           {state['version']}")
    click.echo(f"  Installed:         {_yes_no(state['installed'])}")
    click.echo(f"  Behavioral system: {_yes_no(state['behavioral'])}")
    click.echo(f"  Testing:           {_yes_no(state['testing'])}")
    click.echo(f"  Hooks:             {_yes_no(state['hooks'])}")
    click.echo(f"  Agents:            {len(state['agents'])}")
    click.echo()

    if state["installed"] and not state["issues"]:
        click.echo(colorize("✅ Collective is operational", "green"))
        return

    for issue in state["issues"]:
        click.echo(colorize(f"  - {issue}", "yellow"))
    click.echo(f"Run '{PROG_NAME} install' to set up the collective.")


@cli.command()
@click.argument("path", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--detailed", is_flag=True, help="Show every check and the installation status")
@click.option("--syntax", is_flag=True, help="Also check hook scripts with bash -n")
@click.option("--run-suite", is_flag=True, help="Also collect the installed pytest suite")
@log_command("validate")
def validate(path: Path, detailed: bool, syntax: bool, run_suite: bool) -> None:
    """Validate the collective installation in PATH."""
    from collective.install import CollectiveInstaller, CollectiveValidator, InstallOptions

    validator = CollectiveValidator(path)
    results = validator.validate_installation(run_suite=run_suite)
    if syntax:
        results["tests"].extend(validator.validate_syntax())
    summary = CollectiveValidator.summarize(results)

    _header("COLLECTIVE VALIDATION")
    if summary["valid"]:
        click.echo(colorize(f"✅ All {len(summary['tests'])} checks passed", "green"))
    else:
        click.echo(colorize(f"❌ {len(summary['failures'])} of {len(summary['tests'])} checks failed", "red"))
        for failure in summary["failures"]:
            click.echo(f"  - {failure['name']}: {failure['error']}")

    if detailed:
        state = CollectiveInstaller(InstallOptions(target_path=path)).get_installation_status()
        click.echo()
        click.echo(colorize("Installation:", "bold"))
        click.echo(f"  Installed: {state['installed']}")
        click.echo(f"  Agents:    {', '.join(state['agents']) or '(none)'}")
        click.echo()
        click.echo(colorize("Checks:", "bold"))
        for test in summary["tests"]:
            mark = colorize("PASS", "green") if test["passed"] else colorize("FAIL", "red")
            click.echo(f"  [{mark}] {test['name']}")

    if not summary["valid"]:
        raise SystemExit(1)


# =============================================================================
# Information Commands
# =============================================================================


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def info(as_json: bool) -> None:
    """Show package information."""
    data = get_info()
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    _header(f"{data['name']} v{data['version']}")
    click.echo(data["description"])
    click.echo()
    click.echo(colorize("Features:", "bold"))
    for feature in data["features"]:
        click.echo(f"  - {feature}")


@cli.command()
def version() -> None:
    """Print the package version."""
    click.echo(__version__)


# =============================================================================
# Maintenance
# =============================================================================


@cli.command()
@click.argument("path", default=".", type=click.Path(file_okay=False, path_type=Path))
@click.option("--no-repair", is_flag=True, help="Report issues without repairing them")
@click.option("--json", "as_json", is_flag=True, help="Output the full report as JSON")
@log_command("maintain")
def maintain(path: Path, no_repair: bool, as_json: bool) -> None:
    """Run van maintenance: health checks, auto-repairs and optimizations."""
    from collective.maintenance import MaintenanceSystem, score_color

    try:
        report = MaintenanceSystem(project_dir=path).perform_maintenance(auto_repair=not no_repair)
    except CollectiveError as e:
        logger.exception("Maintenance failed")
        _fail(str(e))
        return

    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        _header("VAN MAINTENANCE")
        score = report["final_score"]
        click.echo(click.style(f"Health Score: {score}/100", fg=score_color(score), bold=True))
        click.echo()
        for line in MaintenanceSystem.generate_summary(report):
            click.echo(line)
        click.echo()
        click.echo(colorize(f"Report: {report['report_path']}", "dim"))

    if report["final_score"] < 50:
        raise SystemExit(1)


# =============================================================================
# Hooks
# =============================================================================


@cli.command()
@click.argument("name")
@click.pass_context
def hook(ctx: click.Context, name: str) -> None:
    """Run the NAME hook handler with the Claude Code payload on stdin."""
    from collective.hooks import run_hook

    raw_input = click.get_text_stream("stdin").read()
    try:
        result = run_hook(name, raw_input)
    except UnknownHookError as e:
        click.echo(colorize(f"ERROR: {e}", "red"), err=True)
        raise SystemExit(1)

    if result.stdout:
        click.echo(result.stdout)
    if result.stderr:
        click.echo(result.stderr, err=True)
    ctx.exit(result.exit_code)


# =============================================================================
# Experiments
# =============================================================================


@cli.group()
@click.option(
    "--project",
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project whose experiments to use",
)
@click.pass_context
def experiment(ctx: click.Context, project: Path) -> None:
    """Create, run and analyze A/B experiments."""
    from collective.config.settings import get_settings
    from collective.experiments import ExperimentFramework

    settings = get_settings()
    storage = settings.paths.resolve_collective_dir(project.resolve()) / settings.experiments.storage_subdir
    ctx.obj["framework"] = ExperimentFramework(storage_dir=storage, settings=settings)


def _framework(ctx: click.Context) -> Any:
    return ctx.obj["framework"]


@experiment.command("create")
@click.option(
    "--config",
    "config_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON experiment configuration",
)
@click.pass_context
@log_command("experiment create")
def experiment_create(ctx: click.Context, config_file: Path) -> None:
    """Create an experiment from a JSON configuration file."""
    try:
        config = json.loads(config_file.read_text(encoding="utf-8"))
        created = _framework(ctx).create_experiment(config)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {config_file}: {e}")
        return
    except CollectiveError as e:
        _fail(str(e))
        return

    click.echo(colorize(f"✅ Created experiment {created.id}", "green"))
    click.echo(f"  Name:     {created.name}")
    click.echo(f"  Variants: {', '.join(v.id for v in created.variants)}")


@experiment.command("start")
@click.argument("experiment_id")
@click.pass_context
@log_command("experiment start")
def experiment_start(ctx: click.Context, experiment_id: str) -> None:
    """Start a created experiment."""
    try:
        _framework(ctx).start_experiment(experiment_id)
    except CollectiveError as e:
        _fail(str(e))
        return
    click.echo(colorize(f"✅ Experiment {experiment_id} is running", "green"))


@experiment.command("assign")
@click.argument("experiment_id")
@click.argument("subject_id")
@click.pass_context
def experiment_assign(ctx: click.Context, experiment_id: str, subject_id: str) -> None:
    """Assign SUBJECT_ID to a variant and print the variant id."""
    variant = _framework(ctx).assign_variant(experiment_id, subject_id)
    if variant is None:
        _fail(f"Experiment {experiment_id} is not running")
        return
    click.echo(variant.id)


@experiment.command("convert")
@click.argument("experiment_id")
@click.argument("subject_id")
@click.argument("metric")
@click.argument("value", type=float)
@click.pass_context
def experiment_convert(
    ctx: click.Context, experiment_id: str, subject_id: str, metric: str, value: float
) -> None:
    """Record METRIC=VALUE for an assigned subject."""
    if not _framework(ctx).record_conversion(experiment_id, subject_id, metric, value):
        _fail(f"Subject {subject_id} is not assigned in experiment {experiment_id}")
        return
    click.echo(colorize(f"Recorded {metric}={value} for {subject_id}", "green"))


def _print_analysis(analysis: dict[str, Any]) -> None:
    _header(f"EXPERIMENT {analysis['experiment_id']}")
    click.echo(f"  Name:   {analysis['name']}")
    click.echo(f"  Status: {analysis['status']}")
    click.echo()
    click.echo(colorize("Variants:", "bold"))
    for v in analysis["variants"]:
        click.echo(
            f"  {v['id']}: {v['assignments']} assigned, {v['conversions']} converted "
            f"({v['conversion_rate'] * 100:.1f}%)"
        )
    winner = analysis["statistical"].get("recommended_winner") or {}
    click.echo()
    click.echo(colorize("Recommendation:", "bold"))
    click.echo(f"  {winner.get('reason', 'Not enough data')}")
    for rec in analysis["recommendations"]:
        click.echo(f"  - [{rec['priority']}] {rec['message']}")


@experiment.command("analyze")
@click.argument("experiment_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@log_command("experiment analyze")
def experiment_analyze(ctx: click.Context, experiment_id: str, as_json: bool) -> None:
    """Analyze an experiment."""
    try:
        analysis = _framework(ctx).analyze_experiment(experiment_id)
    except CollectiveError as e:
        _fail(str(e))
        return

    if as_json:
        click.echo(json.dumps(analysis, indent=2))
    else:
        _print_analysis(analysis)


@experiment.command("stop")
@click.argument("experiment_id")
@click.option("--reason", default="manual", help="Why the experiment was stopped")
@click.pass_context
@log_command("experiment stop")
def experiment_stop(ctx: click.Context, experiment_id: str, reason: str) -> None:
    """Stop an experiment and print its final analysis."""
    try:
        analysis = _framework(ctx).stop_experiment(experiment_id, reason=reason)
    except CollectiveError as e:
        _fail(str(e))
        return
    _print_analysis(analysis)


@experiment.command("status")
@click.argument("experiment_id")
@click.pass_context
def experiment_status(ctx: click.Context, experiment_id: str) -> None:
    """Show assignment counts for an experiment."""
    state = _framework(ctx).get_experiment_status(experiment_id)
    if state is None:
        _fail(f"Experiment not found: {experiment_id}")
        return

    _header(f"EXPERIMENT {state['id']}")
    click.echo(f"  Name:        {state['name']}")
    click.echo(f"  Status:      {state['status']}")
    click.echo(f"  Assignments: {state['total_assignments']}")
    for v in state["variants"]:
        click.echo(f"    {v['id']}: {v['assignments']} assigned, {v['conversions']} conversions")


@experiment.command("list")
@click.pass_context
def experiment_list(ctx: click.Context) -> None:
    """List all experiments."""
    experiments = _framework(ctx).list_experiments()
    if not experiments:
        click.echo("No experiments found")
        return
    for e in experiments:
        click.echo(f"{e['id']}  {e['status']:<8}  {e['variant_count']} variants  {e['name']}")


@experiment.command("report")
@click.argument("experiment_id")
@click.pass_context
@log_command("experiment report")
def experiment_report(ctx: click.Context, experiment_id: str) -> None:
    """Write a markdown report for an experiment."""
    try:
        report_path = _framework(ctx).generate_report(experiment_id)
    except CollectiveError as e:
        _fail(str(e))
        return
    click.echo(str(report_path))


# =============================================================================
# Metrics
# =============================================================================


@cli.group()
@click.option(
    "--project",
    default=".",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project whose metrics to use",
)
@click.pass_context
def metrics(ctx: click.Context, project: Path) -> None:
    """Export, aggregate and clean up research metrics."""
    from collective.config.settings import get_settings
    from collective.metrics import MetricsCollector

    settings = get_settings()
    storage = settings.paths.resolve_collective_dir(project.resolve()) / settings.metrics.storage_subdir
    ctx.obj["collector"] = MetricsCollector(storage_dir=storage, settings=settings)


@metrics.command("export")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "csv", "markdown"]),
    default="json",
    help="Export format",
)
@click.option("--event-type", default=None, help="Only export this event type")
@click.pass_context
def metrics_export(ctx: click.Context, fmt: str, event_type: Optional[str]) -> None:
    """Export stored metrics."""
    filters = {"event_type": event_type} if event_type else None
    click.echo(ctx.obj["collector"].export(fmt, filters))


@metrics.command("aggregate")
@click.pass_context
@log_command("metrics aggregate")
def metrics_aggregate(ctx: click.Context) -> None:
    """Aggregate stored metrics and print the result as JSON."""
    click.echo(json.dumps(ctx.obj["collector"].aggregate(), indent=2))


@metrics.command("cleanup")
@click.pass_context
@log_command("metrics cleanup")
def metrics_cleanup(ctx: click.Context) -> None:
    """Delete metrics older than the retention period."""
    collector = ctx.obj["collector"]
    removed = collector.cleanup_old_data()
    click.echo(f"Removed {len(removed)} files older than {collector.retention_days} days")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
