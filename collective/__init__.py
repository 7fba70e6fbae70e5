"""claude-code-collective - Hub-and-spoke agent collective for Claude Code.

Installs and operates a multi-agent prompt-orchestration workflow:
- Markdown agent definitions routed through a central hub
- Lifecycle hooks for routing, handoff contracts and metrics
- An A/B experiment harness for comparing agent variants
- Research metrics collection and self-healing maintenance
"""

__version__ = "1.0.0"

PACKAGE_NAME = "claude-code-collective"
DESCRIPTION = "Sub-agent collective framework for TDD-focused Claude Code workflows"

FEATURES = [
    "TDD Validation Framework",
    "Hub-Spoke Agent Coordination",
    "Automated Agent Handoffs",
    "Contract-Based Quality Gates",
    "Research Metrics Collection",
    "Research Hypothesis Validation",
]


def get_info() -> dict:
    """Return package metadata shown by ``collective info``."""
    return {
        "name": PACKAGE_NAME,
        "version": __version__,
        "description": DESCRIPTION,
        "features": list(FEATURES),
    }


__all__ = ["__version__", "get_info", "PACKAGE_NAME", "DESCRIPTION", "FEATURES"]
