"""Shared fixtures for the collective contract tests.

The suite runs from ``.claude-collective`` and reads the records written by
the collective hooks: handoff contracts, routing decisions and settings.
"""

import json
from pathlib import Path

import pytest

COLLECTIVE_DIR = Path(__file__).resolve().parent.parent
PROJECT_DIR = COLLECTIVE_DIR.parent


def _load(path):
    with path.open(encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def collective_dir():
    return COLLECTIVE_DIR


@pytest.fixture
def project_dir():
    return PROJECT_DIR


@pytest.fixture
def claude_settings():
    path = PROJECT_DIR / ".claude" / "settings.json"
    if not path.exists():
        pytest.skip("settings.json is not installed")
    return _load(path)


@pytest.fixture
def handoff_contracts():
    """Every recorded handoff contract as (filename, contract) pairs."""
    handoffs_dir = COLLECTIVE_DIR / "handoffs"
    return [(p.name, _load(p)) for p in sorted(handoffs_dir.glob("handoff-*.json"))]


@pytest.fixture
def routing_decisions():
    path = COLLECTIVE_DIR / "routing" / "routing-decisions.json"
    if not path.exists():
        return []
    return _load(path)


@pytest.fixture
def installed_agents():
    agents_dir = PROJECT_DIR / ".claude" / "agents"
    if not agents_dir.is_dir():
        return set()
    return {p.stem for p in agents_dir.glob("*.md")}
