"""Shared fixtures: scenario directories written into ``tmp_path``."""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

SCENARIOS_ROOT = Path(__file__).resolve().parent.parent / "scenarios"

BASIC_SCENARIO_TOML = """
[scenario]
name = "unit-scenario"
description = "Scenario used by unit tests"

[setup]
prompt = "Fetch DEMO-1 and comment on it."
default_project = "DEMO"
cache_available = true

[expected_outcomes]
issue_fetched = { method_called = "get_issue", issue = "DEMO-1" }
comment_added = { method_called = "add_comment", issue = "DEMO-1" }

[scoring]
min_commands = 1
max_commands = 6
optimal_commands = 4
base_score = 100
"""

BASIC_MANIFEST_TOML = """
[[responses]]
method = "get_issue"
args = { id = "DEMO-1" }
file = "issue.json"

[[responses]]
method = "get_issue"
args = { id = "*" }
file = "not_found.json"
status = 404

[[responses]]
method = "add_comment"
args = { issue_id = "DEMO-1" }
file = "comment.json"

[[responses]]
method = "update_issue"
args = { id = "DEMO-1" }
file = "issue.json"

[[responses]]
method = "get_comments"
args = { issue_id = "*" }
sequence = ["comments_empty.json", "comments_one.json"]

[[responses]]
method = "cache_show"
file = "cache.json"

[[responses]]
method = "list_projects"
file = "projects.json"
"""

BASIC_RESPONSES: dict[str, Any] = {
    "issue.json": {"idReadable": "DEMO-1", "summary": "Implement user authentication"},
    "not_found.json": {"error": "Not Found", "message": "Issue not found"},
    "comment.json": {"id": "4-1", "text": "Starting work"},
    "comments_empty.json": [],
    "comments_one.json": [{"id": "4-1", "text": "Starting work"}],
    "cache.json": {"projects": [{"shortName": "DEMO"}]},
    "projects.json": [{"shortName": "DEMO", "name": "Demo Project"}],
}


def write_scenario(
    directory: Path,
    scenario_toml: str = BASIC_SCENARIO_TOML,
    manifest_toml: str = BASIC_MANIFEST_TOML,
    responses: dict[str, Any] | None = None,
) -> Path:
    """Write a scenario directory and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "scenario.toml").write_text(scenario_toml, encoding="utf-8")
    (directory / "manifest.toml").write_text(manifest_toml, encoding="utf-8")
    responses_dir = directory / "responses"
    responses_dir.mkdir(exist_ok=True)
    for name, payload in (BASIC_RESPONSES if responses is None else responses).items():
        (responses_dir / name).write_text(json.dumps(payload), encoding="utf-8")
    return directory


@pytest.fixture()
def scenario_dir(tmp_path: Path) -> Path:
    """A self-contained unit-test scenario."""
    return write_scenario(tmp_path / "unit-scenario")


@pytest.fixture()
def bundled_scenario(tmp_path: Path) -> Callable[[str], Path]:
    """Copy a scenario shipped under ``scenarios/`` so tests never touch its call log."""

    def _copy(name: str) -> Path:
        target = tmp_path / "scenarios" / name
        shutil.copytree(SCENARIOS_ROOT / name, target, ignore=shutil.ignore_patterns("call_log.jsonl"))
        return target

    return _copy
