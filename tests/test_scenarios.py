"""Tests for the scenario system (schema, manifest, loader).

Covers:
    - Scenario: TOML tables, outcome union (bool, string, structured), defaults
    - ScoringConfig: command bound checks, penalty/bonus magnitudes
    - ResponseMapping: file/sequence exclusivity, wildcard and body matching
    - Manifest: first-match order, method vocabulary
    - load_scenario_dir: missing files, invalid TOML, missing response files
    - load_all_scenarios / resolve_scenario_path / validate_scenario
    - Bundled scenarios under scenarios/ load cleanly
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tests.conftest import BASIC_MANIFEST_TOML, BASIC_SCENARIO_TOML, SCENARIOS_ROOT, write_scenario
from tracker_gym.scenarios import (
    Manifest,
    OutcomeSpec,
    ResponseMapping,
    ScoringConfig,
    load_all_scenarios,
    load_scenario_dir,
    request_key,
    resolve_scenario_path,
    validate_scenario,
)
from tracker_gym.scenarios.schema import Penalties, Scenario
from tracker_gym.types import OnExhausted, ScenarioLoadError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestScenarioSchema:
    """Tests for the scenario.toml models."""

    def test_outcome_union(self) -> None:
        """Booleans, strings and tables parse into the matching outcome form."""
        scenario = Scenario.model_validate({
            "scenario": {"name": "s"},
            "setup": {"prompt": "p"},
            "expected_outcomes": {
                "any_calls": True,
                "mentions": "DEMO-1",
                "structured": {"method_called": "get_issue", "issue": "DEMO-1"},
            },
        })
        outcomes = scenario.expected_outcomes
        assert outcomes["any_calls"] is True
        assert outcomes["mentions"] == "DEMO-1"
        assert isinstance(outcomes["structured"], OutcomeSpec)
        assert outcomes["structured"].issue == "DEMO-1"

    def test_defaults(self) -> None:
        """Unset tables fall back to the default scoring table."""
        scenario = Scenario.model_validate({"scenario": {"name": "s"}, "setup": {"prompt": "p"}})
        assert scenario.scoring.base_score == 100
        assert scenario.scoring.penalties.extra_command == 5
        assert scenario.scoring.penalties.redundant_fetch == 10
        assert scenario.scoring.penalties.command_error == 15
        assert scenario.scoring.bonuses.cache_use == 10
        assert scenario.scoring.bonuses.under_optimal == 5
        assert scenario.setup.cache_available is False
        assert scenario.is_compatible_with("youtrack")

    def test_unknown_key_rejected(self) -> None:
        """Typos in table keys are errors, not silently ignored."""
        with pytest.raises(ValidationError):
            Scenario.model_validate({
                "scenario": {"name": "s"},
                "setup": {"prompt": "p", "defualt_project": "DEMO"},
            })

    def test_field_requires_value(self) -> None:
        """A structured outcome with field but no value is invalid."""
        with pytest.raises(ValidationError, match="together"):
            OutcomeSpec(method_called="update_issue", field="state")

    def test_max_calls_below_min_calls(self) -> None:
        """max_calls < min_calls is invalid."""
        with pytest.raises(ValidationError):
            OutcomeSpec(method_called="get_issue", min_calls=3, max_calls=1)

    def test_optimal_above_max_rejected(self) -> None:
        """optimal_commands may not exceed max_commands."""
        with pytest.raises(ValidationError, match="optimal_commands"):
            ScoringConfig(max_commands=3, optimal_commands=5)

    def test_max_below_min_rejected(self) -> None:
        """max_commands may not be below min_commands."""
        with pytest.raises(ValidationError, match="max_commands"):
            ScoringConfig(min_commands=4, max_commands=2)

    def test_penalties_stored_as_magnitudes(self) -> None:
        """Negative penalty values are normalised to positive magnitudes."""
        penalties = Penalties(extra_command=-5, redundant_fetch=10, command_error=-15)
        assert penalties.extra_command == 5
        assert penalties.command_error == 15

    def test_backend_compatibility(self) -> None:
        """A backend-specific scenario only runs against that backend."""
        scenario = Scenario.model_validate({
            "scenario": {"name": "s", "backend": "jira"},
            "setup": {"prompt": "p"},
        })
        assert scenario.is_compatible_with("jira")
        assert not scenario.is_compatible_with("youtrack")


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class TestRequestKey:
    """Tests for call signatures."""

    def test_sorted_keys(self) -> None:
        """Keys are sorted so argument order never changes the signature."""
        assert request_key("link_issues", {"target": "B", "source": "A"}) == (
            "link_issues:source=A,target=B"
        )

    def test_no_args(self) -> None:
        """A call without arguments is keyed by the method alone."""
        assert request_key("list_projects", {}) == "list_projects"


class TestResponseMapping:
    """Tests for single manifest rules."""

    def test_file_and_sequence_exclusive(self) -> None:
        """Exactly one of file or sequence must be given."""
        with pytest.raises(ValidationError, match="exactly one"):
            ResponseMapping(method="get_issue", file="a.json", sequence=("b.json",))
        with pytest.raises(ValidationError, match="exactly one"):
            ResponseMapping(method="get_issue")

    def test_empty_sequence_rejected(self) -> None:
        """An empty sequence can never answer a call."""
        with pytest.raises(ValidationError, match="empty sequence"):
            ResponseMapping(method="get_issue", sequence=())

    def test_on_exhausted_requires_sequence(self) -> None:
        """on_exhausted only makes sense for sequences."""
        with pytest.raises(ValidationError, match="on_exhausted"):
            ResponseMapping(method="get_issue", file="a.json", on_exhausted="cycle")

    def test_default_exhaustion_policy(self) -> None:
        """Sequences without an explicit policy error once exhausted."""
        mapping = ResponseMapping(method="get_issue", sequence=("a.json",))
        assert mapping.exhaustion_policy is OnExhausted.ERROR

    def test_exact_match(self) -> None:
        """Declared args must be present and equal."""
        mapping = ResponseMapping(method="get_issue", args={"id": "DEMO-1"}, file="a.json")
        assert mapping.matches("get_issue", {"id": "DEMO-1"})
        assert not mapping.matches("get_issue", {"id": "DEMO-2"})
        assert not mapping.matches("get_issue", {})
        assert not mapping.matches("get_project", {"id": "DEMO-1"})

    def test_wildcard_and_extra_args(self) -> None:
        """Wildcards match any value; undeclared call args are ignored."""
        mapping = ResponseMapping(method="update_issue", args={"id": "*"}, file="a.json")
        assert mapping.matches("update_issue", {"id": "X-9", "state": "Done"})

    def test_body_contains(self) -> None:
        """when.body_contains requires the substring in the request body."""
        mapping = ResponseMapping(
            method="add_comment", file="a.json", when={"body_contains": "fixed"},
        )
        assert mapping.matches("add_comment", {}, body="This is fixed now")
        assert not mapping.matches("add_comment", {}, body="Still broken")
        assert not mapping.matches("add_comment", {}, body=None)


class TestManifest:
    """Tests for ordered rule lookup."""

    def test_first_match_wins(self) -> None:
        """Specific rules listed before a wildcard take precedence."""
        manifest = Manifest.model_validate({
            "responses": [
                {"method": "get_issue", "args": {"id": "DEMO-1"}, "file": "one.json"},
                {"method": "get_issue", "args": {"id": "*"}, "file": "any.json", "status": 404},
            ]
        })
        assert manifest.find("get_issue", {"id": "DEMO-1"}).file == "one.json"
        assert manifest.find("get_issue", {"id": "DEMO-7"}).file == "any.json"
        assert manifest.find("delete_issue", {"id": "DEMO-1"}) is None

    def test_methods(self) -> None:
        """The vocabulary is the set of mapped methods."""
        manifest = Manifest.model_validate({
            "responses": [
                {"method": "get_issue", "file": "a.json"},
                {"method": "get_issue", "args": {"id": "X"}, "file": "b.json"},
                {"method": "cache_show", "file": "c.json"},
            ]
        })
        assert manifest.methods() == {"get_issue", "cache_show"}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class TestLoadScenarioDir:
    """Tests for loading one scenario directory."""

    def test_load_valid(self, scenario_dir: Path) -> None:
        """A complete directory loads into a bundle."""
        bundle = load_scenario_dir(scenario_dir)
        assert bundle.name == "unit-scenario"
        assert bundle.path == scenario_dir
        assert bundle.scenario.setup.default_project == "DEMO"
        assert len(bundle.manifest.responses) == 7
        assert bundle.call_log_path == scenario_dir / "call_log.jsonl"

    def test_load_is_idempotent(self, scenario_dir: Path) -> None:
        """Loading twice yields equal values and writes nothing."""
        before = sorted(p.name for p in scenario_dir.rglob("*"))
        first = load_scenario_dir(scenario_dir)
        second = load_scenario_dir(scenario_dir)
        assert first == second
        assert sorted(p.name for p in scenario_dir.rglob("*")) == before

    def test_missing_scenario_file(self, tmp_path: Path) -> None:
        """A directory without scenario.toml fails to load."""
        directory = write_scenario(tmp_path / "s")
        (directory / "scenario.toml").unlink()
        with pytest.raises(ScenarioLoadError, match="missing scenario.toml"):
            load_scenario_dir(directory)

    def test_missing_manifest_file(self, tmp_path: Path) -> None:
        """A directory without manifest.toml fails to load."""
        directory = write_scenario(tmp_path / "s")
        (directory / "manifest.toml").unlink()
        with pytest.raises(ScenarioLoadError, match="missing manifest.toml"):
            load_scenario_dir(directory)

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Malformed TOML is reported as a load error."""
        directory = write_scenario(tmp_path / "s", scenario_toml="[scenario\nname = ")
        with pytest.raises(ScenarioLoadError, match="invalid TOML"):
            load_scenario_dir(directory)

    def test_schema_error(self, tmp_path: Path) -> None:
        """Valid TOML that misses required fields is a load error."""
        directory = write_scenario(tmp_path / "s", scenario_toml='[scenario]\nname = "x"\n')
        with pytest.raises(ScenarioLoadError, match="scenario.toml"):
            load_scenario_dir(directory)

    def test_missing_response_file(self, tmp_path: Path) -> None:
        """Every mapped response file must exist."""
        directory = write_scenario(tmp_path / "s")
        (directory / "responses" / "comments_one.json").unlink()
        with pytest.raises(ScenarioLoadError, match="comments_one.json"):
            load_scenario_dir(directory)

    def test_not_a_directory(self, tmp_path: Path) -> None:
        """A path that is not a directory is rejected."""
        with pytest.raises(ScenarioLoadError, match="not a directory"):
            load_scenario_dir(tmp_path / "nope")


class TestLoadAllScenarios:
    """Tests for scanning a scenarios root."""

    def test_sorted_by_name(self, tmp_path: Path) -> None:
        """Bundles come back sorted by scenario name."""
        for name in ("zeta", "alpha", "mid"):
            write_scenario(
                tmp_path / f"dir-{name}",
                scenario_toml=BASIC_SCENARIO_TOML.replace('"unit-scenario"', f'"{name}"'),
            )
        names = [b.name for b in load_all_scenarios(tmp_path)]
        assert names == ["alpha", "mid", "zeta"]

    def test_skips_non_scenario_dirs(self, tmp_path: Path) -> None:
        """Directories without scenario.toml and plain files are ignored."""
        write_scenario(tmp_path / "real")
        (tmp_path / "notes").mkdir()
        (tmp_path / "README.md").write_text("hi", encoding="utf-8")
        assert [b.name for b in load_all_scenarios(tmp_path)] == ["unit-scenario"]

    def test_missing_root(self, tmp_path: Path) -> None:
        """A missing root directory raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_all_scenarios(tmp_path / "missing")

    def test_bundled_scenarios_load(self) -> None:
        """Every scenario shipped with the project loads and validates cleanly."""
        bundles = load_all_scenarios(SCENARIOS_ROOT)
        assert {b.name for b in bundles} >= {"basic-workflow", "error-recovery", "cache-efficiency"}
        for bundle in bundles:
            assert validate_scenario(bundle) == []


class TestResolveAndValidate:
    """Tests for name resolution and non-fatal validation."""

    def test_resolve_by_name(self, tmp_path: Path) -> None:
        """A bare name resolves under the root."""
        write_scenario(tmp_path / "unit-scenario")
        assert resolve_scenario_path("unit-scenario", tmp_path) == tmp_path / "unit-scenario"

    def test_resolve_by_path(self, scenario_dir: Path, tmp_path: Path) -> None:
        """An existing directory path is used as-is."""
        assert resolve_scenario_path(str(scenario_dir), tmp_path / "elsewhere") == scenario_dir

    def test_resolve_unknown(self, tmp_path: Path) -> None:
        """Unknown names raise a load error."""
        with pytest.raises(ScenarioLoadError, match="no such scenario"):
            resolve_scenario_path("ghost", tmp_path)

    def test_validate_flags_unmapped_outcome_method(self, tmp_path: Path) -> None:
        """An outcome naming an unmapped method is reported."""
        scenario_toml = BASIC_SCENARIO_TOML.replace(
            'comment_added = { method_called = "add_comment", issue = "DEMO-1" }',
            'deleted = { method_called = "delete_issue" }',
        )
        bundle = load_scenario_dir(write_scenario(tmp_path / "s", scenario_toml=scenario_toml))
        problems = validate_scenario(bundle)
        assert any("delete_issue" in p for p in problems)

    def test_validate_flags_unset_bounds(self, tmp_path: Path) -> None:
        """Unset max/optimal command counts are reported."""
        scenario_toml = BASIC_SCENARIO_TOML.replace("max_commands = 6\n", "").replace(
            "optimal_commands = 4\n", ""
        )
        bundle = load_scenario_dir(
            write_scenario(tmp_path / "s", scenario_toml=scenario_toml, manifest_toml=BASIC_MANIFEST_TOML)
        )
        problems = validate_scenario(bundle)
        assert any("max_commands" in p for p in problems)
        assert any("optimal_commands" in p for p in problems)
