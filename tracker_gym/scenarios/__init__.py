"""Scenario system for the tracker agent gym.

Provides TOML scenario definitions, the response manifest, and a loader
with validation.
"""

from tracker_gym.scenarios.loader import (
    CALL_LOG_FILE,
    ScenarioBundle,
    load_all_scenarios,
    load_manifest,
    load_scenario,
    load_scenario_dir,
    resolve_scenario_path,
    validate_scenario,
)
from tracker_gym.scenarios.manifest import Manifest, ResponseMapping, request_key
from tracker_gym.scenarios.schema import (
    ExpectedOutcome,
    OutcomeSpec,
    Scenario,
    ScoringConfig,
)

__all__ = [
    "CALL_LOG_FILE",
    "ExpectedOutcome",
    "Manifest",
    "OutcomeSpec",
    "ResponseMapping",
    "Scenario",
    "ScenarioBundle",
    "ScoringConfig",
    "load_all_scenarios",
    "load_manifest",
    "load_scenario",
    "load_scenario_dir",
    "request_key",
    "resolve_scenario_path",
    "validate_scenario",
]
