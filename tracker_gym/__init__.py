"""TRACKER-AGENT-GYM: evaluation harness for AI agents driving the ``track`` CLI."""

from tracker_gym.evaluator import EvaluationResult, Evaluator
from tracker_gym.harness import ScenarioRun, run_all, run_scenario
from tracker_gym.mock_surface import CallLogEntry, MockTracker
from tracker_gym.types import (
    AgentTransportError,
    Efficiency,
    RunConfig,
    ScenarioLoadError,
    TrackerError,
)

__all__ = [
    "AgentTransportError",
    "CallLogEntry",
    "Efficiency",
    "EvaluationResult",
    "Evaluator",
    "MockTracker",
    "RunConfig",
    "ScenarioLoadError",
    "ScenarioRun",
    "TrackerError",
    "run_all",
    "run_scenario",
]

__version__ = "0.1.0"
