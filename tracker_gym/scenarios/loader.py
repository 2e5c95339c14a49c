"""TOML scenario loader and validator.

Loads a scenario directory (``scenario.toml``, ``manifest.toml`` and the
``responses/`` payloads) into frozen models. Loading has no side effects,
so the same directory can be loaded repeatedly and from several threads.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from tracker_gym.scenarios.manifest import Manifest
from tracker_gym.scenarios.schema import OutcomeSpec, Scenario
from tracker_gym.types import ScenarioLoadError

logger = logging.getLogger(__name__)

SCENARIO_FILE = "scenario.toml"
MANIFEST_FILE = "manifest.toml"
RESPONSES_DIR = "responses"
CALL_LOG_FILE = "call_log.jsonl"


@dataclass(frozen=True)
class ScenarioBundle:
    """A loaded scenario together with its manifest and directory."""

    path: Path
    scenario: Scenario
    manifest: Manifest

    @property
    def name(self) -> str:
        return self.scenario.name

    @property
    def responses_dir(self) -> Path:
        return self.path / RESPONSES_DIR

    @property
    def call_log_path(self) -> Path:
        return self.path / CALL_LOG_FILE


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ScenarioLoadError(path.parent, f"missing {path.name}")
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ScenarioLoadError(path.parent, f"invalid TOML in {path.name}: {exc}") from exc


def _validate(model: type[BaseModel], raw: dict[str, Any], path: Path) -> Any:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ScenarioLoadError(path.parent, f"{path.name}: {exc}") from exc


def load_scenario(directory: Path) -> Scenario:
    """Load ``scenario.toml`` from a scenario directory.

    Raises:
        ScenarioLoadError: If the file is missing, not TOML, or off-schema.
    """
    path = Path(directory) / SCENARIO_FILE
    return _validate(Scenario, _read_toml(path), path)


def load_manifest(directory: Path) -> Manifest:
    """Load ``manifest.toml`` from a scenario directory.

    Raises:
        ScenarioLoadError: If the file is missing, not TOML, or off-schema.
    """
    path = Path(directory) / MANIFEST_FILE
    return _validate(Manifest, _read_toml(path), path)


def load_scenario_dir(directory: Path) -> ScenarioBundle:
    """Load a full scenario directory and check its response files exist.

    Raises:
        ScenarioLoadError: On any missing or malformed piece.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ScenarioLoadError(directory, "not a directory")

    scenario = load_scenario(directory)
    manifest = load_manifest(directory)

    responses_dir = directory / RESPONSES_DIR
    for mapping in manifest.responses:
        for name in mapping.response_files:
            if not (responses_dir / name).is_file():
                raise ScenarioLoadError(
                    directory, f"response file '{name}' for '{mapping.method}' not found"
                )

    logger.debug("Loaded scenario %s from %s", scenario.name, directory)
    return ScenarioBundle(path=directory, scenario=scenario, manifest=manifest)


def load_all_scenarios(root: Path) -> list[ScenarioBundle]:
    """Load every scenario directory directly under ``root``.

    Sub-directories without a ``scenario.toml`` are skipped.

    Returns:
        Bundles sorted by scenario name.

    Raises:
        FileNotFoundError: If ``root`` does not exist.
        ScenarioLoadError: If any scenario directory is malformed.
    """
    root = Path(root)
    if not root.is_dir():
        msg = f"Scenario directory does not exist: {root}"
        raise FileNotFoundError(msg)

    bundles = [
        load_scenario_dir(child)
        for child in sorted(root.iterdir())
        if child.is_dir() and (child / SCENARIO_FILE).is_file()
    ]
    bundles.sort(key=lambda b: b.name)
    return bundles


def resolve_scenario_path(name_or_path: str | Path, root: Path) -> Path:
    """Accept either a directory path or a scenario directory name under ``root``."""
    candidate = Path(name_or_path)
    if candidate.is_dir():
        return candidate
    under_root = Path(root) / str(name_or_path)
    if under_root.is_dir():
        return under_root
    raise ScenarioLoadError(name_or_path, f"no such scenario (looked in {root})")


def validate_scenario(bundle: ScenarioBundle) -> list[str]:
    """List non-fatal problems with a loaded scenario.

    Flags structured outcomes naming a method the manifest never declares,
    and command bounds that are left unset.

    Returns:
        List of problem strings. Empty if none.
    """
    problems: list[str] = []
    declared = bundle.manifest.methods()

    for name, outcome in bundle.scenario.expected_outcomes.items():
        if isinstance(outcome, OutcomeSpec) and outcome.method_called:
            if outcome.method_called not in declared:
                problems.append(
                    f"Outcome '{name}': method '{outcome.method_called}' has no manifest mapping"
                )

    scoring = bundle.scenario.scoring
    if scoring.max_commands is None:
        problems.append("scoring.max_commands is unset; extra-command penalties are disabled")
    if scoring.optimal_commands is None:
        problems.append("scoring.optimal_commands is unset; efficiency cannot exceed Acceptable")

    return problems
