"""Command executors behind the ``track`` tool.

The in-process runner offers the model a single ``track`` tool taking an
argument list. An executor turns that list into a :class:`TrackResult`,
either by dispatching straight onto a MockTracker or by running a real
``track`` binary with ``TRACK_MOCK_DIR`` set.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from tracker_gym.mock_surface import MOCK_DIR_ENV, MockTracker
from tracker_gym.tracker_cli import TrackResult, run_track

logger = logging.getLogger(__name__)

TRACK_BIN_ENV = "TRACK_BIN"
COMMAND_TIMEOUT_S = 60.0

TRACK_TOOL_NAME = "track"
TRACK_TOOL_DESCRIPTION = """Execute a track CLI command to interact with the issue tracker.

Commands:
- issue get <ID>                       Get an issue (shorthand: track <ID>)
- issue search <query> [-p <project>]  Search for issues
- issue create -p <project> -s <summary> [-d <description>] [--state <state>] [--priority <priority>]
- issue update <ID> [--summary ..] [--state ..] [--priority ..] [--assignee ..]
- issue start <ID> / issue complete <ID>
- issue comment <ID> -m <message>      Add a comment
- issue comments <ID>                  List comments
- issue link <source> <target> [-t <type>]
- project list / project get <ID> / project fields <ID>
- tags list
- article get|list|search|create|comment|comments
- cache show                           Show cached context (projects, fields, users)

Use -o json for machine-readable output when you need to parse results."""

TRACK_TOOL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "args": {
            "type": "array",
            "items": {"type": "string"},
            "description": (
                'Arguments passed to track, e.g. ["issue", "get", "DEMO-1"] or '
                '["issue", "comment", "DEMO-1", "-m", "Working on this"]'
            ),
        }
    },
    "required": ["args"],
}


def track_tool_definition() -> dict[str, Any]:
    """The ``track`` tool in Anthropic Messages API format."""
    return {
        "name": TRACK_TOOL_NAME,
        "description": TRACK_TOOL_DESCRIPTION,
        "input_schema": TRACK_TOOL_SCHEMA,
    }


def parse_tool_input(tool_input: Any) -> list[str]:
    """Extract the argument list from a ``track`` tool_use input.

    Raises:
        ValueError: If ``args`` is missing or is not a list of strings.
    """
    if not isinstance(tool_input, dict) or "args" not in tool_input:
        msg = "Missing 'args' field"
        raise ValueError(msg)
    args = tool_input["args"]
    if not isinstance(args, list):
        msg = "'args' must be an array"
        raise ValueError(msg)
    if not all(isinstance(a, str) for a in args):
        msg = "All args must be strings"
        raise ValueError(msg)
    return list(args)


def find_track_binary(explicit: str | None = None) -> str | None:
    """Locate a ``track`` binary.

    Checks, in order: the explicit path, ``TRACK_BIN``, local cargo build
    outputs, ``track`` on PATH, then the bundled ``track-mock``.

    Returns:
        A path or command name, or None when nothing is found.
    """
    if explicit:
        return explicit
    from_env = os.environ.get(TRACK_BIN_ENV)
    if from_env:
        return from_env
    for candidate in ("./target/debug/track", "./target/release/track"):
        if Path(candidate).is_file():
            return candidate
    return shutil.which("track") or shutil.which("track-mock")


class CommandExecutor(ABC):
    """Runs one ``track`` argument list against a scenario."""

    @abstractmethod
    def execute(self, args: list[str]) -> TrackResult:
        """Run the command. Tracker failures come back as a non-zero exit code."""


class InProcessCommandExecutor(CommandExecutor):
    """Dispatches onto a MockTracker in this process."""

    def __init__(self, tracker: MockTracker) -> None:
        self._tracker = tracker

    @property
    def tracker(self) -> MockTracker:
        return self._tracker

    def execute(self, args: list[str]) -> TrackResult:
        result = run_track(args, self._tracker)
        logger.debug("track %s -> exit %d", " ".join(args), result.exit_code)
        return result


class SubprocessCommandExecutor(CommandExecutor):
    """Runs a real ``track`` binary redirected to the scenario mock."""

    def __init__(self, track_bin: str, scenario_dir: Path, timeout_s: float = COMMAND_TIMEOUT_S) -> None:
        self._track_bin = track_bin
        self._scenario_dir = Path(scenario_dir)
        self._timeout_s = timeout_s

    def execute(self, args: list[str]) -> TrackResult:
        env = {**os.environ, MOCK_DIR_ENV: str(self._scenario_dir.resolve())}
        try:
            proc = subprocess.run(
                [self._track_bin, *args],
                env=env,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as exc:
            logger.error("track binary not found: %s", self._track_bin)
            return TrackResult(127, stderr=f"Failed to execute track: {exc}")
        except subprocess.TimeoutExpired:
            logger.warning("track %s timed out after %.0fs", " ".join(args), self._timeout_s)
            return TrackResult(124, stderr=f"track timed out after {self._timeout_s:.0f}s")

        logger.debug("track %s -> exit %d", " ".join(args), proc.returncode)
        return TrackResult(proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def make_executor(scenario_dir: Path, track_bin: str | None = None) -> CommandExecutor:
    """Subprocess executor when a binary is configured, in-process otherwise."""
    if track_bin:
        return SubprocessCommandExecutor(track_bin, scenario_dir)
    return InProcessCommandExecutor(MockTracker(scenario_dir))
