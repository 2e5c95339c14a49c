"""Core type definitions for the tracker agent gym."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class Efficiency(str, Enum):
    """Command-count efficiency rating of a finished session."""

    EXCELLENT = "Excellent"
    OPTIMAL = "Optimal"
    ACCEPTABLE = "Acceptable"
    INEFFICIENT = "Inefficient"


class ErrorKind(str, Enum):
    """Why a logged call failed."""

    UNMATCHED = "unmatched"
    SEQUENCE_EXHAUSTED = "sequence_exhausted"
    API = "api"
    RESPONSE = "response"


class OnExhausted(str, Enum):
    """What a sequence mapping does once every element has been served."""

    ERROR = "error"
    REPEAT_LAST = "repeat_last"
    CYCLE = "cycle"


class RunConfig(BaseModel):
    """Configuration shared by every session runner."""

    model: str = DEFAULT_MODEL
    max_turns: int = Field(default=20, ge=1)
    max_tokens: int = Field(default=4096, ge=1)
    timeout_s: float = Field(default=600.0, gt=0)
    api_key: str | None = None
    track_bin: str | None = None
    verbose: bool = False


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ScenarioLoadError(Exception):
    """Raised when a scenario directory is missing files or fails validation."""

    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load scenario {path}: {reason}")


class TrackerError(Exception):
    """Base class for failures surfaced by a tracker capability call."""

    kind: ErrorKind = ErrorKind.API
    status: int = 500


class TrackerApiError(TrackerError):
    """The tracker answered with an HTTP error status."""

    kind = ErrorKind.API

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"API error ({status}): {message}")


class MockResolutionError(TrackerError):
    """The mock could not resolve a call to a canned response."""

    kind = ErrorKind.RESPONSE


class UnmatchedCallError(MockResolutionError):
    """No manifest mapping matched the call."""

    kind = ErrorKind.UNMATCHED
    status = 404

    def __init__(self, method: str, signature: str) -> None:
        self.method = method
        self.signature = signature
        super().__init__(f"No mock response for {signature}")


class SequenceExhaustedError(MockResolutionError):
    """A sequence mapping was called more times than it has elements."""

    kind = ErrorKind.SEQUENCE_EXHAUSTED

    def __init__(self, signature: str, length: int) -> None:
        self.signature = signature
        self.length = length
        super().__init__(f"Response sequence exhausted for {signature} after {length} calls")


class ResponseFileError(MockResolutionError):
    """A mapped response file could not be read or parsed."""

    kind = ErrorKind.RESPONSE

    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        super().__init__(f"Bad response file {path}: {reason}")


class AgentTransportError(Exception):
    """The model API or the agent child process failed; the run gets no score."""


class EvaluationInconsistency(UserWarning):
    """The call log references something the scenario never declared."""
