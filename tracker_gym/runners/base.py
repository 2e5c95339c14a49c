"""Session runner abstraction and provider registry.

A session runner drives one agent through one scenario. Which strategy
runs is chosen by :class:`ProviderKind`; adding a provider means adding a
runner class and registering it, never branching at call sites.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from tracker_gym.types import RunConfig

if TYPE_CHECKING:
    from tracker_gym.scenarios.loader import ScenarioBundle


class ProviderKind(str, Enum):
    """Agent providers the harness can drive."""

    ANTHROPIC = "anthropic"
    CLAUDE_CODE = "claude-code"
    GEMINI_CLI = "gemini-cli"
    COPILOT_CLI = "copilot-cli"

    @property
    def in_process(self) -> bool:
        return self is ProviderKind.ANTHROPIC


class StopReason(str, Enum):
    """Why a session ended."""

    END_TURN = "end_turn"
    MAX_TURNS = "max_turns"
    STALLED = "stalled"
    PROCESS_EXIT = "process_exit"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# Session records
# ---------------------------------------------------------------------------


@dataclass
class CommandExecution:
    """One ``track`` command as the agent ran it."""

    args: list[str]
    output: str = ""
    is_error: bool = False


@dataclass
class Turn:
    """One request/response round of the agentic loop."""

    index: int
    stop_reason: str | None = None
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    text: str = ""


@dataclass
class SessionResult:
    """Everything a runner observed during one session.

    The call log, not this record, is what gets scored.
    """

    provider: ProviderKind
    stop_reason: StopReason
    turns: list[Turn] = field(default_factory=list)
    commands: list[CommandExecution] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    final_text: str = ""
    duration_s: float = 0.0
    exit_code: int | None = None
    cost_usd: float | None = None

    @property
    def turns_used(self) -> int:
        return len(self.turns)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# ---------------------------------------------------------------------------
# Runner base + registry
# ---------------------------------------------------------------------------


class SessionRunner(ABC):
    """Drives one agent session against a scenario."""

    kind: ProviderKind

    def __init__(self, config: RunConfig | None = None) -> None:
        self.config = config or RunConfig()

    @abstractmethod
    def run(self, bundle: ScenarioBundle) -> SessionResult:
        """Run the session to completion.

        Tracker-level failures are fed back to the agent and never raise.

        Raises:
            AgentTransportError: The model API or agent process failed.
        """


RunnerFactory = Callable[[RunConfig], SessionRunner]

_REGISTRY: dict[ProviderKind, type[SessionRunner]] = {}


def register_runner(kind: ProviderKind) -> Callable[[type[SessionRunner]], type[SessionRunner]]:
    """Class decorator adding a runner to the provider registry."""

    def decorator(cls: type[SessionRunner]) -> type[SessionRunner]:
        cls.kind = kind
        _REGISTRY[kind] = cls
        return cls

    return decorator


def available_providers() -> list[str]:
    return [kind.value for kind in ProviderKind if kind in _REGISTRY]


def make_runner(provider: str | ProviderKind, config: RunConfig | None = None) -> SessionRunner:
    """Construct the runner registered for a provider.

    Raises:
        ValueError: If the provider is unknown.
    """
    try:
        kind = ProviderKind(provider)
    except ValueError:
        msg = f"Unknown provider: {provider}. Choose from: {', '.join(available_providers())}"
        raise ValueError(msg) from None
    if kind not in _REGISTRY:
        msg = f"No runner registered for provider {kind.value}"
        raise ValueError(msg)
    return _REGISTRY[kind](config)
