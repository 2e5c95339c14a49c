"""Pydantic models for the ``scenario.toml`` schema.

A scenario bundles the task prompt handed to the agent, the outcomes the
call log must show, and the scoring table used to grade the session.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Arguments that carry free text rather than a resource identifier.
FREE_TEXT_ARGS = frozenset({"text", "summary", "description", "content", "query"})

# Method -> argument holding the text a ``contains`` check looks at.
CONTAINS_FIELD = {
    "create_issue": "summary",
    "create_article": "summary",
    "add_comment": "text",
    "add_article_comment": "text",
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class OutcomeSpec(_Frozen):
    """Structured expected outcome.

    Achieved when at least one logged call satisfies every declared
    criterion at once. ``min_calls``/``max_calls`` bound how many calls
    satisfy the remaining criteria.
    """

    method_called: str | None = None
    issue: str | None = None
    contains: str | None = None
    field: str | None = None
    value: str | None = None
    min_calls: int | None = Field(default=None, ge=0)
    max_calls: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_consistency(self) -> OutcomeSpec:
        if (self.field is None) != (self.value is None):
            msg = "'field' and 'value' must be given together"
            raise ValueError(msg)
        if (
            self.min_calls is not None
            and self.max_calls is not None
            and self.max_calls < self.min_calls
        ):
            msg = f"max_calls ({self.max_calls}) < min_calls ({self.min_calls})"
            raise ValueError(msg)
        return self


ExpectedOutcome = bool | str | OutcomeSpec


class ScenarioMeta(_Frozen):
    """The ``[scenario]`` table."""

    name: str
    description: str = ""
    backend: str = "any"
    difficulty: str = "medium"
    tags: tuple[str, ...] = ()


class SetupConfig(_Frozen):
    """The ``[setup]`` table."""

    prompt: str
    default_project: str | None = None
    context: str | None = None
    cache_available: bool = False


class Penalties(_Frozen):
    """Points deducted per occurrence. Stored as magnitudes."""

    extra_command: int = 5
    redundant_fetch: int = 10
    command_error: int = 15

    @field_validator("*", mode="after")
    @classmethod
    def _magnitude(cls, value: int) -> int:
        return abs(value)


class Bonuses(_Frozen):
    """Points awarded per occurrence. Stored as magnitudes."""

    cache_use: int = 10
    under_optimal: int = 5

    @field_validator("*", mode="after")
    @classmethod
    def _magnitude(cls, value: int) -> int:
        return abs(value)


class ScoringConfig(_Frozen):
    """The ``[scoring]`` table."""

    min_commands: int | None = Field(default=None, ge=0)
    max_commands: int | None = Field(default=None, ge=0)
    optimal_commands: int | None = Field(default=None, ge=0)
    base_score: int = 100
    penalties: Penalties = Field(default_factory=Penalties)
    bonuses: Bonuses = Field(default_factory=Bonuses)

    @model_validator(mode="after")
    def _check_bounds(self) -> ScoringConfig:
        lo, hi, opt = self.min_commands, self.max_commands, self.optimal_commands
        if lo is not None and hi is not None and hi < lo:
            msg = f"max_commands ({hi}) < min_commands ({lo})"
            raise ValueError(msg)
        if opt is not None and hi is not None and opt > hi:
            msg = f"optimal_commands ({opt}) > max_commands ({hi})"
            raise ValueError(msg)
        if opt is not None and lo is not None and opt < lo:
            msg = f"optimal_commands ({opt}) < min_commands ({lo})"
            raise ValueError(msg)
        return self


class Scenario(_Frozen):
    """Top-level scenario definition loaded from ``scenario.toml``."""

    scenario: ScenarioMeta
    setup: SetupConfig
    expected_outcomes: dict[str, ExpectedOutcome] = Field(default_factory=dict)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @property
    def name(self) -> str:
        return self.scenario.name

    @property
    def prompt(self) -> str:
        return self.setup.prompt

    def is_compatible_with(self, backend: str) -> bool:
        """Whether the scenario can run against the given backend."""
        return self.scenario.backend in ("any", backend)
