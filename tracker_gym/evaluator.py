"""Call-log scoring for tracker agent sessions.

The evaluator reads only the call log written by the mock tracker, never
the agent's prose. It checks each expected outcome, applies the scoring
table and rates command-count efficiency:

  - Unmet outcome: -25 each
  - Calls beyond ``max_commands``: -extra_command each
  - Repeated fetch of an unchanged resource: -redundant_fetch each
  - Failed call: -command_error each
  - Cache-class call with the cache available: +cache_use once
  - Calls saved below ``optimal_commands`` (all outcomes met): +under_optimal each
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from tracker_gym.mock_surface import CallLogEntry
from tracker_gym.scenarios.schema import (
    CONTAINS_FIELD,
    FREE_TEXT_ARGS,
    ExpectedOutcome,
    OutcomeSpec,
    Scenario,
    ScoringConfig,
)
from tracker_gym.types import Efficiency, EvaluationInconsistency

if TYPE_CHECKING:
    from tracker_gym.scenarios.manifest import Manifest

logger = logging.getLogger(__name__)

UNMET_OUTCOME_PENALTY = 25
DEFAULT_MIN_SCORE = 70

# Argument names that identify the resource a call touches.
PRIMARY_ID_ARGS = ("id", "issue_id", "article_id", "project_id", "parent_id")
MUTATING_PREFIXES = ("create_", "update_", "delete_", "add_", "link_", "move_")

# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


class OutcomeResult(BaseModel):
    """Verdict for one expected outcome."""

    name: str
    achieved: bool
    expected: str
    actual: str


class ScoreAdjustment(BaseModel):
    """One line of the score breakdown. ``points`` is signed."""

    reason: str
    points: int
    count: int


class ScoreBreakdown(BaseModel):
    base: int
    penalties: list[ScoreAdjustment] = Field(default_factory=list)
    bonuses: list[ScoreAdjustment] = Field(default_factory=list)

    @property
    def total_penalties(self) -> int:
        return sum(p.points for p in self.penalties)

    @property
    def total_bonuses(self) -> int:
        return sum(b.points for b in self.bonuses)


class EvaluationResult(BaseModel):
    """Scored verdict for one session."""

    scenario_name: str
    success: bool
    all_outcomes_met: bool
    score: int
    max_score: int
    score_percent: float
    min_score: float
    total_calls: int
    optimal_calls: int | None = None
    efficiency: Efficiency
    outcomes: list[OutcomeResult] = Field(default_factory=list)
    score_breakdown: ScoreBreakdown
    suggestions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Outcome matching helpers
# ---------------------------------------------------------------------------


def _string_args(call: CallLogEntry) -> list[str]:
    return list(call.args.values())


def _contains(haystack: str, needle: str) -> bool:
    return needle.lower() in haystack.lower()


def _references(call: CallLogEntry, resource: str) -> bool:
    """Whether an identifier argument of the call equals ``resource``."""
    return any(
        value == resource for key, value in call.args.items() if key not in FREE_TEXT_ARGS
    )


def _text_matches(call: CallLogEntry, needle: str) -> bool:
    scoped = CONTAINS_FIELD.get(call.method)
    if scoped is not None:
        return _contains(call.args.get(scoped, ""), needle)
    return any(_contains(value, needle) for value in _string_args(call))


def _call_satisfies(call: CallLogEntry, expected: OutcomeSpec) -> bool:
    if expected.method_called is not None and call.method != expected.method_called:
        return False
    if expected.issue is not None and not _references(call, expected.issue):
        return False
    if expected.contains is not None and not _text_matches(call, expected.contains):
        return False
    if expected.field is not None and call.args.get(expected.field) != expected.value:
        return False
    return True


def _describe(expected: OutcomeSpec) -> str:
    parts = []
    if expected.method_called:
        parts.append(f"method '{expected.method_called}' called")
    if expected.issue:
        parts.append(f"on '{expected.issue}'")
    if expected.contains:
        parts.append(f"containing '{expected.contains}'")
    if expected.field:
        parts.append(f"with {expected.field} = '{expected.value}'")
    if expected.min_calls is not None:
        parts.append(f"at least {expected.min_calls} calls")
    if expected.max_calls is not None:
        parts.append(f"at most {expected.max_calls} calls")
    return " ".join(parts) or "any call"


def check_outcome(name: str, outcome: ExpectedOutcome, calls: list[CallLogEntry]) -> OutcomeResult:
    """Check one expected outcome against the call log."""
    if isinstance(outcome, bool):
        made = bool(calls)
        return OutcomeResult(
            name=name,
            achieved=made == outcome,
            expected=f"calls made: {str(outcome).lower()}",
            actual=f"calls made: {str(made).lower()}",
        )

    if isinstance(outcome, str):
        found = any(_contains(v, outcome) for call in calls for v in _string_args(call))
        return OutcomeResult(
            name=name,
            achieved=found,
            expected=f"reference to '{outcome}'",
            actual=f"found '{outcome}'" if found else "not found",
        )

    matching = [call for call in calls if _call_satisfies(call, outcome)]
    count = len(matching)
    # max_calls = 0 asserts absence; otherwise at least one match is needed.
    minimum = outcome.min_calls
    if minimum is None:
        minimum = 0 if outcome.max_calls == 0 else 1
    achieved = count >= minimum
    if outcome.max_calls is not None and count > outcome.max_calls:
        achieved = False

    if count:
        actual = f"{count} matching call(s)"
    elif outcome.method_called and not any(c.method == outcome.method_called for c in calls):
        actual = f"'{outcome.method_called}' not called"
    else:
        actual = "no call matched every criterion"
    return OutcomeResult(name=name, achieved=achieved, expected=_describe(outcome), actual=actual)


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _primary_id(call: CallLogEntry) -> str | None:
    for key in PRIMARY_ID_ARGS:
        if key in call.args:
            return call.args[key]
    return None


def count_redundant_fetches(calls: list[CallLogEntry]) -> int:
    """Count ``get_*`` calls repeating an earlier successful fetch.

    A successful mutating call on a resource makes the next fetch of that
    resource legitimate again.
    """
    seen: set[tuple[str, str]] = set()
    redundant = 0
    for call in calls:
        if call.method.startswith(MUTATING_PREFIXES) and call.success:
            touched = {v for k, v in call.args.items() if k not in FREE_TEXT_ARGS}
            seen = {key for key in seen if key[1] not in touched}
            continue
        if not call.method.startswith("get_"):
            continue
        resource = _primary_id(call)
        if resource is None:
            continue
        key = (call.method, resource)
        if key in seen:
            redundant += 1
        elif call.success:
            seen.add(key)
    return redundant


def rate_efficiency(total_calls: int, scoring: ScoringConfig) -> Efficiency:
    optimal, maximum = scoring.optimal_commands, scoring.max_commands
    if maximum is not None and total_calls > maximum:
        return Efficiency.INEFFICIENT
    if optimal is not None:
        if total_calls < optimal:
            return Efficiency.EXCELLENT
        if total_calls == optimal:
            return Efficiency.OPTIMAL
    return Efficiency.ACCEPTABLE


def _score_penalties(
    calls: list[CallLogEntry],
    outcomes: list[OutcomeResult],
    scoring: ScoringConfig,
) -> list[ScoreAdjustment]:
    penalties: list[ScoreAdjustment] = []

    failed = sum(1 for o in outcomes if not o.achieved)
    if failed:
        penalties.append(ScoreAdjustment(
            reason="Failed expected outcomes",
            points=-failed * UNMET_OUTCOME_PENALTY,
            count=failed,
        ))

    if scoring.max_commands is not None and len(calls) > scoring.max_commands:
        extra = len(calls) - scoring.max_commands
        penalties.append(ScoreAdjustment(
            reason=f"Extra commands ({extra} over max {scoring.max_commands})",
            points=-extra * scoring.penalties.extra_command,
            count=extra,
        ))

    redundant = count_redundant_fetches(calls)
    if redundant:
        penalties.append(ScoreAdjustment(
            reason="Redundant fetches (same resource fetched multiple times)",
            points=-redundant * scoring.penalties.redundant_fetch,
            count=redundant,
        ))

    errors = sum(1 for c in calls if not c.success)
    if errors:
        penalties.append(ScoreAdjustment(
            reason="Command errors",
            points=-errors * scoring.penalties.command_error,
            count=errors,
        ))

    return [p for p in penalties if p.points]


def _score_bonuses(
    calls: list[CallLogEntry],
    all_met: bool,
    scenario: Scenario,
) -> list[ScoreAdjustment]:
    scoring = scenario.scoring
    bonuses: list[ScoreAdjustment] = []

    cache_used = any("cache" in c.method for c in calls)
    if cache_used and scenario.setup.cache_available and scoring.bonuses.cache_use:
        bonuses.append(ScoreAdjustment(
            reason="Effective cache usage",
            points=scoring.bonuses.cache_use,
            count=1,
        ))

    optimal = scoring.optimal_commands
    if all_met and optimal is not None and len(calls) < optimal and scoring.bonuses.under_optimal:
        saved = optimal - len(calls)
        bonuses.append(ScoreAdjustment(
            reason=f"Under optimal ({saved} commands saved)",
            points=saved * scoring.bonuses.under_optimal,
            count=saved,
        ))

    return bonuses


def _suggestions(
    calls: list[CallLogEntry],
    outcomes: list[OutcomeResult],
    efficiency: Efficiency,
) -> list[str]:
    suggestions = [
        f"Outcome '{o.name}' was not achieved: expected {o.expected}, got {o.actual}"
        for o in outcomes
        if not o.achieved
    ]
    if efficiency is Efficiency.INEFFICIENT:
        suggestions.append("Consider using the cache system to reduce API calls")
        suggestions.append("Avoid fetching the same resource multiple times")
    elif efficiency is Efficiency.ACCEPTABLE:
        suggestions.append("Good job! Consider combining operations where possible for optimal efficiency")

    redundant = count_redundant_fetches(calls)
    if redundant:
        suggestions.append(f"Found {redundant} redundant fetch(es). Store results in variables for reuse.")
    errors = sum(1 for c in calls if not c.success)
    if errors:
        suggestions.append(f"{errors} command(s) resulted in errors. Check arguments and resource existence.")
    return suggestions


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class Evaluator:
    """Scores a finished call log against a scenario.

    Args:
        scenario: The scenario whose outcomes and scoring table apply.
        manifest: When given, calls to methods it never declares are
            reported as warnings.
        min_score: Pass threshold on ``score_percent``.
        strict: Also require every outcome to be met for success.
    """

    def __init__(
        self,
        scenario: Scenario,
        manifest: Manifest | None = None,
        min_score: float = DEFAULT_MIN_SCORE,
        strict: bool = True,
    ) -> None:
        self.scenario = scenario
        self.manifest = manifest
        self.min_score = min_score
        self.strict = strict

    def evaluate(self, calls: list[CallLogEntry]) -> EvaluationResult:
        scoring = self.scenario.scoring
        outcomes = [
            check_outcome(name, outcome, calls)
            for name, outcome in self.scenario.expected_outcomes.items()
        ]
        all_met = all(o.achieved for o in outcomes)
        efficiency = rate_efficiency(len(calls), scoring)

        breakdown = ScoreBreakdown(
            base=scoring.base_score,
            penalties=_score_penalties(calls, outcomes, scoring),
            bonuses=_score_bonuses(calls, all_met, self.scenario),
        )
        score = max(0, scoring.base_score + breakdown.total_penalties + breakdown.total_bonuses)
        if scoring.base_score > 0:
            percent = min(100.0, max(0.0, score / scoring.base_score * 100.0))
        else:
            percent = 0.0

        success = percent >= self.min_score and (all_met or not self.strict)
        result = EvaluationResult(
            scenario_name=self.scenario.name,
            success=success,
            all_outcomes_met=all_met,
            score=score,
            max_score=scoring.base_score,
            score_percent=percent,
            min_score=self.min_score,
            total_calls=len(calls),
            optimal_calls=scoring.optimal_commands,
            efficiency=efficiency,
            outcomes=outcomes,
            score_breakdown=breakdown,
            suggestions=_suggestions(calls, outcomes, efficiency),
            warnings=self._inconsistencies(calls),
        )
        logger.info(
            "Evaluated %s: score %d/%d (%.0f%%), %s, %s",
            result.scenario_name, score, scoring.base_score, percent,
            efficiency.value, "PASS" if success else "FAIL",
        )
        return result

    def _inconsistencies(self, calls: list[CallLogEntry]) -> list[str]:
        if self.manifest is None:
            return []
        declared = self.manifest.methods()
        unknown = sorted({c.method for c in calls} - declared)
        found = []
        for method in unknown:
            message = f"Call log references method '{method}' absent from the manifest"
            warnings.warn(message, EvaluationInconsistency, stacklevel=2)
            logger.warning(message)
            found.append(message)
        return found
