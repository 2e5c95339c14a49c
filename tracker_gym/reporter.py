"""Text and JSON rendering of scenario runs, plus the process exit code."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import asdict
from typing import Any

from tracker_gym.evaluator import EvaluationResult
from tracker_gym.harness import ScenarioRun

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_HARNESS_ERROR = 2

OUTPUT_FORMATS = ("text", "json")


def exit_code(runs: Sequence[ScenarioRun]) -> int:
    """0 when every run passed, 2 on any harness error, 1 otherwise."""
    if any(run.harness_error is not None for run in runs):
        return EXIT_HARNESS_ERROR
    if all(run.passed for run in runs):
        return EXIT_PASSED
    return EXIT_FAILED


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def format_evaluation(result: EvaluationResult) -> str:
    """Multi-line human-readable verdict for one evaluation."""
    lines = [
        f"Scenario: {result.scenario_name}",
        f"Result:   {'PASS' if result.success else 'FAIL'}",
        f"Score:    {result.score}/{result.max_score} ({result.score_percent:.0f}%, min {result.min_score:.0f}%)",
    ]
    optimal = f" (optimal: {result.optimal_calls})" if result.optimal_calls is not None else ""
    lines.append(f"Commands: {result.total_calls}{optimal}")
    lines.append(f"Efficiency: {result.efficiency.value}")

    if result.outcomes:
        lines.append("")
        lines.append("Outcomes:")
        for outcome in result.outcomes:
            mark = "+" if outcome.achieved else "-"
            lines.append(f"  [{mark}] {outcome.name}: {outcome.actual}")
            if not outcome.achieved:
                lines.append(f"        expected {outcome.expected}")

    breakdown = result.score_breakdown
    if breakdown.penalties or breakdown.bonuses:
        lines.append("")
        lines.append(f"Score breakdown (base {breakdown.base}):")
        for adj in [*breakdown.penalties, *breakdown.bonuses]:
            lines.append(f"  {adj.points:+d}  {adj.reason} (x{adj.count})")

    if result.suggestions:
        lines.append("")
        lines.append("Suggestions:")
        lines.extend(f"  - {s}" for s in result.suggestions)

    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  ! {w}" for w in result.warnings)
    return "\n".join(lines)


def format_run(run: ScenarioRun) -> str:
    if run.harness_error is not None:
        return f"Scenario: {run.name}\nResult:   ERROR\nError:    {run.harness_error}"
    text = format_evaluation(run.evaluation)
    session = run.session
    if session is not None:
        text += (
            f"\n\nSession: {session.provider.value}, {session.turns_used} turns, "
            f"{session.total_tokens} tokens, stop reason {session.stop_reason.value} "
            f"({session.duration_s:.1f}s)"
        )
    return text


def format_summary(runs: Sequence[ScenarioRun]) -> str:
    """One line per run followed by pass/fail totals."""
    if not runs:
        return "No scenarios were run."
    width = max(len(run.name) for run in runs)
    lines = [f"{'Scenario':<{width}}  Status  Score  Efficiency", "-" * (width + 32)]
    for run in runs:
        if run.evaluation is None:
            lines.append(f"{run.name:<{width}}  {run.status:<6}  {'-':>5}  -")
            continue
        ev = run.evaluation
        lines.append(f"{run.name:<{width}}  {run.status:<6}  {ev.score_percent:>4.0f}%  {ev.efficiency.value}")

    passed = sum(1 for run in runs if run.passed)
    errors = sum(1 for run in runs if run.harness_error is not None)
    lines.append("")
    lines.append(f"{passed}/{len(runs)} passed, {len(runs) - passed - errors} failed, {errors} errors")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def run_to_dict(run: ScenarioRun) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": run.name,
        "status": run.status,
        "passed": run.passed,
        "harness_error": run.harness_error,
        "evaluation": run.evaluation.model_dump(mode="json") if run.evaluation else None,
        "session": None,
    }
    if run.session is not None:
        session = asdict(run.session)
        session["provider"] = run.session.provider.value
        session["stop_reason"] = run.session.stop_reason.value
        session["turns_used"] = run.session.turns_used
        session["total_tokens"] = run.session.total_tokens
        data["session"] = session
    return data


def to_json(runs: Sequence[ScenarioRun]) -> str:
    """JSON report. A single run renders as an object, a batch as a summary."""
    if len(runs) == 1:
        return json.dumps(run_to_dict(runs[0]), indent=2)
    return json.dumps(
        {
            "total": len(runs),
            "passed": sum(1 for run in runs if run.passed),
            "exit_code": exit_code(runs),
            "runs": [run_to_dict(run) for run in runs],
        },
        indent=2,
    )
