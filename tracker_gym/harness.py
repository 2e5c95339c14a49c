"""Scenario orchestration: clear the log, run the agent, score the log."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from tracker_gym.evaluator import DEFAULT_MIN_SCORE, EvaluationResult, Evaluator
from tracker_gym.mock_surface import clear_call_log, read_call_log
from tracker_gym.runners.base import SessionResult, SessionRunner
from tracker_gym.scenarios.loader import ScenarioBundle
from tracker_gym.types import AgentTransportError

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[], SessionRunner]


@dataclass
class ScenarioRun:
    """Outcome of running one scenario end to end."""

    name: str
    session: SessionResult | None = None
    evaluation: EvaluationResult | None = None
    harness_error: str | None = None

    @property
    def passed(self) -> bool:
        return self.evaluation is not None and self.evaluation.success

    @property
    def status(self) -> str:
        if self.harness_error is not None:
            return "ERROR"
        return "PASS" if self.passed else "FAIL"


def evaluate_bundle(
    bundle: ScenarioBundle,
    min_score: float = DEFAULT_MIN_SCORE,
    strict: bool = True,
) -> EvaluationResult:
    """Score whatever is currently in the bundle's call log."""
    calls = read_call_log(bundle.path)
    evaluator = Evaluator(bundle.scenario, bundle.manifest, min_score=min_score, strict=strict)
    return evaluator.evaluate(calls)


def run_scenario(
    bundle: ScenarioBundle,
    runner: SessionRunner,
    min_score: float = DEFAULT_MIN_SCORE,
    strict: bool = True,
) -> ScenarioRun:
    """Run one session against a fresh call log and evaluate it.

    Transport failures are captured on the returned run rather than raised,
    so one broken session does not abort a batch.
    """
    clear_call_log(bundle.path)
    try:
        session = runner.run(bundle)
    except AgentTransportError as exc:
        logger.error("Scenario %s aborted: %s", bundle.name, exc)
        return ScenarioRun(name=bundle.name, harness_error=str(exc))

    evaluation = evaluate_bundle(bundle, min_score=min_score, strict=strict)
    return ScenarioRun(name=bundle.name, session=session, evaluation=evaluation)


def run_all(
    bundles: Iterable[ScenarioBundle],
    runner_factory: RunnerFactory,
    jobs: int = 1,
    fail_fast: bool = False,
    min_score: float = DEFAULT_MIN_SCORE,
    strict: bool = True,
    on_complete: Callable[[ScenarioRun], None] | None = None,
) -> list[ScenarioRun]:
    """Run many scenarios, each with its own runner.

    Args:
        bundles: Scenarios to run. Each owns its directory and call log.
        runner_factory: Builds a fresh runner per scenario.
        jobs: Worker threads. ``1`` runs sequentially in order.
        fail_fast: Stop scheduling after the first non-passing run.
        min_score: Pass threshold on the score percentage.
        strict: Also require every outcome to be met.
        on_complete: Called with each run as soon as it finishes.

    Returns:
        Completed runs, in input order.
    """
    bundles = list(bundles)
    runs: dict[int, ScenarioRun] = {}

    def _one(bundle: ScenarioBundle) -> ScenarioRun:
        return run_scenario(bundle, runner_factory(), min_score=min_score, strict=strict)

    def _record(index: int, run: ScenarioRun) -> None:
        runs[index] = run
        if on_complete is not None:
            on_complete(run)

    if jobs <= 1:
        for index, bundle in enumerate(bundles):
            run = _one(bundle)
            _record(index, run)
            if fail_fast and not run.passed:
                logger.info("Stopping after %s (fail-fast)", bundle.name)
                break
    else:
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            futures = {pool.submit(_one, bundle): index for index, bundle in enumerate(bundles)}
            for future in as_completed(futures):
                run = future.result()
                _record(futures[future], run)
                if fail_fast and not run.passed:
                    logger.info("Cancelling pending scenarios after %s (fail-fast)", run.name)
                    for pending in futures:
                        pending.cancel()
                    break

    return [runs[index] for index in sorted(runs)]
