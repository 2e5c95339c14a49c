"""CLI for the tracker agent gym.

Usage:
    tracker-gym run basic-workflow              # One scenario, in-process loop
    tracker-gym run basic-workflow --provider claude-code
    tracker-gym run-all --path scenarios --jobs 4
    tracker-gym list                            # Available scenarios
    tracker-gym show basic-workflow             # Scenario details
    tracker-gym evaluate basic-workflow         # Score an existing call log
    tracker-gym clear basic-workflow            # Delete the call log
    tracker-gym status                          # Mock and provider setup
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Annotated

import typer

from tracker_gym import __version__
from tracker_gym.commands import TRACK_BIN_ENV, find_track_binary
from tracker_gym.evaluator import DEFAULT_MIN_SCORE
from tracker_gym.harness import ScenarioRun, evaluate_bundle, run_all, run_scenario
from tracker_gym.mock_surface import MOCK_DIR_ENV, clear_call_log, get_mock_dir, read_call_log
from tracker_gym.prompts import AGENT_GUIDE_ENV, find_agent_guide
from tracker_gym.reporter import (
    EXIT_FAILED,
    EXIT_HARNESS_ERROR,
    OUTPUT_FORMATS,
    exit_code,
    format_evaluation,
    format_run,
    format_summary,
    run_to_dict,
    to_json,
)
from tracker_gym.runners import available_providers, make_runner
from tracker_gym.runners.base import SessionRunner
from tracker_gym.scenarios import (
    ScenarioBundle,
    load_all_scenarios,
    load_scenario_dir,
    resolve_scenario_path,
    validate_scenario,
)
from tracker_gym.types import DEFAULT_MODEL, RunConfig, ScenarioLoadError

app = typer.Typer(
    name="tracker-gym",
    help="Evaluate AI agents driving the track CLI against mocked scenarios.",
    add_completion=False,
    rich_markup_mode=None,
)

DEFAULT_SCENARIOS = Path("scenarios")

# Shared option types
PathOpt = Annotated[Path, typer.Option("--path", help="Directory containing scenario directories.")]
ProviderOpt = Annotated[
    str, typer.Option("--provider", help=f"Agent provider: {', '.join(available_providers())}.")
]
ModelOpt = Annotated[str, typer.Option("--model", help="Model identifier passed to the provider.")]
MaxTurnsOpt = Annotated[int, typer.Option("--max-turns", min=1, help="Turn ceiling per session.")]
MinScoreOpt = Annotated[
    float, typer.Option("--min-score", min=0, max=100, help="Minimum score percentage to pass.")
]
FormatOpt = Annotated[str, typer.Option("--format", "-f", help="Output format: text or json.")]
ApiKeyOpt = Annotated[
    str | None, typer.Option("--api-key", envvar="ANTHROPIC_API_KEY", help="Anthropic API key.")
]
TrackBinOpt = Annotated[
    str | None, typer.Option("--track-bin", envvar=TRACK_BIN_ENV, help="Path to the track binary.")
]
TimeoutOpt = Annotated[
    float, typer.Option("--timeout", min=1, help="Wall-clock limit per session in seconds.")
]
StrictOpt = Annotated[
    bool, typer.Option("--strict/--lenient", help="Require every expected outcome to pass.")
]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging.")]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _check_format(output_format: str) -> None:
    if output_format not in OUTPUT_FORMATS:
        msg = f"Unknown format: {output_format}. Choose from: {', '.join(OUTPUT_FORMATS)}"
        raise typer.BadParameter(msg)


def _load_bundle(scenario: str, root: Path) -> ScenarioBundle:
    """Load a scenario by name or path; load failures exit with code 2."""
    try:
        return load_scenario_dir(resolve_scenario_path(scenario, root))
    except ScenarioLoadError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_HARNESS_ERROR) from exc


def _runner_factory(provider: str, config: RunConfig):
    """Validate the provider once and return a factory for per-scenario runners."""
    try:
        make_runner(provider, config)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_HARNESS_ERROR) from exc

    def factory() -> SessionRunner:
        return make_runner(provider, config)

    return factory


@app.command()
def run(
    scenario: Annotated[str, typer.Argument(help="Scenario name or directory.")],
    path: PathOpt = DEFAULT_SCENARIOS,
    provider: ProviderOpt = "anthropic",
    model: ModelOpt = DEFAULT_MODEL,
    max_turns: MaxTurnsOpt = 20,
    min_score: MinScoreOpt = DEFAULT_MIN_SCORE,
    output_format: FormatOpt = "text",
    api_key: ApiKeyOpt = None,
    track_bin: TrackBinOpt = None,
    timeout: TimeoutOpt = 600.0,
    strict: StrictOpt = True,
    verbose: VerboseOpt = False,
) -> None:
    """Run one scenario with an agent and score its call log."""
    _setup_logging(verbose)
    _check_format(output_format)
    bundle = _load_bundle(scenario, path)
    config = RunConfig(
        model=model, max_turns=max_turns, timeout_s=timeout,
        api_key=api_key, track_bin=track_bin, verbose=verbose,
    )
    factory = _runner_factory(provider, config)

    if output_format == "text":
        typer.echo(f"Running {bundle.name} with {provider} ({model})")
        typer.echo("---")
    result = run_scenario(bundle, factory(), min_score=min_score, strict=strict)

    typer.echo(to_json([result]) if output_format == "json" else format_run(result))
    raise typer.Exit(exit_code([result]))


@app.command("run-all")
def run_all_command(
    path: PathOpt = DEFAULT_SCENARIOS,
    provider: ProviderOpt = "anthropic",
    model: ModelOpt = DEFAULT_MODEL,
    max_turns: MaxTurnsOpt = 20,
    min_score: MinScoreOpt = DEFAULT_MIN_SCORE,
    output_format: FormatOpt = "text",
    api_key: ApiKeyOpt = None,
    track_bin: TrackBinOpt = None,
    timeout: TimeoutOpt = 600.0,
    strict: StrictOpt = True,
    jobs: Annotated[int, typer.Option("--jobs", "-j", min=1, help="Scenarios to run in parallel.")] = 1,
    fail_fast: Annotated[bool, typer.Option("--fail-fast", help="Stop after the first failure.")] = False,
    verbose: VerboseOpt = False,
) -> None:
    """Run every scenario under a directory and print a summary."""
    _setup_logging(verbose)
    _check_format(output_format)
    try:
        bundles = load_all_scenarios(path)
    except (FileNotFoundError, ScenarioLoadError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_HARNESS_ERROR) from exc
    if not bundles:
        typer.echo(f"No scenarios found in {path}", err=True)
        raise typer.Exit(EXIT_HARNESS_ERROR)

    config = RunConfig(
        model=model, max_turns=max_turns, timeout_s=timeout,
        api_key=api_key, track_bin=track_bin, verbose=verbose,
    )
    factory = _runner_factory(provider, config)

    def _progress(run: ScenarioRun) -> None:
        if output_format == "text":
            typer.echo(f"[{run.status}] {run.name}")

    if output_format == "text":
        typer.echo(f"Running {len(bundles)} scenarios with {provider} ({model}), jobs={jobs}")
        typer.echo("---")
    runs = run_all(
        bundles, factory, jobs=jobs, fail_fast=fail_fast,
        min_score=min_score, strict=strict, on_complete=_progress,
    )

    if output_format == "json":
        typer.echo(to_json(runs))
    else:
        typer.echo("")
        typer.echo(format_summary(runs))
    raise typer.Exit(exit_code(runs))


@app.command("list")
def list_scenarios(
    path: PathOpt = DEFAULT_SCENARIOS,
    output_format: FormatOpt = "text",
) -> None:
    """List available scenarios."""
    _check_format(output_format)
    try:
        bundles = load_all_scenarios(path)
    except (FileNotFoundError, ScenarioLoadError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_HARNESS_ERROR) from exc

    if output_format == "json":
        typer.echo(json.dumps(
            [
                {
                    "name": b.name,
                    "path": str(b.path),
                    "description": b.scenario.scenario.description,
                    "difficulty": b.scenario.scenario.difficulty,
                    "tags": list(b.scenario.scenario.tags),
                }
                for b in bundles
            ],
            indent=2,
        ))
        return

    if not bundles:
        typer.echo(f"No scenarios found in {path}")
        return
    width = max(len(b.name) for b in bundles)
    for b in bundles:
        meta = b.scenario.scenario
        typer.echo(f"{b.name:<{width}}  [{meta.difficulty}]  {meta.description}")


@app.command()
def show(
    scenario: Annotated[str, typer.Argument(help="Scenario name or directory.")],
    path: PathOpt = DEFAULT_SCENARIOS,
) -> None:
    """Show a scenario's prompt, outcomes, scoring and response mappings."""
    bundle = _load_bundle(scenario, path)
    sc = bundle.scenario
    scoring = sc.scoring

    typer.echo(f"Scenario:    {sc.name}")
    typer.echo(f"Description: {sc.scenario.description}")
    typer.echo(f"Difficulty:  {sc.scenario.difficulty}")
    if sc.scenario.tags:
        typer.echo(f"Tags:        {', '.join(sc.scenario.tags)}")
    typer.echo(f"Path:        {bundle.path}")
    typer.echo("")
    typer.echo("Prompt:")
    typer.echo(f"  {sc.prompt.strip()}")
    if sc.setup.default_project:
        typer.echo(f"Default project: {sc.setup.default_project}")
    typer.echo(f"Cache available: {'yes' if sc.setup.cache_available else 'no'}")

    typer.echo("")
    typer.echo("Expected outcomes:")
    for name, outcome in sc.expected_outcomes.items():
        if isinstance(outcome, (bool, str)):
            typer.echo(f"  {name}: {outcome!r}")
        else:
            typer.echo(f"  {name}: {outcome.model_dump(exclude_none=True)}")

    typer.echo("")
    typer.echo(
        f"Scoring: base {scoring.base_score}, commands min={scoring.min_commands} "
        f"optimal={scoring.optimal_commands} max={scoring.max_commands}"
    )
    typer.echo(
        f"  penalties: extra_command={scoring.penalties.extra_command} "
        f"redundant_fetch={scoring.penalties.redundant_fetch} "
        f"command_error={scoring.penalties.command_error}"
    )
    typer.echo(
        f"  bonuses:   cache_use={scoring.bonuses.cache_use} "
        f"under_optimal={scoring.bonuses.under_optimal}"
    )

    typer.echo("")
    typer.echo(f"Mock responses ({len(bundle.manifest.responses)}):")
    for mapping in bundle.manifest.responses:
        args = ", ".join(f"{k}={v}" for k, v in sorted(mapping.args.items()))
        target = mapping.file or " -> ".join(mapping.sequence)
        typer.echo(f"  {mapping.method}({args}) -> {target} [{mapping.status}]")

    problems = validate_scenario(bundle)
    if problems:
        typer.echo("")
        typer.echo("Problems:")
        for problem in problems:
            typer.echo(f"  ! {problem}")


@app.command()
def evaluate(
    scenario: Annotated[str, typer.Argument(help="Scenario name or directory.")],
    path: PathOpt = DEFAULT_SCENARIOS,
    min_score: MinScoreOpt = DEFAULT_MIN_SCORE,
    output_format: FormatOpt = "text",
    strict: StrictOpt = True,
    verbose: VerboseOpt = False,
) -> None:
    """Score the scenario's existing call log without running an agent."""
    _setup_logging(verbose)
    _check_format(output_format)
    bundle = _load_bundle(scenario, path)
    if not read_call_log(bundle.path):
        typer.echo(f"Error: Call log is empty for {bundle.name}; run the agent first", err=True)
        raise typer.Exit(EXIT_FAILED)
    result = evaluate_bundle(bundle, min_score=min_score, strict=strict)
    run = ScenarioRun(name=bundle.name, evaluation=result)

    if output_format == "json":
        typer.echo(json.dumps(run_to_dict(run), indent=2))
    else:
        typer.echo(format_evaluation(result))
    raise typer.Exit(exit_code([run]))


@app.command()
def clear(
    scenario: Annotated[str, typer.Argument(help="Scenario name or directory.")],
    path: PathOpt = DEFAULT_SCENARIOS,
) -> None:
    """Delete the scenario's call log."""
    bundle = _load_bundle(scenario, path)
    if clear_call_log(bundle.path):
        typer.echo(f"Cleared call log for {bundle.name}")
    else:
        typer.echo(f"No call log for {bundle.name}")


@app.command()
def status() -> None:
    """Show mock mode, tracker binary, agent guide and provider setup."""
    typer.echo(f"tracker-gym {__version__}")
    mock_dir = get_mock_dir()
    if mock_dir is None:
        typer.echo(f"Mock mode:     off ({MOCK_DIR_ENV} not set)")
    else:
        calls = read_call_log(mock_dir)
        typer.echo(f"Mock mode:     on ({mock_dir})")
        typer.echo(f"Logged calls:  {len(calls)}")
    typer.echo(f"Track binary:  {find_track_binary() or 'not found'}")
    guide = find_agent_guide()
    source = f" ({AGENT_GUIDE_ENV})" if os.environ.get(AGENT_GUIDE_ENV) else ""
    typer.echo(f"Agent guide:   {guide or 'not found'}{source}")
    typer.echo(f"API key:       {'set' if os.environ.get('ANTHROPIC_API_KEY') else 'not set'}")
    typer.echo(f"Providers:     {', '.join(available_providers())}")


if __name__ == "__main__":
    app()
