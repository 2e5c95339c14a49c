"""Base for strategies that drive an external agent CLI as a child process.

The child gets a shell restricted to the tracker binary, with
``TRACK_MOCK_DIR`` pointing that binary at the scenario mock. Stdout is
drained on a reader thread and decoded one line at a time; the session
ends at process exit, the turn ceiling or the wall-clock deadline,
whichever comes first.
"""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import tempfile
import threading
import time
from abc import abstractmethod
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tracker_gym.commands import find_track_binary
from tracker_gym.mock_surface import MOCK_DIR_ENV
from tracker_gym.prompts import build_system_prompt, build_task_prompt, load_agent_guide
from tracker_gym.runners.base import (
    CommandExecution,
    SessionResult,
    SessionRunner,
    StopReason,
    Turn,
)
from tracker_gym.runners.streaming import (
    AssistantText,
    AssistantTurn,
    EventDecoder,
    FinalResult,
    SessionInit,
    StreamEvent,
    ToolInvocation,
    ToolResult,
)
from tracker_gym.trace import TraceLogger
from tracker_gym.types import AgentTransportError, RunConfig

if TYPE_CHECKING:
    from tracker_gym.scenarios.loader import ScenarioBundle

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.5
TERMINATE_GRACE_S = 5.0
STDERR_TAIL_LINES = 20


@dataclass
class LaunchContext:
    """Inputs a strategy needs to build its command line."""

    bundle: ScenarioBundle
    system_prompt: str
    task_prompt: str
    track_bin: str
    workdir: Path


@dataclass
class Invocation:
    """How to spawn the agent."""

    argv: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: Path | None = None


@dataclass
class _StreamState:
    result: SessionResult
    trace: TraceLogger
    pending: dict[str, list[CommandExecution]] = field(default_factory=dict)
    final: FinalResult | None = None


class SubprocessRunner(SessionRunner):
    """Runs an agent CLI and reconstructs what it did from its stdout."""

    #: Executable name, also used in error messages.
    binary: str = ""
    #: Whether a missing FinalResult at EOF means the stream broke.
    requires_final_result = True

    def __init__(self, config: RunConfig | None = None, binary: str | None = None) -> None:
        super().__init__(config)
        if binary:
            self.binary = binary

    @abstractmethod
    def build_invocation(self, ctx: LaunchContext) -> Invocation:
        """Materialise the system prompt and build the command line."""

    @abstractmethod
    def make_decoder(self) -> EventDecoder:
        """A fresh decoder for one session's stdout."""

    def tool_hint(self, track_bin: str) -> str:
        return (
            f"Run the tracker CLI from the shell as `{track_bin} <args>`; "
            "no other shell commands are available"
        )

    # -- session ------------------------------------------------------------

    def run(self, bundle: ScenarioBundle) -> SessionResult:
        track_bin = find_track_binary(self.config.track_bin)
        if track_bin is None:
            msg = "No track binary found; pass --track-bin or set TRACK_BIN"
            raise AgentTransportError(msg)

        system = build_system_prompt(bundle.scenario, load_agent_guide(), self.tool_hint(track_bin))
        task = build_task_prompt(bundle.scenario)

        with tempfile.TemporaryDirectory(prefix="tracker-gym-") as tmp:
            ctx = LaunchContext(bundle, system, task, track_bin, Path(tmp))
            invocation = self.build_invocation(ctx)
            return self._run_process(bundle, invocation, track_bin)

    def _child_env(self, bundle: ScenarioBundle, invocation: Invocation, track_bin: str) -> dict[str, str]:
        env = {**os.environ, **invocation.env}
        env[MOCK_DIR_ENV] = str(bundle.path.resolve())
        bin_dir = os.path.dirname(os.path.abspath(track_bin)) if os.sep in track_bin else ""
        if bin_dir:
            env["PATH"] = bin_dir + os.pathsep + env.get("PATH", "")
        return env

    def _run_process(self, bundle: ScenarioBundle, invocation: Invocation, track_bin: str) -> SessionResult:
        started = time.monotonic()
        deadline = started + self.config.timeout_s
        logger.info("Starting %s session for %s", self.kind.value, bundle.name)
        logger.debug("Command: %s", invocation.argv)

        try:
            proc = subprocess.Popen(
                invocation.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=invocation.cwd,
                env=self._child_env(bundle, invocation, track_bin),
            )
        except OSError as exc:
            msg = f"Failed to spawn {self.binary or invocation.argv[0]}: {exc}"
            raise AgentTransportError(msg) from exc

        lines: queue.Queue[str | None] = queue.Queue()
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, lines), daemon=True),
            threading.Thread(target=self._drain_stderr, args=(proc.stderr, stderr_tail), daemon=True),
        ]
        for reader in readers:
            reader.start()

        decoder = self.make_decoder()
        state = _StreamState(
            result=SessionResult(provider=self.kind, stop_reason=StopReason.PROCESS_EXIT),
            trace=TraceLogger(track_bin),
        )
        eof = False
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    state.result.stop_reason = StopReason.TIMEOUT
                    logger.warning(
                        "%s exceeded %.0fs deadline; terminating", self.kind.value, self.config.timeout_s
                    )
                    break
                try:
                    line = lines.get(timeout=min(POLL_INTERVAL_S, remaining))
                except queue.Empty:
                    continue
                if line is None:
                    eof = True
                    for event in decoder.close():
                        self._handle(event, state)
                    break
                for event in decoder.decode(line):
                    self._handle(event, state)
                if state.result.turns_used > self.config.max_turns:
                    state.result.stop_reason = StopReason.MAX_TURNS
                    logger.warning("Maximum turns (%d) reached; terminating", self.config.max_turns)
                    break
        finally:
            exit_code = self._terminate(proc, wait_first=eof)
            for reader in readers:
                reader.join(timeout=1.0)

        result = state.result
        result.exit_code = exit_code
        result.duration_s = time.monotonic() - started
        if eof and state.final is None and self.requires_final_result:
            detail = "; ".join(stderr_tail) or "no stderr"
            msg = (
                f"{self.binary or invocation.argv[0]} stream closed without a final result "
                f"(exit code {exit_code}): {detail}"
            )
            raise AgentTransportError(msg)
        if state.final is not None and state.final.is_error:
            logger.warning("%s reported an error result: %s", self.kind.value, state.final.text)

        logger.info(
            "Session complete: %d commands in %d turns (%.1fs)",
            len(result.commands), result.turns_used, result.duration_s,
        )
        return result

    # -- event handling -----------------------------------------------------

    def _handle(self, event: StreamEvent, state: _StreamState) -> None:
        result = state.result
        if isinstance(event, SessionInit):
            logger.debug("Session init: id=%s model=%s", event.session_id, event.model)
        elif isinstance(event, AssistantTurn):
            result.turns.append(
                Turn(
                    index=result.turns_used + 1,
                    input_tokens=event.input_tokens,
                    output_tokens=event.output_tokens,
                )
            )
            result.input_tokens += event.input_tokens
            result.output_tokens += event.output_tokens
        elif isinstance(event, AssistantText):
            if result.turns:
                result.turns[-1].text += event.text
            result.final_text = event.text
            logger.info("Agent: %s", event.text)
        elif isinstance(event, ToolInvocation):
            if result.turns:
                result.turns[-1].tool_calls += 1
            if event.command is None:
                logger.debug("Ignoring non-shell tool %s", event.name)
                return
            entries = state.trace.record_shell(event.command)
            if not entries:
                logger.info("Agent ran a non-track command: %s", event.command)
                return
            executions = [CommandExecution(args=entry.args) for entry in entries]
            result.commands.extend(executions)
            state.pending[event.tool_id] = executions
            for entry in entries:
                logger.info("Executing: %s", entry.command)
        elif isinstance(event, ToolResult):
            for execution in state.pending.pop(event.tool_id, []):
                execution.output = event.output
                execution.is_error = event.is_error
        elif isinstance(event, FinalResult):
            state.final = event
            if event.text:
                result.final_text = event.text
            if event.input_tokens is not None:
                result.input_tokens = event.input_tokens
            if event.output_tokens is not None:
                result.output_tokens = event.output_tokens
            result.cost_usd = event.cost_usd
            if result.turns:
                result.turns[-1].stop_reason = "end_turn"
            result.stop_reason = StopReason.END_TURN

    # -- process plumbing ---------------------------------------------------

    @staticmethod
    def _drain(stream, out: queue.Queue[str | None]) -> None:
        if stream is None:
            out.put(None)
            return
        try:
            for raw in stream:
                out.put(raw.rstrip("\n"))
        finally:
            out.put(None)

    @staticmethod
    def _drain_stderr(stream, tail: deque[str]) -> None:
        if stream is None:
            return
        for raw in stream:
            line = raw.rstrip("\n")
            if line:
                tail.append(line)
                logger.debug("agent stderr: %s", line)

    @staticmethod
    def _terminate(proc: subprocess.Popen[str], wait_first: bool = False) -> int | None:
        """Stop the child if still running; return its exit code."""
        if wait_first:
            try:
                proc.wait(timeout=TERMINATE_GRACE_S)
            except subprocess.TimeoutExpired:
                pass
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_GRACE_S)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        return proc.returncode
