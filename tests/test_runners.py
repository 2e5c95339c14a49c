"""Tests for session runners.

Covers:
    - Provider registry: make_runner, available_providers, unknown providers
    - AnthropicLoopRunner: tool execution, end_turn, stalled and max_turns
      stops, invalid tool calls, API failures, missing API key
    - SubprocessRunner: a fake agent process driving track-mock end to end,
      wall-clock timeout, turn ceiling, broken streams, spawn failures
    - Strategy command lines for Claude Code, Gemini CLI and Copilot CLI
"""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from tracker_gym.mock_surface import read_call_log
from tracker_gym.runners import (
    AnthropicLoopRunner,
    ClaudeCodeRunner,
    CopilotCliRunner,
    GeminiCliRunner,
    ProviderKind,
    StopReason,
    available_providers,
    make_runner,
)
from tracker_gym.runners.subprocess_runner import Invocation, LaunchContext
from tracker_gym.scenarios import ScenarioBundle, load_scenario_dir
from tracker_gym.types import AgentTransportError, RunConfig

REPO_ROOT = Path(__file__).resolve().parent.parent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _usage(inp: int = 10, out: int = 5) -> SimpleNamespace:
    return SimpleNamespace(input_tokens=inp, output_tokens=out)


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_use(tool_id: str, tool_input: Any, name: str = "track") -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input)


def _response(stop_reason: str, *content: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(stop_reason=stop_reason, usage=_usage(), content=list(content))


def _client(*responses: SimpleNamespace) -> MagicMock:
    client = MagicMock()
    client.messages.create.side_effect = list(responses)
    return client


def _tool_results(client: MagicMock) -> list[dict[str, Any]]:
    """Every tool_result block sent back to the model."""
    messages = client.messages.create.call_args.kwargs["messages"]
    return [
        block
        for message in messages
        if message["role"] == "user" and isinstance(message["content"], list)
        for block in message["content"]
    ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    """Tests for provider dispatch."""

    def test_all_providers_registered(self) -> None:
        """Every provider kind has a runner."""
        assert available_providers() == [kind.value for kind in ProviderKind]

    def test_make_runner(self) -> None:
        """Providers map to their runner classes."""
        assert isinstance(make_runner("claude-code"), ClaudeCodeRunner)
        assert isinstance(make_runner(ProviderKind.GEMINI_CLI), GeminiCliRunner)
        assert isinstance(make_runner("copilot-cli"), CopilotCliRunner)

    def test_unknown_provider(self) -> None:
        """Unknown providers are rejected with the valid choices."""
        with pytest.raises(ValueError, match="Unknown provider: openai"):
            make_runner("openai")

    def test_in_process_flag(self) -> None:
        """Only the Anthropic loop runs in-process."""
        assert ProviderKind.ANTHROPIC.in_process
        assert not ProviderKind.CLAUDE_CODE.in_process


# ---------------------------------------------------------------------------
# In-process loop
# ---------------------------------------------------------------------------


class TestAnthropicLoopRunner:
    """Tests for the Messages API agentic loop."""

    def test_executes_tools_then_ends(self, scenario_dir: Path) -> None:
        """Tool calls hit the mock, results go back, end_turn stops the loop."""
        client = _client(
            _response(
                "tool_use",
                _text("Fetching DEMO-1"),
                _tool_use("t1", {"args": ["issue", "get", "DEMO-1"]}),
                _tool_use("t2", {"args": ["issue", "comment", "DEMO-1", "-m", "Starting work"]}),
            ),
            _response("end_turn", _text("Done: fetched and commented.")),
        )
        runner = AnthropicLoopRunner(RunConfig(max_turns=5), client=client)
        result = runner.run(load_scenario_dir(scenario_dir))

        assert result.stop_reason is StopReason.END_TURN
        assert result.turns_used == 2
        assert result.total_tokens == 30
        assert result.final_text == "Done: fetched and commented."
        assert [c.args[:2] for c in result.commands] == [["issue", "get"], ["issue", "comment"]]
        assert [e.method for e in read_call_log(scenario_dir)] == ["get_issue", "add_comment"]

        results = _tool_results(client)
        assert [r["tool_use_id"] for r in results] == ["t1", "t2"]
        assert "DEMO-1" in results[0]["content"]
        assert not results[0]["is_error"]

    def test_request_shape(self, scenario_dir: Path) -> None:
        """The request carries the model, the track tool and the task prompt."""
        client = _client(_response("end_turn", _text("Nothing to do")))
        AnthropicLoopRunner(RunConfig(model="claude-test"), client=client).run(
            load_scenario_dir(scenario_dir)
        )
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert [t["name"] for t in kwargs["tools"]] == ["track"]
        assert kwargs["system"].startswith("# Evaluation Mode")
        assert "Fetch DEMO-1" in kwargs["messages"][0]["content"]

    def test_tracker_error_fed_back(self, scenario_dir: Path) -> None:
        """Failed commands become error tool results, not exceptions."""
        client = _client(
            _response("tool_use", _tool_use("t1", {"args": ["issue", "get", "DEMO-404"]})),
            _response("end_turn", _text("It does not exist.")),
        )
        result = AnthropicLoopRunner(client=client).run(load_scenario_dir(scenario_dir))
        [tool_result] = _tool_results(client)
        assert tool_result["is_error"]
        assert "404" in tool_result["content"]
        assert result.commands[0].is_error

    def test_invalid_tool_calls(self, scenario_dir: Path) -> None:
        """Unknown tools and malformed input are answered with errors."""
        client = _client(
            _response(
                "tool_use",
                _tool_use("t1", {"command": "ls"}, name="bash"),
                _tool_use("t2", {"argv": ["issue"]}),
            ),
            _response("end_turn", _text("ok")),
        )
        result = AnthropicLoopRunner(client=client).run(load_scenario_dir(scenario_dir))
        results = _tool_results(client)
        assert results[0]["content"] == "Unknown tool: bash"
        assert results[1]["content"] == "Invalid input: Missing 'args' field"
        assert all(r["is_error"] for r in results)
        assert result.commands == []
        assert read_call_log(scenario_dir) == []

    def test_stalled(self, scenario_dir: Path) -> None:
        """A non-final response without tool calls ends the session."""
        client = _client(_response("max_tokens", _text("I was cut off")))
        result = AnthropicLoopRunner(client=client).run(load_scenario_dir(scenario_dir))
        assert result.stop_reason is StopReason.STALLED
        assert result.turns_used == 1

    def test_max_turns(self, scenario_dir: Path) -> None:
        """The loop stops at the turn ceiling."""
        client = MagicMock()
        client.messages.create.side_effect = lambda **_: _response(
            "tool_use", _tool_use("t", {"args": ["project", "list"]})
        )
        runner = AnthropicLoopRunner(RunConfig(max_turns=3), client=client)
        result = runner.run(load_scenario_dir(scenario_dir))
        assert result.stop_reason is StopReason.MAX_TURNS
        assert result.turns_used == 3
        assert client.messages.create.call_count == 3

    def test_api_error_is_transport_error(self, scenario_dir: Path) -> None:
        """SDK failures surface as AgentTransportError."""
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(request=request)
        with pytest.raises(AgentTransportError, match="Anthropic API request failed"):
            AnthropicLoopRunner(client=client).run(load_scenario_dir(scenario_dir))

    def test_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a client or key the runner refuses to start."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            AnthropicLoopRunner(RunConfig())


# ---------------------------------------------------------------------------
# Subprocess strategies
# ---------------------------------------------------------------------------

FAKE_AGENT = textwrap.dedent(
    """
    import json, subprocess, sys

    def emit(obj):
        print(json.dumps(obj), flush=True)

    emit({"type": "system", "subtype": "init", "session_id": "fake", "model": "fake-model"})
    print("warming up (not json)", flush=True)
    emit({"type": "assistant", "message": {
        "usage": {"input_tokens": 11, "output_tokens": 4},
        "content": [
            {"type": "text", "text": "Fetching the issue"},
            {"type": "tool_use", "id": "t1", "name": "Bash",
             "input": {"command": "track issue get DEMO-1 && track issue comment DEMO-1 -m hi"}},
        ],
    }})
    outputs = []
    for args in (["issue", "get", "DEMO-1"], ["issue", "comment", "DEMO-1", "-m", "hi"]):
        proc = subprocess.run(
            [sys.executable, "-c", "from tracker_gym.tracker_cli import main; main()", *args],
            capture_output=True, text=True,
        )
        outputs.append(proc.stdout or proc.stderr)
    emit({"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": "t1", "content": "\\n".join(outputs), "is_error": False},
    ]}})
    emit({"type": "result", "result": "Commented on DEMO-1", "is_error": False, "num_turns": 1,
          "usage": {"input_tokens": 20, "output_tokens": 8}, "total_cost_usd": 0.01})
    """
)


class _ScriptedRunner(ClaudeCodeRunner):
    """Claude Code strategy whose agent is a Python script."""

    def __init__(self, script: str, config: RunConfig | None = None, argv: list[str] | None = None) -> None:
        super().__init__(config or RunConfig(track_bin="track"))
        self.script = script
        self.argv = argv

    def build_invocation(self, ctx: LaunchContext) -> Invocation:
        argv = self.argv or [sys.executable, "-c", self.script]
        return Invocation(argv=argv, env={"PYTHONPATH": str(REPO_ROOT)}, cwd=ctx.workdir)


class TestSubprocessRunner:
    """Tests for driving an agent child process."""

    def test_fake_agent_end_to_end(self, scenario_dir: Path) -> None:
        """Commands are reconstructed from the stream and land in the call log."""
        bundle = load_scenario_dir(scenario_dir)
        result = _ScriptedRunner(FAKE_AGENT).run(bundle)

        assert result.stop_reason is StopReason.END_TURN
        assert result.exit_code == 0
        assert result.turns_used == 1
        assert result.input_tokens == 20
        assert result.cost_usd == 0.01
        assert result.final_text == "Commented on DEMO-1"
        assert [c.args for c in result.commands] == [
            ["issue", "get", "DEMO-1"],
            ["issue", "comment", "DEMO-1", "-m", "hi"],
        ]
        assert "DEMO-1" in result.commands[0].output
        assert [e.method for e in read_call_log(scenario_dir)] == ["get_issue", "add_comment"]

    def test_timeout(self, scenario_dir: Path) -> None:
        """A silent agent is terminated at the wall-clock deadline."""
        runner = _ScriptedRunner("import time; time.sleep(30)", RunConfig(track_bin="track", timeout_s=1))
        result = runner.run(load_scenario_dir(scenario_dir))
        assert result.stop_reason is StopReason.TIMEOUT
        assert result.duration_s < 20

    def test_turn_ceiling(self, scenario_dir: Path) -> None:
        """The session is cut once the agent exceeds max_turns."""
        script = textwrap.dedent(
            """
            import json, time
            for i in range(3):
                print(json.dumps({"type": "assistant", "message": {"content": []}}), flush=True)
            time.sleep(30)
            """
        )
        runner = _ScriptedRunner(script, RunConfig(track_bin="track", max_turns=2))
        result = runner.run(load_scenario_dir(scenario_dir))
        assert result.stop_reason is StopReason.MAX_TURNS

    def test_stream_without_result(self, scenario_dir: Path) -> None:
        """Exiting without a final result is a transport failure carrying stderr."""
        script = "import sys; print('{\"type\": \"system\"}'); sys.stderr.write('auth expired\\n'); sys.exit(3)"
        with pytest.raises(AgentTransportError, match="auth expired"):
            _ScriptedRunner(script).run(load_scenario_dir(scenario_dir))

    def test_undecodable_bytes_do_not_break_stream(self, scenario_dir: Path) -> None:
        """Invalid UTF-8 on either stream is replaced and the session still completes."""
        script = textwrap.dedent(
            """
            import json, sys
            out = sys.stdout.buffer
            out.write(json.dumps({"type": "system", "subtype": "init"}).encode() + b"\\n")
            out.write(b"tool output \\xff\\xfe here\\n")
            sys.stderr.buffer.write(b"warning \\xff\\n")
            sys.stderr.flush()
            out.write(json.dumps({"type": "result", "result": "done", "is_error": False}).encode() + b"\\n")
            out.flush()
            """
        )
        result = _ScriptedRunner(script).run(load_scenario_dir(scenario_dir))
        assert result.stop_reason is StopReason.END_TURN
        assert result.final_text == "done"

    def test_spawn_failure(self, scenario_dir: Path) -> None:
        """A missing agent executable is a transport failure."""
        runner = _ScriptedRunner("", argv=["/nonexistent/agent-cli"])
        with pytest.raises(AgentTransportError, match="Failed to spawn"):
            runner.run(load_scenario_dir(scenario_dir))


class TestStrategyInvocations:
    """Tests for provider command lines."""

    @pytest.fixture()
    def ctx(self, scenario_dir: Path, tmp_path: Path) -> LaunchContext:
        bundle: ScenarioBundle = load_scenario_dir(scenario_dir)
        workdir = tmp_path / "work"
        workdir.mkdir()
        return LaunchContext(bundle, "SYSTEM PROMPT", "TASK PROMPT", "/opt/track", workdir)

    def test_claude_code(self, ctx: LaunchContext) -> None:
        """Bash is restricted to the tracker and the system prompt is appended."""
        runner = ClaudeCodeRunner(RunConfig(model="claude-x", max_turns=7))
        invocation = runner.build_invocation(ctx)
        argv = invocation.argv
        assert argv[:2] == ["claude", "-p"]
        assert argv[argv.index("--allowedTools") + 1] == "Bash(/opt/track *)"
        disallowed = argv[argv.index("--disallowedTools") + 1].split()
        assert "Bash" not in disallowed
        assert {"Edit", "Write", "Read", "WebFetch"} <= set(disallowed)
        assert argv[argv.index("--append-system-prompt") + 1] == "SYSTEM PROMPT"
        assert argv[argv.index("--max-turns") + 1] == "7"
        assert argv[argv.index("--model") + 1] == "claude-x"
        assert argv[-1] == "TASK PROMPT"
        assert invocation.cwd == ctx.workdir

    def test_gemini_cli(self, ctx: LaunchContext) -> None:
        """The system prompt is written to a file announced via the environment."""
        invocation = GeminiCliRunner(RunConfig()).build_invocation(ctx)
        system_md = Path(invocation.env["GEMINI_SYSTEM_MD"])
        assert system_md.read_text(encoding="utf-8") == "SYSTEM PROMPT"
        argv = invocation.argv
        assert argv[argv.index("--model") + 1] == "gemini-2.5-pro"
        assert argv[argv.index("--allowed-tools") + 1] == "run_shell_command(/opt/track)"
        assert argv[-2:] == ["-p", "TASK PROMPT"]

    def test_gemini_model_passthrough(self, ctx: LaunchContext) -> None:
        """Non-Claude model names are passed through unchanged."""
        argv = GeminiCliRunner(RunConfig(model="gemini-2.5-flash")).build_invocation(ctx).argv
        assert argv[argv.index("--model") + 1] == "gemini-2.5-flash"

    def test_copilot_cli(self, ctx: LaunchContext) -> None:
        """Instructions land in AGENTS.md and the shell tool is scoped to the tracker."""
        invocation = CopilotCliRunner(RunConfig()).build_invocation(ctx)
        assert (ctx.workdir / "AGENTS.md").read_text(encoding="utf-8") == "SYSTEM PROMPT"
        assert invocation.argv == ["copilot", "-p", "TASK PROMPT", "--allow-tool", "shell(/opt/track)"]
        assert invocation.cwd == ctx.workdir

    def test_tool_hint_names_binary(self) -> None:
        """Subprocess agents are told which binary to run."""
        assert "`/opt/track <args>`" in ClaudeCodeRunner().tool_hint("/opt/track")

