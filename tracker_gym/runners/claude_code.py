"""Claude Code strategy: ``claude -p`` with stream-json output.

The system prompt travels as an ``--append-system-prompt`` argument and
the Bash tool is restricted to the tracker binary.
"""

from __future__ import annotations

from typing import Any

from tracker_gym.runners.base import ProviderKind, register_runner
from tracker_gym.runners.streaming import (
    AssistantText,
    AssistantTurn,
    FinalResult,
    JsonEventDecoder,
    SessionInit,
    StreamEvent,
    ToolInvocation,
    ToolResult,
    content_to_text,
)
from tracker_gym.runners.subprocess_runner import Invocation, LaunchContext, SubprocessRunner


class ClaudeStreamDecoder(JsonEventDecoder):
    """Decodes ``--output-format stream-json`` events.

    Tags: ``system`` (init), ``assistant`` (text and tool_use blocks),
    ``user`` (tool_result blocks) and ``result`` (final summary).
    """

    def decode_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        kind = obj.get("type")
        if kind == "system":
            if obj.get("subtype", "init") == "init":
                return [SessionInit(session_id=obj.get("session_id"), model=obj.get("model"))]
            return []
        if kind == "assistant":
            return self._assistant(obj.get("message") or {})
        if kind == "user":
            return self._tool_results(obj.get("message") or {})
        if kind == "result":
            usage = obj.get("usage") or {}
            return [
                FinalResult(
                    text=str(obj.get("result") or ""),
                    is_error=bool(obj.get("is_error", False)),
                    num_turns=obj.get("num_turns"),
                    input_tokens=usage.get("input_tokens"),
                    output_tokens=usage.get("output_tokens"),
                    cost_usd=obj.get("total_cost_usd"),
                )
            ]
        return []

    @staticmethod
    def _assistant(message: dict[str, Any]) -> list[StreamEvent]:
        usage = message.get("usage") or {}
        events: list[StreamEvent] = [
            AssistantTurn(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            )
        ]
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                events.append(AssistantText(block["text"]))
            elif block.get("type") == "tool_use":
                tool_input = block.get("input") or {}
                command = tool_input.get("command") if block.get("name") == "Bash" else None
                events.append(
                    ToolInvocation(
                        tool_id=str(block.get("id", "")),
                        name=str(block.get("name", "")),
                        command=command,
                    )
                )
        return events

    @staticmethod
    def _tool_results(message: dict[str, Any]) -> list[StreamEvent]:
        content = message.get("content")
        if not isinstance(content, list):
            return []
        return [
            ToolResult(
                tool_id=str(block.get("tool_use_id", "")),
                output=content_to_text(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            )
            for block in content
            if isinstance(block, dict) and block.get("type") == "tool_result"
        ]


@register_runner(ProviderKind.CLAUDE_CODE)
class ClaudeCodeRunner(SubprocessRunner):
    """Drives the Claude Code CLI."""

    binary = "claude"

    #: Built-in tools other than Bash, withheld because
    #: ``--dangerously-skip-permissions`` would otherwise let them run unprompted.
    disallowed_tools = (
        "Edit", "MultiEdit", "Write", "NotebookEdit", "Read", "Glob", "Grep", "LS",
        "WebFetch", "WebSearch", "Task",
    )

    def build_invocation(self, ctx: LaunchContext) -> Invocation:
        argv = [
            self.binary,
            "-p",
            "--output-format", "stream-json",
            "--verbose",
            "--allowedTools", f"Bash({ctx.track_bin} *)",
            "--disallowedTools", " ".join(self.disallowed_tools),
            "--append-system-prompt", ctx.system_prompt,
            "--dangerously-skip-permissions",
            "--max-turns", str(self.config.max_turns),
            "--model", self.config.model,
            ctx.task_prompt,
        ]
        return Invocation(argv=argv, cwd=ctx.workdir)

    def make_decoder(self) -> ClaudeStreamDecoder:
        return ClaudeStreamDecoder()
