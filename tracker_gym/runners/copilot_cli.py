"""GitHub Copilot CLI strategy.

Copilot discovers custom instructions from ``AGENTS.md`` in its working
directory, so the system prompt is written there and the agent runs from a
temporary directory. Its non-interactive output is plain text: shell
commands appear as ``$ <command>`` lines, with their output indented below.
"""

from __future__ import annotations

import re

from tracker_gym.runners.base import ProviderKind, register_runner
from tracker_gym.runners.streaming import (
    AssistantText,
    AssistantTurn,
    EventDecoder,
    StreamEvent,
    ToolInvocation,
    ToolResult,
)
from tracker_gym.runners.subprocess_runner import Invocation, LaunchContext, SubprocessRunner

INSTRUCTIONS_FILE = "AGENTS.md"

_ANSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_COMMAND_PREFIXES = ("$ ", "Suggestion:")
_ERROR_MARKERS = ("error:", "Error:", "✗")


class CopilotTextDecoder(EventDecoder):
    """Decodes Copilot's plain-text transcript."""

    def __init__(self) -> None:
        self._count = 0
        self._tool_id: str | None = None
        self._output: list[str] = []

    def _close_tool(self) -> list[StreamEvent]:
        if self._tool_id is None:
            return []
        output = "\n".join(self._output)
        is_error = any(line.lstrip().startswith(_ERROR_MARKERS) for line in self._output)
        event = ToolResult(tool_id=self._tool_id, output=output, is_error=is_error)
        self._tool_id, self._output = None, []
        return [event]

    def decode(self, line: str) -> list[StreamEvent]:
        line = _ANSI.sub("", line).rstrip()
        if not line.strip():
            return []

        stripped = line.strip()
        for prefix in _COMMAND_PREFIXES:
            if stripped.startswith(prefix):
                events = self._close_tool()
                self._count += 1
                self._tool_id = f"copilot-{self._count}"
                events.append(AssistantTurn())
                events.append(
                    ToolInvocation(
                        tool_id=self._tool_id,
                        name="shell",
                        command=stripped[len(prefix):].strip(),
                    )
                )
                return events

        if self._tool_id is not None and line[:1].isspace():
            self._output.append(stripped)
            return []
        return [*self._close_tool(), AssistantText(stripped)]

    def close(self) -> list[StreamEvent]:
        return self._close_tool()


@register_runner(ProviderKind.COPILOT_CLI)
class CopilotCliRunner(SubprocessRunner):
    """Drives the standalone ``copilot`` CLI."""

    binary = "copilot"
    requires_final_result = False

    def build_invocation(self, ctx: LaunchContext) -> Invocation:
        (ctx.workdir / INSTRUCTIONS_FILE).write_text(ctx.system_prompt, encoding="utf-8")
        argv = [
            self.binary,
            "-p", ctx.task_prompt,
            "--allow-tool", f"shell({ctx.track_bin})",
        ]
        return Invocation(argv=argv, cwd=ctx.workdir)

    def make_decoder(self) -> CopilotTextDecoder:
        return CopilotTextDecoder()
