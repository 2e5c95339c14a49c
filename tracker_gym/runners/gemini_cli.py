"""Gemini CLI strategy: ``gemini -p`` with stream-json output.

The system prompt is written to a temporary markdown file announced via
``GEMINI_SYSTEM_MD``. Only ``run_shell_command`` on the tracker binary is
pre-approved; in non-interactive mode anything else is refused.
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

SYSTEM_MD_ENV = "GEMINI_SYSTEM_MD"
SHELL_TOOL = "run_shell_command"


class GeminiStreamDecoder(JsonEventDecoder):
    """Decodes Gemini ``stream-json`` events.

    Tags: ``init``, ``message`` (possibly streamed as deltas), ``tool_use``,
    ``tool_result`` and ``result``. A turn opens with the first assistant
    output after a tool result and closes at the next tool result.
    """

    def __init__(self) -> None:
        super().__init__()
        self._in_turn = False
        self._text: list[str] = []

    def _open_turn(self) -> list[StreamEvent]:
        if self._in_turn:
            return []
        self._in_turn = True
        return [AssistantTurn()]

    def _flush_text(self) -> list[StreamEvent]:
        if not self._text:
            return []
        text, self._text = "".join(self._text), []
        return [AssistantText(text)]

    def decode_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        kind = obj.get("type")
        if kind == "init":
            return [SessionInit(session_id=obj.get("session_id"), model=obj.get("model"))]

        if kind == "message":
            if obj.get("role") != "assistant":
                return []
            events = self._open_turn()
            self._text.append(str(obj.get("content") or ""))
            if not obj.get("delta"):
                events.extend(self._flush_text())
            return events

        if kind == "tool_use":
            events = self._open_turn() + self._flush_text()
            params = obj.get("parameters") or {}
            name = str(obj.get("tool_name", ""))
            events.append(
                ToolInvocation(
                    tool_id=str(obj.get("tool_id", "")),
                    name=name,
                    command=params.get("command") if name == SHELL_TOOL else None,
                )
            )
            return events

        if kind == "tool_result":
            self._in_turn = False
            output = obj.get("output")
            if output is None and isinstance(obj.get("error"), dict):
                output = obj["error"].get("message")
            return [
                ToolResult(
                    tool_id=str(obj.get("tool_id", "")),
                    output=content_to_text(output),
                    is_error=obj.get("status") != "success",
                )
            ]

        if kind == "result":
            events = self._flush_text()
            stats = obj.get("stats") or {}
            error = obj.get("error") if isinstance(obj.get("error"), dict) else {}
            events.append(
                FinalResult(
                    text=str(error.get("message", "")) if error else "",
                    is_error=obj.get("status") not in (None, "success"),
                    input_tokens=stats.get("input_tokens"),
                    output_tokens=stats.get("output_tokens"),
                )
            )
            return events
        return []

    def close(self) -> list[StreamEvent]:
        return super().close() + self._flush_text()


@register_runner(ProviderKind.GEMINI_CLI)
class GeminiCliRunner(SubprocessRunner):
    """Drives the Gemini CLI."""

    binary = "gemini"

    def build_invocation(self, ctx: LaunchContext) -> Invocation:
        system_md = ctx.workdir / "system.md"
        system_md.write_text(ctx.system_prompt, encoding="utf-8")
        argv = [
            self.binary,
            "--output-format", "stream-json",
            "--model", self._model(),
            "--allowed-tools", f"{SHELL_TOOL}({ctx.track_bin})",
            "-p", ctx.task_prompt,
        ]
        return Invocation(argv=argv, env={SYSTEM_MD_ENV: str(system_md)}, cwd=ctx.workdir)

    def _model(self) -> str:
        # Claude model ids are not valid here.
        if self.config.model.startswith("claude"):
            return "gemini-2.5-pro"
        return self.config.model

    def make_decoder(self) -> GeminiStreamDecoder:
        return GeminiStreamDecoder()
