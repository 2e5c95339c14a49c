"""In-process loop strategy: owns the conversation with the Messages API.

The model is offered one tool, ``track``. Each tool_use block is executed
synchronously in the order requested and answered with exactly one
tool_result, so the model never sees results out of order.
"""

from __future__ import annotations

import logging
import os
import time
from typing import TYPE_CHECKING, Any

import anthropic

from tracker_gym.commands import (
    TRACK_TOOL_NAME,
    CommandExecutor,
    make_executor,
    parse_tool_input,
    track_tool_definition,
)
from tracker_gym.prompts import build_system_prompt, build_task_prompt, load_agent_guide
from tracker_gym.runners.base import (
    CommandExecution,
    ProviderKind,
    SessionResult,
    SessionRunner,
    StopReason,
    Turn,
    register_runner,
)
from tracker_gym.types import AgentTransportError, RunConfig

if TYPE_CHECKING:
    from tracker_gym.scenarios.loader import ScenarioBundle

logger = logging.getLogger(__name__)

API_KEY_ENV = "ANTHROPIC_API_KEY"
VERBOSE_OUTPUT_CHARS = 500


def _block_to_dict(block: Any) -> dict[str, Any]:
    """Convert an SDK content block into a plain request dict."""
    block_type = getattr(block, "type", None)
    if block_type == "text":
        return {"type": "text", "text": block.text}
    if block_type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if hasattr(block, "model_dump"):
        return block.model_dump(exclude_none=True)
    msg = f"Unsupported content block: {block!r}"
    raise AgentTransportError(msg)


def _tool_result(tool_use_id: str, content: str, is_error: bool) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
        "is_error": is_error,
    }


@register_runner(ProviderKind.ANTHROPIC)
class AnthropicLoopRunner(SessionRunner):
    """Runs the agentic loop against the Anthropic Messages API."""

    def __init__(
        self,
        config: RunConfig | None = None,
        client: Any = None,
        executor_factory: Any = None,
    ) -> None:
        super().__init__(config)
        if client is None:
            api_key = self.config.api_key or os.environ.get(API_KEY_ENV)
            if not api_key:
                msg = (
                    "The anthropic provider requires ANTHROPIC_API_KEY. "
                    "Pass --api-key or set the environment variable."
                )
                raise ValueError(msg)
            client = anthropic.Anthropic(api_key=api_key)
        self._client = client
        self._executor_factory = executor_factory or make_executor

    def run(self, bundle: ScenarioBundle) -> SessionResult:
        started = time.monotonic()
        executor: CommandExecutor = self._executor_factory(bundle.path, self.config.track_bin)
        system = build_system_prompt(bundle.scenario, load_agent_guide())
        messages: list[dict[str, Any]] = [
            {"role": "user", "content": build_task_prompt(bundle.scenario)}
        ]
        tools = [track_tool_definition()]

        result = SessionResult(provider=self.kind, stop_reason=StopReason.MAX_TURNS)
        logger.info(
            "Starting session for %s (model=%s, max_turns=%d)",
            bundle.name, self.config.model, self.config.max_turns,
        )

        for index in range(1, self.config.max_turns + 1):
            response = self._send(system, messages, tools)
            turn = Turn(
                index=index,
                stop_reason=response.stop_reason,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            result.turns.append(turn)
            result.input_tokens += turn.input_tokens
            result.output_tokens += turn.output_tokens

            tool_results: list[dict[str, Any]] = []
            texts: list[str] = []
            for block in response.content:
                if block.type == "text":
                    texts.append(block.text)
                    logger.info("Agent: %s", block.text)
                elif block.type == "tool_use":
                    turn.tool_calls += 1
                    tool_results.append(self._execute(block, executor, result))

            turn.text = "\n".join(texts)
            if texts:
                result.final_text = turn.text
            messages.append(
                {"role": "assistant", "content": [_block_to_dict(b) for b in response.content]}
            )

            if response.stop_reason == "end_turn":
                result.stop_reason = StopReason.END_TURN
                logger.info("Agent finished (end_turn)")
                break
            if not tool_results:
                result.stop_reason = StopReason.STALLED
                logger.warning("No tool use in response, stop_reason: %s", response.stop_reason)
                break
            messages.append({"role": "user", "content": tool_results})
        else:
            logger.warning("Maximum turns (%d) reached", self.config.max_turns)

        result.duration_s = time.monotonic() - started
        logger.info(
            "Tokens used: %d input, %d output", result.input_tokens, result.output_tokens
        )
        return result

    def _send(self, system: str, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> Any:
        try:
            return self._client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                system=system,
                messages=messages,
                tools=tools,
            )
        except anthropic.APIError as exc:
            msg = f"Anthropic API request failed: {exc}"
            raise AgentTransportError(msg) from exc

    def _execute(self, block: Any, executor: CommandExecutor, result: SessionResult) -> dict[str, Any]:
        if block.name != TRACK_TOOL_NAME:
            logger.warning("Agent requested unknown tool %s", block.name)
            return _tool_result(block.id, f"Unknown tool: {block.name}", True)
        try:
            args = parse_tool_input(block.input)
        except ValueError as exc:
            logger.warning("Invalid tool input: %s", exc)
            return _tool_result(block.id, f"Invalid input: {exc}", True)

        logger.info("Executing: track %s", " ".join(args))
        outcome = executor.execute(args)
        output = outcome.output
        is_error = not outcome.success
        if is_error:
            logger.info("Error: %s", output.strip())
        else:
            shown = output if len(output) <= VERBOSE_OUTPUT_CHARS else output[:VERBOSE_OUTPUT_CHARS] + "..."
            logger.debug("Output: %s", shown.strip())

        result.commands.append(CommandExecution(args=args, output=output, is_error=is_error))
        return _tool_result(block.id, output or "(no output)", is_error)
