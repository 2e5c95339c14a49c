"""Session runners: one in-process loop and one strategy per agent CLI.

Importing this package registers every provider with :func:`make_runner`.
"""

from tracker_gym.runners.anthropic_loop import AnthropicLoopRunner
from tracker_gym.runners.base import (
    CommandExecution,
    ProviderKind,
    SessionResult,
    SessionRunner,
    StopReason,
    Turn,
    available_providers,
    make_runner,
)
from tracker_gym.runners.claude_code import ClaudeCodeRunner
from tracker_gym.runners.copilot_cli import CopilotCliRunner
from tracker_gym.runners.gemini_cli import GeminiCliRunner

__all__ = [
    "AnthropicLoopRunner",
    "ClaudeCodeRunner",
    "CommandExecution",
    "CopilotCliRunner",
    "GeminiCliRunner",
    "ProviderKind",
    "SessionResult",
    "SessionRunner",
    "StopReason",
    "Turn",
    "available_providers",
    "make_runner",
]
