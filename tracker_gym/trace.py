"""Command trace reconstruction for agent sessions.

Subprocess agents run shell commands we never see directly. This module
picks the tracker invocations out of those command strings and keeps an
ordered, diagnostic-only trace of what the agent attempted. Scoring always
uses the call log instead.
"""

from __future__ import annotations

import os
import re
import shlex
import time
from dataclasses import dataclass, field

# Tokens that end one simple command inside a shell line.
SHELL_SEPARATORS = frozenset({"&&", "||", ";", "|", "&"})

# Binary basenames treated as the tracker CLI.
TRACK_BINARIES = frozenset({"track", "track-mock"})

_REDIRECT = re.compile(r"^\d*(>>?|<)$")


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------


@dataclass
class TraceEntry:
    """One tracker command the agent attempted."""

    step: int
    args: list[str]
    raw: str
    success: bool | None = None
    output: str = ""
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def command(self) -> str:
        return shlex.join(["track", *self.args])


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _split(command: str) -> list[str]:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    try:
        return list(lexer)
    except ValueError:
        # Unbalanced quotes; fall back to whitespace.
        return command.split()


def _is_track_token(token: str, track_bin: str | None) -> bool:
    if track_bin and token == track_bin:
        return True
    return os.path.basename(token) in TRACK_BINARIES


def extract_track_commands(command: str, track_bin: str | None = None) -> list[list[str]]:
    """Return the argument lists of every tracker invocation in a shell line.

    ``TRACK_MOCK_DIR=x track issue get A-1 && track issue comments A-1``
    yields ``[["issue", "get", "A-1"], ["issue", "comments", "A-1"]]``.
    Leading ``VAR=value`` assignments are skipped.
    """
    found: list[list[str]] = []
    segment: list[str] = []
    tokens = [*_split(command), ";"]
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if _REDIRECT.match(token):
            # skip the target, including the "&1" of "2>&1"
            if i < len(tokens) and tokens[i] == "&":
                i += 1
            i += 1
            continue
        if token in SHELL_SEPARATORS:
            while segment and "=" in segment[0] and not segment[0].startswith("-"):
                segment.pop(0)
            if segment and _is_track_token(segment[0], track_bin):
                found.append(segment[1:])
            segment = []
        else:
            segment.append(token)
    return found


def is_track_command(command: str, track_bin: str | None = None) -> bool:
    """Whether a shell line invokes the tracker CLI at least once."""
    return bool(extract_track_commands(command, track_bin))


# ---------------------------------------------------------------------------
# Trace logger
# ---------------------------------------------------------------------------


class TraceLogger:
    """Accumulates TraceEntry records for one session."""

    def __init__(self, track_bin: str | None = None) -> None:
        self._track_bin = track_bin
        self._entries: list[TraceEntry] = []

    def record_shell(self, command: str) -> list[TraceEntry]:
        """Record every tracker invocation found in a shell command line.

        Returns:
            The entries added (empty when the line runs no tracker command).
        """
        added = []
        for args in extract_track_commands(command, self._track_bin):
            entry = TraceEntry(step=len(self._entries) + 1, args=args, raw=command)
            self._entries.append(entry)
            added.append(entry)
        return added

    def record_args(self, args: list[str], success: bool, output: str = "") -> TraceEntry:
        """Record an invocation whose argument list is already known."""
        entry = TraceEntry(
            step=len(self._entries) + 1,
            args=list(args),
            raw=shlex.join(["track", *args]),
            success=success,
            output=output,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> list[TraceEntry]:
        return list(self._entries)

    def commands(self) -> list[str]:
        """Ordered ``track ...`` strings of every recorded invocation."""
        return [e.command for e in self._entries]
