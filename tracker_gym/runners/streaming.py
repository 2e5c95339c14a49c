"""Streaming event model for subprocess agents.

External agent CLIs print one tagged JSON object per line. Each provider
decodes its own tags into the small set of events below; the subprocess
runner consumes them lazily, one line at a time.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MAX_PENDING_CHARS = 1_000_000


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StreamEvent:
    """Base class for decoded stream events."""


@dataclass(frozen=True)
class SessionInit(StreamEvent):
    session_id: str | None = None
    model: str | None = None


@dataclass(frozen=True)
class AssistantTurn(StreamEvent):
    """Marks the start of one assistant message (one turn)."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class AssistantText(StreamEvent):
    text: str


@dataclass(frozen=True)
class ToolInvocation(StreamEvent):
    """The agent asked to run a tool. ``command`` is set for shell tools."""

    tool_id: str
    name: str
    command: str | None = None


@dataclass(frozen=True)
class ToolResult(StreamEvent):
    tool_id: str
    output: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class FinalResult(StreamEvent):
    """The agent's closing summary event."""

    text: str = ""
    is_error: bool = False
    num_turns: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cost_usd: float | None = None


# ---------------------------------------------------------------------------
# Line decoding
# ---------------------------------------------------------------------------


def _try_parse(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class JsonLineDecoder:
    """Turns raw stdout text into JSON objects.

    Tolerates blank lines and non-JSON noise (skipped), objects split over
    several lines (buffered until they parse), and complete objects that
    arrive while a fragment is still pending (emitted immediately).
    """

    def __init__(self) -> None:
        self._partial_line = ""
        self._pending = ""
        self.skipped_lines = 0

    @property
    def has_pending(self) -> bool:
        return bool(self._pending or self._partial_line.strip())

    def feed(self, chunk: str) -> Iterator[dict[str, Any]]:
        """Decode a raw chunk that may end mid-line."""
        data = self._partial_line + chunk
        *lines, self._partial_line = data.split("\n")
        for line in lines:
            yield from self.decode_line(line)

    def decode_line(self, line: str) -> Iterator[dict[str, Any]]:
        """Decode one complete line."""
        line = line.strip()
        if not line:
            return

        if self._pending:
            joined = self._pending + line
            obj = _try_parse(joined)
            if obj is not None:
                self._pending = ""
                yield obj
                return
            obj = _try_parse(line)
            if obj is not None:
                yield obj
                return
            if line.startswith("{"):
                # A new object began; the old fragment will never complete.
                logger.debug("Dropping unterminated fragment (%d chars)", len(self._pending))
                self.skipped_lines += 1
                self._pending = line
                return
            if len(joined) > MAX_PENDING_CHARS:
                logger.warning("Dropping %d chars of undecodable stream output", len(joined))
                self._pending = ""
                self.skipped_lines += 1
                return
            self._pending = joined
            return

        if not line.startswith("{"):
            logger.debug("Skipping non-JSON stream line: %.120s", line)
            self.skipped_lines += 1
            return

        obj = _try_parse(line)
        if obj is not None:
            yield obj
            return
        self._pending = line

    def close(self) -> Iterator[dict[str, Any]]:
        """Flush a trailing line that had no newline."""
        if self._partial_line:
            line, self._partial_line = self._partial_line, ""
            yield from self.decode_line(line)
        if self._pending:
            logger.warning("Stream ended inside a JSON object (%d chars)", len(self._pending))


class EventDecoder(ABC):
    """Provider-specific mapping from stdout lines to stream events."""

    @abstractmethod
    def decode(self, line: str) -> list[StreamEvent]:
        """Decode one stdout line into zero or more events."""

    def close(self) -> list[StreamEvent]:
        """Events still buffered when the stream ends."""
        return []


class JsonEventDecoder(EventDecoder):
    """Base for providers emitting one tagged JSON object per line."""

    def __init__(self) -> None:
        self._lines = JsonLineDecoder()

    def decode(self, line: str) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for obj in self._lines.decode_line(line):
            events.extend(self.decode_object(obj))
        return events

    def close(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for obj in self._lines.close():
            events.extend(self.decode_object(obj))
        return events

    @abstractmethod
    def decode_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        """Map one decoded JSON object to events. Unknown tags map to nothing."""


def content_to_text(content: Any) -> str:
    """Flatten tool_result content (string or list of text blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return "" if content is None else str(content)
