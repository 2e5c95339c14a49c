"""System and task prompts handed to the agent under evaluation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tracker_gym.scenarios.schema import Scenario

logger = logging.getLogger(__name__)

AGENT_GUIDE_ENV = "TRACK_AGENT_GUIDE"
AGENT_GUIDE_PATH = Path("agent-skills") / "SKILL.md"

QUICK_REFERENCE = """## Track CLI Quick Reference

```
track issue get <ID>              # Get issue details
track issue search <query>        # Search issues
track issue create -p <proj> -s <summary>
track issue update <ID> [--state <state>] [--summary <summary>]
track issue comment <ID> -m <message>
track issue comments <ID>         # List comments
track project list                # List projects
track project fields <ID>         # List custom fields
track cache show                  # Cached projects, fields and users
```
"""


@dataclass
class AgentGuide:
    """The agent-facing usage guide for ``track``, front matter split off."""

    path: Path
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML front matter from a markdown document.

    Returns (frontmatter_dict, body_text). Documents without front matter,
    or with front matter that is not valid YAML, come back unchanged.
    """
    if not content.startswith("---"):
        return {}, content

    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}, content

    try:
        meta = yaml.safe_load(parts[1]) or {}
    except yaml.YAMLError:
        logger.warning("Ignoring malformed front matter in agent guide")
        return {}, content
    if not isinstance(meta, dict):
        meta = {}
    return meta, parts[2].lstrip()


def find_agent_guide(start: Path | None = None) -> Path | None:
    """Locate the agent guide.

    ``TRACK_AGENT_GUIDE`` wins; otherwise ``agent-skills/SKILL.md`` is looked
    up in ``start`` (default: cwd) and up to two parent directories.
    """
    from_env = os.environ.get(AGENT_GUIDE_ENV)
    if from_env:
        path = Path(from_env)
        return path if path.is_file() else None

    base = (start or Path.cwd()).resolve()
    for directory in [base, *base.parents][:3]:
        candidate = directory / AGENT_GUIDE_PATH
        if candidate.is_file():
            return candidate
    return None


def load_agent_guide(path: Path | None = None) -> AgentGuide | None:
    """Load and split the agent guide, or None when there is none."""
    path = path or find_agent_guide()
    if path is None:
        return None
    content = path.read_text(encoding="utf-8")
    meta, body = parse_frontmatter(content)
    logger.debug("Loaded agent guide from %s", path)
    return AgentGuide(path=path, body=body, metadata=meta)


def build_system_prompt(scenario: Scenario, guide: AgentGuide | None = None, tool_hint: str | None = None) -> str:
    """Build the evaluation-mode system prompt for a scenario.

    Args:
        scenario: The scenario being run.
        guide: Agent guide to embed; the quick reference is used without one.
        tool_hint: How the agent invokes the CLI, when it is not the
            ``track`` tool (e.g. a shell command path for subprocess agents).
    """
    how = tool_hint or "Use the `track` tool to execute CLI commands"
    parts = [
        "# Evaluation Mode\n\n",
        "You are an AI agent being evaluated on your ability to use the `track` "
        "CLI tool efficiently and correctly.\n\n",
        "## Guidelines\n\n",
        f"1. {how}\n",
        "2. Be efficient - minimize the number of commands you use\n",
        "3. Parse command output to inform your next actions\n",
        "4. When you've completed the task, simply respond with a summary (no more tool calls)\n",
        "5. Use -o json for output you need to parse programmatically\n\n",
    ]

    if guide is not None:
        parts.append(f"---\n\n{guide.body.rstrip()}\n\n---\n\n")
    else:
        parts.append(QUICK_REFERENCE + "\n")

    if scenario.setup.default_project:
        parts.append(f"## Default Project\n\n{scenario.setup.default_project}\n\n")
    if scenario.setup.context:
        parts.append(f"## Context\n\n{scenario.setup.context.strip()}\n\n")

    parts.append(
        "Remember: You are being evaluated on both correctness AND efficiency. "
        "Complete the task with as few commands as possible while ensuring all "
        "requirements are met."
    )
    return "".join(parts)


def build_task_prompt(scenario: Scenario) -> str:
    """The first user message: the scenario task."""
    return (
        f"## Your Task\n\n{scenario.prompt.strip()}\n\n"
        "Please complete this task using the track CLI tool."
    )
