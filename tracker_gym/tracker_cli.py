"""Mock ``track`` CLI.

A typer app that accepts the core ``track`` command grammar and dispatches
onto a :class:`~tracker_gym.mock_surface.MockTracker`. Agents under test
can be pointed at the ``track-mock`` console script (which reads
``TRACK_MOCK_DIR``), and the in-process runner calls :func:`run_track`
directly without spawning anything.

Usage:
    TRACK_MOCK_DIR=scenarios/basic-workflow track-mock issue get DEMO-1 -o json
"""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass, field
from typing import Annotated, Any

import click
import typer

from tracker_gym.mock_surface import MOCK_DIR_ENV, MockTracker, mock_from_env
from tracker_gym.types import ScenarioLoadError, TrackerError

ISSUE_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*-\d+$")
OUTPUT_FORMATS = ("text", "json")

EXIT_OK = 0
EXIT_TRACKER_ERROR = 1
EXIT_USAGE = 2


@dataclass
class TrackResult:
    """Outcome of one ``track`` invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == EXIT_OK

    @property
    def output(self) -> str:
        """What an agent sees: stdout on success, otherwise stderr (or stdout)."""
        if self.success:
            return self.stdout
        return self.stderr or self.stdout


@dataclass
class _Session:
    tracker: MockTracker
    output_format: str = "text"
    lines: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

_ID_KEYS = ("idReadable", "shortName", "id", "key", "name")
_TITLE_KEYS = ("summary", "name", "text", "title")


def _first(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if payload.get(key) not in (None, ""):
            return payload[key]
    return None


def _render_field(value: Any) -> str:
    if isinstance(value, dict):
        inner = _first(value, ("name", "value", "login", "text", "id"))
        return str(inner) if inner is not None else json.dumps(value)
    if isinstance(value, list):
        return ", ".join(_render_field(v) for v in value)
    return str(value)


def render_text(payload: Any) -> str:
    """Render a tracker payload as short human-readable text."""
    if isinstance(payload, list):
        if not payload:
            return "No results."
        return "\n".join(_render_line(item) for item in payload)
    if isinstance(payload, dict):
        lines = [_render_line(payload)]
        for key, value in payload.items():
            if key in ("idReadable", "summary", "$type") or value in (None, "", [], {}):
                continue
            if key == "customFields" and isinstance(value, list):
                for custom in value:
                    if isinstance(custom, dict) and custom.get("value") is not None:
                        lines.append(f"  {custom.get('name')}: {_render_field(custom['value'])}")
                continue
            lines.append(f"  {key}: {_render_field(value)}")
        return "\n".join(lines)
    if payload is None:
        return "OK"
    return str(payload)


def _render_line(item: Any) -> str:
    if not isinstance(item, dict):
        return str(item)
    ident = _first(item, _ID_KEYS)
    title = _first(item, _TITLE_KEYS)
    if ident is not None and title is not None and ident != title:
        return f"{ident}: {title}"
    return str(ident if ident is not None else title if title is not None else json.dumps(item))


def _emit(ctx: typer.Context, payload: Any) -> None:
    session: _Session = ctx.obj
    if session.output_format == "json":
        session.lines.append(json.dumps(payload, indent=2))
    else:
        session.lines.append(render_text(payload))


def _tracker(ctx: typer.Context) -> MockTracker:
    return ctx.obj.tracker


def _parse_fields(pairs: list[str] | None) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            msg = f"Expected KEY=VALUE, got '{pair}'"
            raise typer.BadParameter(msg, param_hint="--field")
        fields[key.strip()] = value.strip()
    return fields


def _collect(**named: str | None) -> dict[str, str]:
    return {key: value for key, value in named.items() if value is not None}


# ---------------------------------------------------------------------------
# App structure
# ---------------------------------------------------------------------------

track_app = typer.Typer(
    name="track",
    help="Issue tracker CLI (mock backend).",
    add_completion=False,
    rich_markup_mode=None,
)
issue_app = typer.Typer(help="Issue operations.", rich_markup_mode=None)
project_app = typer.Typer(help="Project operations.", rich_markup_mode=None)
tags_app = typer.Typer(help="Tag operations.", rich_markup_mode=None)
article_app = typer.Typer(help="Knowledge base articles.", rich_markup_mode=None)
cache_app = typer.Typer(help="Local context cache.", rich_markup_mode=None)

track_app.add_typer(issue_app, name="issue")
track_app.add_typer(issue_app, name="i", hidden=True)
track_app.add_typer(project_app, name="project")
track_app.add_typer(project_app, name="p", hidden=True)
track_app.add_typer(tags_app, name="tags")
track_app.add_typer(article_app, name="article")
track_app.add_typer(article_app, name="a", hidden=True)
track_app.add_typer(cache_app, name="cache")


def _alias(app: typer.Typer, func: Any, *names: str) -> None:
    for name in names:
        app.command(name, hidden=True)(func)


IssueId = Annotated[str, typer.Argument(help="Issue ID, e.g. DEMO-1.")]
Limit = Annotated[int, typer.Option("--limit", "-l", help="Maximum results.")]
Skip = Annotated[int, typer.Option("--skip", help="Results to skip.")]
FieldOpt = Annotated[list[str] | None, typer.Option("--field", "-f", help="Custom field KEY=VALUE.")]


# -- issue ------------------------------------------------------------------


@issue_app.command("get")
def issue_get(ctx: typer.Context, issue_id: IssueId) -> None:
    """Get an issue by ID."""
    _emit(ctx, _tracker(ctx).get_issue(issue_id))


@issue_app.command("search")
def issue_search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Search query.")],
    project: Annotated[str | None, typer.Option("--project", "-p", help="Restrict to a project.")] = None,
    limit: Limit = 20,
    skip: Skip = 0,
) -> None:
    """Search for issues."""
    if project:
        query = f"project: {project} {query}"
    _emit(ctx, _tracker(ctx).search_issues(query, limit=limit, skip=skip))


@issue_app.command("create")
def issue_create(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project short name.")],
    summary: Annotated[str, typer.Option("--summary", "-s", help="Issue summary.")],
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    state: Annotated[str | None, typer.Option("--state")] = None,
    priority: Annotated[str | None, typer.Option("--priority")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee")] = None,
    issue_type: Annotated[str | None, typer.Option("--type", "-t")] = None,
    fields: FieldOpt = None,
) -> None:
    """Create an issue."""
    extra = _collect(state=state, priority=priority, assignee=assignee, type=issue_type)
    extra.update(_parse_fields(fields))
    _emit(ctx, _tracker(ctx).create_issue(project, summary, description, extra or None))


@issue_app.command("update")
def issue_update(
    ctx: typer.Context,
    issue_id: IssueId,
    summary: Annotated[str | None, typer.Option("--summary", "-s")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    state: Annotated[str | None, typer.Option("--state")] = None,
    priority: Annotated[str | None, typer.Option("--priority")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee")] = None,
    issue_type: Annotated[str | None, typer.Option("--type", "-t")] = None,
    fields: FieldOpt = None,
) -> None:
    """Update issue fields."""
    changes = _collect(
        summary=summary, description=description, state=state,
        priority=priority, assignee=assignee, type=issue_type,
    )
    changes.update(_parse_fields(fields))
    if not changes:
        msg = "Nothing to update; pass at least one field option."
        raise typer.BadParameter(msg)
    _emit(ctx, _tracker(ctx).update_issue(issue_id, changes))


@issue_app.command("delete")
def issue_delete(ctx: typer.Context, issue_id: IssueId) -> None:
    """Delete an issue."""
    _emit(ctx, _tracker(ctx).delete_issue(issue_id))


@issue_app.command("start")
def issue_start(ctx: typer.Context, issue_id: IssueId) -> None:
    """Move an issue to In Progress."""
    _emit(ctx, _tracker(ctx).update_issue(issue_id, {"state": "In Progress"}))


@issue_app.command("complete")
def issue_complete(ctx: typer.Context, issue_id: IssueId) -> None:
    """Move an issue to Done."""
    _emit(ctx, _tracker(ctx).update_issue(issue_id, {"state": "Done"}))


@issue_app.command("comment")
def issue_comment(
    ctx: typer.Context,
    issue_id: IssueId,
    message: Annotated[str, typer.Option("--message", "-m", help="Comment text.")],
) -> None:
    """Add a comment to an issue."""
    _emit(ctx, _tracker(ctx).add_comment(issue_id, message))


@issue_app.command("comments")
def issue_comments(ctx: typer.Context, issue_id: IssueId) -> None:
    """List comments on an issue."""
    _emit(ctx, _tracker(ctx).get_comments(issue_id))


@issue_app.command("link")
def issue_link(
    ctx: typer.Context,
    source: Annotated[str, typer.Argument(help="Source issue ID.")],
    target: Annotated[str, typer.Argument(help="Target issue ID.")],
    link_type: Annotated[str, typer.Option("--type", "-t", help="Link type, or 'subtask'.")] = "Relates",
    direction: Annotated[str, typer.Option("--direction")] = "outward",
) -> None:
    """Link two issues. ``-t subtask`` makes SOURCE a subtask of TARGET."""
    if link_type.lower() in ("subtask", "subtask-of", "parent"):
        _emit(ctx, _tracker(ctx).link_subtask(source, target))
    else:
        _emit(ctx, _tracker(ctx).link_issues(source, target, link_type, direction))


@issue_app.command("links")
def issue_links(ctx: typer.Context, issue_id: IssueId) -> None:
    """List links on an issue."""
    _emit(ctx, _tracker(ctx).get_issue_links(issue_id))


@issue_app.command("link-types")
def issue_link_types(ctx: typer.Context) -> None:
    """List available link types."""
    _emit(ctx, _tracker(ctx).list_link_types())


_alias(issue_app, issue_get, "g")
_alias(issue_app, issue_search, "s", "find")
_alias(issue_app, issue_create, "new", "c")
_alias(issue_app, issue_update, "u")
_alias(issue_app, issue_delete, "rm", "del")
_alias(issue_app, issue_comment, "cmt")
_alias(issue_app, issue_complete, "done", "resolve")


# -- project ----------------------------------------------------------------


@project_app.command("list")
def project_list(ctx: typer.Context) -> None:
    """List all projects."""
    _emit(ctx, _tracker(ctx).list_projects())


@project_app.command("get")
def project_get(ctx: typer.Context, project_id: Annotated[str, typer.Argument()]) -> None:
    """Get project details."""
    _emit(ctx, _tracker(ctx).get_project(project_id))


@project_app.command("create")
def project_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Option("--name", "-n")],
    short_name: Annotated[str, typer.Option("--short-name", "-s")],
) -> None:
    """Create a project."""
    _emit(ctx, _tracker(ctx).create_project(name, short_name))


@project_app.command("fields")
def project_fields(ctx: typer.Context, project_id: Annotated[str, typer.Argument()]) -> None:
    """List custom fields for a project."""
    _emit(ctx, _tracker(ctx).get_project_custom_fields(project_id))


@project_app.command("users")
def project_users(ctx: typer.Context, project_id: Annotated[str, typer.Argument()]) -> None:
    """List users assignable in a project."""
    _emit(ctx, _tracker(ctx).list_project_users(project_id))


@project_app.command("resolve")
def project_resolve(ctx: typer.Context, identifier: Annotated[str, typer.Argument()]) -> None:
    """Resolve a project short name to its ID."""
    _emit(ctx, _tracker(ctx).resolve_project_id(identifier))


_alias(project_app, project_list, "ls")
_alias(project_app, project_fields, "f")


# -- tags -------------------------------------------------------------------


@tags_app.command("list")
def tags_list(ctx: typer.Context) -> None:
    """List all tags."""
    _emit(ctx, _tracker(ctx).list_tags())


# -- article ----------------------------------------------------------------

ArticleId = Annotated[str, typer.Argument(help="Article ID.")]


@article_app.command("get")
def article_get(ctx: typer.Context, article_id: ArticleId) -> None:
    """Get an article."""
    _emit(ctx, _tracker(ctx).get_article(article_id))


@article_app.command("list")
def article_list(
    ctx: typer.Context,
    project: Annotated[str | None, typer.Option("--project", "-p")] = None,
    limit: Limit = 20,
    skip: Skip = 0,
) -> None:
    """List articles."""
    _emit(ctx, _tracker(ctx).list_articles(project, limit=limit, skip=skip))


@article_app.command("search")
def article_search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument()],
    limit: Limit = 20,
    skip: Skip = 0,
) -> None:
    """Search articles."""
    _emit(ctx, _tracker(ctx).search_articles(query, limit=limit, skip=skip))


@article_app.command("create")
def article_create(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p")],
    summary: Annotated[str, typer.Option("--summary", "-s")],
    content: Annotated[str | None, typer.Option("--content", "-c")] = None,
) -> None:
    """Create an article."""
    _emit(ctx, _tracker(ctx).create_article(project, summary, content))


@article_app.command("update")
def article_update(
    ctx: typer.Context,
    article_id: ArticleId,
    summary: Annotated[str | None, typer.Option("--summary", "-s")] = None,
    content: Annotated[str | None, typer.Option("--content", "-c")] = None,
) -> None:
    """Update an article."""
    changes = _collect(summary=summary, content=content)
    if not changes:
        msg = "Nothing to update; pass --summary or --content."
        raise typer.BadParameter(msg)
    _emit(ctx, _tracker(ctx).update_article(article_id, changes))


@article_app.command("delete")
def article_delete(ctx: typer.Context, article_id: ArticleId) -> None:
    """Delete an article."""
    _emit(ctx, _tracker(ctx).delete_article(article_id))


@article_app.command("children")
def article_children(ctx: typer.Context, article_id: ArticleId) -> None:
    """List child articles."""
    _emit(ctx, _tracker(ctx).get_child_articles(article_id))


@article_app.command("move")
def article_move(
    ctx: typer.Context,
    article_id: ArticleId,
    parent: Annotated[str | None, typer.Option("--parent", help="New parent; omit for top level.")] = None,
) -> None:
    """Move an article under a new parent."""
    _emit(ctx, _tracker(ctx).move_article(article_id, parent))


@article_app.command("attachments")
def article_attachments(ctx: typer.Context, article_id: ArticleId) -> None:
    """List article attachments."""
    _emit(ctx, _tracker(ctx).list_article_attachments(article_id))


@article_app.command("comment")
def article_comment(
    ctx: typer.Context,
    article_id: ArticleId,
    message: Annotated[str, typer.Option("--message", "-m")],
) -> None:
    """Comment on an article."""
    _emit(ctx, _tracker(ctx).add_article_comment(article_id, message))


@article_app.command("comments")
def article_comments(ctx: typer.Context, article_id: ArticleId) -> None:
    """List article comments."""
    _emit(ctx, _tracker(ctx).get_article_comments(article_id))


# -- cache ------------------------------------------------------------------


@cache_app.command("show")
def cache_show(ctx: typer.Context) -> None:
    """Show cached tracker context (projects, fields, users)."""
    _emit(ctx, _tracker(ctx).cache_show())


@cache_app.command("refresh")
def cache_refresh(ctx: typer.Context) -> None:
    """Refresh the context cache."""
    _emit(ctx, _tracker(ctx).cache_refresh())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def split_output_flag(args: list[str]) -> tuple[list[str], str]:
    """Pull ``-o/--output FORMAT`` out of an argument list, wherever it sits."""
    remaining: list[str] = []
    output_format = "text"
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-o", "--output") and i + 1 < len(args):
            output_format = args[i + 1]
            i += 2
            continue
        if arg.startswith("--output="):
            output_format = arg.split("=", 1)[1]
        else:
            remaining.append(arg)
        i += 1
    return remaining, output_format


def _help_for(command: click.Command, args: list[str]) -> str:
    ctx = click.Context(command, info_name="track")
    for token in args:
        if token.startswith("-") or not isinstance(ctx.command, click.Group):
            break
        sub = ctx.command.get_command(ctx, token)
        if sub is None:
            break
        ctx = click.Context(sub, info_name=token, parent=ctx)
    return ctx.get_help()


def run_track(args: list[str], tracker: MockTracker) -> TrackResult:
    """Run one ``track`` command line against a mock tracker.

    Never raises for tracker or usage errors; those come back as a
    non-zero exit code with the message on stderr.
    """
    args, output_format = split_output_flag(list(args))
    if output_format not in OUTPUT_FORMATS:
        return TrackResult(EXIT_USAGE, stderr=f"Error: unknown output format '{output_format}'")
    if len(args) == 1 and ISSUE_ID_RE.match(args[0]):
        args = ["issue", "get", args[0]]

    command = typer.main.get_command(track_app)
    if not args or "--help" in args or "-h" in args:
        return TrackResult(EXIT_OK, stdout=_help_for(command, args))

    session = _Session(tracker=tracker, output_format=output_format)
    try:
        command.main(args, prog_name="track", standalone_mode=False, obj=session)
    except click.ClickException as exc:
        return TrackResult(EXIT_USAGE, stderr=f"Error: {exc.format_message()}")
    except click.exceptions.Abort:
        return TrackResult(EXIT_USAGE, stderr="Aborted.")
    except TrackerError as exc:
        return TrackResult(EXIT_TRACKER_ERROR, stderr=f"Error: {exc}")
    return TrackResult(EXIT_OK, stdout="\n".join(session.lines))


def main() -> None:
    """Console entry point for ``track-mock``."""
    try:
        tracker = mock_from_env()
    except ScenarioLoadError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        raise SystemExit(EXIT_USAGE) from exc
    if tracker is None:
        sys.stderr.write(f"Error: {MOCK_DIR_ENV} is not set; track-mock only runs against a scenario.\n")
        raise SystemExit(EXIT_USAGE)

    result = run_track(sys.argv[1:], tracker)
    if result.stdout:
        sys.stdout.write(result.stdout.rstrip("\n") + "\n")
    if result.stderr:
        sys.stderr.write(result.stderr.rstrip("\n") + "\n")
    raise SystemExit(result.exit_code)
