"""MockTracker and the call log for deterministic tracker evaluation.

The mock resolves every tracker operation against a scenario's manifest
and appends one JSON line per call to ``call_log.jsonl`` in the scenario
directory. The log is the only state that outlives a call, so several
``track-mock`` processes driven by one agent session share sequence
cursors through it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from tracker_gym.scenarios.loader import CALL_LOG_FILE, RESPONSES_DIR, load_manifest
from tracker_gym.scenarios.manifest import Manifest, ResponseMapping, request_key
from tracker_gym.tracker import IssueTracker, JsonValue, KnowledgeBase
from tracker_gym.types import (
    ErrorKind,
    OnExhausted,
    ResponseFileError,
    SequenceExhaustedError,
    TrackerApiError,
    TrackerError,
    UnmatchedCallError,
)

logger = logging.getLogger(__name__)

MOCK_DIR_ENV = "TRACK_MOCK_DIR"


# ---------------------------------------------------------------------------
# Call log
# ---------------------------------------------------------------------------


class CallLogEntry(BaseModel):
    """One immutable record in ``call_log.jsonl``."""

    seq: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    method: str
    args: dict[str, str] = Field(default_factory=dict)
    signature: str
    response_file: str | None = None
    sequence_index: int | None = None
    status: int = 200
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.error is None and self.status < 400


def read_call_log(scenario_dir: Path) -> list[CallLogEntry]:
    """Read every entry from a scenario's call log. Missing log means no calls."""
    path = Path(scenario_dir) / CALL_LOG_FILE
    if not path.exists():
        return []
    entries: list[CallLogEntry] = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if line:
                entries.append(CallLogEntry.model_validate_json(line))
    return entries


def clear_call_log(scenario_dir: Path) -> bool:
    """Delete a scenario's call log. Returns True if one existed."""
    path = Path(scenario_dir) / CALL_LOG_FILE
    if path.exists():
        path.unlink()
        return True
    return False


# ---------------------------------------------------------------------------
# Environment switch
# ---------------------------------------------------------------------------


def is_mock_enabled() -> bool:
    """Whether ``TRACK_MOCK_DIR`` points the CLI at a scenario."""
    return bool(os.environ.get(MOCK_DIR_ENV))


def get_mock_dir() -> Path | None:
    value = os.environ.get(MOCK_DIR_ENV)
    return Path(value) if value else None


def mock_from_env() -> MockTracker | None:
    """Build a MockTracker rooted at ``TRACK_MOCK_DIR``, or None when unset."""
    directory = get_mock_dir()
    if directory is None:
        return None
    return MockTracker(directory)


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------


class MockTracker(IssueTracker, KnowledgeBase):
    """Manifest-driven stand-in for every tracker backend.

    Every operation funnels into :meth:`call`, which resolves the first
    matching manifest mapping, reads the canned response and logs the call
    on every path, success or failure.
    """

    def __init__(self, scenario_dir: Path, manifest: Manifest | None = None) -> None:
        self._dir = Path(scenario_dir)
        self._manifest = manifest if manifest is not None else load_manifest(self._dir)
        self._log_path = self._dir / CALL_LOG_FILE
        self._lock = threading.Lock()
        self._call_counts: dict[str, int] = {}
        self._next_seq = 0
        self._replay_log()

    @property
    def scenario_dir(self) -> Path:
        return self._dir

    @property
    def manifest(self) -> Manifest:
        return self._manifest

    def _replay_log(self) -> None:
        """Rebuild sequence cursors from calls already in the log."""
        for entry in read_call_log(self._dir):
            if entry.sequence_index is not None:
                self._call_counts[entry.signature] = self._call_counts.get(entry.signature, 0) + 1
            self._next_seq = entry.seq + 1

    # -- core dispatch ------------------------------------------------------

    def call(self, method: str, args: dict[str, Any] | None = None, body: str | None = None) -> JsonValue:
        """Resolve one tracker call against the manifest.

        Args:
            method: Capability method name (e.g. 'get_issue').
            args: Call arguments. Values are stringified; None values dropped.
            body: Request body, matched by ``when.body_contains``.

        Returns:
            The parsed JSON payload of the matched response file.

        Raises:
            UnmatchedCallError: No mapping matches the call.
            SequenceExhaustedError: A sequence ran out under the error policy.
            ResponseFileError: The response file is missing or not JSON.
            TrackerApiError: The mapping injects an error status.
        """
        str_args = {key: str(value) for key, value in (args or {}).items() if value is not None}
        signature = request_key(method, str_args)
        started = time.monotonic()

        with self._lock:
            mapping = self._manifest.find(method, str_args, body)
            response_file: str | None = None
            sequence_index: int | None = None
            status = 200
            try:
                if mapping is None:
                    raise UnmatchedCallError(method, signature)
                status = mapping.status
                response_file, sequence_index = self._select_file(mapping, signature)
                if mapping.delay_ms:
                    time.sleep(mapping.delay_ms / 1000)
                payload = self._read_response(response_file)
                if status >= 400:
                    message = f"HTTP {status}"
                    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
                        message = payload["message"]
                    raise TrackerApiError(status, message)
            except TrackerError as exc:
                self._append(
                    method, str_args, signature, response_file, sequence_index,
                    status=exc.status,
                    error=str(exc), error_kind=exc.kind, started=started,
                )
                logger.debug("Mock call failed: %s -> %s", signature, exc)
                raise

            self._append(
                method, str_args, signature, response_file, sequence_index,
                status=status, error=None, error_kind=None, started=started,
            )
            logger.debug("Mock call: %s -> %s", signature, response_file)
            return payload

    def _select_file(self, mapping: ResponseMapping, signature: str) -> tuple[str, int | None]:
        if mapping.sequence is None:
            assert mapping.file is not None
            return mapping.file, None

        length = len(mapping.sequence)
        count = self._call_counts.get(signature, 0)
        self._call_counts[signature] = count + 1
        if count < length:
            return mapping.sequence[count], count

        policy = mapping.exhaustion_policy
        if policy is OnExhausted.CYCLE:
            index = count % length
            return mapping.sequence[index], index
        if policy is OnExhausted.REPEAT_LAST:
            return mapping.sequence[-1], length - 1
        raise SequenceExhaustedError(signature, length)

    def _read_response(self, name: str) -> JsonValue:
        path = self._dir / RESPONSES_DIR / name
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except OSError as exc:
            raise ResponseFileError(path, exc.strerror or str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise ResponseFileError(path, str(exc)) from exc

    def _append(
        self,
        method: str,
        args: dict[str, str],
        signature: str,
        response_file: str | None,
        sequence_index: int | None,
        *,
        status: int,
        error: str | None,
        error_kind: ErrorKind | None,
        started: float,
    ) -> None:
        entry = CallLogEntry(
            seq=self._next_seq,
            method=method,
            args=args,
            signature=signature,
            response_file=response_file,
            sequence_index=sequence_index,
            status=status,
            error=error,
            error_kind=error_kind,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        self._next_seq += 1
        with open(self._log_path, "a", encoding="utf-8") as fh:
            fh.write(entry.model_dump_json() + "\n")
            fh.flush()

    # -- IssueTracker -------------------------------------------------------

    def get_issue(self, issue_id: str) -> JsonValue:
        return self.call("get_issue", {"id": issue_id})

    def search_issues(self, query: str, limit: int = 20, skip: int = 0) -> JsonValue:
        return self.call("search_issues", {"query": query, "limit": limit, "skip": skip})

    def create_issue(
        self,
        project: str,
        summary: str,
        description: str | None = None,
        fields: dict[str, str] | None = None,
    ) -> JsonValue:
        args: dict[str, Any] = {"project": project, "summary": summary}
        args.update(fields or {})
        body = json.dumps({"summary": summary, "description": description, **(fields or {})})
        return self.call("create_issue", args, body=body)

    def update_issue(self, issue_id: str, fields: dict[str, str]) -> JsonValue:
        return self.call("update_issue", {**fields, "id": issue_id}, body=json.dumps(fields))

    def delete_issue(self, issue_id: str) -> JsonValue:
        return self.call("delete_issue", {"id": issue_id})

    def list_projects(self) -> JsonValue:
        return self.call("list_projects")

    def get_project(self, project_id: str) -> JsonValue:
        return self.call("get_project", {"id": project_id})

    def create_project(self, name: str, short_name: str) -> JsonValue:
        return self.call("create_project", {"name": name, "short_name": short_name})

    def resolve_project_id(self, identifier: str) -> JsonValue:
        return self.call("resolve_project_id", {"identifier": identifier})

    def get_project_custom_fields(self, project_id: str) -> JsonValue:
        return self.call("get_project_custom_fields", {"project_id": project_id})

    def list_project_users(self, project_id: str) -> JsonValue:
        return self.call("list_project_users", {"project_id": project_id})

    def list_tags(self) -> JsonValue:
        return self.call("list_tags")

    def list_link_types(self) -> JsonValue:
        return self.call("list_link_types")

    def get_issue_links(self, issue_id: str) -> JsonValue:
        return self.call("get_issue_links", {"issue_id": issue_id})

    def link_issues(
        self,
        source: str,
        target: str,
        link_type: str,
        direction: str = "outward",
    ) -> JsonValue:
        return self.call(
            "link_issues",
            {"source": source, "target": target, "link_type": link_type, "direction": direction},
        )

    def link_subtask(self, child: str, parent: str) -> JsonValue:
        return self.call("link_subtask", {"child": child, "parent": parent})

    def add_comment(self, issue_id: str, text: str) -> JsonValue:
        return self.call("add_comment", {"issue_id": issue_id, "text": text}, body=text)

    def get_comments(self, issue_id: str) -> JsonValue:
        return self.call("get_comments", {"issue_id": issue_id})

    # -- KnowledgeBase ------------------------------------------------------

    def get_article(self, article_id: str) -> JsonValue:
        return self.call("get_article", {"id": article_id})

    def list_articles(
        self,
        project_id: str | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> JsonValue:
        return self.call("list_articles", {"project_id": project_id, "limit": limit, "skip": skip})

    def search_articles(self, query: str, limit: int = 20, skip: int = 0) -> JsonValue:
        return self.call("search_articles", {"query": query, "limit": limit, "skip": skip})

    def create_article(self, project: str, summary: str, content: str | None = None) -> JsonValue:
        body = json.dumps({"summary": summary, "content": content})
        return self.call("create_article", {"project": project, "summary": summary}, body=body)

    def update_article(self, article_id: str, fields: dict[str, str]) -> JsonValue:
        return self.call("update_article", {**fields, "id": article_id}, body=json.dumps(fields))

    def delete_article(self, article_id: str) -> JsonValue:
        return self.call("delete_article", {"id": article_id})

    def get_child_articles(self, parent_id: str) -> JsonValue:
        return self.call("get_child_articles", {"parent_id": parent_id})

    def move_article(self, article_id: str, new_parent_id: str | None = None) -> JsonValue:
        return self.call("move_article", {"article_id": article_id, "new_parent_id": new_parent_id})

    def list_article_attachments(self, article_id: str) -> JsonValue:
        return self.call("list_article_attachments", {"article_id": article_id})

    def get_article_comments(self, article_id: str) -> JsonValue:
        return self.call("get_article_comments", {"article_id": article_id})

    def add_article_comment(self, article_id: str, text: str) -> JsonValue:
        return self.call("add_article_comment", {"article_id": article_id, "text": text}, body=text)

    # -- cache --------------------------------------------------------------

    def cache_show(self) -> JsonValue:
        return self.call("cache_show")

    def cache_refresh(self) -> JsonValue:
        return self.call("cache_refresh")
