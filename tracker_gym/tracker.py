"""Tracker capability interface.

Every backend the ``track`` CLI talks to (YouTrack, Jira, GitHub, GitLab)
implements these operations. Payloads are the JSON shapes the backend
returns, so the interface stays agnostic of any one wire format. The mock
provider in :mod:`tracker_gym.mock_surface` is the only implementation
shipped here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

JsonValue = Any


class IssueTracker(ABC):
    """Issue, project, tag and link operations."""

    # -- issues ------------------------------------------------------------

    @abstractmethod
    def get_issue(self, issue_id: str) -> JsonValue: ...

    @abstractmethod
    def search_issues(self, query: str, limit: int = 20, skip: int = 0) -> JsonValue: ...

    @abstractmethod
    def create_issue(
        self,
        project: str,
        summary: str,
        description: str | None = None,
        fields: dict[str, str] | None = None,
    ) -> JsonValue: ...

    @abstractmethod
    def update_issue(self, issue_id: str, fields: dict[str, str]) -> JsonValue: ...

    @abstractmethod
    def delete_issue(self, issue_id: str) -> JsonValue: ...

    # -- projects ----------------------------------------------------------

    @abstractmethod
    def list_projects(self) -> JsonValue: ...

    @abstractmethod
    def get_project(self, project_id: str) -> JsonValue: ...

    @abstractmethod
    def create_project(self, name: str, short_name: str) -> JsonValue: ...

    @abstractmethod
    def resolve_project_id(self, identifier: str) -> JsonValue: ...

    @abstractmethod
    def get_project_custom_fields(self, project_id: str) -> JsonValue: ...

    @abstractmethod
    def list_project_users(self, project_id: str) -> JsonValue: ...

    # -- tags and links ----------------------------------------------------

    @abstractmethod
    def list_tags(self) -> JsonValue: ...

    @abstractmethod
    def list_link_types(self) -> JsonValue: ...

    @abstractmethod
    def get_issue_links(self, issue_id: str) -> JsonValue: ...

    @abstractmethod
    def link_issues(
        self,
        source: str,
        target: str,
        link_type: str,
        direction: str = "outward",
    ) -> JsonValue: ...

    @abstractmethod
    def link_subtask(self, child: str, parent: str) -> JsonValue: ...

    # -- comments ----------------------------------------------------------

    @abstractmethod
    def add_comment(self, issue_id: str, text: str) -> JsonValue: ...

    @abstractmethod
    def get_comments(self, issue_id: str) -> JsonValue: ...


class KnowledgeBase(ABC):
    """Article (wiki / knowledge base) operations."""

    @abstractmethod
    def get_article(self, article_id: str) -> JsonValue: ...

    @abstractmethod
    def list_articles(
        self,
        project_id: str | None = None,
        limit: int = 20,
        skip: int = 0,
    ) -> JsonValue: ...

    @abstractmethod
    def search_articles(self, query: str, limit: int = 20, skip: int = 0) -> JsonValue: ...

    @abstractmethod
    def create_article(self, project: str, summary: str, content: str | None = None) -> JsonValue: ...

    @abstractmethod
    def update_article(self, article_id: str, fields: dict[str, str]) -> JsonValue: ...

    @abstractmethod
    def delete_article(self, article_id: str) -> JsonValue: ...

    @abstractmethod
    def get_child_articles(self, parent_id: str) -> JsonValue: ...

    @abstractmethod
    def move_article(self, article_id: str, new_parent_id: str | None = None) -> JsonValue: ...

    @abstractmethod
    def list_article_attachments(self, article_id: str) -> JsonValue: ...

    @abstractmethod
    def get_article_comments(self, article_id: str) -> JsonValue: ...

    @abstractmethod
    def add_article_comment(self, article_id: str, text: str) -> JsonValue: ...
