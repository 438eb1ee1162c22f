"""Compose GitHub records into Graph external items.

Pure functions: no I/O. The sync pipeline fetches issues, repositories,
events and content, then hands them here to build the ExternalItem that is
upserted into the connection.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any

import markdown
from bs4 import BeautifulSoup

from graph_connector.graph.models import (
    Acl,
    ActivityType,
    ExternalActivity,
    ExternalItem,
    ExternalItemContent,
    Identity,
)
from graph_connector.graph.schemas import GITHUB_ICON_URL

EVERYONE_ACL = Acl(type="everyone", value="everyone", access_type="grant")

NONE_VALUE = "None"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # GitHub timestamps are ISO 8601 with a trailing Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _login(user: dict[str, Any] | None) -> str | None:
    if not user:
        return None
    return user.get("login")


def _event_actor(event: dict[str, Any]) -> str | None:
    # Comment timeline entries carry "user" instead of "actor"
    return _login(event.get("actor")) or _login(event.get("user"))


def _join_logins(users: list[dict[str, Any]] | None) -> str:
    logins = [u["login"] for u in users or [] if u.get("login")]
    return ", ".join(logins) if logins else NONE_VALUE


def _join_labels(labels: list[dict[str, Any]] | None) -> str:
    names = [label["name"] for label in labels or [] if label.get("name")]
    return ", ".join(names) if names else NONE_VALUE


def is_pull_request(issue: dict[str, Any]) -> bool:
    """The Issues API lists pull requests too; they carry a pull_request key."""
    return "pull_request" in issue


def issue_properties(issue: dict[str, Any], events: list[dict[str, Any]]) -> dict[str, Any]:
    """Schema properties for an issue.

    ``lastModifiedBy`` is the actor of the most recent timeline event
    (timeline entries are oldest first), falling back to the issue author.
    """
    last_modified_by = None
    if events:
        last_modified_by = _event_actor(events[-1])
    if not last_modified_by:
        last_modified_by = _login(issue.get("user"))

    return {
        "title": issue.get("title") or "",
        "body": issue.get("body") or "",
        "assignees": _join_logins(issue.get("assignees")),
        "labels": _join_labels(issue.get("labels")),
        "state": issue.get("state") or "",
        "issueUrl": issue.get("html_url") or "",
        "icon": GITHUB_ICON_URL,
        "updatedAt": issue.get("updated_at"),
        "lastModifiedBy": last_modified_by or "",
    }


def repo_properties(repo: dict[str, Any], events: list[dict[str, Any]]) -> dict[str, Any]:
    """Schema properties for a repository.

    Repository events are newest first, so ``lastModifiedBy`` is the actor
    of the first event, falling back to the owner.
    """
    owner = repo.get("owner") or {}
    last_modified_by = _event_actor(events[0]) if events else None

    return {
        "title": repo.get("name") or "",
        "description": repo.get("description") or "",
        "visibility": repo.get("visibility") or ("private" if repo.get("private") else "public"),
        "createdBy": owner.get("login") or "",
        "updatedAt": repo.get("updated_at"),
        "lastModifiedBy": last_modified_by or owner.get("login") or "",
        "repoUrl": repo.get("html_url") or "",
        "userUrl": owner.get("html_url") or "",
        "icon": GITHUB_ICON_URL,
    }


def created_activity(created_at: str | None, performed_by: Identity) -> list[ExternalActivity]:
    """The ``created`` activity attached to every new item."""
    started = _parse_timestamp(created_at) or datetime.now(timezone.utc)
    return [
        ExternalActivity(
            type=ActivityType.CREATED,
            start_date_time=started,
            performed_by=performed_by,
        )
    ]


def events_to_activities(
    events: list[dict[str, Any]], performed_by: Identity
) -> list[ExternalActivity]:
    """Map issue timeline events to activities.

    ``commented`` events become comment activities, everything else is a
    modification. Entries without a timestamp (e.g. commits) are skipped.
    """
    activities = []
    for event in events:
        started = _parse_timestamp(event.get("created_at"))
        if started is None:
            continue
        kind = (
            ActivityType.COMMENTED if event.get("event") == "commented" else ActivityType.MODIFIED
        )
        activities.append(
            ExternalActivity(type=kind, start_date_time=started, performed_by=performed_by)
        )
    return activities


def issue_to_item(
    issue: dict[str, Any],
    events: list[dict[str, Any]],
    performed_by: Identity,
    html_content: str | None = None,
) -> ExternalItem:
    """Build the external item for an issue, keyed by issue number."""
    content = None
    if html_content:
        content = ExternalItemContent(type="html", value=html_content)

    return ExternalItem(
        id=str(issue["number"]),
        acl=[EVERYONE_ACL],
        properties=issue_properties(issue, events),
        content=content,
        activities=created_activity(issue.get("created_at"), performed_by),
    )


def repo_to_item(
    repo: dict[str, Any],
    events: list[dict[str, Any]],
    performed_by: Identity,
    readme: str | None = None,
) -> ExternalItem:
    """Build the external item for a repository, keyed by repository ID.

    Public repositories are indexed with their README as plain text; private
    ones (or public ones without a README) with their JSON representation.
    """
    if readme and not repo.get("private"):
        text = markdown_to_text(readme)
    else:
        text = json.dumps(repo, sort_keys=True)

    return ExternalItem(
        id=str(repo["id"]),
        acl=[EVERYONE_ACL],
        properties=repo_properties(repo, events),
        content=ExternalItemContent(type="text", value=text),
        activities=created_activity(repo.get("created_at"), performed_by),
    )


# --- Markup helpers ---

_BLANK_LINES = re.compile(r"\n{3,}")


def markdown_to_text(source: str) -> str:
    """Render Markdown (with embedded HTML) and reduce it to readable plain text."""
    return html_to_text(markdown.markdown(source, extensions=["fenced_code"]))


def html_to_text(markup: str) -> str:
    """Extract visible text from HTML; images contribute their alt text."""
    soup = BeautifulSoup(markup, "html.parser")
    for img in soup.find_all("img"):
        img.replace_with(img.get("alt", ""))
    lines = (line.strip() for line in soup.get_text().splitlines())
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()
