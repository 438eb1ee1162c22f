"""Connection schemas and templates for GitHub issues and repositories.

Each item type gets its own schema, a URL-to-item resolver (so activity on
github.com URLs can be attributed to indexed items) and a search result
template backed by an adaptive card shipped in ``result_cards/``.
"""

import json
from importlib import resources
from typing import Any

from graph_connector.graph.models import (
    ExternalConnection,
    Label,
    Property,
    PropertyType,
    Schema,
)

ITEM_TYPE_ISSUES = "issues"
ITEM_TYPE_REPOS = "repos"
ITEM_TYPES = (ITEM_TYPE_ISSUES, ITEM_TYPE_REPOS)

GITHUB_ICON_URL = "https://pngimg.com/uploads/github/github_PNG40.png"


def _prop(name: str, type_: PropertyType = PropertyType.STRING, *, search: bool = False,
          query: bool = False, refine: bool = False, labels: list[Label] | None = None,
          aliases: list[str] | None = None) -> Property:
    return Property(
        name=name,
        type=type_,
        aliases=aliases,
        is_searchable=search,
        is_queryable=query,
        is_retrievable=True,
        is_refinable=refine,
        labels=labels,
    )


ISSUES_SCHEMA = Schema(
    properties=[
        _prop("title", search=True, query=True, labels=[Label.TITLE], aliases=["issueTitle"]),
        _prop("body", search=True, query=True, aliases=["message"]),
        _prop("assignees", search=True, query=True),
        _prop("labels", search=True, query=True),
        _prop("state", query=True, refine=True),
        _prop("issueUrl", labels=[Label.URL]),
        _prop("icon", labels=[Label.ICON_URL]),
        _prop("updatedAt", PropertyType.DATETIME, query=True, refine=True,
              labels=[Label.LAST_MODIFIED_DATETIME]),
        _prop("lastModifiedBy", search=True, query=True, labels=[Label.LAST_MODIFIED_BY]),
    ]
)

REPOS_SCHEMA = Schema(
    properties=[
        _prop("title", search=True, query=True, labels=[Label.TITLE], aliases=["repoName"]),
        _prop("description", search=True, query=True),
        _prop("visibility", query=True, refine=True),
        _prop("createdBy", search=True, query=True, labels=[Label.CREATED_BY]),
        _prop("updatedAt", PropertyType.DATETIME, query=True, refine=True,
              labels=[Label.LAST_MODIFIED_DATETIME]),
        _prop("lastModifiedBy", search=True, query=True, labels=[Label.LAST_MODIFIED_BY]),
        _prop("repoUrl", search=True, labels=[Label.URL]),
        _prop("userUrl", search=True),
        _prop("icon", labels=[Label.ICON_URL]),
    ]
)


def schema_for(item_type: str) -> Schema:
    """Schema for an item type ("issues" or "repos")."""
    if item_type == ITEM_TYPE_ISSUES:
        return ISSUES_SCHEMA
    if item_type == ITEM_TYPE_REPOS:
        return REPOS_SCHEMA
    raise ValueError(f"Unknown item type: {item_type!r} (expected one of {ITEM_TYPES})")


def load_result_card(item_type: str) -> dict[str, Any]:
    """Load the adaptive card used as the search result layout."""
    schema_for(item_type)  # validates item_type
    card = resources.files("graph_connector.graph").joinpath(
        "result_cards", f"result-type-{item_type}.json"
    )
    return json.loads(card.read_text(encoding="utf-8"))


def build_connection(
    connection_id: str,
    name: str,
    description: str | None,
    item_type: str,
    owner: str,
    repo: str | None,
    connector_id: str | None = None,
) -> ExternalConnection:
    """Build the connection resource for an item type.

    Args:
        connection_id: Unique connection ID (3-32 alphanumeric characters)
        name: Display name
        description: Optional description
        item_type: "issues" or "repos"
        owner: GitHub user or organization
        repo: Repository name (issues only)
        connector_id: M365 app ID when created from a lifecycle signal
    """
    if item_type == ITEM_TYPE_ISSUES:
        item_id = "{issueId}"
        url_pattern = f"/{owner}/{repo}/issues/(?<issueId>[0-9]+)"
        template_id = "issueDisplay"
    else:
        schema_for(item_type)
        item_id = "{repo}"
        url_pattern = f"/{owner}/(?<repo>.*)/"
        template_id = "repoDisplay"

    return ExternalConnection(
        id=connection_id,
        name=name,
        description=description,
        connector_id=connector_id,
        activity_settings={
            "urlToItemResolvers": [
                {
                    "@odata.type": "#microsoft.graph.externalConnectors.itemIdResolver",
                    "priority": 1,
                    "itemId": item_id,
                    "urlMatchInfo": {
                        "baseUrls": ["https://github.com"],
                        "urlPattern": url_pattern,
                    },
                }
            ]
        },
        search_settings={
            "searchResultTemplates": [
                {
                    "id": template_id,
                    "priority": 1,
                    "layout": load_result_card(item_type),
                }
            ]
        },
    )
