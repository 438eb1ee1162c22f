"""Sync pipeline pushing GitHub issues and repositories into a search connection.

Orchestrates GitHubClient to fetch records (rate-limited reads go through
fetch_with_retry), composes ExternalItems and upserts them via
SearchConnectorClient. Per-record failures are recorded and do not abort the
batch; failing to list records at all does.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from graph_connector.github.client import GitHubClient, GitHubClientError
from graph_connector.github.composer import (
    events_to_activities,
    is_pull_request,
    issue_to_item,
    repo_to_item,
)
from graph_connector.github.retry import fetch_with_retry
from graph_connector.graph.client import SearchConnectorClient
from graph_connector.graph.schemas import ITEM_TYPE_ISSUES, ITEM_TYPES
from graph_connector.metrics import items_pushed_total

logger = logging.getLogger("graph_connector.sync")

DEFAULT_READ_RETRIES = 3


@dataclass
class RecordOutcome:
    """Result of pushing one record."""

    record_id: str
    succeeded: bool
    error: str | None = None


@dataclass
class SyncReport:
    """Outcomes of one sync run, in input order."""

    kind: str
    outcomes: list[RecordOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> list[RecordOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[RecordOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if any record failed."""
        if self.failed:
            raise PartialBatchFailure(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "kind": self.kind,
            "total": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "duration_seconds": round(self.duration_seconds, 2),
        }


class PartialBatchFailure(Exception):
    """Raised when some records of a batch could not be pushed.

    Attributes:
        report: The full SyncReport, including successful records
    """

    def __init__(self, report: SyncReport):
        self.report = report
        ids = ", ".join(o.record_id for o in report.failed)
        super().__init__(
            f"{len(report.failed)} of {len(report.outcomes)} {report.kind} failed: {ids}"
        )


class SyncPipeline:
    """Fetch, compose and upsert GitHub records.

    Attributes:
        github: GitHubClient for reads
        graph: SearchConnectorClient for writes
        connection_id: Target connection
        max_retries: Rate-limit retry budget per GitHub read
    """

    def __init__(
        self,
        github: GitHubClient,
        graph: SearchConnectorClient,
        connection_id: str,
        max_retries: int = DEFAULT_READ_RETRIES,
        content_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            github: GitHub client
            graph: Graph client
            connection_id: Connection to push items into
            max_retries: Rate-limit retries for listings and event fetches
            content_client: Client used to download issue pages (best-effort)
        """
        self.github = github
        self.graph = graph
        self.connection_id = connection_id
        self.max_retries = max_retries
        self._content_client = content_client

    async def sync_all(self, kind: str) -> SyncReport:
        """Push every record of ``kind`` ("issues" or "repos").

        Raises:
            ValueError: Unknown kind
            GitHubClientError: Records could not be listed (rate limits are
                retried within max_retries first)
        """
        if kind not in ITEM_TYPES:
            raise ValueError(f"Unknown record kind: {kind!r} (expected one of {ITEM_TYPES})")

        start = time.monotonic()
        report = SyncReport(kind=kind)
        logger.info("Starting sync of %s into connection %s", kind, self.connection_id)

        if kind == ITEM_TYPE_ISSUES:
            issues = await fetch_with_retry(self.github.list_issues, self.max_retries)
            records = [i for i in issues if not is_pull_request(i)]
            push, id_field = self._push_issue, "number"
        else:
            records = await fetch_with_retry(self.github.list_repositories, self.max_retries)
            push, id_field = self._push_repo, "id"

        for record in records:
            rid = str(record[id_field])
            try:
                await push(record)
            except Exception as e:
                # Fail-open per record: log and continue with the batch
                logger.error("Failed to push %s %s: %s", kind, rid, e)
                items_pushed_total.labels(kind=kind, status="failed").inc()
                report.outcomes.append(RecordOutcome(record_id=rid, succeeded=False, error=str(e)))
                continue
            items_pushed_total.labels(kind=kind, status="success").inc()
            report.outcomes.append(RecordOutcome(record_id=rid, succeeded=True))

        report.duration_seconds = time.monotonic() - start
        logger.info(
            "Sync of %s complete: %d pushed, %d failed in %.1fs",
            kind,
            len(report.succeeded),
            len(report.failed),
            report.duration_seconds,
            extra=report.to_dict(),
        )
        return report

    # -- Per-kind push -------------------------------------------------

    async def _push_issue(self, issue: dict[str, Any]) -> None:
        number = issue["number"]
        events = await self._fetch_events(
            lambda: self.github.list_issue_events(number), f"issue #{number}"
        )
        performed_by = self.graph.identity_for_github_user(
            (issue.get("user") or {}).get("login")
        )
        html_content = await self._fetch_issue_page(issue.get("html_url"))

        item = issue_to_item(issue, events, performed_by, html_content=html_content)
        logger.info("Pushing issue #%s", number)
        await self.graph.upsert_item(self.connection_id, item)
        await self.graph.add_activities(
            self.connection_id, item.id, events_to_activities(events, performed_by)
        )

    async def _push_repo(self, repo: dict[str, Any]) -> None:
        events = await self._fetch_events(
            lambda: self.github.list_repository_events(repo["id"]), f"repo {repo.get('name')}"
        )
        performed_by = self.graph.identity_for_github_user(
            (repo.get("owner") or {}).get("login")
        )
        readme = None
        if not repo.get("private"):
            try:
                readme = await self.github.get_readme(repo["full_name"])
            except GitHubClientError as e:
                logger.warning("Failed to fetch README for %s: %s", repo.get("full_name"), e)

        item = repo_to_item(repo, events, performed_by, readme=readme)
        logger.info("Pushing repository %s", repo.get("name"))
        await self.graph.upsert_item(self.connection_id, item)

    # -- Helpers -------------------------------------------------------

    async def _fetch_events(self, request_fn, label: str) -> list[dict[str, Any]]:
        """Fetch events with rate-limit retries; an empty list on failure."""
        try:
            return await fetch_with_retry(request_fn, self.max_retries)
        except GitHubClientError as e:
            logger.warning("Failed to fetch events for %s: %s", label, e)
            return []

    async def _fetch_issue_page(self, url: str | None) -> str | None:
        """Download the issue's HTML page; None when unavailable."""
        if not url or self._content_client is None:
            return None
        try:
            response = await self._content_client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch content from %s: %s", url, e)
            return None
        if response.status_code != 200:
            logger.warning("Failed to fetch content from %s: HTTP %d", url, response.status_code)
            return None
        return response.text
