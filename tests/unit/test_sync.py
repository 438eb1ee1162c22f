"""Unit tests for the sync pipeline.

Tests SyncPipeline with:
- Per-record failure isolation and ordered outcomes
- PartialBatchFailure aggregation
- Pull request filtering
- Rate-limited listings and event fetches retried; exhausted event retries
  degrade to no events
- Best-effort content (issue pages, READMEs)
- Fatal listing failures
"""

from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from helpers import RecordingTransport

from graph_connector.github.client import GitHubClient, GitHubClientError, RateLimitExceeded
from graph_connector.graph.client import GraphServiceError, SearchConnectorClient
from graph_connector.graph.models import Identity
from graph_connector.sync import PartialBatchFailure, SyncPipeline

PLACEHOLDER = Identity(id="user-1")


def make_issue(number: int, **extra) -> dict:
    issue = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "html_url": f"https://github.com/octo-org/octo-repo/issues/{number}",
        "created_at": "2024-03-01T10:00:00Z",
        "updated_at": "2024-03-02T10:00:00Z",
        "user": {"login": "alice"},
    }
    issue.update(extra)
    return issue


@pytest.fixture
def github() -> AsyncMock:
    mock = AsyncMock(spec=GitHubClient)
    mock.list_issue_events.return_value = []
    mock.list_repository_events.return_value = []
    mock.get_readme.return_value = None
    return mock


@pytest.fixture
def graph() -> AsyncMock:
    mock = AsyncMock(spec=SearchConnectorClient)
    mock.identity_for_github_user = Mock(return_value=PLACEHOLDER)
    mock.upsert_item.return_value = None
    mock.add_activities.return_value = None
    return mock


class TestIssueSync:
    @pytest.mark.asyncio
    async def test_failure_isolated_to_record(self, github, graph):
        """Five issues, the third upsert fails: four pushed, outcomes in order."""
        github.list_issues.return_value = [make_issue(n) for n in range(1, 6)]

        async def upsert(connection_id, item):
            if item.id == "3":
                raise GraphServiceError(400, "InvalidRequest", "bad item")

        graph.upsert_item.side_effect = upsert
        pipeline = SyncPipeline(github, graph, "GitHubIssues")

        report = await pipeline.sync_all("issues")

        assert [o.record_id for o in report.outcomes] == ["1", "2", "3", "4", "5"]
        assert [o.succeeded for o in report.outcomes] == [True, True, False, True, True]
        assert "bad item" in report.outcomes[2].error
        assert graph.upsert_item.await_count == 5

        with pytest.raises(PartialBatchFailure) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.report is report
        assert "1 of 5 issues failed: 3" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_all_succeed(self, github, graph):
        github.list_issues.return_value = [make_issue(1)]
        report = await SyncPipeline(github, graph, "c1").sync_all("issues")

        report.raise_for_failures()
        assert report.to_dict()["succeeded"] == 1

    @pytest.mark.asyncio
    async def test_pull_requests_skipped(self, github, graph):
        github.list_issues.return_value = [
            make_issue(1),
            make_issue(2, pull_request={"url": "https://api.github.com/pulls/2"}),
        ]

        report = await SyncPipeline(github, graph, "c1").sync_all("issues")

        assert [o.record_id for o in report.outcomes] == ["1"]

    @pytest.mark.asyncio
    async def test_events_become_activities(self, github, graph):
        github.list_issues.return_value = [make_issue(1)]
        github.list_issue_events.return_value = [
            {"event": "commented", "user": {"login": "bob"}, "created_at": "2024-03-03T00:00:00Z"}
        ]

        await SyncPipeline(github, graph, "c1").sync_all("issues")

        item = graph.upsert_item.await_args.args[1]
        assert item.properties["lastModifiedBy"] == "bob"
        connection_id, item_id, activities = graph.add_activities.await_args.args
        assert (connection_id, item_id) == ("c1", "1")
        assert [a.type for a in activities] == ["commented"]

    @pytest.mark.asyncio
    async def test_rate_limited_events_retried(self, github, graph):
        """A rate-limited event fetch is retried within the budget."""
        github.list_issues.return_value = [make_issue(1)]
        github.list_issue_events.side_effect = [RateLimitExceeded(0.0), []]

        report = await SyncPipeline(github, graph, "c1", max_retries=3).sync_all("issues")

        assert report.outcomes[0].succeeded
        assert github.list_issue_events.await_count == 2

    @pytest.mark.asyncio
    async def test_event_fetch_failure_pushes_without_events(self, github, graph):
        github.list_issues.return_value = [make_issue(1)]
        github.list_issue_events.side_effect = GitHubClientError("boom", status_code=500)

        report = await SyncPipeline(github, graph, "c1").sync_all("issues")

        assert report.outcomes[0].succeeded
        graph.add_activities.assert_awaited_once()
        assert graph.add_activities.await_args.args[2] == []

    @pytest.mark.asyncio
    async def test_issue_page_used_as_content(self, github, graph):
        github.list_issues.return_value = [make_issue(1)]
        pages = RecordingTransport(lambda r: httpx.Response(200, text="<html>issue</html>"))

        async with httpx.AsyncClient(transport=pages) as content_client:
            await SyncPipeline(github, graph, "c1", content_client=content_client).sync_all("issues")

        item = graph.upsert_item.await_args.args[1]
        assert item.content.type == "html"
        assert item.content.value == "<html>issue</html>"

    @pytest.mark.asyncio
    async def test_issue_page_failure_is_best_effort(self, github, graph):
        github.list_issues.return_value = [make_issue(1)]

        def handler(request):
            raise httpx.ConnectError("down", request=request)

        async with httpx.AsyncClient(transport=RecordingTransport(handler)) as content_client:
            report = await SyncPipeline(
                github, graph, "c1", content_client=content_client
            ).sync_all("issues")

        assert report.outcomes[0].succeeded
        assert graph.upsert_item.await_args.args[1].content is None

    @pytest.mark.asyncio
    async def test_listing_failure_is_fatal(self, github, graph):
        github.list_issues.side_effect = GitHubClientError("unauthorized", status_code=401)

        with pytest.raises(GitHubClientError):
            await SyncPipeline(github, graph, "c1").sync_all("issues")
        graph.upsert_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited_listing_retried(self, github, graph):
        github.list_issues.side_effect = [RateLimitExceeded(0.0), [make_issue(1)]]

        report = await SyncPipeline(github, graph, "c1", max_retries=3).sync_all("issues")

        assert github.list_issues.await_count == 2
        assert [o.record_id for o in report.succeeded] == ["1"]

    @pytest.mark.asyncio
    async def test_listing_rate_limit_exhausted_is_fatal(self, github, graph):
        github.list_issues.side_effect = RateLimitExceeded(0.0)

        with pytest.raises(RateLimitExceeded):
            await SyncPipeline(github, graph, "c1", max_retries=1).sync_all("issues")
        assert github.list_issues.await_count == 2
        graph.upsert_item.assert_not_awaited()


class TestRepoSync:
    @pytest.mark.asyncio
    async def test_public_repo_readme(self, github, graph, sample_repo):
        github.list_repositories.return_value = [sample_repo]
        github.get_readme.return_value = "# Hello"

        report = await SyncPipeline(github, graph, "c1").sync_all("repos")

        assert [o.record_id for o in report.outcomes] == ["4242"]
        github.get_readme.assert_awaited_once_with("octo-org/octo-repo")
        item = graph.upsert_item.await_args.args[1]
        assert item.content.value == "Hello"
        graph.add_activities.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_private_repo_skips_readme(self, github, graph, sample_repo):
        sample_repo["private"] = True
        github.list_repositories.return_value = [sample_repo]

        await SyncPipeline(github, graph, "c1").sync_all("repos")

        github.get_readme.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_readme_failure_falls_back_to_json(self, github, graph, sample_repo):
        github.list_repositories.return_value = [sample_repo]
        github.get_readme.side_effect = GitHubClientError("boom", status_code=500)

        report = await SyncPipeline(github, graph, "c1").sync_all("repos")

        assert report.outcomes[0].succeeded
        assert '"id": 4242' in graph.upsert_item.await_args.args[1].content.value

    @pytest.mark.asyncio
    async def test_rate_limited_listing_retried(self, github, graph, sample_repo):
        github.list_repositories.side_effect = [RateLimitExceeded(0.0), [sample_repo]]

        report = await SyncPipeline(github, graph, "c1").sync_all("repos")

        assert github.list_repositories.await_count == 2
        assert report.outcomes[0].succeeded


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_kind(self, github, graph):
        with pytest.raises(ValueError, match="Unknown record kind"):
            await SyncPipeline(github, graph, "c1").sync_all("pulls")
