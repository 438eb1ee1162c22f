"""GitHub REST API client.

Provides async httpx-based client for GitHub REST API v3 with token auth.
Implements Link header pagination and rate-limit header tracking. A
rate-limited response is surfaced as RateLimitExceeded carrying the
server-specified wait; callers retry through graph_connector.github.retry.

Reference: https://docs.github.com/en/rest
Rate limits: https://docs.github.com/en/rest/using-the-rest-api/rate-limits-for-the-rest-api
"""

import asyncio
import base64
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any

import httpx

logger = logging.getLogger("graph_connector.github.client")


class GitHubClientError(Exception):
    """Raised when GitHub API request fails.

    Wraps httpx errors and HTTP errors for consistent error handling.

    Attributes:
        status_code: HTTP status of the failed response, None for transport errors
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceeded(GitHubClientError):
    """Raised when GitHub reports a primary or secondary rate limit.

    Attributes:
        retry_after: Seconds the server asked us to wait (may be <= 0)
        reset_at: Absolute UTC time the limit resets
    """

    def __init__(self, retry_after: float, message: str = "Rate limit exceeded"):
        self.retry_after = retry_after
        self.reset_at = datetime.fromtimestamp(time.time() + max(0.0, retry_after), tz=timezone.utc)
        super().__init__(
            f"{message}. Retry after {retry_after:.0f}s", status_code=429
        )


class GitHubClient:
    """GitHub REST API client using httpx with Bearer token auth.

    Uses long-lived httpx.AsyncClient with connection pooling.

    Attributes:
        base_url: GitHub API base URL (default: https://api.github.com)
        owner: User or organization that owns the repositories
        repo: Repository name for issue ingestion
        _rate_limit_reset: Tracked from X-RateLimit-Reset header

    Example:
        >>> async with GitHubClient("ghp_token", "octo-org", "octo-repo") as client:
        ...     issues = await client.list_issues()
    """

    BASE_URL = "https://api.github.com"

    MIN_REQUEST_DELAY_MS = 100  # Minimum delay between requests (ms)

    # Timeout configuration
    CONNECT_TIMEOUT = 5.0  # seconds
    READ_TIMEOUT = 30.0  # seconds
    WRITE_TIMEOUT = 5.0  # seconds
    POOL_TIMEOUT = 5.0  # seconds

    # Used when a 429 arrives without Retry-After
    DEFAULT_RETRY_AFTER = 60

    DEFAULT_PER_PAGE = 100

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str | None = None,
        base_url: str | None = None,
        min_delay_ms: int = MIN_REQUEST_DELAY_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitHub client with token authentication.

        Args:
            token: GitHub Personal Access Token (fine-grained recommended)
            owner: GitHub user or organization
            repo: Repository name (required for issue calls)
            base_url: GitHub API base URL (default: https://api.github.com)
            min_delay_ms: Minimum delay between requests in milliseconds
            transport: Optional httpx transport (tests)
        """
        self.owner = owner
        self.repo = repo
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._min_delay_s = min_delay_ms / 1000.0

        self._rate_limit_reset: float | None = None
        self._last_request_time: float = 0.0

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "graph-connector-github/1.0",
            },
            timeout=httpx.Timeout(
                connect=self.CONNECT_TIMEOUT,
                read=self.READ_TIMEOUT,
                write=self.WRITE_TIMEOUT,
                pool=self.POOL_TIMEOUT,
            ),
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    @property
    def repo_path(self) -> str:
        """owner/repo path segment for issue endpoints."""
        if not self.repo:
            raise GitHubClientError("No repository configured for issue ingestion")
        return f"{self.owner}/{self.repo}"

    # --- Repository Data Endpoints ---

    async def list_repositories(self) -> list[dict[str, Any]]:
        """List repositories of the configured owner.

        The owner is tried as an organization first; a 404 means it is a
        user account, so the user endpoint is used instead.

        Returns:
            List of repository dicts from GitHub API
        """
        try:
            return await self._paginate(f"/orgs/{self.owner}/repos", params={"type": "all"})
        except GitHubClientError as e:
            if e.status_code != 404:
                raise
            logger.info("%s is not an organization, listing user repositories", self.owner)
            return await self._paginate(f"/users/{self.owner}/repos", params={"type": "owner"})

    async def list_issues(self, state: str = "all") -> list[dict[str, Any]]:
        """List repository issues with pagination.

        The Issues API also returns pull requests; callers filter them on
        the ``pull_request`` key.

        Args:
            state: Filter by state (open, closed, all)

        Returns:
            List of issue dicts from GitHub API
        """
        return await self._paginate(
            f"/repos/{self.repo_path}/issues",
            params={"state": state, "sort": "updated", "direction": "asc"},
        )

    async def list_issue_events(self, issue_number: int) -> list[dict[str, Any]]:
        """List timeline events for an issue, oldest first.

        Args:
            issue_number: Issue number

        Returns:
            List of timeline event dicts
        """
        return await self._paginate(f"/repos/{self.repo_path}/issues/{issue_number}/timeline")

    async def list_repository_events(self, repo_id: int) -> list[dict[str, Any]]:
        """List recent activity events for a repository.

        Args:
            repo_id: Numeric repository ID

        Returns:
            List of event dicts (newest first, as GitHub returns them)
        """
        return await self._paginate(f"/repositories/{repo_id}/events")

    async def get_readme(self, full_name: str) -> str | None:
        """Get the decoded README of a repository.

        Args:
            full_name: Repository in owner/name format

        Returns:
            README text, or None if the repository has no README
        """
        try:
            data = await self._request("GET", f"/repos/{full_name}/readme")
        except GitHubClientError as e:
            if e.status_code == 404:
                return None
            raise

        content = data.get("content")
        if not content:
            return None
        if data.get("encoding") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return content

    # --- Rate Limiting ---

    async def _enforce_min_delay(self) -> None:
        """Enforce minimum delay between requests."""
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self._min_delay_s:
            await asyncio.sleep(self._min_delay_s - elapsed)

    def _update_rate_limits(self, response: httpx.Response) -> None:
        """Track the primary rate limit reset time from response headers.

        Args:
            response: httpx response with rate limit headers
        """
        reset = response.headers.get("X-RateLimit-Reset")
        if reset is not None:
            try:
                self._rate_limit_reset = float(reset)
            except ValueError:
                logger.warning("Non-numeric X-RateLimit-Reset header: %r", reset)

    def _retry_after(self, response: httpx.Response) -> float:
        """Seconds to wait before retrying a rate-limited response.

        Retry-After wins when present, otherwise the primary limit reset
        time is used. The result may be zero or negative when the reset
        time has already passed.
        """
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return float(retry_after)
            except ValueError:
                logger.warning("Non-numeric Retry-After header: %r", retry_after)
        if self._rate_limit_reset is not None:
            return self._rate_limit_reset - time.time()
        return float(self.DEFAULT_RETRY_AFTER)

    # --- Core HTTP Methods ---

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            error_body = response.json() if response.content else {}
        except (ValueError, UnicodeDecodeError):
            error_body = {}
        if not isinstance(error_body, dict):
            error_body = {}
        return error_body.get("message", response.text)

    async def _raw_request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make a raw HTTP request and map error statuses to exceptions.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path or absolute URL from a Link header
            params: Query parameters

        Returns:
            Raw httpx.Response (status 2xx)

        Raises:
            RateLimitExceeded: On 429, or 403 with X-RateLimit-Remaining: 0
            GitHubClientError: On any other error status or transport failure
        """
        await self._enforce_min_delay()

        try:
            self._last_request_time = time.monotonic()
            response = await self._client.request(method, path, params=params)
        except httpx.HTTPError as e:
            raise GitHubClientError(f"HTTP error: {e}") from e

        self._update_rate_limits(response)

        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            retry_after = self._retry_after(response)
            message = (
                "Secondary rate limit exceeded"
                if response.status_code == 429
                else "Rate limit exceeded"
            )
            logger.warning("%s on %s %s (retry after %.0fs)", message, method, path, retry_after)
            raise RateLimitExceeded(retry_after, message)

        if response.status_code >= 400:
            raise GitHubClientError(
                f"GitHub API error {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )

        return response

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Make a single API request and parse the JSON body."""
        response = await self._raw_request(method, path, params=params)
        return response.json()

    # --- Pagination ---

    async def _paginate(
        self,
        path: str,
        params: dict[str, str] | None = None,
        max_pages: int = 100,
    ) -> list[dict[str, Any]]:
        """Fetch all pages of a paginated endpoint using Link headers.

        Args:
            path: API path
            params: Query parameters (per_page added automatically)
            max_pages: Safety limit to prevent runaway pagination

        Returns:
            Concatenated list of all items across all pages
        """
        all_items: list[dict[str, Any]] = []
        params = dict(params or {})
        params["per_page"] = str(self.DEFAULT_PER_PAGE)

        current_path = path
        current_params: dict[str, str] | None = params

        for page in range(max_pages):
            response = await self._raw_request("GET", current_path, params=current_params)
            data = response.json()

            if isinstance(data, list):
                all_items.extend(data)
            elif isinstance(data, dict) and "items" in data:
                all_items.extend(data["items"])

            next_url = self._parse_next_link(response.headers.get("Link", ""), self.base_url)
            if not next_url:
                break

            current_path = next_url[len(self.base_url):]
            current_params = None  # Parameters are embedded in the Link URL

            logger.debug(
                "Paginating: page %d, %d items so far", page + 1, len(all_items)
            )

        return all_items

    @staticmethod
    def _parse_next_link(link_header: str, base_url: str = BASE_URL) -> str | None:
        """Parse GitHub Link header to extract 'next' URL.

        Format: <https://api.github.com/...?page=2>; rel="next", <...>; rel="last"

        Args:
            link_header: Raw Link header value
            base_url: Only URLs under this base are followed

        Returns:
            Next page URL or None if no next page
        """
        if not link_header:
            return None

        for part in link_header.split(","):
            match = re.match(r'\s*<([^>]+)>;\s*rel="next"', part.strip())
            if match:
                url = match.group(1)
                # Never follow a pagination URL outside our API host
                if not url.startswith(base_url.rstrip("/") + "/"):
                    logger.warning(
                        "Rejecting Link header URL not matching base_url: %.100s",
                        url,
                    )
                    return None
                return url
        return None
