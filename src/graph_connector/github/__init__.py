"""GitHub integration package.

Async client for GitHub REST API v3, rate-limit-aware retry wrapper, and
composition of issues and repositories into external items.
"""

from .client import GitHubClient, GitHubClientError, RateLimitExceeded
from .retry import RetryBudget, fetch_with_retry

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "RateLimitExceeded",
    "RetryBudget",
    "fetch_with_retry",
]
