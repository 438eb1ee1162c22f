"""Shared pytest fixtures for graph-connector tests.

Fixture Organization:
    - Config fixtures: environment isolation and singleton reset
    - Sample data fixtures: GitHub issue / repository / event payloads
    - Timing fixtures: recording sleep and fake monotonic clock

Test doubles live in helpers.py (importable because this directory is
added to sys.path below).

References:
    - pytest fixtures docs: https://docs.pytest.org/en/stable/how-to/fixtures.html
    - httpx transports: https://www.python-httpx.org/advanced/transports/
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add tests directory to sys.path so test modules can import helpers
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock, RecordingSleep  # noqa: E402

from graph_connector.config import reset_config  # noqa: E402

# =============================================================================
# Config Fixtures
# =============================================================================

_CONFIG_ENV_VARS = (
    "TENANT_ID",
    "CLIENT_ID",
    "CLIENT_SECRET",
    "GRAPH_BASE_URL",
    "GITHUB_TOKEN",
    "GITHUB_REPO_OWNER",
    "GITHUB_REPO",
    "GITHUB_BASE_URL",
    "PLACEHOLDER_USER_ID",
    "WEBHOOK_HOST",
    "WEBHOOK_PORT",
    "SIGNING_KEY_CACHE_POLICY",
    "OPENID_CONFIG_URL",
    "SCHEMA_POLL_INTERVAL",
    "SCHEMA_POLL_TIMEOUT",
    "RATE_LIMIT_RETRIES",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path) -> Generator[None, None, None]:
    """Isolate configuration from the developer's environment and .env file."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)  # no stray .env
    reset_config()
    yield
    reset_config()


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_issue() -> dict:
    """A GitHub issue as returned by GET /repos/{owner}/{repo}/issues."""
    return {
        "id": 1001,
        "number": 7,
        "title": "Search results missing labels",
        "body": "Labels are not shown in **search** results.",
        "state": "open",
        "html_url": "https://github.com/octo-org/octo-repo/issues/7",
        "created_at": "2024-03-01T10:00:00Z",
        "updated_at": "2024-03-05T12:30:00Z",
        "user": {"login": "alice"},
        "assignees": [{"login": "bob"}, {"login": "carol"}],
        "labels": [{"name": "bug"}, {"name": "search"}],
    }


@pytest.fixture
def sample_timeline() -> list[dict]:
    """Issue timeline entries, oldest first."""
    return [
        {"event": "labeled", "actor": {"login": "bob"}, "created_at": "2024-03-02T09:00:00Z"},
        {"event": "committed", "sha": "abc123"},
        {"event": "commented", "user": {"login": "dave"}, "created_at": "2024-03-04T08:15:00Z"},
    ]


@pytest.fixture
def sample_repo() -> dict:
    """A GitHub repository as returned by GET /orgs/{org}/repos."""
    return {
        "id": 4242,
        "name": "octo-repo",
        "full_name": "octo-org/octo-repo",
        "description": "Demo repository",
        "private": False,
        "visibility": "public",
        "html_url": "https://github.com/octo-org/octo-repo",
        "created_at": "2023-01-01T00:00:00Z",
        "updated_at": "2024-03-05T12:30:00Z",
        "owner": {"login": "octo-org", "html_url": "https://github.com/octo-org"},
    }


# =============================================================================
# Timing Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock) -> RecordingSleep:
    """Instant sleep that advances fake_clock by the requested duration."""
    return RecordingSleep(fake_clock)
