"""Configuration management with pydantic-settings for the GitHub search connector.

- pydantic-settings v2 for type-safe configuration
- Automatic .env file loading with proper precedence
- Validation with clear error messages
- SecretStr for client secret and GitHub token
- Frozen config (thread-safe, immutable after load)

References:
- Pydantic Settings: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
- Graph connectors: https://learn.microsoft.com/graph/connecting-external-content-connectors-overview
"""

import logging
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

__all__ = [
    "CACHE_POLICY_CACHED",
    "CACHE_POLICY_PER_CALL",
    "DEFAULT_GRAPH_BASE_URL",
    "DEFAULT_OPENID_CONFIG_URL",
    "ConnectorConfig",
    "get_config",
    "require",
    "reset_config",
]

DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/beta"
DEFAULT_OPENID_CONFIG_URL = (
    "https://login.microsoftonline.com/common/v2.0/.well-known/openid-configuration"
)

# Signing-key cache policies for lifecycle token validation
CACHE_POLICY_CACHED = "cached"  # process-wide, refreshed on kid miss / bad signature
CACHE_POLICY_PER_CALL = "per_call"  # rediscover keys for every validation


class ConnectorConfig(BaseSettings):
    """Configuration for the GitHub search connector.

    Loads from (in order of precedence):
    1. Environment variables (highest priority)
    2. .env file in working directory
    3. Default values (lowest priority)

    Attributes:
        tenant_id: Directory (tenant) ID of the Entra app registration
        client_id: Application (client) ID, also the expected token audience
        client_secret: Client secret for the client-credentials flow
        graph_base_url: Microsoft Graph base URL (beta exposes connectorId)
        github_token: Fine-grained GitHub personal access token
        github_repo_owner: GitHub user or organization
        github_repo: Repository to ingest issues from
        placeholder_user_id: Entra user ID that GitHub logins map to
        webhook_host: Bind address for the lifecycle webhook listener
        webhook_port: Port for the lifecycle webhook listener
        schema_poll_interval: Seconds between schema status polls
        schema_poll_timeout: Total seconds a schema registration may poll
        rate_limit_retries: Retry budget for rate-limited GitHub reads
        signing_key_cache_policy: "cached" or "per_call"
        openid_config_url: OpenID metadata document for signing keys
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json for production, text for development)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,  # Use defaults instead of empty strings
        case_sensitive=False,  # TENANT_ID = tenant_id
        validate_default=True,
        frozen=True,  # Immutable after creation (thread-safe)
        extra="ignore",
    )

    # --- Microsoft Graph / Entra app registration ---
    tenant_id: str = Field(default="", description="Directory (tenant) ID")
    client_id: str = Field(default="", description="Application (client) ID")
    client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Client secret of the app registration (stored securely)",
    )
    graph_base_url: str = Field(
        default=DEFAULT_GRAPH_BASE_URL,
        description="Microsoft Graph base URL",
    )

    # --- GitHub ---
    github_token: SecretStr = Field(
        default=SecretStr(""),
        description="GitHub PAT (fine-grained, read access to issues and metadata)",
    )
    github_repo_owner: str = Field(
        default="", description="GitHub user or organization that owns the repos"
    )
    github_repo: str = Field(
        default="", description="Repository to ingest issues from (name only)"
    )
    github_base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )

    placeholder_user_id: str = Field(
        default="",
        description="Entra user ID that every GitHub login is mapped to",
    )

    # --- Lifecycle webhook ---
    webhook_host: str = Field(default="127.0.0.1", description="Webhook bind host")
    webhook_port: int = Field(
        default=7071, ge=1, le=65535, description="Webhook listener port"
    )
    signing_key_cache_policy: str = Field(
        default=CACHE_POLICY_CACHED,
        pattern=f"^({CACHE_POLICY_CACHED}|{CACHE_POLICY_PER_CALL})$",
        description="Signing key cache lifetime: cached (refresh on miss) or per_call",
    )
    openid_config_url: str = Field(
        default=DEFAULT_OPENID_CONFIG_URL,
        description="OpenID metadata document used to locate signing keys",
    )

    # --- Asynchronous operations ---
    schema_poll_interval: float = Field(
        default=60.0,
        ge=0.0,
        le=3600.0,
        description="Seconds to wait between schema registration status polls",
    )
    schema_poll_timeout: float = Field(
        default=1500.0,
        gt=0.0,
        le=86400.0,
        description="Maximum seconds to poll a schema registration (25 min)",
    )

    # --- Upstream rate limiting ---
    rate_limit_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Number of times a rate-limited GitHub read is retried",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log format: json (production), text (development)",
    )

    @field_validator("graph_base_url", "github_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs so path joins never produce '//'."""
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_github_owner(self) -> "ConnectorConfig":
        """Owner and repo are configured separately."""
        if "/" in self.github_repo_owner:
            raise ValueError(
                "GITHUB_REPO_OWNER must be a user or organization, not owner/repo"
            )
        if "/" in self.github_repo:
            raise ValueError("GITHUB_REPO must be the repository name only")
        return self

    def get_issuers(self) -> list[str]:
        """Token issuers trusted for lifecycle notifications."""
        return [
            f"https://login.microsoftonline.com/{self.tenant_id}/v2.0",
            f"https://sts.windows.net/{self.tenant_id}/",
        ]

    def get_token_url(self) -> str:
        """OAuth2 token endpoint for the client-credentials flow."""
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"


def require(config: ConnectorConfig, *names: str) -> None:
    """Raise ValueError naming the first unset setting among ``names``.

    Settings are optional at load time because each command needs a
    different subset (a webhook listener never touches GitHub, for example).
    """
    for name in names:
        value = getattr(config, name)
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if not value:
            raise ValueError(f"{name.upper()} not set (environment or .env)")


# Module-level singleton with lru_cache for thread-safety
@lru_cache(maxsize=1)
def get_config() -> ConnectorConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Returns:
        ConnectorConfig singleton instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return ConnectorConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code. Production code should not reset config.
    """
    get_config.cache_clear()
