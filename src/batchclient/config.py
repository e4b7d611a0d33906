"""
Configuration management for the batch client.

Supports configuration via environment variables and .env files.
"""

from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from batchclient.urls import get_origin


DEFAULT_TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
DEFAULT_SCOPE = "https://graph.microsoft.com/.default offline_access"


class BatchClientConfig(BaseSettings):
    """
    Configuration settings for the batch client.

    All settings can be configured via environment variables with the BATCHCLIENT_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="BATCHCLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service endpoint settings
    base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Service root that relative request urls are resolved against"
    )
    batch_path: str = Field(
        default="/$batch",
        description="Path of the batch endpoint, relative to base_url"
    )

    # Batching parameters
    max_requests_per_batch: int = Field(
        default=20,
        ge=1,
        description="Maximum number of subrequests in a single batch call"
    )

    # Retry settings
    max_batch_retries: int = Field(
        default=5,
        ge=0,
        description="Maximum whole-call retries for a single authenticated request"
    )
    max_subrequest_retries: int = Field(
        default=5,
        ge=0,
        description="Maximum retries for an individual subrequest"
    )
    initial_backoff_ms: int = Field(
        default=250,
        ge=0,
        description="Backoff for the first retry attempt"
    )
    max_backoff_ms: int = Field(
        default=30_000,
        ge=0,
        description="Upper bound for exponential backoff"
    )
    jitter_ratio: float = Field(
        default=0.25,
        description="Relative jitter applied around the exponential backoff"
    )
    retryable_statuses: List[int] = Field(
        default_factory=lambda: [429, 500, 502, 503, 504],
        description="HTTP statuses treated as transient"
    )

    # Pagination settings
    max_pagination_pages: int = Field(
        default=50,
        ge=0,
        description="Maximum follow-up pages fetched per response"
    )
    value_field: str = Field(
        default="value",
        description="List field aggregated across pages"
    )
    next_link_field: str = Field(
        default="@odata.nextLink",
        description="Body field carrying the next page cursor"
    )

    # Transport settings
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single HTTP call"
    )

    # Auth settings (refresh token grant)
    tenant_id: Optional[str] = Field(
        default=None,
        description="Directory tenant used in the token endpoint"
    )
    client_id: Optional[str] = Field(
        default=None,
        description="OAuth client ID"
    )
    client_secret: Optional[SecretStr] = Field(
        default=None,
        description="OAuth client secret"
    )
    refresh_token: Optional[SecretStr] = Field(
        default=None,
        description="Refresh token exchanged for access tokens"
    )
    scope: str = Field(
        default=DEFAULT_SCOPE,
        description="Scope requested during token exchange"
    )
    token_url: str = Field(
        default=DEFAULT_TOKEN_URL,
        description="Token endpoint; {tenant_id} is substituted"
    )
    clock_skew_ms: int = Field(
        default=30_000,
        ge=0,
        description="Tokens are refreshed this long before they expire"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @field_validator("batch_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    @property
    def origin(self) -> Optional[str]:
        """Origin every request url must share, or None if base_url has none."""
        return get_origin(self.base_url)

    @property
    def has_refresh_token_auth(self) -> bool:
        """Check whether enough auth settings are present to build a token provider."""
        return all([self.tenant_id, self.client_id, self.client_secret, self.refresh_token])


# Global config instance
_config: Optional[BatchClientConfig] = None


def get_config() -> BatchClientConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BatchClientConfig()
    return _config


def set_config(config: BatchClientConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
