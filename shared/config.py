"""
Type-safe configuration for the workflow engine using Pydantic Settings.

All settings load from environment variables or a .env file and are
validated at startup.

Usage:
    from shared.config import config

    ttl = config.dedupe_ttl_seconds
"""
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """
    Central configuration for trigger orchestration and execution.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ============================================================================
    # Deployment
    # ============================================================================

    engine_mode: str = Field(default="self-hosted", description="Deployment mode: 'self-hosted' or 'cloud'")
    app_name: str = Field(default="Sim Studio", description="Name used in provider acknowledgements")

    # ============================================================================
    # Storage
    # ============================================================================

    database_url: str = Field(
        default="sqlite://./workflow_engine.db",
        description="Tortoise connection string (postgres://... in production, sqlite for local use)",
    )
    db_generate_schemas: bool = Field(default=False, description="Create missing tables on startup")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis for dedupe keys, locks and the task broker")

    # ============================================================================
    # Trigger orchestration
    # ============================================================================

    dedupe_ttl_seconds: int = Field(default=86400, description="How long a processed trigger key is remembered")
    signature_max_age_seconds: int = Field(default=300, description="Freshness window for signed webhook requests")
    poll_lock_ttl_seconds: int = Field(default=180, description="TTL of the distributed poll-sweep lock")
    teams_ack_text: Optional[str] = Field(
        default=None,
        description="Text returned to Microsoft Teams outgoing webhooks (defaults to app_name)",
    )

    # ============================================================================
    # Polling providers
    # ============================================================================

    airtable_api_base: str = Field(default="https://api.airtable.com/v0", description="Airtable REST base URL")
    airtable_max_poll_calls: int = Field(default=10, description="Hard cap on payload pages fetched per poll")
    gmail_api_base: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Gmail REST base URL",
    )
    gmail_max_emails_per_poll: int = Field(default=25, description="Default message cap for one Gmail poll")
    gmail_default_polling_interval_minutes: int = Field(default=5, description="Default Gmail poll interval")
    provider_http_timeout_seconds: float = Field(default=30.0, description="Timeout for provider HTTP calls")

    google_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID for token refresh")
    google_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret")
    airtable_client_id: Optional[str] = Field(default=None, description="Airtable OAuth client ID for token refresh")
    airtable_client_secret: Optional[str] = Field(default=None, description="Airtable OAuth client secret")

    cron_secret: Optional[str] = Field(default=None, description="Bearer token required by the poll endpoints")
    trigger_poller_enabled: bool = Field(default=True, description="Run the poll scheduler in the worker")
    trigger_poller_interval_seconds: int = Field(default=60, description="Delay between poll sweeps")

    # ============================================================================
    # Execution
    # ============================================================================

    encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to decrypt stored environment variables",
    )
    execution_engine: Optional[str] = Field(
        default=None,
        description="Import path of the execution engine factory, e.g. 'mypkg.engine:create_engine'",
    )

    # ============================================================================
    # Computed Properties
    # ============================================================================

    @property
    def teams_acknowledgement(self) -> str:
        return self.teams_ack_text or self.app_name

    @property
    def is_cloud_mode(self) -> bool:
        """Check if running in cloud mode."""
        return self.engine_mode == "cloud"

    @property
    def is_self_hosted(self) -> bool:
        """Check if running in self-hosted mode."""
        return self.engine_mode == "self-hosted"

    @property
    def is_encryption_configured(self) -> bool:
        return bool(self.encryption_key)

    def oauth_client_credentials(self, provider: str) -> Tuple[Optional[str], Optional[str]]:
        """Client id and secret used to refresh `provider` tokens."""
        if provider == "google-email":
            return self.google_client_id, self.google_client_secret
        if provider == "airtable":
            return self.airtable_client_id, self.airtable_client_secret
        return None, None


# ============================================================================
# Global Config Instance
# ============================================================================

config = EngineConfig()
