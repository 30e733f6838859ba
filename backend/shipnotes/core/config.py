"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Every external collaborator (datastore, key-value store, LLM gateway,
    scraper, scheduler, billing) is configured here. Collaborators left
    empty are treated as unconfigured and degrade as documented on each
    client.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Public base URL used to build webhook callback URLs and schedule destinations
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL of this API"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./shipnotes.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )

    # Credential vault
    # INTEGRATION_ENCRYPTION_KEY: base64 of exactly 32 random bytes.
    # Generate with: openssl rand -base64 32
    integration_encryption_key: str = Field(
        default="",
        description="Base64-encoded 32-byte AES key for third-party tokens"
    )

    # Key-value store (locks, progress snapshots, webhook logs)
    redis_url: str = Field(
        default="",
        description="Redis connection URL (empty = store unavailable)"
    )

    # Authentication
    # JWT_SECRET_KEY: shared with the identity provider that issues session tokens.
    # AUTH_ENABLED: when False, every request acts as an anonymous member of every organization.
    jwt_secret_key: str = Field(
        default="dev-insecure-key-change-me",
        description="JWT signing secret (override in production)"
    )
    jwt_algorithm: str = Field(default="HS256")
    auth_enabled: bool = Field(
        default=False,
        description="Enable JWT authentication (False for development)"
    )

    # Rate Limiting
    rate_limit_per_minute: int = Field(
        default=120,
        description="Maximum requests per client per minute"
    )

    # GitHub API
    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API"
    )
    github_timeout_seconds: int = Field(
        default=15,
        description="Timeout for GitHub API calls"
    )

    # LLM gateway
    # LiteLLM model string, e.g. "openai/gpt-4o-mini", "anthropic/claude-3-5-haiku-latest"
    llm_model: str = Field(
        default="",
        description="LiteLLM model for content generation and brand extraction (empty = disabled)"
    )
    llm_api_key: str = Field(
        default="",
        description="API key for the LLM provider"
    )
    llm_api_base: str = Field(
        default="",
        description="Base URL for the LLM provider (optional)"
    )

    # Web scraper (Firecrawl-compatible)
    scraper_api_key: str = Field(
        default="",
        description="API key for the web scraping service"
    )
    scraper_api_url: str = Field(
        default="https://api.firecrawl.dev",
        description="Base URL of the web scraping service"
    )

    # Scheduler (QStash-compatible)
    qstash_token: str = Field(
        default="",
        description="Token for the external schedule service (empty = cron triggers disabled)"
    )
    qstash_url: str = Field(
        default="https://qstash.upstash.io",
        description="Base URL of the external schedule service"
    )
    schedule_callback_token: str = Field(
        default="",
        description="Bearer token the scheduler forwards on scheduled-run callbacks"
    )

    # Billing / entitlements
    billing_api_key: str = Field(
        default="",
        description="API key for the entitlement service (empty = base plan for everyone)"
    )
    billing_api_url: str = Field(
        default="",
        description="Base URL of the entitlement service"
    )

    # Workflow orchestration
    workflow_lock_ttl_seconds: int = Field(
        default=300,
        description="Expiry of per-organization workflow locks"
    )
    workflow_progress_ttl_seconds: int = Field(
        default=300,
        description="Expiry of workflow progress snapshots"
    )
    workflow_max_attempts: int = Field(
        default=3,
        description="Attempts per run before a retriable failure becomes terminal"
    )
    workflow_retry_backoff_seconds: int = Field(
        default=30,
        description="Base delay before a failed run is retried (multiplied by attempt)"
    )
    workflow_stale_after_seconds: int = Field(
        default=900,
        description="Runs stuck in 'running' longer than this are re-queued by the worker"
    )
    worker_poll_interval: int = Field(
        default=5,
        description="Seconds the worker sleeps when no run is queued"
    )

    # Webhooks
    webhook_log_limit: int = Field(
        default=200,
        description="Maximum entries kept per webhook log list"
    )
    webhook_delivery_ttl_seconds: int = Field(
        default=86400,
        description="How long a provider delivery id is remembered for deduplication"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        # SECURITY: Prevent wildcard CORS
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    def get_public_base_url(self) -> str:
        """Public base URL without a trailing slash."""
        return self.public_base_url.rstrip("/")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('workflow_max_attempts')
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("WORKFLOW_MAX_ATTEMPTS must be at least 1")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup if security-critical settings use insecure defaults.
        In development, returns silently and main.py logs warnings instead.

        Raises:
            ConfigurationError: If production config is insecure.
        """
        errors: list[str] = []

        if self.jwt_secret_key == "dev-insecure-key-change-me":
            errors.append(
                "JWT_SECRET_KEY is using the default insecure value. "
                "Generate a secure key: openssl rand -hex 32"
            )

        if not self.auth_enabled:
            errors.append(
                "AUTH_ENABLED is false. "
                "Authentication must be enabled in production."
            )

        if "localhost" in self.public_base_url or "127.0.0.1" in self.public_base_url:
            errors.append(
                f"PUBLIC_BASE_URL points at {self.public_base_url}. "
                "Providers and the scheduler cannot reach a local address."
            )

        if self.qstash_token and not self.schedule_callback_token:
            errors.append(
                "QSTASH_TOKEN is set but SCHEDULE_CALLBACK_TOKEN is empty. "
                "Scheduled-run callbacks would be unauthenticated."
            )

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is insecure:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
