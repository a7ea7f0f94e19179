"""Application configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings are loaded in this priority order (highest to lowest):
    1. Environment variables
    2. .env file (for local development)
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application
    # =========================================================================
    app_name: str = "KYC Case Ledger"
    debug: bool = False

    # =========================================================================
    # Database
    # =========================================================================
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/kyc_dsl",
        description="PostgreSQL connection URL",
    )

    # =========================================================================
    # DSL service (parse / validate / serialize)
    # =========================================================================
    dsl_service_url: str = Field(
        default="http://localhost:50060",
        description="Base URL of the remote DSL service",
    )
    dsl_service_timeout: float = Field(
        default=10.0,
        description="HTTP timeout in seconds for DSL service requests",
    )
    dsl_service_max_retries: int = 3
    dsl_service_retry_delay: float = 1.0
    schema_ref: str = Field(
        default="kyc-dsl",
        description="Schema reference passed to the DSL service validator",
    )

    # =========================================================================
    # Amendment pipeline
    # =========================================================================
    # Deadline applied to every external call made while amending a case
    # (parse, serialize, validate and each store call). None disables it.
    step_timeout: float | None = Field(
        default=30.0,
        description="Per-call deadline in seconds for amendment pipeline collaborators",
    )
    enforce_lifecycle: bool = Field(
        default=True,
        description="Reject amendments that break the phase registry",
    )


settings = Settings()
