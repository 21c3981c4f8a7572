from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    database_url: str = "sqlite:///./downloads.db"

    # Token policy
    token_ttl_days: int | None = 7  # None issues non-expiring tokens
    token_max_redemptions: int = 5
    token_issue_max_attempts: int = 3
    # Per access-type overrides, e.g. {"payment": {"ttl_days": 30, "max_redemptions": 10}}
    access_type_policies: dict[str, dict] = {}

    # Denials leaving the service carry the specific reason unless disabled
    expose_denial_reasons: bool = True

    # Admin endpoints (revocation, usage)
    internal_api_key: str | None = None

    # Rate Limiting
    rate_limit_access_requests: str = "10/minute"
    rate_limit_redeems: str = "30/minute"
    rate_limit_admin: str = "60/minute"

    trust_proxy_headers: bool = True

    # CORS
    cors_origins: list[str] | str = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Logging
    log_level: str = "info"
    log_format: str = "console"  # "json" in production

    # Alerts
    discord_alerts_webhook_url: str | None = None

    # Object storage (presigned fetch URLs)
    object_storage_enabled: bool = False
    object_storage_endpoint: str | None = None
    object_storage_bucket: str | None = None
    object_storage_access_key: str | None = None
    object_storage_secret_key: str | None = None
    object_storage_region: str = "us-east-1"
    object_storage_presign_seconds: int = 300

    # Retention: purge tokens expired longer than this many days (None keeps them forever)
    token_retention_days: int | None = None
    purge_interval_hours: int = 24

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


settings = Settings()
