from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global RestoHub entitlement settings.
    Values are read from the environment and from the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "RestoHub Entitlements API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Security / JWT (tokens are issued by the auth service)
    secret_key: str = "changeme"
    access_token_expire_minutes: int = 60
    algorithm: str = "HS256"

    # Database
    database_url: str = "sqlite:///./dev.db"

    # Cache: leaving REDIS_URL unset disables caching, never the features using it
    redis_url: Optional[str] = None
    cache_default_ttl_seconds: int = 300
    cache_socket_timeout_seconds: float = 2.0

    # Tier limits
    tier_limit_fail_open: bool = True
    tier_usage_warning_ratio: float = 0.9

    # Subscriptions / payments
    subscription_default_duration_days: int = 365
    price_standard: int = 240
    price_premium: int = 1200
    currency: str = "USD"
    reference_prefix: str = "RH"
    payment_queue_page_size: int = 20

    # Trials and refunds
    trial_duration_days: int = 30
    max_trials_per_user: int = 2
    refund_window_days: int = 30

    # Ownership transfer
    otp_expiry_minutes: int = 15
    otp_max_attempts: int = 3

    # Staff invitations
    staff_invitation_expire_hours: int = 72

    # Storage (local or S3 / MinIO)
    storage_path: str = "_storage"
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_region: str = "us-east-1"
    s3_bucket_uploads: str = "restohub-uploads"
    max_upload_bytes: int = 5 * 1024 * 1024

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]

    # E-mail (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None
    smtp_starttls: bool = True

    # Public URLs used in e-mails
    public_app_url: str = "http://localhost:5173"

    # Logging
    log_dir: str = "log"
    log_level: str = "INFO"

    def resolved_public_app_url(self) -> str:
        return (self.public_app_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
