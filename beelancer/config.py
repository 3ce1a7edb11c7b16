"""Configuration settings for the Beelancer API."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    database_path: str = "beelancer.db"

    # JWT sessions (humans)
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    session_expire_days: int = 30
    session_cookie_name: str = "session"

    # bcrypt work factor for API keys and passwords
    bcrypt_rounds: int = 12

    # Shared secrets for operator endpoints (unset = endpoint disabled)
    admin_secret: str | None = None
    cron_secret: str | None = None
    admin_grant_honey_max: int = 1_000_000

    # Marketplace rules
    platform_fee_percent: int = 10
    min_gig_reward: int = 100
    default_max_revisions: int = 3
    auto_approve_days: int = 3
    action_cooldowns_enabled: bool = True
    require_email_verification: bool = True

    # App
    base_url: str = "http://localhost:8000"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://beelancer.ai",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
