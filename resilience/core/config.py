import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


def _get_version() -> str:
    """Read version from pyproject.toml or environment variable."""
    # First check environment variable (for Docker/CI overrides)
    if env_version := os.getenv("RESILIENCE_VERSION"):
        return env_version

    try:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            content = pyproject_path.read_text()
            for line in content.split("\n"):
                if line.startswith("version"):
                    # Parse: version = "0.1.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
    except OSError:
        pass

    return "0.0.0-dev"


APP_VERSION = _get_version()

INSECURE_SECRET_DEFAULTS = [
    "dev-service-role-key-change-in-prod",
    "secret",
    "changeme",
]


class Settings(BaseSettings):
    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "petshop"
    POSTGRES_PASSWORD: str = "devpassword"
    POSTGRES_DB: str = "petshop"

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # Key presented by the trusted scheduler and by operators on /internal and /admin routes
    SERVICE_ROLE_KEY: str = "dev-service-role-key-change-in-prod"

    # App
    APP_NAME: str = "petshop-resilience"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Login throttling (defaults for the shared ThrottlePolicy)
    LOGIN_EMAIL_THRESHOLD: int = 3
    LOGIN_IP_THRESHOLD: int = 10
    LOGIN_WINDOW_SECONDS: int = 15 * 60
    IP_BLOCK_DURATION_SECONDS: int = 30 * 60
    LOGIN_ALERT_MILESTONES: list[int] = [3, 5, 10]

    # Proxies whose X-Forwarded-For / X-Real-IP headers are believed (IPs or CIDRs, comma separated, "*" for any)
    TRUSTED_PROXIES: str = "127.0.0.1,::1"

    # Per-IP request budget for /login/check (fixed window, Redis-backed)
    LOGIN_CHECK_REQUESTS_PER_WINDOW: int = 30
    LOGIN_CHECK_WINDOW_SECONDS: int = 60

    # Failed job retries
    RETRY_BATCH_SIZE: int = 10
    RETRY_DEFAULT_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY_SECONDS: int = 60
    RETRY_MAX_DELAY_SECONDS: int = 60 * 60
    RETRY_CLAIM_TIMEOUT_SECONDS: int = 15 * 60
    RETRY_INTERVAL_SECONDS: int = 60

    # In-process triggers; disable when an external cron calls /internal instead
    SCHEDULER_ENABLED: bool = True
    RETENTION_CRON_HOUR: int = 3

    # Retention (days)
    RETENTION_LOGIN_ATTEMPTS_DAYS: int = 90
    RETENTION_NOTIFICATIONS_DAYS: int = 30
    RETENTION_SYSTEM_LOGS_DAYS: int = 60
    RETENTION_SUCCEEDED_JOBS_DAYS: int = 30

    # Outbound calls
    FUNCTIONS_BASE_URL: str | None = None
    ALERT_WEBHOOK_URL: str | None = None
    HTTP_TIMEOUT_SECONDS: float = 10.0

    @field_validator("SERVICE_ROLE_KEY")
    @classmethod
    def validate_service_role_key(cls, v: str, info) -> str:
        """Reject empty or well-known keys outside of DEBUG mode."""
        if not v or v.strip() == "":
            raise ValueError(
                f"{info.field_name} must be set in environment variables. "
                f"Generate a secure random key using: openssl rand -base64 32"
            )

        if v.lower() in INSECURE_SECRET_DEFAULTS:
            # DEBUG is read from the environment since field order is not guaranteed here
            debug_mode = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

            if not debug_mode:
                raise ValueError(
                    f"{info.field_name} is using an insecure default value. "
                    f"Generate a secure key using: openssl rand -base64 32"
                )

            import logging
            logger = logging.getLogger(__name__)
            logger.warning(
                f"{info.field_name} is using an insecure default value in DEBUG mode. "
                f"This MUST be changed in production!"
            )
        elif len(v) < 32:
            raise ValueError(
                f"{info.field_name} must be at least 32 characters long. "
                f"Generate a secure key using: openssl rand -base64 32"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
