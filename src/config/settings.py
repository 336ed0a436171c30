"""Application configuration loaded from environment variables.

Process-level settings only. Clinic-editable operational settings
(business hours, provider credentials, templates, follow-up ceilings)
live in the ``settings`` table; see ``src.db.settings_store``.
"""

from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the follow-up service.

    Args loaded from .env file and environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Postgres
    db_host: str = "127.0.0.1"
    db_port: int = 5432
    db_name: str = "clinic_followup_dev"
    db_user: str = "postgres"
    db_password: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Public URL (for provider callbacks)
    public_base_url: str = "http://localhost:8000"

    # Auth
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    cron_secret: str = ""

    # Retell AI
    retell_api_url: str = "https://api.retellai.com"
    retell_timeout_seconds: float = 30.0

    # Follow-up scheduler
    followup_scheduler_enabled: bool = False
    followup_poll_interval_seconds: int = 300
    followup_lock_timeout_seconds: int = 600
    clinic_timezone: str = "UTC"

    # CORS
    cors_allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    @property
    def database_url(self) -> str:
        """Build async Postgres connection URL."""
        return (
            f"postgresql+asyncpg://{self.db_user}"
            f":{self.db_password}"
            f"@{self.db_host}:{self.db_port}"
            f"/{self.db_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Build sync Postgres connection URL (for Alembic migrations)."""
        return (
            f"postgresql://{self.db_user}"
            f":{self.db_password}"
            f"@{self.db_host}:{self.db_port}"
            f"/{self.db_name}"
        )

    @property
    def clinic_tz(self) -> ZoneInfo:
        """Timezone for business hours and the daily call cap."""
        return ZoneInfo(self.clinic_timezone)

    @property
    def voice_callback_url(self) -> str:
        """Webhook URL handed to the voice provider for call outcomes."""
        return f"{self.public_base_url.rstrip('/')}/webhooks/voice"


def get_settings() -> Settings:
    """Return a Settings instance.

    Returns:
        Application settings loaded from env.
    """
    return Settings()
