from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # JWT (tokens are issued by the identity provider; we only verify them)
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Booking rules
    appointment_duration_minutes: int = 30
    business_start_hour: int = 9
    business_end_hour: int = 18  # exclusive, so last slot ends at 18:00

    # Reminder scanner
    reminder_scan_interval_seconds: int = 60
    reminder_claim_timeout_seconds: int = 300
    reminder_batch_size: int = 100
    # Set false when the scanner runs as its own process (python -m app.worker)
    reminder_scanner_in_app: bool = True

    # Push delivery (Expo push API)
    push_enabled: bool = True
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    push_timeout_seconds: float = 10.0

    # Read operations are retried on transient store failures
    read_retry_attempts: int = 3

    # Env
    env: str = "development"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
