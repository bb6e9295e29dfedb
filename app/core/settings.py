from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (set via .env; avoid hardcoding secrets here)
    DATABASE_URL: str = "sqlite:///./adsheets.db"

    # Google OAuth client used to refresh users' Sheets tokens
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"

    # Meta Marketing API
    META_API_VERSION: str = "v21.0"

    # Export scheduler
    EXPORT_SCHEDULER_ENABLED: bool = True
    EXPORT_SCHEDULER_CRON: str = "*/15 * * * *"  # every 15 minutes (0, 15, 30, 45)
    EXPORT_SERVER_TIMEZONE: str = ""  # empty = host local time
    EXPORT_FETCH_WORKERS: int = 8

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True
    LOG_FILE: str = "logs/app.log"  # empty disables the file handler
    LOG_MAX_BYTES: int = 5_000_000  # 5 MB
    LOG_BACKUP_COUNT: int = 5

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()

# Basic validation for required settings to prevent confusing runtime errors
_missing = []
if not settings.GOOGLE_CLIENT_ID:
    _missing.append("GOOGLE_CLIENT_ID")
if not settings.GOOGLE_CLIENT_SECRET:
    _missing.append("GOOGLE_CLIENT_SECRET")

if _missing:
    # Do not crash imports in some tools; instead, provide a helpful message.
    import warnings

    warnings.warn(
        "Missing required settings in .env: "
        + ", ".join(_missing)
        + ". Scheduled Google Sheets exports will fail until they are set."
    )
