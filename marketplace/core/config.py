from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # --- Required Fields ---
    PROJECT_NAME: str = "Marketplace_Core"
    DATABASE_URL: str

    # --- Optional / Default Fields ---
    # Empty REDIS_URL means sessions and the change feed stay in-process
    REDIS_URL: str | None = None
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "America/Argentina/Buenos_Aires"

    # --- Twilio (outbound WhatsApp) ---
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_NUMBER: str | None = None

    # --- Realtime ---
    REALTIME_RECONNECT_BASE_DELAY: float = 1.0
    REALTIME_RECONNECT_MAX_DELAY: float = 30.0
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 5
    NOTIFICATION_HISTORY_LIMIT: int = 50

    # Postgres container credentials live in the same .env
    POSTGRES_USER: str | None = None
    POSTGRES_PASSWORD: str | None = None
    POSTGRES_DB: str | None = None

    # --- Configuration ---
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"  # other services share this .env
    )

settings = Settings()
