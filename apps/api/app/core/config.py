from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ENCRYPTION_KEY: str
    ACCESS_TOKEN_MINUTES: int = 60
    METATRADERAPI_BASE_URL: str = "https://api.metatraderapi.dev"
    METATRADERAPI_API_KEY: str = ""
    METATRADERAPI_TIMEOUT_SECONDS: float = 8.0
    CRON_SECRET: str = ""
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_BOT_USERNAME: str = ""
    TELEGRAM_ALERT_CHANNEL_ID: str = ""
    TELEGRAM_TIMEOUT_SECONDS: float = 8.0
    RISK_DEDUPE_HOURS: int = 12
    RISK_SWEEP_MAX_WORKERS: int = 4
    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore"
    )


settings = Settings()
