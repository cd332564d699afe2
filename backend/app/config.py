from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

_env_path = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_path),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DATABASE_URL: str
    REDIS_URL: str
    ADMIN_API_KEY: str
    ADMIN_EMAIL: str = "admin@example.com"
    BRAND_NAME: str = "LykkeLoop"
    SITE_URL: str = "http://localhost:3000"
    REALTIME_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"   # "memory" or "redis"
    RATE_LIMIT_MAX: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    POLL_INTERVAL_SECONDS: float = 10.0
    MESSAGE_PAGE_SIZE: int = 50
    LOG_LEVEL: str = "INFO"


settings = Settings()
