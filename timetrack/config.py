from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_TITLE: str = "Time Tracking Sync"
    MONGODB_URL: str
    DATABASE_NAME: str = "time_tracking"
    PRODUCTION_MODE: bool = False
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    TIMEZONE: str = "UTC"  # zone of the calendar-day key
    PROJECT_CACHE_TTL_SECONDS: int = 300
    PROJECT_CACHE_MAX_SIZE: int = 4096
    CAS_RETRIES: int = 1
    DASHBOARD_DEFAULT_DAYS: int = 7
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
