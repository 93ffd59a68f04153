from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    API_BASE_URL: str = "http://localhost:6007/user"
    API_TOKEN: str = ""
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    TICK_SECONDS: float = 1.0
    FAST_POLL_SECONDS: float = 30.0
    HARD_RESYNC_SECONDS: float = 120.0
    STALE_AFTER_SECONDS: float = 120.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0
    RETRY_JITTER_SECONDS: float = 0.0

    class Config:
        env_file = ".env"
        env_prefix = "TIMETRACK_"
        extra = "ignore"
