import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session storage backend: redis | file | memory
    STORE_BACKEND = os.getenv("STORE_BACKEND", "redis").strip().lower()
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    STORE_NAMESPACE = os.getenv("STORE_NAMESPACE", "assessment")
    STORE_TTL_SECONDS = int(os.getenv("STORE_TTL_SECONDS", "172800"))
    STORE_PATH = os.getenv("STORE_PATH", ".assessment_sessions.json")

    SESSION_STALE_HOURS = float(os.getenv("SESSION_STALE_HOURS", "24"))
    RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
    RETRY_DELAY_SECONDS = float(os.getenv("RETRY_DELAY_SECONDS", "1"))

    TIMER_TICK_SECONDS = int(os.getenv("TIMER_TICK_SECONDS", "1"))
    DEFAULT_DURATION_MINUTES = int(os.getenv("DEFAULT_DURATION_MINUTES", "60"))
    RESET_TIMER_ON_CONTENT_DRIFT = _env_bool("RESET_TIMER_ON_CONTENT_DRIFT", "true")

    TIMEZONE = os.getenv("TIMEZONE", "UTC")

    @classmethod
    def validate(cls):
        if cls.STORE_BACKEND not in ("redis", "file", "memory"):
            raise ValueError(f"STORE_BACKEND must be redis, file or memory, got {cls.STORE_BACKEND}")
        if cls.STORE_BACKEND == "redis" and not cls.REDIS_URL:
            raise ValueError("REDIS_URL is not set")
        if cls.SESSION_STALE_HOURS <= 0:
            raise ValueError("SESSION_STALE_HOURS must be greater than 0")
        if cls.RETRY_ATTEMPTS < 1:
            raise ValueError("RETRY_ATTEMPTS must be at least 1")
        if cls.TIMER_TICK_SECONDS < 1:
            raise ValueError("TIMER_TICK_SECONDS must be at least 1")
