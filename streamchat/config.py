from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> str | None:
    cur = Path(__file__).resolve()
    for parent in [cur.parent, *cur.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            return str(candidate)
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file() or ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # backend
    API_BASE_URL: str = "http://localhost:8000"
    HTTP_TIMEOUT_SEC: float = 8.0
    STREAM_TIMEOUT_SEC: float = 30.0
    CHAT_MODEL: str = "volcengine/deepseek-v3"

    # token storage
    TOKEN_STORE_BACKEND: str = "redis"  # "redis" | "memory"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    TOKEN_KEY_PREFIX: str = "streamchat:"
    TOKEN_TTL_SEC: int = 0

    # session / fallback
    IDENTITY_CACHE_TTL_SEC: float = 300.0
    SIMULATOR_CHUNK_DELAY_SEC: float = 0.1

    LOG_LEVEL: str = "INFO"


settings = Settings()
