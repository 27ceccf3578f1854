"""
Application configuration with environment variable support.
"""
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: str, separator: str = ",") -> list[str]:
    """Split a comma separated setting into a list of trimmed, non-empty values."""
    return [item.strip() for item in value.split(separator) if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Feed provider credentials
    REDDIT_CLIENT_ID: str = ""
    REDDIT_CLIENT_SECRET: str = ""
    REDDIT_USER_AGENT: str = "leanwatch/0.1"

    # Classifier providers
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    DEEPSEEK_API_KEY: str = ""
    DEEPSEEK_MODEL: str = "deepseek-chat"
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com/v1"
    CLASSIFIER_ORDER: str = "deepseek,openai"
    CLASSIFIER_INPUT_CHARS: int = 8000
    CLASSIFIER_TIMEOUT_SECONDS: float = 30.0
    PROMPT_VERSION: str = "v1"

    # Relational store
    DATABASE_URL: str = "sqlite:///./leanwatch.db"

    # Feed retrieval
    REDDIT_TOP_LIMIT: int = 25
    REDDIT_TOP_TIME: str = "month"
    COMMENT_TIMEOUT_SECONDS: float = 10.0
    TOKEN_REFRESH_MARGIN_SECONDS: float = 5.0

    # Discussion analysis batching
    DISCUSSION_LIMIT: int = 6
    DISCUSSION_BATCH_SIZE: int = 3
    JITTER_MIN_MS: int = 50
    JITTER_MAX_MS: int = 200

    # Cache TTLs
    ANALYSIS_CACHE_TTL_SECONDS: int = 10 * 60
    AI_CACHE_TTL_SECONDS: int = 30 * 24 * 60 * 60
    SEARCH_CACHE_TTL_SECONDS: int = 60

    # HTTP / logging
    CORS_ALLOW_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    PORT: int = 8000

    @property
    def classifier_order(self) -> list[str]:
        return _split_list(self.CLASSIFIER_ORDER)

    @property
    def cors_allow_origins(self) -> list[str]:
        return _split_list(self.CORS_ALLOW_ORIGINS) or ["*"]


settings = Settings()
