from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # === Reddit (OAuth client-credentials) ===
    REDDIT_CLIENT_ID: str | None = None
    REDDIT_CLIENT_SECRET: str | None = None
    REDDIT_USER_AGENT: str = "web:threadsense:v0.1.0"
    REDDIT_AUTH_URL: str = "https://www.reddit.com/api/v1/access_token"
    REDDIT_OAUTH_BASE_URL: str = "https://oauth.reddit.com"
    REDDIT_TOKEN_SAFETY_MARGIN: int = Field(
        default=60,
        ge=0,
        description="Seconds subtracted from the token TTL so it is refreshed before it expires.",
    )
    REDDIT_COMMENT_LIMIT: int = 200
    REDDIT_COMMENT_DEPTH: int = 5
    REDDIT_TIMEOUT_SECONDS: float = 30.0

    # === YouTube Data API v3 ===
    YOUTUBE_API_KEY: str | None = None
    YOUTUBE_ENABLED: bool = False
    YOUTUBE_API_BASE_URL: str = "https://www.googleapis.com/youtube/v3"
    YOUTUBE_MAX_COMMENTS: int = 200
    YOUTUBE_MAX_REPLIES_PER_COMMENT: int = 10
    YOUTUBE_PAGE_DELAY_SECONDS: float = 0.1
    YOUTUBE_DAILY_QUOTA_LIMIT: int = 10000
    YOUTUBE_SEARCH_CACHE_TTL: int = 900  # 15 minutes
    YOUTUBE_SEARCH_MAX_RESULTS: int = 25  # search.list costs 100 units regardless of size
    YOUTUBE_TIMEOUT_SECONDS: float = 30.0

    # === Gemini ===
    GEMINI_API_KEY: str | None = None
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta/models/"
    GEMINI_MODEL: str = "gemini-3-pro-preview"
    GEMINI_FALLBACK_MODELS: list[str] = [
        "gemini-3-flash-preview",
        "gemini-2.5-pro",
        "gemini-2.5-flash",
    ]
    GEMINI_TEMPERATURE: float = 0.7
    GEMINI_TOP_P: float = 0.95
    GEMINI_ADVANCED_MAX_OUTPUT_TOKENS: int = 65536
    GEMINI_BASIC_MAX_OUTPUT_TOKENS: int = 8192
    GEMINI_ADVANCED_TOP_K: int = 64
    GEMINI_BASIC_TOP_K: int = 40
    # Model names containing any of these substrings get the advanced budgets
    GEMINI_ADVANCED_MARKERS: list[str] = ["3", "2.5", "pro"]
    GEMINI_PRIMARY_RETRIES: int = 3
    GEMINI_FALLBACK_RETRIES: int = 2
    GEMINI_BACKOFF_BASE: float = 2.0
    GEMINI_RETRY_DELAY: float = 2.0
    GEMINI_TIMEOUT_SECONDS: float = 300.0

    # === Batch extraction / map-reduce ===
    EXTRACTION_BATCH_SIZE: int = 30
    EXTRACTION_BATCH_DELAY: float = 0.0
    COMMENT_CAP_PER_POST: int = 50
    MAP_REDUCE_CHUNK_SIZE: int = 5
    MAP_REDUCE_MAP_MODEL: str = "gemini-2.5-flash"
    MAP_REDUCE_REDUCE_MODEL: str | None = None
    MAP_REDUCE_CALL_DELAY: float = 3.0
    PRESCREEN_THRESHOLD: int = Field(default=3, ge=1, le=5)

    # === Validators ===

    @field_validator("EXTRACTION_BATCH_SIZE", "MAP_REDUCE_CHUNK_SIZE", "COMMENT_CAP_PER_POST")
    @classmethod
    def validate_sizes(cls, v: int) -> int:
        """Chunk and cap sizes must allow at least one item through."""
        if v < 1:
            raise ValueError("Batch, chunk and cap sizes must be >= 1")
        return v

    @field_validator(
        "EXTRACTION_BATCH_DELAY", "MAP_REDUCE_CALL_DELAY", "YOUTUBE_PAGE_DELAY_SECONDS"
    )
    @classmethod
    def validate_delays(cls, v: float) -> float:
        """Validate inter-call delays (seconds)."""
        if v < 0:
            raise ValueError("Delays must be >= 0 seconds")
        if v > 600:
            raise ValueError("Delays must be <= 600 seconds (10 min)")
        return v

    @field_validator("GEMINI_PRIMARY_RETRIES", "GEMINI_FALLBACK_RETRIES")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """Every model gets at least one attempt; keep backoff ceilings bounded."""
        if v < 1:
            raise ValueError("Retry counts must be >= 1")
        if v > 10:
            raise ValueError("Retry counts must be <= 10")
        return v

    @field_validator("GEMINI_TEMPERATURE")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError("GEMINI_TEMPERATURE must be between 0.0 and 2.0")
        return v

    @field_validator("YOUTUBE_DAILY_QUOTA_LIMIT")
    @classmethod
    def validate_quota_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("YOUTUBE_DAILY_QUOTA_LIMIT must be >= 1")
        return v


settings = Settings()
