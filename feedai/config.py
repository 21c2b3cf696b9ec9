from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from functools import lru_cache
from pathlib import Path

# Get the project root (feedai/..)
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):

    # AI provider (OpenAI-compatible chat completions endpoint)
    ai_api_url: str = ""
    ai_api_key: str = ""
    ai_model: str = "gpt-4.1-mini"
    ai_temperature: float = 1.0
    ai_provider: str = ""  # "ollama" allows an empty api key

    # Application
    app_debug: bool = False
    target_language: str = "zh-CN"
    title_translation_mode: str = "bilingual"  # "bilingual" or "translated"

    # Custom prompt templates (empty = built-in default)
    translate_prompt: str = ""
    summarize_prompt: str = ""

    # Request admission
    ai_concurrency: int = 5  # Max simultaneous outbound AI requests, process-wide
    ai_request_timeout_seconds: float = 120.0

    # Title translation worker pool
    translation_workers: int = 5
    translation_batch_size: int = 10

    # Translation memory cache
    title_cache_max_size: int = 5000  # Max number of entries in the volatile tier
    title_cache_prefix: str = "title:"

    # Redis (durable cache tier and preferences)
    redis_url: str = ""
    redis_cache_namespace: str = "ai_cache"
    redis_preferences_namespace: str = "preferences"

    # Background pretranslation
    pretranslate_interval_seconds: float = 300.0
    pretranslate_initial_delay_seconds: float = 30.0
    pretranslate_backoff_initial_seconds: float = 30.0  # First wait after a 429, doubled per retry
    pretranslate_backoff_max_seconds: float = 300.0

    @field_validator("ai_concurrency", "translation_workers", "translation_batch_size", mode="before")
    @classmethod
    def parse_positive_int(cls, v):
        if v == "" or v is None:
            return 1
        if int(v) < 1:
            return 1
        return v

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Singleton instance for easy import
settings = get_settings()
