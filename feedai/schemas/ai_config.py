from typing import Optional

from pydantic import BaseModel

from feedai.config import Settings, get_settings


class AIConfig(BaseModel):
    api_url: str = ""
    api_key: str = ""
    model: str = "gpt-4.1-mini"
    temperature: float = 1.0
    provider: str = ""
    concurrency: int = 5
    target_lang: str = "zh-CN"
    translate_prompt: str = ""
    summarize_prompt: str = ""
    title_translation_mode: str = "bilingual"

    @property
    def is_configured(self) -> bool:
        if not self.api_url:
            return False
        return bool(self.api_key) or self.provider == "ollama"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AIConfig":
        settings = settings or get_settings()
        return cls(
            api_url=settings.ai_api_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            temperature=settings.ai_temperature,
            provider=settings.ai_provider,
            concurrency=settings.ai_concurrency,
            target_lang=settings.target_language,
            translate_prompt=settings.translate_prompt,
            summarize_prompt=settings.summarize_prompt,
            title_translation_mode=settings.title_translation_mode,
        )
