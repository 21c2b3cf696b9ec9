from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Feature(str, Enum):
    TITLE_TRANSLATION = "title_translation"
    FULL_TRANSLATION = "auto_translate"
    SUMMARY = "auto_summary"


class OverrideScope(str, Enum):
    FEED = "feed"
    GROUP = "group"


class OverrideValue(str, Enum):
    ON = "on"
    OFF = "off"
    INHERIT = "inherit"


class Article(BaseModel):
    id: str
    feed_id: Optional[str] = None
    title: str = ""
    content: str = ""  # HTML body, used by background pretranslation

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)


class TranslationTask(BaseModel):
    id: str
    source_text: str
    target_language: str

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    @property
    def cache_pair(self) -> tuple[str, str]:
        return (self.source_text, self.target_language)


class TranslationResult(BaseModel):
    task_id: str
    translated_text: str
    from_cache: bool = False
    failed: bool = False
    error_message: Optional[str] = None


class OverrideEntry(BaseModel):
    scope: OverrideScope
    id: str
    value: OverrideValue

    model_config = ConfigDict(coerce_numbers_to_str=True)
