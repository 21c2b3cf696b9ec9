"""AI Service - single-item translation and summarization.

Everything here goes through the shared LLMGateway, so article-level work
competes for the same request slots as the title worker pools.
"""

import json
import logging
from typing import AsyncIterator, Optional, Sequence

from feedai.config import get_settings
from feedai.schemas.ai_config import AIConfig
from feedai.services.cache import get_durable_store
from feedai.services.cancellation import CancellationScope
from feedai.services.llm_gateway import LLMGateway, get_gateway
from feedai.services.prompts import (
    BLOCKS_PREAMBLE,
    DEFAULT_PROMPTS,
    number_items,
    parse_numbered_response,
    render_prompt,
    sanitize_prompt,
)
from feedai.services.translation_cache import ArticleCache, TranslationCache

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 50000


class AIService:
    def __init__(
        self,
        gateway: Optional[LLMGateway] = None,
        title_cache: Optional[TranslationCache] = None,
        article_cache: Optional[ArticleCache] = None,
        config: Optional[AIConfig] = None,
    ) -> None:
        self.gateway = gateway or get_gateway()
        self.config = config or self.gateway.config
        store = None
        if title_cache is None or article_cache is None:
            store = get_durable_store()
        self.title_cache = title_cache if title_cache is not None else TranslationCache(store)
        self.article_cache = article_cache if article_cache is not None else ArticleCache(store)

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def get_prompt(self, kind: str) -> str:
        """Custom prompt for ``kind`` if the user set one, else the default."""
        custom = {
            "translate": self.config.translate_prompt,
            "summarize": self.config.summarize_prompt,
        }.get(kind)
        return sanitize_prompt(custom) or DEFAULT_PROMPTS[kind]

    def _target(self, target_lang: Optional[str]) -> str:
        return target_lang or self.config.target_lang or get_settings().target_language

    async def translate(
        self,
        content: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> str:
        prompt = render_prompt("translate", content, self._target(target_lang), self.get_prompt("translate"))
        return await self.gateway.call(prompt, token=token)

    async def summarize(
        self,
        content: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> str:
        prompt = render_prompt("summarize", content, self._target(target_lang), self.get_prompt("summarize"))
        return await self.gateway.call(prompt, token=token)

    async def stream_translate(
        self,
        content: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> AsyncIterator[str]:
        prompt = render_prompt("translate", content, self._target(target_lang), self.get_prompt("translate"))
        async for delta in self.gateway.stream(prompt, token=token):
            yield delta

    async def stream_summarize(
        self,
        content: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> AsyncIterator[str]:
        prompt = render_prompt("summarize", content, self._target(target_lang), self.get_prompt("summarize"))
        async for delta in self.gateway.stream(prompt, token=token):
            yield delta

    async def translate_title(
        self,
        title: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> str:
        """Translate one title, reusing the shared title cache."""
        if not title or not title.strip():
            return title
        lang = self._target(target_lang)
        cached = await self.title_cache.lookup_many([(title, lang)])
        if (title, lang) in cached:
            return cached[(title, lang)]

        translated = (await self.gateway.call(render_prompt("title", title, lang), token=token)).strip()
        if translated:
            await self.title_cache.write_many([((title, lang), translated)])
        return translated or title

    async def translate_blocks(
        self,
        blocks: Sequence[str],
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
        batch_size: Optional[int] = None,
    ) -> list[str]:
        """Translate article paragraphs as numbered blocks.

        Blocks are sent in batches (one request each). A block the model
        skipped keeps its source text; a failed request raises.
        """
        lang = self._target(target_lang)
        size = batch_size or get_settings().translation_batch_size
        template = self.get_prompt("translate")
        translated: list[str] = []
        for start in range(0, len(blocks), size):
            batch = list(blocks[start:start + size])
            content = BLOCKS_PREAMBLE + "\n\n" + number_items(batch, separator="\n\n")
            response = await self.gateway.call(render_prompt("translate", content, lang, template), token=token)
            numbered = parse_numbered_response(response, multiline=True)
            if len(numbered) < len(batch):
                logger.info(f"Block response matched {len(numbered)} of {len(batch)} blocks")
            translated.extend(numbered.get(i, block) for i, block in enumerate(batch, 1))
        return translated

    async def summarize_article(
        self,
        entry_id,
        content: str,
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> str:
        """Summarize an article, serving and storing the result in the article cache."""
        entry_id = str(entry_id)
        cached = await self.article_cache.get_summary(entry_id)
        if cached:
            return cached

        summary = (await self.summarize(content[:MAX_CONTENT_LENGTH], target_lang, token=token)).strip()
        if summary:
            await self.article_cache.set_summary(entry_id, summary)
            logger.debug(f"Generated summary for entry {entry_id}")
        return summary

    async def translate_article(
        self,
        entry_id,
        blocks: Sequence[str],
        target_lang: Optional[str] = None,
        token: Optional[CancellationScope] = None,
    ) -> list[str]:
        """Translate an article's blocks, cached per entry and language."""
        entry_id = str(entry_id)
        lang = self._target(target_lang)
        cached = await self.article_cache.get_translation(entry_id, lang)
        if cached:
            try:
                restored = json.loads(cached)
            except ValueError:
                logger.warning(f"Discarding malformed cached translation for entry {entry_id}")
            else:
                if isinstance(restored, list) and len(restored) == len(blocks):
                    return [str(item) for item in restored]

        translated = await self.translate_blocks(blocks, lang, token=token)
        if translated:
            await self.article_cache.set_translation(entry_id, lang, json.dumps(translated, ensure_ascii=False))
        return translated


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
