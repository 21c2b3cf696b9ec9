"""Title translation for an article list.

Two worker pools share one TitleTranslator (and therefore one cache and one
request gate):

- the *auto* pool receives articles whose feed has title translation enabled
  by policy, each time a list is loaded or extended;
- the *manual* pool receives every article the user explicitly asks to
  translate, ignoring the policy.

Loading a new list resets the auto pool; ``hide_all`` and ``reset`` stop
both. Failed titles are remembered per ``title||language`` so the list can
render an error marker next to the original title.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from feedai.schemas.translation import Article, Feature, TranslationResult, TranslationTask
from feedai.services.feature_policy import FeaturePolicyResolver
from feedai.services.title_translator import TitleTranslator
from feedai.services.translation_cache import make_cache_key
from feedai.services.translation_queue import TranslationWorkerPool

logger = logging.getLogger(__name__)

ArticleCallback = Callable[[Article, TranslationResult], None]


class TitleTranslationManager:
    def __init__(
        self,
        translator: TitleTranslator,
        policy: FeaturePolicyResolver,
        target_language: Optional[str] = None,
        on_result: Optional[ArticleCallback] = None,
        concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.translator = translator
        self.policy = policy
        self.target_language = target_language or translator.gateway.config.target_lang
        self.on_result = on_result
        self.auto_pool = TranslationWorkerPool(
            translator, concurrency, batch_size, on_result=self._handle_result, name="auto"
        )
        self.manual_pool = TranslationWorkerPool(
            translator, concurrency, batch_size, on_result=self._handle_result, name="manual"
        )
        self.manual_active = False
        self.hidden = False
        self.failures: dict[str, str] = {}
        self._articles: dict[str, Article] = {}

    def trigger(self, articles: Iterable[Article], cancel_previous: bool = True) -> list[asyncio.Future]:
        """Queue policy-enabled, untranslated titles for automatic translation.

        ``cancel_previous`` is False when articles are appended to the
        current list (infinite scroll) rather than replacing it.
        """
        if not self.policy.is_configured():
            return []

        if cancel_previous:
            self.auto_pool.reset()
            self.failures.clear()
            self._forget_settled_articles()

        pending = [
            article
            for article in articles
            if self.policy.should_apply(article.feed_id, Feature.TITLE_TRANSLATION)
            and not self.auto_pool.is_queued(article.id)
            and self.translator.cache.get(article.title, self.target_language) is None
        ]
        return self._submit(self.auto_pool, pending)

    def translate_manually(self, articles: Iterable[Article]) -> list[asyncio.Future]:
        """Translate the given titles regardless of feed settings."""
        self.manual_active = True
        self.hidden = False
        self.manual_pool.reset()
        self.failures.clear()
        self._forget_settled_articles()

        pending = [
            article
            for article in articles
            if self.translator.cache.get(article.title, self.target_language) is None
        ]
        return self._submit(self.manual_pool, pending)

    def reset(self) -> None:
        """Forget the current list; called when the user switches lists."""
        self.auto_pool.reset()
        self.manual_pool.reset()
        self.manual_active = False
        self.hidden = False
        self._articles.clear()

    def hide_all(self) -> None:
        """Stop all translation work and show original titles."""
        self.auto_pool.reset()
        self.manual_pool.reset()
        self.manual_active = False
        self.hidden = True
        self.failures.clear()

    def failure_for(self, title: str) -> Optional[str]:
        return self.failures.get(make_cache_key(title, self.target_language))

    def translation_for(self, article: Article) -> Optional[str]:
        """Cached translation to display for ``article``, if any."""
        if self.hidden:
            return None
        if not self.manual_active and not self.policy.should_apply(article.feed_id, Feature.TITLE_TRANSLATION):
            return None
        return self.translator.cache.get(article.title, self.target_language)

    async def shutdown(self) -> None:
        await self.auto_pool.shutdown()
        await self.manual_pool.shutdown()

    def _submit(self, pool: TranslationWorkerPool, articles: list[Article]) -> list[asyncio.Future]:
        if not articles:
            return []
        for article in articles:
            self._articles[article.id] = article
        tasks = [
            TranslationTask(id=article.id, source_text=article.title, target_language=self.target_language)
            for article in articles
        ]
        return pool.submit(tasks)

    def _forget_settled_articles(self) -> None:
        self._articles = {
            article_id: article
            for article_id, article in self._articles.items()
            if self.auto_pool.has_pending(article_id) or self.manual_pool.has_pending(article_id)
        }

    def _handle_result(self, result: TranslationResult) -> None:
        article = self._articles.get(result.task_id)
        if article is None:
            return
        if result.failed:
            self.failures[make_cache_key(article.title, self.target_language)] = (
                result.error_message or "translation failed"
            )
        if self.on_result is not None:
            self.on_result(article, result)
