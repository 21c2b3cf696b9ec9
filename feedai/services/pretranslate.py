"""Background pretranslation.

One worker task wakes every ``pretranslate_interval_seconds`` and fills the
caches ahead of the reader. Recent entries are filtered to feeds enabled for
each feature by the override maps, then processed in order: titles in
numbered batches, full-text translations, then summaries. A feature only
runs while its pretranslate switch is on in the preference store.

Each round runs under its own CancellationScope. A config change aborts the
round and starts a new one right away. A 429 from the provider pauses the
round with exponential backoff and retries the same call.
"""

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from feedai.config import get_settings
from feedai.exceptions import AIError, ProviderError, RequestCancelled
from feedai.schemas.translation import Article, Feature, TranslationTask
from feedai.services.ai_service import MAX_CONTENT_LENGTH, AIService, get_ai_service
from feedai.services.cancellation import CancellationScope
from feedai.services.feature_policy import FeaturePolicyResolver
from feedai.services.html_blocks import extract_text_blocks, strip_html
from feedai.services.title_translator import TitleTranslator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Returns the recent unread entries to consider (the reader fetches the last 24h)
EntrySource = Callable[[], Awaitable[Sequence[Article]]]

TITLE_BATCH_SIZE = 10

SWITCH_KEYS = {
    Feature.TITLE_TRANSLATION: "ai_pretranslate_title",
    Feature.FULL_TRANSLATION: "ai_pretranslate_translate",
    Feature.SUMMARY: "ai_pretranslate_summary",
}


class RateLimitBackoff:
    """Wait after each 429, doubling up to ``maximum``; a success resets it."""

    def __init__(self, initial: Optional[float] = None, maximum: Optional[float] = None, multiplier: float = 2.0):
        settings = get_settings()
        self.initial = initial if initial is not None else settings.pretranslate_backoff_initial_seconds
        self.maximum = maximum if maximum is not None else settings.pretranslate_backoff_max_seconds
        self.multiplier = multiplier
        self.delay = self.initial

    def next_delay(self) -> float:
        delay = self.delay
        self.delay = min(self.delay * self.multiplier, self.maximum)
        return delay

    def reset(self) -> None:
        self.delay = self.initial


async def call_with_backoff(
    func: Callable[[], Awaitable[T]],
    backoff: RateLimitBackoff,
    scope: CancellationScope,
) -> T:
    """Await ``func()`` until it stops failing with a 429; other errors propagate.

    The wait between attempts is aborted with RequestCancelled when ``scope``
    fires.
    """
    while True:
        try:
            result = await func()
        except ProviderError as e:
            if e.status != 429:
                raise
            delay = backoff.next_delay()
            logger.warning(f"Rate limited (429), backing off {delay:g}s")
            await scope.guard(asyncio.sleep(delay))
            continue
        backoff.reset()
        return result


class PretranslateScheduler:
    def __init__(
        self,
        source: EntrySource,
        policy: FeaturePolicyResolver,
        service: Optional[AIService] = None,
        translator: Optional[TitleTranslator] = None,
        target_language: Optional[str] = None,
        interval: Optional[float] = None,
        initial_delay: Optional[float] = None,
        backoff_initial: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.source = source
        self.policy = policy
        self.service = service or get_ai_service()
        self.translator = translator or TitleTranslator(self.service.gateway, self.service.title_cache)
        self.target_language = target_language or self.service.config.target_lang or settings.target_language
        self.interval = interval if interval is not None else settings.pretranslate_interval_seconds
        self.initial_delay = initial_delay if initial_delay is not None else settings.pretranslate_initial_delay_seconds
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max

        self.rounds = 0
        self._task: Optional[asyncio.Task] = None
        self._round: Optional[CancellationScope] = None
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the worker; a second call while it runs is a no-op."""
        if self.running:
            return
        logger.info(f"Pretranslate scheduler starting (first round in {self.initial_delay:g}s)")
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._round is not None:
            self._round.cancel("scheduler stopped")
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Pretranslate scheduler stopped")

    def notify_config_changed(self) -> None:
        """Abort the current round, if any, and run a new one right away."""
        if self._round is not None:
            logger.info("Config changed, aborting current pretranslate round")
            self._round.cancel("config changed")
        self._wake.set()

    async def set_switch(self, feature: Feature, enabled: bool) -> None:
        await self.policy.store.set_many({SWITCH_KEYS[Feature(feature)]: bool(enabled)})
        self.notify_config_changed()

    async def _loop(self) -> None:
        await self._idle(self.initial_delay)
        while True:
            scope = CancellationScope()
            self._round = scope
            try:
                await self.run_round(scope)
            except RequestCancelled as e:
                logger.info(f"Pretranslate round aborted ({e.reason}), restarting")
            except Exception:
                logger.exception("Pretranslate round failed")
            finally:
                self._round = None
                scope.close()
                self.rounds += 1
            await self._idle(self.interval)

    async def _idle(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    async def run_round(self, scope: Optional[CancellationScope] = None) -> dict[Feature, int]:
        """Run one pass over recent entries.

        Returns the number of items sent to the provider per feature.
        Raises RequestCancelled when ``scope`` fires.
        """
        scope = scope or CancellationScope()
        done = {feature: 0 for feature in Feature}
        if not self.service.is_configured:
            return done

        switches = await self._switches()
        if not any(switches.values()):
            return done
        await self.policy.load()

        try:
            entries = list(await self.source())
        except Exception as e:
            logger.error(f"Failed to fetch entries for pretranslation: {e}")
            return done

        feed_ids = {entry.feed_id for entry in entries if entry.feed_id is not None}
        enabled = {
            feature: self.policy.enabled_units(feature, feed_ids) if switches[feature] else set()
            for feature in Feature
        }
        wanted = set().union(*enabled.values())
        relevant = [entry for entry in entries if entry.feed_id in wanted]
        if not relevant:
            return done
        logger.info(f"Pretranslating {len(relevant)} articles across {len(wanted)} feeds")

        backoff = RateLimitBackoff(self.backoff_initial, self.backoff_max)

        def _for(feature: Feature) -> list[Article]:
            return [entry for entry in relevant if entry.feed_id in enabled[feature]]

        scope.raise_if_cancelled()
        done[Feature.TITLE_TRANSLATION] = await self._translate_titles(_for(Feature.TITLE_TRANSLATION), backoff, scope)
        scope.raise_if_cancelled()
        done[Feature.FULL_TRANSLATION] = await self._translate_articles(_for(Feature.FULL_TRANSLATION), backoff, scope)
        scope.raise_if_cancelled()
        done[Feature.SUMMARY] = await self._summarize_articles(_for(Feature.SUMMARY), backoff, scope)
        return done

    async def _switches(self) -> dict[Feature, bool]:
        try:
            stored = await self.policy.store.get_many(list(SWITCH_KEYS.values()))
        except Exception as e:
            logger.warning(f"Failed to read pretranslate switches, treating all as off: {e}")
            stored = {}
        return {feature: bool(stored.get(key)) for feature, key in SWITCH_KEYS.items()}

    async def _translate_titles(
        self,
        entries: list[Article],
        backoff: RateLimitBackoff,
        scope: CancellationScope,
    ) -> int:
        lang = self.target_language
        titled = [entry for entry in entries if entry.title.strip()]
        if not titled:
            return 0
        cached = await self.translator.cache.lookup_many((entry.title, lang) for entry in titled)

        tasks: list[TranslationTask] = []
        seen: set[str] = set()
        for entry in titled:
            if (entry.title, lang) in cached or entry.title in seen:
                continue
            seen.add(entry.title)
            tasks.append(TranslationTask(id=entry.id, source_text=entry.title, target_language=lang))
        if not tasks:
            return 0
        logger.info(f"Pretranslating {len(tasks)} titles")

        count = 0
        for start in range(0, len(tasks), TITLE_BATCH_SIZE):
            scope.raise_if_cancelled()
            batch = tasks[start:start + TITLE_BATCH_SIZE]
            try:
                await call_with_backoff(
                    partial(self.translator.translate_batch, batch, token=scope, raise_errors=True), backoff, scope
                )
            except AIError as e:
                if scope.cancelled:
                    raise
                logger.error(f"Title pretranslation batch failed: {e}")
                continue
            count += len(batch)
        return count

    async def _translate_articles(
        self,
        entries: list[Article],
        backoff: RateLimitBackoff,
        scope: CancellationScope,
    ) -> int:
        lang = self.target_language
        count = 0
        for entry in entries:
            scope.raise_if_cancelled()
            if not entry.content.strip():
                continue
            if await self.service.article_cache.get_translation(entry.id, lang):
                continue
            blocks = extract_text_blocks(entry.content[:MAX_CONTENT_LENGTH], entry.title)
            if not blocks:
                continue
            try:
                await call_with_backoff(
                    partial(self.service.translate_article, entry.id, blocks, lang, token=scope), backoff, scope
                )
            except AIError as e:
                if scope.cancelled:
                    raise
                logger.error(f"Full-text pretranslation failed for entry {entry.id}: {e}")
                continue
            count += 1
        if count:
            logger.info(f"Pretranslated {count} articles")
        return count

    async def _summarize_articles(
        self,
        entries: list[Article],
        backoff: RateLimitBackoff,
        scope: CancellationScope,
    ) -> int:
        count = 0
        for entry in entries:
            scope.raise_if_cancelled()
            if not entry.content.strip():
                continue
            if await self.service.article_cache.get_summary(entry.id):
                continue
            text = strip_html(entry.content)[:MAX_CONTENT_LENGTH]
            if not text:
                continue
            try:
                await call_with_backoff(
                    partial(self.service.summarize_article, entry.id, text, self.target_language, token=scope),
                    backoff,
                    scope,
                )
            except AIError as e:
                if scope.cancelled:
                    raise
                logger.error(f"Summary pretranslation failed for entry {entry.id}: {e}")
                continue
            count += 1
        if count:
            logger.info(f"Generated {count} summaries")
        return count


# Process-wide scheduler
_scheduler: Optional[PretranslateScheduler] = None


def start_pretranslate_scheduler(
    source: EntrySource,
    policy: FeaturePolicyResolver,
    **kwargs,
) -> PretranslateScheduler:
    """Start the background scheduler once; later calls return the running one.

    Override changes saved through ``policy`` restart the current round
    unless the resolver already has its own ``on_change`` hook.
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = PretranslateScheduler(source, policy, **kwargs)
        if policy.on_change is None:
            policy.on_change = _scheduler.notify_config_changed
    _scheduler.start()
    return _scheduler


async def stop_pretranslate_scheduler() -> None:
    global _scheduler
    if _scheduler is None:
        return
    await _scheduler.stop()
    _scheduler = None


def notify_config_changed() -> None:
    if _scheduler is not None:
        _scheduler.notify_config_changed()
