import asyncio

import pytest

from feedai.exceptions import ProviderError
from feedai.schemas.ai_config import AIConfig
from feedai.schemas.translation import Article, Feature, OverrideScope, OverrideValue
from feedai.services.feature_policy import FeaturePolicyResolver
from feedai.services.preference_store import InMemoryPreferenceStore
from feedai.services.title_translation import TitleTranslationManager
from feedai.services.title_translator import TitleTranslator
from feedai.services.translation_cache import TranslationCache


class FakeGateway:
    """Answers each numbered title with a bracketed copy, or fails."""

    def __init__(self, error=None):
        self.error = error
        self.prompts = []
        self.config = AIConfig(api_url="https://api.example.com", api_key="k", target_lang="zh-CN")
        self.release = asyncio.Event()
        self.release.set()

    async def call(self, prompt, on_chunk=None, token=None, timeout=None):
        self.prompts.append(prompt)
        await token.guard(self.release.wait())
        if self.error is not None:
            raise self.error
        lines = [line for line in prompt.splitlines() if line[:1].isdigit()]
        return "\n".join(f"{line.split('. ', 1)[0]}. [{line.split('. ', 1)[1]}]" for line in lines)


ARTICLES = [
    Article(id=1, feed_id=100, title="Apple News"),
    Article(id=2, feed_id=200, title="Tech Weekly"),
    Article(id=3, feed_id=100, title="Daily Brief"),
]


async def _manager(gateway, on_result=None):
    policy = FeaturePolicyResolver(
        store=InMemoryPreferenceStore(),
        group_of=lambda feed_id: None,
        is_configured=lambda: True,
    )
    await policy.set_override(OverrideScope.FEED, 100, Feature.TITLE_TRANSLATION, OverrideValue.ON)
    translator = TitleTranslator(gateway, TranslationCache(max_size=100))
    return TitleTranslationManager(translator, policy, on_result=on_result, concurrency=2, batch_size=10)


@pytest.mark.asyncio
async def test_trigger_only_translates_enabled_feeds():
    seen = []
    manager = await _manager(FakeGateway(), on_result=lambda article, result: seen.append((article.id, result)))

    results = await asyncio.gather(*manager.trigger(ARTICLES))

    assert [r.translated_text for r in results] == ["[Apple News]", "[Daily Brief]"]
    assert sorted(article_id for article_id, _ in seen) == ["1", "3"]
    assert manager.translation_for(ARTICLES[0]) == "[Apple News]"
    assert manager.translation_for(ARTICLES[1]) is None


@pytest.mark.asyncio
async def test_cached_titles_are_not_resubmitted():
    gateway = FakeGateway()
    manager = await _manager(gateway)
    await asyncio.gather(*manager.trigger(ARTICLES))

    futures = manager.trigger(ARTICLES)

    assert futures == []
    assert len(gateway.prompts) == 1


@pytest.mark.asyncio
async def test_manual_translation_bypasses_policy():
    manager = await _manager(FakeGateway())

    results = await asyncio.gather(*manager.translate_manually(ARTICLES))

    assert [r.translated_text for r in results] == ["[Apple News]", "[Tech Weekly]", "[Daily Brief]"]
    assert manager.manual_active
    assert manager.translation_for(ARTICLES[1]) == "[Tech Weekly]"


@pytest.mark.asyncio
async def test_failures_are_recorded_per_title():
    manager = await _manager(FakeGateway(error=ProviderError(401, "Invalid API key")))

    results = await asyncio.gather(*manager.trigger(ARTICLES))

    assert all(r.failed for r in results)
    assert manager.failure_for("Apple News") == "[401] Invalid API key"
    assert manager.failure_for("Tech Weekly") is None


@pytest.mark.asyncio
async def test_new_list_cancels_previous_run():
    gateway = FakeGateway()
    gateway.release.clear()
    manager = await _manager(gateway)
    old = manager.trigger(ARTICLES)
    await asyncio.sleep(0)

    manager.trigger([Article(id=4, feed_id=100, title="Evening Edition")])
    gateway.release.set()

    assert all(f.cancelled() for f in old)
    await manager.auto_pool.join()
    assert manager.translation_for(Article(id=4, feed_id=100, title="Evening Edition")) == "[Evening Edition]"


@pytest.mark.asyncio
async def test_hide_all_stops_work_and_hides_translations():
    gateway = FakeGateway()
    manager = await _manager(gateway)
    await asyncio.gather(*manager.translate_manually(ARTICLES))

    manager.hide_all()

    assert manager.hidden
    assert not manager.manual_active
    assert manager.translation_for(ARTICLES[0]) is None
    assert manager.auto_pool.pending == 0
    assert manager.manual_pool.pending == 0


@pytest.mark.asyncio
async def test_unconfigured_ai_triggers_nothing():
    manager = await _manager(FakeGateway())
    manager.policy.is_configured = lambda: False

    assert manager.trigger(ARTICLES) == []


@pytest.mark.asyncio
async def test_switching_lists_forgets_earlier_articles():
    gateway = FakeGateway()
    manager = await _manager(gateway)
    await asyncio.gather(*manager.trigger(ARTICLES))
    gateway.release.clear()

    manager.trigger([Article(id=4, feed_id=100, title="Evening Edition")])

    assert set(manager._articles) == {"4"}
    gateway.release.set()
    await manager.auto_pool.join()


@pytest.mark.asyncio
async def test_switching_lists_keeps_manual_work_in_flight():
    gateway = FakeGateway()
    gateway.release.clear()
    seen = []
    manager = await _manager(gateway, on_result=lambda article, result: seen.append(article.id))
    manual = manager.translate_manually([Article(id=5, feed_id=200, title="Night Owl")])
    await asyncio.sleep(0)

    manager.trigger([Article(id=4, feed_id=100, title="Evening Edition")])
    gateway.release.set()
    await asyncio.gather(*manual)
    await manager.auto_pool.join()

    assert sorted(seen) == ["4", "5"]
