import json

import pytest

from feedai.exceptions import ProviderError
from feedai.schemas.ai_config import AIConfig
from feedai.services.ai_service import AIService
from feedai.services.translation_cache import ArticleCache, TranslationCache


class FakeGateway:
    def __init__(self, responses=None, error=None, config=None):
        self.responses = list(responses or [])
        self.error = error
        self.prompts = []
        self.config = config or AIConfig(api_url="https://api.example.com", api_key="k")

    async def call(self, prompt, on_chunk=None, token=None, timeout=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    async def stream(self, prompt, token=None, timeout=None):
        self.prompts.append(prompt)
        for delta in self.responses:
            yield delta


class MemoryStore:
    def __init__(self):
        self.data = {}

    async def get_many(self, keys):
        return {key: self.data[key] for key in keys if key in self.data}

    async def get_by_prefix(self, prefix, limit=None):
        return {key: value for key, value in self.data.items() if key.startswith(prefix)}

    async def set_many(self, entries):
        self.data.update(entries)

    async def add_many(self, entries):
        for key, value in entries.items():
            self.data.setdefault(key, value)

    async def delete(self, key):
        self.data.pop(key, None)

    async def clear(self):
        self.data.clear()

    async def count(self):
        return len(self.data)


def _service(gateway, store=None, **config):
    config = AIConfig(api_url="https://api.example.com", api_key="k", target_lang="zh-CN", **config)
    return AIService(
        gateway=gateway,
        title_cache=TranslationCache(store, max_size=100),
        article_cache=ArticleCache(store),
        config=config,
    )


@pytest.mark.asyncio
async def test_translate_uses_default_prompt():
    gateway = FakeGateway(["你好"])
    service = _service(gateway)

    assert await service.translate("Hello") == "你好"
    assert "简体中文" in gateway.prompts[0]
    assert gateway.prompts[0].endswith("Hello")


@pytest.mark.asyncio
async def test_custom_summarize_prompt_is_sanitized():
    gateway = FakeGateway(["short"])
    service = _service(gateway, summarize_prompt="Summarize in {targetLang}: {content}")

    await service.summarize("Long text", "en")

    assert gateway.prompts[0] == "Summarize in English: Long text"
    assert service.get_prompt("summarize") == "Summarize in {{targetLang}}: {{content}}"


@pytest.mark.asyncio
async def test_stream_translate_yields_deltas():
    service = _service(FakeGateway(["你", "好"]))

    deltas = [delta async for delta in service.stream_translate("Hello")]

    assert deltas == ["你", "好"]


@pytest.mark.asyncio
async def test_translate_title_uses_cache():
    gateway = FakeGateway(["  苹果新闻\n"])
    service = _service(gateway)

    assert await service.translate_title("Apple News") == "苹果新闻"
    assert await service.translate_title("Apple News") == "苹果新闻"
    assert len(gateway.prompts) == 1
    assert await service.translate_title("   ") == "   "


@pytest.mark.asyncio
async def test_translate_blocks_falls_back_per_block_and_batches():
    gateway = FakeGateway(["1. 第一段\n继续\n\n3. 第三段", "1. 第四段"])
    service = _service(gateway)

    translated = await service.translate_blocks(["First", "Second", "Third", "Fourth"], batch_size=3)

    assert translated == ["第一段\n继续", "Second", "第三段", "第四段"]
    assert len(gateway.prompts) == 2
    assert "numbered blocks" in gateway.prompts[0]
    assert "1. First\n\n2. Second\n\n3. Third" in gateway.prompts[0]


@pytest.mark.asyncio
async def test_summarize_article_is_cached_per_entry():
    store = MemoryStore()
    gateway = FakeGateway(["A summary."])
    service = _service(gateway, store)

    assert await service.summarize_article(7, "body") == "A summary."
    assert await service.summarize_article(7, "body") == "A summary."
    assert store.data["summary:7"] == "A summary."
    assert len(gateway.prompts) == 1


@pytest.mark.asyncio
async def test_translate_article_round_trips_through_cache():
    store = MemoryStore()
    gateway = FakeGateway(["1. 标题\n\n2. 正文"])
    service = _service(gateway, store)

    first = await service.translate_article(9, ["Title", "Body"], "zh-CN")
    second = await service.translate_article(9, ["Title", "Body"], "zh-CN")

    assert first == second == ["标题", "正文"]
    assert json.loads(store.data["translation:9:zh-CN"]) == ["标题", "正文"]
    assert len(gateway.prompts) == 1


@pytest.mark.asyncio
async def test_provider_errors_propagate_and_nothing_is_cached():
    store = MemoryStore()
    service = _service(FakeGateway(error=ProviderError(500, "boom")), store)

    with pytest.raises(ProviderError):
        await service.summarize_article(1, "body")
    assert store.data == {}
