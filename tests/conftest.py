import os

import pytest

os.environ.setdefault("AI_API_URL", "")
os.environ.setdefault("AI_API_KEY", "")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("TRANSLATION_WORKERS", "5")
os.environ.setdefault("TRANSLATION_BATCH_SIZE", "10")


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Each test gets fresh process-wide gate/gateway/service instances."""
    import feedai.services.ai_service as ai_service_mod
    import feedai.services.cache as cache_mod
    import feedai.services.llm_gateway as gateway_mod
    import feedai.services.pretranslate as pretranslate_mod
    import feedai.services.translation_pool as pool_mod

    monkeypatch.setattr(pool_mod, "_request_gate", None)
    monkeypatch.setattr(gateway_mod, "_gateway", None)
    monkeypatch.setattr(ai_service_mod, "_ai_service", None)
    monkeypatch.setattr(cache_mod, "_redis_client", None)
    monkeypatch.setattr(pretranslate_mod, "_scheduler", None)
