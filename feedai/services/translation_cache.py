"""Two-tier translation cache.

Lookups go volatile map -> durable store -> (caller does the network call).
The volatile tier is an insertion-ordered map capped at
settings.title_cache_max_size; once over capacity the oldest inserted entries
are dropped. Reads do not refresh an entry's position.

Writes to the durable tier are fire-and-forget: a failure is logged and the
caller still gets its translation.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Iterable, Optional, Sequence

from feedai.config import get_settings
from feedai.exceptions import CacheWriteFailure
from feedai.services.cache import DurableCacheStore

logger = logging.getLogger(__name__)

CachePair = tuple[str, str]


def make_cache_key(source_text: str, target_language: str) -> str:
    return f"{source_text}||{target_language}"


class TranslationCache:
    def __init__(
        self,
        store: Optional[DurableCacheStore] = None,
        max_size: Optional[int] = None,
        prefix: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.max_size = max_size if max_size is not None else settings.title_cache_max_size
        self.prefix = prefix if prefix is not None else settings.title_cache_prefix
        self.memory: OrderedDict[str, str] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self._pending_writes: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self.memory)

    def get(self, source_text: str, target_language: str) -> Optional[str]:
        """Volatile-tier lookup only; safe to call while rendering."""
        return self.memory.get(make_cache_key(source_text, target_language))

    async def lookup_many(self, pairs: Iterable[CachePair]) -> dict[CachePair, str]:
        """Return the cached translation of every pair that has one."""
        unique = list(dict.fromkeys(pairs))
        found: dict[CachePair, str] = {}
        missing: list[CachePair] = []
        for pair in unique:
            cached = self.memory.get(make_cache_key(*pair))
            if cached is not None:
                found[pair] = cached
            else:
                missing.append(pair)

        if missing and self.store is not None:
            durable_keys = {self.prefix + make_cache_key(*pair): pair for pair in missing}
            try:
                rows = await self.store.get_many(list(durable_keys))
            except Exception as e:
                logger.warning(f"Durable cache lookup failed, treating as miss: {e}")
                rows = {}
            for durable_key, value in rows.items():
                pair = durable_keys.get(durable_key)
                if pair is None or value is None:
                    continue
                found[pair] = value
                self._remember(make_cache_key(*pair), value)

        self.hits += len(found)
        self.misses += len(unique) - len(found)
        return found

    async def write_many(self, entries: Sequence[tuple[CachePair, str]]) -> None:
        """Store new translations; keys already cached in either tier are left untouched."""
        new_entries: dict[str, str] = {}
        for pair, translated in entries:
            key = make_cache_key(*pair)
            if key in self.memory or key in new_entries:
                continue
            new_entries[key] = translated
            self._remember(key, translated)

        if new_entries and self.store is not None:
            task = asyncio.create_task(self._persist(new_entries))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)

    async def warm(self, limit: Optional[int] = None) -> int:
        """Load the durable namespace into the volatile tier; returns entries loaded."""
        if self.store is None:
            return 0
        try:
            rows = await self.store.get_by_prefix(self.prefix, limit or self.max_size)
        except Exception as e:
            logger.warning(f"Failed to load title cache: {e}")
            return 0
        for durable_key, value in rows.items():
            self._remember(durable_key[len(self.prefix):], value)
        logger.debug(f"Title cache loaded: {len(rows)} entries")
        return len(rows)

    async def flush(self) -> None:
        """Wait for outstanding durable writes."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    def clear(self) -> None:
        self.memory.clear()

    async def _persist(self, entries: dict[str, str]) -> None:
        try:
            await self.store.add_many({self.prefix + key: value for key, value in entries.items()})
        except CacheWriteFailure as e:
            logger.warning(f"Cache write failed: {e}")
        except Exception as e:
            # Stores other than RedisCacheStore may raise their own errors
            logger.warning(f"Cache write failed ({type(e).__name__}): {e}")

    def _remember(self, key: str, value: str) -> None:
        self.memory[key] = value
        while len(self.memory) > self.max_size:
            self.memory.popitem(last=False)


class ArticleCache:
    """Per-article results (summaries, full-text translations) in the durable store.

    Every method degrades to a miss / no-op when the store is missing or
    failing.
    """

    def __init__(self, store: Optional[DurableCacheStore] = None) -> None:
        self.store = store

    @staticmethod
    def make_key(entry_id: str, kind: str, lang: str = "") -> str:
        return f"{kind}:{entry_id}:{lang}" if lang else f"{kind}:{entry_id}"

    async def get_summary(self, entry_id: str) -> Optional[str]:
        return await self._get(self.make_key(entry_id, "summary"))

    async def set_summary(self, entry_id: str, content: str) -> None:
        await self._set(self.make_key(entry_id, "summary"), content)

    async def delete_summary(self, entry_id: str) -> None:
        await self._delete(self.make_key(entry_id, "summary"))

    async def get_translation(self, entry_id: str, lang: str) -> Optional[str]:
        return await self._get(self.make_key(entry_id, "translation", lang))

    async def set_translation(self, entry_id: str, lang: str, content: str) -> None:
        await self._set(self.make_key(entry_id, "translation", lang), content)

    async def delete_translation(self, entry_id: str, lang: str) -> None:
        await self._delete(self.make_key(entry_id, "translation", lang))

    async def clear(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.clear()
            logger.debug("Article cache cleared")
        except Exception as e:
            logger.warning(f"Failed to clear article cache: {e}")

    async def _get(self, key: str) -> Optional[str]:
        if self.store is None:
            return None
        try:
            rows = await self.store.get_many([key])
        except Exception as e:
            logger.debug(f"Failed to get cache key '{key}': {e}")
            return None
        return rows.get(key)

    async def _set(self, key: str, content: str) -> None:
        if self.store is None:
            return
        try:
            await self.store.set_many({key: content})
        except Exception as e:
            logger.warning(f"Failed to set cache key '{key}': {e}")

    async def _delete(self, key: str) -> None:
        if self.store is None:
            return
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.debug(f"Failed to delete cache key '{key}': {e}")
