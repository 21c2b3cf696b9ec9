import logging
from typing import Optional, Sequence

from feedai.exceptions import AIError
from feedai.schemas.translation import TranslationResult, TranslationTask
from feedai.services.cancellation import CancellationScope
from feedai.services.llm_gateway import LLMGateway
from feedai.services.prompts import number_items, parse_numbered_response, render_prompt
from feedai.services.translation_cache import TranslationCache

logger = logging.getLogger(__name__)


class TitleTranslator:
    """Resolve a batch of title tasks with at most one provider call.

    Cached titles resolve without a request. The rest are sent as one
    numbered list and matched back by the index the model echoes on each
    line. A title whose index is missing keeps its source text, which is
    cached like any other answer. A failed call marks every uncached title in
    the batch as failed and caches nothing.
    """

    def __init__(self, gateway: LLMGateway, cache: TranslationCache, prompt: Optional[str] = None) -> None:
        self.gateway = gateway
        self.cache = cache
        self.prompt = prompt

    async def translate_batch(
        self,
        tasks: Sequence[TranslationTask],
        token: Optional[CancellationScope] = None,
        raise_errors: bool = False,
    ) -> list[TranslationResult]:
        """Return exactly one result per task, in task order.

        With ``raise_errors`` a failed provider call raises instead of
        producing failed results, so the caller can retry the batch.
        """
        if not tasks:
            return []

        cached = await self.cache.lookup_many(task.cache_pair for task in tasks)
        results: list[Optional[TranslationResult]] = [None] * len(tasks)
        misses: list[int] = []
        for i, task in enumerate(tasks):
            if task.cache_pair in cached:
                results[i] = TranslationResult(
                    task_id=task.id, translated_text=cached[task.cache_pair], from_cache=True
                )
            else:
                misses.append(i)

        if misses:
            for i, result in zip(misses, await self._translate_misses([tasks[i] for i in misses], token, raise_errors)):
                results[i] = result

        return results

    async def _translate_misses(
        self,
        tasks: list[TranslationTask],
        token: Optional[CancellationScope],
        raise_errors: bool = False,
    ) -> list[TranslationResult]:
        # One prompt per target language; a pool fed by one list view only
        # ever produces a single group.
        by_language: dict[str, list[int]] = {}
        for i, task in enumerate(tasks):
            by_language.setdefault(task.target_language, []).append(i)

        results: list[Optional[TranslationResult]] = [None] * len(tasks)
        new_entries: list[tuple[tuple[str, str], str]] = []
        for target_language, indices in by_language.items():
            group = [tasks[i] for i in indices]
            group_results = await self._translate_group(group, target_language, token, new_entries, raise_errors)
            for i, result in zip(indices, group_results):
                results[i] = result

        await self.cache.write_many(new_entries)
        return results

    async def _translate_group(
        self,
        tasks: list[TranslationTask],
        target_language: str,
        token: Optional[CancellationScope],
        new_entries: list[tuple[tuple[str, str], str]],
        raise_errors: bool = False,
    ) -> list[TranslationResult]:
        prompt = render_prompt(
            "title_translate",
            number_items([task.source_text for task in tasks]),
            target_language,
            custom=self.prompt,
        )
        try:
            response = await self.gateway.call(prompt, token=token)
        except AIError as e:
            if raise_errors:
                raise
            logger.warning(f"Batch title translation failed for {len(tasks)} titles: {e}")
            return [
                TranslationResult(
                    task_id=task.id,
                    translated_text=task.source_text,
                    failed=True,
                    error_message=str(e),
                )
                for task in tasks
            ]

        numbered = parse_numbered_response(response)
        if len(numbered) < len(tasks):
            logger.info(f"Batch response matched {len(numbered)} of {len(tasks)} titles")

        results = []
        for number, task in enumerate(tasks, 1):
            translated = numbered.get(number)
            if translated is None:
                logger.debug(f"No line numbered {number} in batch response, keeping source title")
                translated = task.source_text
            new_entries.append((task.cache_pair, translated))
            results.append(TranslationResult(task_id=task.id, translated_text=translated))
        return results
