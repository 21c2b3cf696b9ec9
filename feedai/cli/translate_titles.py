#!/usr/bin/env python3
"""Translate titles through the batched title pipeline.

Titles come from the command line or, when none are given, from stdin (one
per line). Translations are printed in input order, one per line.

    python -m feedai.cli.translate_titles --lang ja "Apple News" "Tech Weekly"
"""

import argparse
import asyncio
import sys

import structlog

from feedai.config import get_settings
from feedai.logging_config import configure_logging
from feedai.schemas.translation import TranslationTask
from feedai.services.cache import get_durable_store
from feedai.services.llm_gateway import LLMGateway
from feedai.services.title_translator import TitleTranslator
from feedai.services.translation_cache import TranslationCache
from feedai.services.translation_queue import TranslationWorkerPool

logger = structlog.get_logger(__name__)


async def translate_titles(titles: list[str], lang: str, workers: int, batch_size: int, use_cache: bool) -> list[str]:
    gateway = LLMGateway()
    cache = TranslationCache(get_durable_store() if use_cache else None)
    if use_cache:
        loaded = await cache.warm()
        logger.info("title_cache_loaded", entries=loaded)

    pool = TranslationWorkerPool(TitleTranslator(gateway, cache), workers, batch_size, name="cli")
    try:
        futures = pool.submit(
            TranslationTask(id=str(i), source_text=title, target_language=lang) for i, title in enumerate(titles)
        )
        results = await asyncio.gather(*futures)
        await cache.flush()
    finally:
        await pool.shutdown()
        await gateway.close()

    failed = [result for result in results if result.failed]
    if failed:
        logger.warning("titles_failed", count=len(failed), error=failed[0].error_message)
    logger.info(
        "titles_translated",
        total=len(results),
        from_cache=sum(1 for result in results if result.from_cache),
        failed=len(failed),
    )
    return [result.translated_text for result in results]


def main(argv=None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Translate feed titles with the configured AI provider.")
    parser.add_argument("titles", nargs="*", help="Titles to translate (default: read stdin).")
    parser.add_argument("--lang", default=settings.target_language, help="Target language id, e.g. zh-CN.")
    parser.add_argument("--workers", type=int, default=settings.translation_workers, help="Concurrent batch workers.")
    parser.add_argument("--batch-size", type=int, default=settings.translation_batch_size, help="Titles per request.")
    parser.add_argument("--no-cache", action="store_true", help="Skip the durable Redis cache.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)

    titles = args.titles or [line.strip() for line in sys.stdin if line.strip()]
    if not titles:
        parser.error("no titles given")

    translated = asyncio.run(
        translate_titles(titles, args.lang, max(1, args.workers), max(1, args.batch_size), not args.no_cache)
    )
    for line in translated:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
