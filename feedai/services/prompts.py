"""Prompt templates and numbered-list framing for batch requests.

Templates use ``{{targetLang}}`` and ``{{content}}`` placeholders so that
user-supplied prompts stored by older clients keep working.
"""

import re
from typing import Optional, Sequence

DEFAULT_PROMPTS = {
    "title": (
        "Translate the following title into {{targetLang}}. "
        "Output ONLY the translated title, nothing else:\n\n{{content}}"
    ),
    "title_translate": (
        "Translate each of the following titles into {{targetLang}}. "
        "Output ONLY the translated titles, one per line, in the same numbered format "
        '(e.g. "1. translated title"). Do not add any extra text:\n\n{{content}}'
    ),
    "translate": (
        "Please translate the following text into {{targetLang}}, maintaining the original "
        "format and paragraph structure. Return only the translated content, directly "
        "outputting the translation result without any additional text:\n\n{{content}}"
    ),
    "summarize": (
        "Please summarize this article in {{targetLang}} in a few sentences. Output the "
        'result directly without any introductory text like "Here is the summary".\n\n'
        "{{content}}"
    ),
}

BLOCKS_PREAMBLE = (
    "(The following text is divided into numbered blocks. Translate each block and output "
    'in the same numbered format, e.g. "1. translated text". Do not add any extra text.)'
)

AI_LANGUAGES = {
    "zh-CN": "简体中文",
    "zh-TW": "繁體中文",
    "en": "English",
    "ja": "日本語",
    "ko": "한국어",
    "fr": "Français",
    "de": "Deutsch",
    "es": "Español",
    "pt": "Português",
    "ru": "Русский",
}

NUMBERED_LINE = re.compile(r"^\s*(\d+)\s*[.)]\s*(.*)$")


def get_language_name(lang_id: str) -> str:
    return AI_LANGUAGES.get(lang_id, lang_id)


def sanitize_prompt(template: Optional[str]) -> str:
    """Migrate single-brace placeholders and make sure ``{{content}}`` is present."""
    if not template or not template.strip():
        return ""
    if "{content}" in template and "{{content}}" not in template:
        template = template.replace("{content}", "{{content}}")
    if "{targetLang}" in template and "{{targetLang}}" not in template:
        template = template.replace("{targetLang}", "{{targetLang}}")
    if "{{content}}" not in template:
        template = template.strip() + "\n\n{{content}}"
    return template


def render_prompt(kind: str, content: str, target_lang: str, custom: Optional[str] = None) -> str:
    template = sanitize_prompt(custom) or DEFAULT_PROMPTS[kind]
    return template.replace("{{targetLang}}", get_language_name(target_lang)).replace(
        "{{content}}", content
    )


def number_items(texts: Sequence[str], separator: str = "\n") -> str:
    return separator.join(f"{i}. {text}" for i, text in enumerate(texts, 1))


def parse_numbered_response(text: str, multiline: bool = False) -> dict[int, str]:
    """Map each echoed index to its text.

    With ``multiline`` set, lines without an index are appended to the item
    above them (article blocks can span several lines); otherwise they are
    dropped. The first occurrence of an index wins. Empty items are omitted
    so callers fall back to the source text.
    """
    items: dict[int, str] = {}
    current: Optional[int] = None
    parts: list[str] = []

    def _commit() -> None:
        if current is not None and current not in items:
            value = "\n".join(parts).strip()
            if value:
                items[current] = value

    for line in text.splitlines():
        match = NUMBERED_LINE.match(line)
        if match:
            _commit()
            current = int(match.group(1))
            parts = [match.group(2)]
        elif multiline and current is not None:
            parts.append(line)
    _commit()
    return items
