"""Plain text and translatable blocks from article HTML.

Blocks are produced in the same order and with the same rules as the
reader's in-page translator, so a translation cached in the background can
be laid back onto the rendered article block for block: the title first,
then each top-level block element, with runs of inline content between
blocks merged into one block.
"""

import unicodedata

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

BLOCK_TAGS = frozenset({
    "address", "article", "aside", "blockquote", "canvas", "dd", "div", "dl", "dt",
    "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5",
    "h6", "header", "hr", "li", "main", "nav", "noscript", "ol", "p", "section",
    "table", "tfoot", "ul", "video",
})
SKIP_TAGS = frozenset({"script", "style", "svg", "iframe", "button", "code"})
# Never translated; they also end the current inline run
CONTAINER_TAGS = frozenset({"math", "pre", "table"})


def is_meaningful_text(text: str) -> bool:
    """False for text made only of punctuation, symbols, digits and spaces."""
    return any(unicodedata.category(char)[0] in ("L", "M") for char in text)


def _inline_text(node) -> str:
    if isinstance(node, Tag):
        return "\n" if node.name == "br" else node.get_text()
    return str(node)


def strip_html(html: str) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return " ".join(text.split())


def extract_text_blocks(html: str, title: str = "") -> list[str]:
    blocks: list[str] = []
    if title and title.strip():
        blocks.append(title.strip())
    if not html:
        return blocks

    def _add(text: str) -> None:
        text = text.strip()
        if len(text) >= 2 and is_meaningful_text(text):
            blocks.append(text)

    pending: list = []

    def _flush() -> None:
        if not pending:
            return
        _add("".join(_inline_text(node) for node in pending))
        pending.clear()

    for node in list(BeautifulSoup(html, "html.parser").children):
        if isinstance(node, PreformattedString):
            continue
        if isinstance(node, Tag):
            name = node.name.lower()
            if name in SKIP_TAGS:
                continue
            if name in CONTAINER_TAGS:
                _flush()
                continue
            if name in BLOCK_TAGS:
                _flush()
                if node.find(list(CONTAINER_TAGS)) is None:
                    _add(node.get_text())
                continue
        elif isinstance(node, NavigableString) and not node.strip() and not pending:
            continue
        pending.append(node)
    _flush()

    return blocks
