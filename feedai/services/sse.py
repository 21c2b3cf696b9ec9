"""Incremental decoder for OpenAI-style server-sent event streams.

The provider sends lines such as::

    data: {"choices": [{"delta": {"content": "Hel"}}]}
    data: {"choices": [{"delta": {"content": "lo"}}]}
    data: [DONE]

Chunks may split a line (or a multi-byte character) anywhere, so the decoder
keeps the trailing partial line until the next chunk completes it.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Optional, Union

from feedai.exceptions import ParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class SSEDecoder:
    def __init__(self) -> None:
        self._bytes = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._warned = False
        self.content = ""
        self.finished = False

    def feed(self, chunk: Union[str, bytes]) -> list[str]:
        """Consume a chunk and return the text deltas it completed, in order."""
        if isinstance(chunk, bytes):
            chunk = self._bytes.decode(chunk)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def flush(self) -> list[str]:
        """Process whatever is left in the buffer once the stream has ended."""
        tail = self._bytes.decode(b"", final=True)
        remainder, self._buffer = self._buffer + tail, ""
        return self._process([remainder]) if remainder else []

    def _process(self, lines: list[str]) -> list[str]:
        deltas = []
        for line in lines:
            try:
                delta = self._parse_line(line)
            except ParseError as exc:
                if not self._warned:
                    logger.warning(f"Ignoring malformed stream event: {exc}")
                    self._warned = True
                continue
            if delta:
                self.content += delta
                deltas.append(delta)
        return deltas

    def _parse_line(self, line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if self.finished or not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):].strip()
        if not data:
            return None
        if data == DONE_MARKER:
            self.finished = True
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ParseError(f"{data[:50]!r}: {exc.msg}") from exc
        return extract_delta(payload)


def extract_delta(payload: Any) -> Optional[str]:
    """Return ``choices[0].delta.content`` or None when the event carries no text."""
    try:
        content = payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) and content else None


def extract_message(payload: Any) -> str:
    """Return ``choices[0].message.content`` of a non-streaming response, or ''."""
    try:
        content = payload["choices"][0]["message"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return content if isinstance(content, str) else ""
