"""Request Gateway - the single exit point to the AI provider.

Every outbound call is admitted through the shared RequestGate, runs under a
cancellation scope derived from the caller's scope plus a request timeout,
and is either decoded as one JSON body or as an SSE stream of deltas.

The gateway never retries. NotConfiguredError, ProviderError and
RequestCancelled are raised to the caller, which decides what a failure
means for its own items.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from feedai.config import get_settings
from feedai.exceptions import NotConfiguredError, ProviderError, RequestCancelled
from feedai.schemas.ai_config import AIConfig
from feedai.services.cancellation import CancellationScope
from feedai.services.sse import SSEDecoder, extract_message
from feedai.services.translation_pool import RequestGate, get_request_gate

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


def normalize_api_url(url: str) -> str:
    normalized = url.strip().rstrip("/")
    if normalized.endswith("chat/completions"):
        return normalized
    return normalized + "/chat/completions"


def _provider_error(response: httpx.Response) -> ProviderError:
    message = f"AI API Error: {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            message = str(error["message"])
        elif isinstance(error, str) and error:
            message = error
    return ProviderError(response.status_code, message)


def _request_timeout(timeout: float) -> httpx.Timeout:
    # The cancellation scope enforces the overall deadline; httpx only bounds each read
    return httpx.Timeout(max(timeout, 0.001), connect=min(10.0, max(timeout, 0.001)))


class LLMGateway:
    def __init__(
        self,
        config: Optional[AIConfig] = None,
        gate: Optional[RequestGate] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.config = config or AIConfig.from_settings(settings)
        self.gate = gate or get_request_gate()
        self.timeout = timeout if timeout is not None else settings.ai_request_timeout_seconds
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        prompt: str,
        on_chunk: Optional[ChunkCallback] = None,
        token: Optional[CancellationScope] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Send one prompt and return the full response text.

        When ``on_chunk`` is given the response is streamed and every text
        delta is passed to it as it arrives.

        Raises:
            NotConfiguredError: No API URL/key; raised before admission.
            ProviderError: Non-2xx response or transport failure.
            RequestCancelled: ``token`` fired or the timeout elapsed.
        """
        if not self.config.is_configured:
            raise NotConfiguredError()

        timeout = timeout if timeout is not None else self.timeout
        with CancellationScope(token, timeout=timeout) as scope:
            async with self.gate.slot(scope):
                if on_chunk is None:
                    return await scope.guard(self._complete(prompt, timeout))
                return await scope.guard(self._stream(prompt, on_chunk, timeout))

    async def stream(
        self,
        prompt: str,
        token: Optional[CancellationScope] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas of a streamed response.

        Errors from the call are raised from the iterator. Closing the
        iterator early aborts the request and frees its slot.
        """
        queue: asyncio.Queue = asyncio.Queue()
        finished = object()

        async def _pump() -> None:
            try:
                await self.call(prompt, on_chunk=queue.put_nowait, token=token, timeout=timeout)
            finally:
                queue.put_nowait(finished)

        task = asyncio.create_task(_pump())
        try:
            while True:
                item = await queue.get()
                if item is finished:
                    break
                yield item
            await task
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, RequestCancelled):
                    await task

    def _payload(self, prompt: str, stream: bool) -> dict:
        return {
            "model": self.config.model or "gpt-4.1-mini",
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
            "stream": stream,
        }

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _complete(self, prompt: str, timeout: float) -> str:
        url = normalize_api_url(self.config.api_url)
        try:
            response = await self.client.post(
                url, json=self._payload(prompt, False), headers=self._headers(), timeout=_request_timeout(timeout)
            )
        except httpx.TimeoutException as exc:
            raise RequestCancelled("timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(None, str(exc) or type(exc).__name__) from exc

        if response.is_error:
            raise _provider_error(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, "AI API returned a non-JSON body") from exc
        return extract_message(data)

    async def _stream(self, prompt: str, on_chunk: ChunkCallback, timeout: float) -> str:
        url = normalize_api_url(self.config.api_url)
        decoder = SSEDecoder()
        try:
            async with self.client.stream(
                "POST",
                url,
                json=self._payload(prompt, True),
                headers=self._headers(),
                timeout=_request_timeout(timeout),
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise _provider_error(response)
                async for chunk in response.aiter_bytes():
                    for delta in decoder.feed(chunk):
                        on_chunk(delta)
                    if decoder.finished:
                        break
        except httpx.TimeoutException as exc:
            raise RequestCancelled("timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(None, str(exc) or type(exc).__name__) from exc

        for delta in decoder.flush():
            on_chunk(delta)
        logger.debug(f"Stream finished with {len(decoder.content)} chars")
        return decoder.content


# Singleton instance
_gateway: Optional[LLMGateway] = None


def get_gateway() -> LLMGateway:
    global _gateway
    if _gateway is None:
        _gateway = LLMGateway()
    return _gateway
