"""Error taxonomy for the AI request pipeline.

Gateway errors (NotConfiguredError, ProviderError, RequestCancelled) reach
the caller of the gateway; the worker pool turns them into per-task failure
results. ParseError and CacheWriteFailure are logged where they happen and
never propagate past their component.
"""

from typing import Optional


class AIError(Exception):
    """Base class for all pipeline errors."""


class NotConfiguredError(AIError):
    def __init__(self, message: str = "AI not configured") -> None:
        super().__init__(message)


class ProviderError(AIError):
    """Non-2xx response (or transport failure) from the AI provider."""

    def __init__(self, status: Optional[int], message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"[{status}] {message}" if status is not None else message)


class RequestCancelled(AIError):
    """The request's cancellation scope fired (user navigation or timeout)."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(reason)


class ParseError(AIError):
    """A stream event or numbered response line could not be parsed."""


class CacheWriteFailure(AIError):
    """The durable cache tier rejected a write."""
