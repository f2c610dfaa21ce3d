"""Package exceptions."""

from __future__ import annotations

import asyncio

import httpx


class MnemosError(Exception):
    """Base class for mnemos errors."""


class StorageError(MnemosError):
    """Raised for invalid storage operations (bad dimensions, missing dirs)."""


class TranscriptError(MnemosError):
    """Raised when a session transcript cannot be read."""


class LLMTimeoutError(MnemosError):
    """Raised by model clients that enforce their own deadline."""


# Everything a bounded model call can raise when its deadline passes.
TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    LLMTimeoutError,
)
