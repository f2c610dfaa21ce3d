"""Adapter exposing a chat backend as the core's single-call LLM client."""

from __future__ import annotations

from collections import Counter
from typing import Any

import httpx

from mnemos.exceptions import LLMTimeoutError
from mnemos.llm.chat import Message
from mnemos.llm.providers import ChatBackend


class ChatLLMClient:
    """Sends one system + user exchange and returns the raw text reply.

    Responses are requested in free-text mode because extraction answers
    with JSON arrays, which provider JSON modes reject.
    """

    def __init__(
        self,
        backend: ChatBackend,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.backend = backend
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._calls_by_tag: Counter[str] = Counter()

    async def call(self, system_prompt: str, user_prompt: str, task_tag: str = "consolidation") -> str:
        self._calls_by_tag[task_tag] += 1
        try:
            resp = await self.backend.chat(
                [Message(role="system", content=system_prompt), Message(role="user", content=user_prompt)],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(f"{task_tag} call timed out") from exc
        return resp.content

    @property
    def stats(self) -> dict[str, Any]:
        return {"by_task": dict(self._calls_by_tag), "backend": getattr(self.backend, "stats", {})}

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
