"""Chat backend providers (OpenAI, Anthropic, Ollama) over httpx."""

from __future__ import annotations

import os
from typing import Any, Protocol, runtime_checkable

import httpx

from mnemos.llm.chat import ChatResponse, Message


@runtime_checkable
class ChatBackend(Protocol):
    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse: ...

    @property
    def stats(self) -> dict[str, Any]: ...


class _HTTPChatBackend:
    """Shared client lifecycle and token accounting."""

    api_key_env = ""
    default_model = ""
    default_base_url = ""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "",
        base_url: str = "",
        timeout: float = 120.0,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ) -> None:
        self.api_key = api_key or (os.environ.get(self.api_key_env, "") if self.api_key_env else "")
        self.model = model or self.default_model
        self.base_url = base_url or self.default_base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "input_tokens": 0, "output_tokens": 0}

    def _headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self.api_key_env and not self.api_key:
            raise RuntimeError(f"{self.api_key_env} is required")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
            )
        return self._client

    def _record_usage(self, input_tokens: Any, output_tokens: Any) -> None:
        self._stats["calls"] += 1
        self._stats["input_tokens"] += int(input_tokens or 0)
        self._stats["output_tokens"] += int(output_tokens or 0)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "total_tokens": self._stats["input_tokens"] + self._stats["output_tokens"],
        }

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class OpenAIBackend(_HTTPChatBackend):
    api_key_env = "OPENAI_API_KEY"
    default_model = "gpt-4.1-mini"
    default_base_url = "https://api.openai.com/v1"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        resp = await client.post("/chat/completions", json=body)
        resp.raise_for_status()
        data = resp.json()
        choice = data["choices"][0]
        usage = data.get("usage", {})
        self._record_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))
        return ChatResponse(
            content=str(choice["message"]["content"] or ""),
            model=str(data.get("model", self.model)),
            usage=usage,
            finish_reason=str(choice.get("finish_reason", "")),
            raw=data,
        )


class AnthropicBackend(_HTTPChatBackend):
    api_key_env = "ANTHROPIC_API_KEY"
    default_model = "claude-3-5-haiku-latest"
    default_base_url = "https://api.anthropic.com/v1"

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        system_parts: list[str] = []
        chat_msgs: list[dict[str, str]] = []
        for m in messages:
            if m.role == "system":
                system_parts.append(m.content)
            else:
                chat_msgs.append({"role": "assistant" if m.role == "assistant" else "user",
                                  "content": m.content})
        if json_mode:
            system_parts.append("Respond with strict JSON.")
        body: dict[str, Any] = {
            "model": self.model,
            "messages": chat_msgs,
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }
        if system_parts:
            body["system"] = "\n".join(system_parts)
        resp = await client.post("/messages", json=body)
        resp.raise_for_status()
        data = resp.json()
        text = "".join(
            str(blk.get("text", ""))
            for blk in data.get("content", [])
            if isinstance(blk, dict) and blk.get("type") == "text"
        )
        usage = data.get("usage", {})
        self._record_usage(usage.get("input_tokens"), usage.get("output_tokens"))
        return ChatResponse(
            content=text,
            model=self.model,
            usage=usage,
            finish_reason=str(data.get("stop_reason", "")),
            raw=data,
        )


class OllamaBackend(_HTTPChatBackend):
    default_model = "llama3.1:8b-instruct"
    default_base_url = "http://127.0.0.1:11434"

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": temperature if temperature is not None else self.temperature,
                "num_predict": max_tokens if max_tokens is not None else self.max_tokens,
            },
        }
        if json_mode:
            body["format"] = "json"
        resp = await client.post("/api/chat", json=body)
        resp.raise_for_status()
        data = resp.json()
        self._record_usage(data.get("prompt_eval_count"), data.get("eval_count"))
        return ChatResponse(
            content=str(data.get("message", {}).get("content", "")),
            model=self.model,
            usage={},
            finish_reason=str(data.get("done_reason", "")),
            raw=data,
        )
