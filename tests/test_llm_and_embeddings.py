from __future__ import annotations

import asyncio
import json

import httpx
import numpy as np
import pytest

from mnemos.config import EmbeddingConfig, LLMConfig
from mnemos.embeddings import EmbeddingCache, HashEmbedder, OllamaEmbedder, OpenAIEmbedder, create_embedder
from mnemos.exceptions import TIMEOUT_ERRORS, LLMTimeoutError
from mnemos.llm import (
    AnthropicBackend,
    ChatLLMClient,
    ChatResponse,
    OllamaBackend,
    OpenAIBackend,
    create_chat_backend,
)
from mnemos.storage import SQLiteStore


class _ScriptedBackend:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc
        self.messages = []

    async def chat(self, messages, temperature=None, max_tokens=None, json_mode=False):
        self.messages.append(messages)
        if self.exc:
            raise self.exc
        return ChatResponse(content='{"action": "SKIP"}')


def test_client_sends_system_and_user_and_counts_tags():
    async def _run():
        backend = _ScriptedBackend()
        client = ChatLLMClient(backend)
        assert await client.call("sys", "user") == '{"action": "SKIP"}'
        await client.call("sys", "user", task_tag="other")
        assert [(m.role, m.content) for m in backend.messages[0]] == [("system", "sys"), ("user", "user")]
        assert client.stats["by_task"] == {"consolidation": 1, "other": 1}
        assert client.stats["backend"] == {}

    asyncio.run(_run())


def test_client_maps_http_timeouts():
    async def _run():
        client = ChatLLMClient(_ScriptedBackend(exc=httpx.ReadTimeout("slow")))
        with pytest.raises(LLMTimeoutError) as err:
            await client.call("sys", "user")
        assert isinstance(err.value, TIMEOUT_ERRORS)

    asyncio.run(_run())


def test_create_chat_backend_by_provider():
    assert isinstance(create_chat_backend(LLMConfig(provider="openai")), OpenAIBackend)
    assert isinstance(create_chat_backend(LLMConfig(provider="Anthropic")), AnthropicBackend)
    backend = create_chat_backend(LLMConfig(provider="local", model="qwen"))
    assert isinstance(backend, OllamaBackend)
    assert backend.model == "qwen"
    with pytest.raises(ValueError):
        create_chat_backend(LLMConfig(provider="carrier-pigeon"))


def test_missing_api_key_is_reported(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    async def _run():
        with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
            await OpenAIBackend().chat([])

    asyncio.run(_run())


def test_openai_backend_parses_reply_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "model": "gpt-test",
            "choices": [{"message": {"content": "[]"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3},
        })

    async def _run():
        backend = OpenAIBackend(api_key="k", base_url="https://example.test/v1")
        backend._client = httpx.AsyncClient(
            base_url=backend.base_url, transport=httpx.MockTransport(handler)
        )
        client = ChatLLMClient(backend, temperature=0.0, max_tokens=64)
        assert await client.call("sys", "user") == "[]"
        assert seen["path"] == "/v1/chat/completions"
        assert seen["body"]["max_tokens"] == 64
        assert "response_format" not in seen["body"]
        assert backend.stats == {"calls": 1, "input_tokens": 12, "output_tokens": 3, "total_tokens": 15}
        await client.close()
        assert backend._client is None

    asyncio.run(_run())


def test_create_embedder_by_provider():
    assert isinstance(create_embedder(EmbeddingConfig(provider="hash", dims=16)), HashEmbedder)
    assert create_embedder(EmbeddingConfig(provider="hash", dims=16)).dims == 32
    assert isinstance(create_embedder(EmbeddingConfig(provider="openai", dims=256)), OpenAIEmbedder)
    assert isinstance(create_embedder(EmbeddingConfig(provider="ollama")), OllamaEmbedder)
    with pytest.raises(ValueError):
        create_embedder(EmbeddingConfig(provider="nope"))


def test_hash_embedder_is_deterministic_and_normalized():
    async def _run():
        emb = HashEmbedder(dims=64)
        a = await emb.embed_single("restart the worker")
        b = await emb.embed_single("Restart the worker!")
        assert np.allclose(a, b)
        assert float(np.linalg.norm(a)) == pytest.approx(1.0, abs=1e-5)
        assert not (await emb.embed_single("")).any()
        assert (await emb.embed([])).shape == (0, 64)

    asyncio.run(_run())


def test_embedding_cache_hits_after_first_call(tmp_path):
    class _Counting(HashEmbedder):
        calls = 0

        async def embed_single(self, text):
            type(self).calls += 1
            return await super().embed_single(text)

    async def _run():
        store = SQLiteStore(tmp_path / "m.db")
        cache = EmbeddingCache(_Counting(dims=32), store)
        first = await cache.embed_text("hello world")
        second = await cache.embed_text("hello world")
        assert first == second
        assert _Counting.calls == 1
        assert cache.stats == {"hits": 1, "misses": 1}
        assert cache.model == "hash-32"

        # a different model does not reuse the cached vector
        other = EmbeddingCache(HashEmbedder(dims=48), store)
        assert len(await other.embed_text("hello world")) == 48
        assert other.stats["misses"] == 1
        store.close()

    asyncio.run(_run())
