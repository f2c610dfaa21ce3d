"""Embedding backend abstraction."""

from __future__ import annotations

import hashlib
import os
import re
from typing import Protocol, runtime_checkable

import httpx
import numpy as np

from mnemos.config import EmbeddingConfig


@runtime_checkable
class EmbeddingBackend(Protocol):
    dims: int

    async def embed(self, texts: list[str]) -> np.ndarray: ...
    async def embed_single(self, text: str) -> np.ndarray: ...
    async def close(self) -> None: ...


class _HTTPEmbedder:
    api_key_env = ""

    def __init__(self, model: str, dims: int, base_url: str, timeout: float = 30.0,
                 api_key: str | None = None) -> None:
        self.api_key = api_key or (os.environ.get(self.api_key_env, "") if self.api_key_env else "")
        self.model = model
        self.dims = dims
        self.base_url = base_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self.api_key_env and not self.api_key:
            raise RuntimeError(f"{self.api_key_env} is required")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, headers=self._headers(), timeout=self.timeout
            )
        return self._client

    async def embed_single(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class OpenAIEmbedder(_HTTPEmbedder):
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dims: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ) -> None:
        super().__init__(model=model, dims=dims, base_url=base_url, timeout=timeout, api_key=api_key)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        client = await self._get_client()
        resp = await client.post(
            "/embeddings",
            json={"model": self.model, "input": texts, "dimensions": self.dims},
        )
        resp.raise_for_status()
        data = resp.json()
        vecs = [x["embedding"] for x in data.get("data", [])]
        return np.array(vecs, dtype=np.float32)


class OllamaEmbedder(_HTTPEmbedder):
    def __init__(
        self,
        model: str = "nomic-embed-text",
        dims: int = 768,
        base_url: str = "http://127.0.0.1:11434",
        timeout: float = 30.0,
    ) -> None:
        super().__init__(model=model, dims=dims, base_url=base_url, timeout=timeout)

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        client = await self._get_client()
        out: list[list[float]] = []
        for text in texts:
            resp = await client.post("/api/embeddings", json={"model": self.model, "prompt": text})
            resp.raise_for_status()
            out.append(resp.json().get("embedding", []))
        return np.array(out, dtype=np.float32)


class HashEmbedder:
    """Deterministic local embedder using token hashing (no network/API keys)."""

    _TOKEN_RE = re.compile(r"[a-z0-9_]+")

    def __init__(self, dims: int = 384) -> None:
        self.dims = max(32, int(dims))
        self.model = f"hash-{self.dims}"

    def _encode(self, text: str) -> np.ndarray:
        tokens = self._TOKEN_RE.findall((text or "").lower())
        vec = np.zeros((self.dims,), dtype=np.float32)
        if not tokens:
            return vec
        features = tokens + [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]
        for feat in features:
            digest = hashlib.blake2b(feat.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dims
            vec[idx] += 1.0 if (digest[4] & 1) == 0 else -1.0
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return np.stack([self._encode(t) for t in texts]).astype(np.float32, copy=False)

    async def embed_single(self, text: str) -> np.ndarray:
        return self._encode(text)

    async def close(self) -> None:
        return None


def create_embedder(config: EmbeddingConfig | None = None) -> EmbeddingBackend:
    cfg = config or EmbeddingConfig()
    provider = (cfg.provider or "hash").strip().lower()
    if provider == "openai":
        return OpenAIEmbedder(
            model=cfg.model or "text-embedding-3-small",
            dims=cfg.dims,
            base_url=cfg.base_url or "https://api.openai.com/v1",
            timeout=cfg.timeout,
        )
    if provider in {"ollama", "local"}:
        return OllamaEmbedder(
            model=cfg.model or "nomic-embed-text",
            dims=cfg.dims,
            base_url=cfg.base_url or "http://127.0.0.1:11434",
            timeout=cfg.timeout,
        )
    if provider in {"hash", "localhash"}:
        return HashEmbedder(dims=cfg.dims)
    raise ValueError(f"Unsupported embedding provider: {cfg.provider}")
