"""Embedding providers and abstractions."""

from mnemos.embeddings.backends import (
    EmbeddingBackend,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
)
from mnemos.embeddings.cache import EmbeddingCache

__all__ = [
    "EmbeddingBackend",
    "EmbeddingCache",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "HashEmbedder",
    "create_embedder",
]
