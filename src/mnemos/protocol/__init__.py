"""Interfaces the core depends on."""

from mnemos.protocol.types import (
    CheckBudget,
    Clock,
    EmbedText,
    GetTranscript,
    LLMClient,
    MemoryStoreProtocol,
    StoreChunk,
    TranscriptSource,
)

__all__ = [
    "MemoryStoreProtocol",
    "LLMClient",
    "TranscriptSource",
    "EmbedText",
    "StoreChunk",
    "CheckBudget",
    "GetTranscript",
    "Clock",
]
