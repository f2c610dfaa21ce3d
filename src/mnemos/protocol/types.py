"""Collaborator contracts consumed by the consolidation engine and extraction."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Awaitable, Callable, Protocol, Sequence, runtime_checkable

from mnemos.types import ConsolidationAction, ConsolidationLogEntry, MemoryArea, MemoryChunk


@runtime_checkable
class MemoryStoreProtocol(Protocol):
    """Rows, nearest-neighbour lookup and the append-only consolidation log."""

    def get_chunk(self, chunk_id: str) -> MemoryChunk | None: ...

    def chunk_exists(self, chunk_id: str) -> bool: ...

    def delete_chunk(self, chunk_id: str) -> bool: ...

    def update_chunk_text(self, chunk_id: str, text: str, absorbed_id: str | None = None) -> bool: ...

    def query_nearest(self, embedding: Sequence[float], k: int) -> list[tuple[MemoryChunk, float]]: ...

    def insert_chunk(self, chunk: MemoryChunk) -> str: ...

    def append_consolidation_log(self, entry: ConsolidationLogEntry) -> str: ...

    def list_consolidation_log(
        self,
        area: MemoryArea | str | None = None,
        action: ConsolidationAction | str | None = None,
        since: int | None = None,
        limit: int = 100,
    ) -> list[ConsolidationLogEntry]: ...

    def transaction(self) -> AbstractContextManager[None]: ...


@runtime_checkable
class LLMClient(Protocol):
    """Single-shot completion. Cancel by cancelling the awaiting task."""

    async def call(self, system_prompt: str, user_prompt: str, task_tag: str = "consolidation") -> str: ...


@runtime_checkable
class TranscriptSource(Protocol):
    async def get_transcript(self, session_id: str) -> str: ...


EmbedText = Callable[[str], Awaitable[Sequence[float]]]
StoreChunk = Callable[[str, Sequence[float], MemoryArea, float], Awaitable[object]]
CheckBudget = Callable[[], bool]
GetTranscript = Callable[[str], Awaitable[str]]
Clock = Callable[[], int]
