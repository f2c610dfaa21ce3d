"""Memory Spine: wires storage, embeddings, the model client and consolidation."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from mnemos.config import AutoMemorizeConfig, Config
from mnemos.consolidation.engine import ConsolidationDeps, ConsolidationEngine
from mnemos.embeddings.backends import EmbeddingBackend, create_embedder
from mnemos.embeddings.cache import EmbeddingCache
from mnemos.extraction.orchestrator import AutoMemorizeDeps, run_auto_memorize
from mnemos.extraction.transcript import FileTranscriptSource
from mnemos.llm import ChatBackend, ChatLLMClient, create_chat_backend
from mnemos.protocol import TranscriptSource
from mnemos.storage.faiss_store import FAISSStore
from mnemos.storage.memory_store import MemoryStore
from mnemos.storage.sqlite_store import SQLiteStore
from mnemos.types import (
    AutoMemorizeResult,
    ConsolidationAction,
    ConsolidationLogEntry,
    ConsolidationResult,
    MemoryArea,
    MemoryChunk,
)
from mnemos.utils import new_id


class MemorySpine:
    """Central orchestrator wiring the memory subsystems."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        embedder: EmbeddingBackend | None = None,
        chat_backend: ChatBackend | None = None,
        check_budget: Callable[[], bool] | None = None,
        transcripts: TranscriptSource | None = None,
    ) -> None:
        self.config = config or Config()
        self.config.ensure_dirs()

        # Storage backends
        self.embedder = embedder or create_embedder(self.config.embedding)
        self.sqlite = SQLiteStore(self.config.db_path)
        self.faiss = FAISSStore(dims=self.embedder.dims, faiss_dir=self.config.faiss_dir)
        self.store = MemoryStore(self.sqlite, self.faiss)

        # Subsystems
        self.embed_cache = EmbeddingCache(self.embedder, self.sqlite)
        self.llm = ChatLLMClient(
            chat_backend or create_chat_backend(self.config.llm),
            temperature=self.config.llm.temperature,
            max_tokens=self.config.llm.max_tokens,
        )
        self.engine = ConsolidationEngine(ConsolidationDeps(
            store=self.store,
            llm=self.llm,
            config=self.config.consolidation,
            log=logging.getLogger("mnemos.consolidation"),
        ))
        self.transcripts = transcripts or FileTranscriptSource(self.config.transcripts_dir)
        self.check_budget = check_budget or (lambda: True)

    # --- Write path ---

    async def memorize(
        self,
        text: str,
        area: MemoryArea | str = MemoryArea.MAIN,
        importance: float = 0.5,
        path: str = "",
        source: str = "memory",
    ) -> ConsolidationResult:
        """Embed text and store it through consolidation."""
        embedding = await self.embed_cache.embed_text(text) if text.strip() else []
        return await self.store_extracted_chunk(
            text, embedding, area, importance, path=path, source=source
        )

    async def store_extracted_chunk(
        self,
        text: str,
        embedding: Sequence[float],
        area: MemoryArea | str,
        importance: float,
        path: str = "",
        source: str = "memory",
    ) -> ConsolidationResult:
        """Run consolidation for a new chunk, then insert it if the decision keeps it.

        KEEP_SEPARATE and REPLACE insert the chunk. UPDATE inserts only the
        model's optional additional entry. SKIP inserts only when no model
        decided it (engine disabled, timeout, model error). MERGE never does.
        """
        chunk_id = new_id()
        result = await self.engine.process_new_chunk(
            chunk_id, text, embedding, area=area, path=path, model=self.embed_cache.model
        )
        keep_text = self._text_to_insert(result, text)
        if keep_text is None:
            return result
        if keep_text != text:
            embedding = await self.embed_cache.embed_text(keep_text)
        self.store.insert_chunk(MemoryChunk(
            id=chunk_id,
            text=keep_text,
            embedding=list(embedding),
            area=MemoryArea(area),
            importance=importance,
            path=path,
            source=source,
            model=self.embed_cache.model,
        ))
        return result

    @staticmethod
    def _text_to_insert(result: ConsolidationResult, text: str) -> str | None:
        if not text.strip():
            return None
        if result.action in (ConsolidationAction.KEEP_SEPARATE, ConsolidationAction.REPLACE):
            return text
        if result.action is ConsolidationAction.UPDATE:
            return result.new_memory_content
        if result.action is ConsolidationAction.SKIP and not result.llm_decided:
            return text
        return None

    async def auto_memorize(
        self,
        session_id: str,
        config: AutoMemorizeConfig | Mapping[str, Any] | None = None,
    ) -> AutoMemorizeResult | None:
        """Extract memories from a finished session transcript."""

        async def store_chunk(text: str, embedding: Sequence[float], area: MemoryArea, importance: float) -> None:
            await self.store_extracted_chunk(
                text, embedding, area, importance,
                path=f"session:{session_id}", source="auto_memorize",
            )

        deps = AutoMemorizeDeps(
            llm=self.llm,
            embed_text=self.embed_cache.embed_text,
            store_chunk=store_chunk,
            check_budget=self.check_budget,
            get_transcript=self.transcripts.get_transcript,
            log=logging.getLogger("mnemos.auto_memorize"),
        )
        return await run_auto_memorize(session_id, config or self.config.auto_memorize, deps)

    # --- Queries ---

    def consolidation_log(
        self,
        area: MemoryArea | str | None = None,
        action: ConsolidationAction | str | None = None,
        since: int | None = None,
        limit: int = 100,
    ) -> list[ConsolidationLogEntry]:
        return self.engine.get_consolidation_log(area=area, action=action, since=since, limit=limit)

    def list_memories(self, area: MemoryArea | str | None = None, limit: int = 100) -> list[MemoryChunk]:
        return self.store.list_chunks(area=area, limit=limit)

    def status(self) -> dict[str, Any]:
        return {
            "chunks": self.sqlite.count_chunks(),
            "vectors": self.faiss.size,
            "areas": {a.value: self.sqlite.count_chunks(a) for a in MemoryArea},
            "consolidation_log": self.sqlite.count_consolidation_log(),
            "schema_version": self.sqlite.schema_version(),
            "embedding_cache": self.embed_cache.stats,
            "llm": self.llm.stats,
        }

    async def close(self) -> None:
        await self.llm.close()
        await self.embedder.close()
        self.store.close()
