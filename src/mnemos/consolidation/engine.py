"""Consolidation decision engine.

Runs one candidate memory through retrieval, model arbitration, the REPLACE
safety gate, store mutation and the audit log. The engine never inserts the
candidate itself; callers do that after reading the returned action.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from mnemos.config import ConsolidationConfig
from mnemos.consolidation.prompts import (
    build_consolidation_message_prompt,
    build_consolidation_system_prompt,
    parse_consolidation_response,
)
from mnemos.exceptions import TIMEOUT_ERRORS
from mnemos.protocol import Clock, LLMClient, MemoryStoreProtocol
from mnemos.types import (
    TARGETED_ACTIONS,
    ConsolidationAction,
    ConsolidationDecision,
    ConsolidationLogEntry,
    ConsolidationResult,
    MemoryArea,
    SimilarChunk,
)
from mnemos.utils import now_ms, truncate_text

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationDeps:
    store: MemoryStoreProtocol
    llm: LLMClient
    config: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    log: logging.Logger = logger
    clock: Clock = now_ms


class ConsolidationEngine:
    def __init__(self, deps: ConsolidationDeps) -> None:
        self.deps = deps
        self.store = deps.store
        self.config = deps.config
        self.log = deps.log
        self.log.info(
            "consolidation engine initialized enabled=%s similarity_threshold=%s "
            "replace_similarity_threshold=%s timeout_ms=%d",
            self.config.enabled,
            self.config.similarity_threshold,
            self.config.replace_similarity_threshold,
            self.config.processing_timeout_ms,
        )

    async def process_new_chunk(
        self,
        chunk_id: str,
        text: str,
        embedding: Sequence[float],
        area: MemoryArea | str = MemoryArea.MAIN,
        path: str = "",
        model: str = "",
    ) -> ConsolidationResult:
        """Decide what to do with a new chunk and apply it to the store.

        Disabled and empty-text calls return SKIP without touching the store.
        Every call past those guards writes exactly one audit row. Model
        timeouts and errors degrade to SKIP; nothing here raises for a model
        failure.
        """
        started = self.deps.clock()
        area = MemoryArea(area)

        def result(action: ConsolidationAction, reasoning: str, **extra) -> ConsolidationResult:
            extra.setdefault("source_ids", [chunk_id])
            return ConsolidationResult(
                action=action,
                reasoning=reasoning,
                area=area,
                model=model,
                duration_ms=self.deps.clock() - started,
                **extra,
            )

        if not self.config.enabled:
            self.log.debug("consolidation skipped for %s: disabled", chunk_id)
            return result(ConsolidationAction.SKIP, "consolidation disabled")
        if not text or not text.strip():
            return result(ConsolidationAction.SKIP, "empty chunk text")

        candidates = self.find_similar(
            embedding,
            limit=self.config.max_similar_memories,
            min_score=self.config.similarity_threshold,
        )
        if not candidates:
            return self._record(result(
                ConsolidationAction.KEEP_SEPARATE, "no similar candidates found", result_id=chunk_id
            ))

        valid = [c for c in candidates if self.store.chunk_exists(c.id)]
        if not valid:
            return self._record(result(
                ConsolidationAction.KEEP_SEPARATE, "all candidates stale", result_id=chunk_id
            ))

        context = valid[: self.config.max_llm_context_memories]
        context_ids = [chunk_id, *(c.id for c in context)]
        user_prompt = build_consolidation_message_prompt(
            area=area, new_memory=text, similar=context, timestamp_ms=started
        )
        try:
            raw = await asyncio.wait_for(
                self.deps.llm.call(build_consolidation_system_prompt(), user_prompt, task_tag="consolidation"),
                timeout=self.config.processing_timeout_ms / 1000,
            )
        except TIMEOUT_ERRORS as exc:
            self.log.warning("consolidation LLM call failed: timeout (%s)", exc)
            return self._record(result(ConsolidationAction.SKIP, "timeout", source_ids=context_ids))
        except Exception as exc:
            self.log.warning("consolidation LLM call failed: llm_error (%s: %s)", type(exc).__name__, exc)
            return self._record(result(ConsolidationAction.SKIP, "llm_error", source_ids=context_ids))

        decision = self._gate(parse_consolidation_response(raw), context)
        target_id = decision.target_id
        if decision.action in TARGETED_ACTIONS and target_id:
            source_ids = [chunk_id, target_id]
        else:
            source_ids = context_ids
        return self._apply(result(
            decision.action,
            decision.reasoning,
            source_ids=source_ids,
            target_id=target_id,
            new_memory_content=decision.new_memory_content,
            updated_content=decision.updated_content,
            result_id=chunk_id if decision.action is ConsolidationAction.KEEP_SEPARATE else None,
            llm_decided=decision.parsed,
        ))

    def find_similar(
        self,
        embedding: Sequence[float],
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[SimilarChunk]:
        """Nearest stored chunks scoring at least ``min_score``, best first, across all areas."""
        if embedding is None or len(embedding) == 0:
            return []
        limit = self.config.max_similar_memories if limit is None else limit
        min_score = self.config.similarity_threshold if min_score is None else min_score
        out: list[SimilarChunk] = []
        for chunk, distance in self.store.query_nearest(embedding, limit):
            score = 1.0 - distance
            if score < min_score:
                continue
            out.append(SimilarChunk(
                id=chunk.id,
                text=truncate_text(chunk.text, self.config.snippet_max_chars),
                score=score,
                path=chunk.path,
                area=chunk.area,
            ))
        out.sort(key=lambda c: c.score, reverse=True)
        return out

    def get_consolidation_log(
        self,
        area: MemoryArea | str | None = None,
        action: ConsolidationAction | str | None = None,
        since: int | None = None,
        limit: int = 100,
    ) -> list[ConsolidationLogEntry]:
        return self.store.list_consolidation_log(area=area, action=action, since=since, limit=limit)

    # --- Internal ---

    def _gate(self, decision: ConsolidationDecision, context: list[SimilarChunk]) -> ConsolidationDecision:
        """Resolve the target and enforce the content and REPLACE gates."""
        if decision.action not in TARGETED_ACTIONS:
            decision.target_id = None
            return decision
        if not decision.target_id:
            return self._downgrade(decision, "no target")
        target = _match_candidate(decision.target_id, context)
        if target is None:
            self.log.info("consolidation target %r not among candidates", decision.target_id)
            return self._downgrade(decision, "unknown target")
        decision.target_id = target.id

        if decision.action is ConsolidationAction.REPLACE:
            threshold = self.config.replace_similarity_threshold
            if target.score < threshold:
                self.log.info(
                    "REPLACE safety gate: target similarity %.3f < %s, downgrading to KEEP_SEPARATE",
                    target.score, threshold,
                )
                return self._downgrade(
                    decision, f"similarity {target.score:.3f} below replace threshold {threshold}"
                )
        elif decision.action is ConsolidationAction.MERGE and not decision.new_memory_content:
            return self._downgrade(decision, "empty merge content")
        elif decision.action is ConsolidationAction.UPDATE and not decision.updated_content:
            return self._downgrade(decision, "empty update content")
        return decision

    @staticmethod
    def _downgrade(decision: ConsolidationDecision, why: str) -> ConsolidationDecision:
        decision.reasoning = f"{decision.reasoning} (downgraded: {why})"
        decision.action = ConsolidationAction.KEEP_SEPARATE
        decision.target_id = None
        return decision

    def _apply(self, result: ConsolidationResult) -> ConsolidationResult:
        """Mutate the target and write the audit row in one transaction."""
        target_id = result.target_id
        with self.store.transaction():
            if result.action in TARGETED_ACTIONS and target_id:
                if self.store.get_chunk(target_id) is None:
                    # Deleted since retrieval; nothing to mutate.
                    self.log.info("consolidation target %s vanished before %s", target_id, result.action.value)
                elif result.action is ConsolidationAction.REPLACE:
                    if self.store.delete_chunk(target_id):
                        result.result_id = target_id
                elif result.action is ConsolidationAction.MERGE:
                    if self.store.update_chunk_text(target_id, result.new_memory_content, absorbed_id=result.source_ids[0]):
                        result.result_id = target_id
                else:
                    if self.store.update_chunk_text(target_id, result.updated_content, absorbed_id=result.source_ids[0]):
                        result.result_id = target_id
            self._write_log(result)
        self.log.debug(
            "consolidation %s for %s target=%s", result.action.value, result.source_ids[0], target_id
        )
        return result

    def _record(self, result: ConsolidationResult) -> ConsolidationResult:
        with self.store.transaction():
            self._write_log(result)
        return result

    def _write_log(self, result: ConsolidationResult) -> None:
        ts = self.deps.clock()
        self.store.append_consolidation_log(ConsolidationLogEntry(
            timestamp=ts,
            action=result.action,
            source_ids=list(result.source_ids),
            result_id=result.result_id,
            area=result.area,
            model=result.model,
            reasoning=result.reasoning,
            created_at=ts,
        ))


def _match_candidate(target_id: str, candidates: list[SimilarChunk]) -> SimilarChunk | None:
    """Exact id match, else a unique prefix match (models shorten ids)."""
    for c in candidates:
        if c.id == target_id:
            return c
    prefixed = [c for c in candidates if c.id.startswith(target_id)]
    return prefixed[0] if len(prefixed) == 1 else None
