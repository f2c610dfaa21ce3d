"""Auto-memorize: extract memories from a finished session transcript.

Three strategies (solutions, fragments, instruments) run concurrently and are
joined with a settle-all gather, so one failing strategy never cancels or
hides the others. Validated items are then embedded and stored one by one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mnemos.config import AutoMemorizeConfig
from mnemos.exceptions import TIMEOUT_ERRORS
from mnemos.extraction.items import parse_extraction_response, validate_item
from mnemos.extraction.prompts import EXTRACTION_STRATEGIES, ExtractionStrategy
from mnemos.extraction.transcript import build_transcript_text, parse_transcript
from mnemos.protocol import CheckBudget, Clock, EmbedText, GetTranscript, LLMClient, StoreChunk
from mnemos.types import AutoMemorizeResult, ExtractionResult
from mnemos.utils import now_ms

logger = logging.getLogger(__name__)

EXTRACTION_TASK_TAG = "consolidation"


@dataclass
class AutoMemorizeDeps:
    llm: LLMClient
    embed_text: EmbedText
    store_chunk: StoreChunk
    check_budget: CheckBudget
    get_transcript: GetTranscript
    log: logging.Logger = logger
    clock: Clock = now_ms


def resolve_config(config: AutoMemorizeConfig | Mapping[str, Any] | None) -> AutoMemorizeConfig:
    """Fill in defaults: disabled, 12000 transcript chars, 30 s per extraction."""
    if config is None:
        return AutoMemorizeConfig()
    if isinstance(config, AutoMemorizeConfig):
        return config
    return AutoMemorizeConfig.model_validate(dict(config))


async def run_extraction(
    strategy: ExtractionStrategy,
    transcript: str,
    deps: AutoMemorizeDeps,
    timeout_ms: int,
) -> ExtractionResult:
    """Run one strategy. Raises on model failure; the caller records it."""
    if not deps.check_budget():
        return ExtractionResult(
            type=strategy.type, area=strategy.area, skipped=True, skip_reason="rate_limit"
        )
    raw = await asyncio.wait_for(
        deps.llm.call(
            strategy.system_prompt,
            strategy.build_user_prompt(transcript),
            task_tag=EXTRACTION_TASK_TAG,
        ),
        timeout=timeout_ms / 1000,
    )
    items = []
    for raw_item in parse_extraction_response(raw):
        item = validate_item(strategy.item_model, raw_item)
        if item is not None:
            items.append(item)
    return ExtractionResult(type=strategy.type, area=strategy.area, items=items)


async def store_extractions(result: ExtractionResult, deps: AutoMemorizeDeps) -> int:
    """Embed and store items sequentially; a failed item does not stop the rest."""
    stored = 0
    for item in result.items:
        try:
            text = item.to_text()
            embedding = await deps.embed_text(text)
            await deps.store_chunk(text, embedding, result.area, item.importance)
        except Exception as exc:
            deps.log.warning(
                "auto-memorize: failed to store %s item: %s: %s", result.type, type(exc).__name__, exc
            )
            continue
        stored += 1
    result.stored = stored
    return stored


class AutoMemorizer:
    def __init__(
        self,
        deps: AutoMemorizeDeps,
        strategies: tuple[ExtractionStrategy, ...] = EXTRACTION_STRATEGIES,
    ) -> None:
        self.deps = deps
        self.strategies = strategies

    async def run(
        self,
        session_id: str,
        config: AutoMemorizeConfig | Mapping[str, Any] | None = None,
    ) -> AutoMemorizeResult | None:
        """Extract and store memories for one session.

        Returns None when disabled or when the transcript cannot be read.
        Every other outcome, including skipped and failed strategies, is
        described in the returned result.
        """
        deps = self.deps
        cfg = resolve_config(config)
        if not cfg.enabled:
            deps.log.debug("auto-memorize: disabled by config")
            return None

        started = deps.clock()
        deps.log.info("auto-memorize: starting extraction for session=%s", session_id)
        try:
            raw = await deps.get_transcript(session_id)
        except Exception as exc:
            deps.log.warning("auto-memorize: transcript read failed for session=%s: %s", session_id, exc)
            return None

        messages = parse_transcript(raw)
        if not messages:
            deps.log.info("auto-memorize: empty transcript, skipping session=%s", session_id)
            return AutoMemorizeResult(session_id=session_id, duration_ms=deps.clock() - started)
        transcript = build_transcript_text(messages, cfg.max_transcript_chars)

        outcomes = await asyncio.gather(
            *(run_extraction(s, transcript, deps, cfg.extraction_timeout_ms) for s in self.strategies),
            return_exceptions=True,
        )
        results: list[ExtractionResult] = []
        error_types: dict[str, str] = {}
        for strategy, outcome in zip(self.strategies, outcomes):
            if isinstance(outcome, ExtractionResult):
                results.append(outcome)
                continue
            error = "timeout" if isinstance(outcome, TIMEOUT_ERRORS) else (str(outcome) or type(outcome).__name__)
            error_types[strategy.type] = type(outcome).__name__
            deps.log.warning("auto-memorize: %s extraction failed: %s", strategy.type, error)
            results.append(ExtractionResult(type=strategy.type, area=strategy.area, error=error))

        total_stored = 0
        for result in results:
            if result.items:
                total_stored += await store_extractions(result, deps)

        total_extracted = sum(len(r.items) for r in results)
        duration_ms = deps.clock() - started
        self._log_summary(session_id, results, error_types, total_extracted, total_stored, duration_ms)
        return AutoMemorizeResult(
            session_id=session_id,
            results=results,
            total_extracted=total_extracted,
            total_stored=total_stored,
            duration_ms=duration_ms,
        )

    def _log_summary(
        self,
        session_id: str,
        results: list[ExtractionResult],
        error_types: dict[str, str],
        extracted: int,
        stored: int,
        duration_ms: int,
    ) -> None:
        counts = {r.type: len(r.items) for r in results}
        skipped = {r.type: r.skip_reason for r in results if r.skipped}
        message = (
            f"auto-memorize: complete session={session_id} extracted={extracted} stored={stored} "
            f"duration={duration_ms}ms counts=[{', '.join(f'{k}={v}' for k, v in counts.items())}]"
        )
        if skipped:
            message += f" skipped=[{', '.join(f'{k}({v})' for k, v in skipped.items())}]"
        if error_types:
            message += f" errors=[{', '.join(f'{k}:{v}' for k, v in error_types.items())}]"
        self.deps.log.info(
            message,
            extra={
                "auto_memorize": {
                    "session_id": session_id,
                    "extracted": extracted,
                    "stored": stored,
                    "duration_ms": duration_ms,
                    "counts": counts,
                    "skipped": skipped,
                    "errors": error_types,
                }
            },
        )


async def run_auto_memorize(
    session_id: str,
    config: AutoMemorizeConfig | Mapping[str, Any] | None,
    deps: AutoMemorizeDeps,
) -> AutoMemorizeResult | None:
    return await AutoMemorizer(deps).run(session_id, config)
