"""Prompt builders and response parser for consolidation arbitration."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from mnemos.types import ConsolidationAction, ConsolidationDecision, MemoryArea, SimilarChunk
from mnemos.utils import parse_json_object, strip_code_fence

CONSOLIDATION_SYSTEM_PROMPT = """You are a memory consolidation specialist for a personal AI assistant.

Given a NEW memory and a list of SIMILAR existing memories, decide the best
consolidation action. Factual accuracy and temporal context must be preserved.

## Guidelines

1. Similarity: above 0.9 suggests near-duplicates; 0.7-0.9 suggests related
   but distinct content.
2. Recency: newer information usually supersedes older information on the
   same topic, though historical context can still matter.
3. Relationships: look for complementary information to merge, contradictions
   to resolve and redundancy to remove.
4. Quality: prefer detailed, accurate, well-structured memories over vague ones.
5. Sources: facts, problem/solution pairs and tool notes may overlap while
   serving different retrieval patterns.

## Actions

- MERGE: combine the new memory with an existing one into a single entry.
  Provide "target_id" and the merged text in "new_memory_content".
- REPLACE: the new memory fully supersedes an existing one, which is removed.
  Use for corrections or strict duplicates. Provide "target_id".
- KEEP_SEPARATE: store the new memory alongside the existing ones.
- UPDATE: modify an existing memory in place. Provide "target_id" and
  "updated_content"; optionally "new_memory_content" for an additional entry.
- SKIP: do not store the new memory. Use only when it adds no information.

## Response Format

Respond with valid JSON only. No markdown fencing. No commentary outside JSON.

{
  "action": "MERGE" | "REPLACE" | "KEEP_SEPARATE" | "UPDATE" | "SKIP",
  "reasoning": "brief explanation",
  "target_id": "id of the existing memory (MERGE/REPLACE/UPDATE only)",
  "new_memory_content": "merged or additional text (MERGE/UPDATE only)",
  "updated_content": "rewritten existing text (UPDATE only)"
}

## Principles

- Never discard factual information without a clear reason.
- Prefer KEEP_SEPARATE over a lossy MERGE when in doubt.
- Keep merged memories concise but complete."""

FALLBACK_REASONING = "fallback: could not parse LLM response"
NO_REASONING = "no reasoning provided"


def build_consolidation_system_prompt() -> str:
    return CONSOLIDATION_SYSTEM_PROMPT


def build_consolidation_message_prompt(
    area: MemoryArea | str,
    new_memory: str,
    similar: Sequence[SimilarChunk],
    timestamp_ms: int | None = None,
) -> str:
    """Render the new memory and its neighbours for the arbitration call."""
    when = (
        datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        if timestamp_ms is not None
        else datetime.now(timezone.utc)
    )
    parts = [
        f"Memory area: {MemoryArea(area).value}",
        f"Timestamp: {when.isoformat()}",
        "",
        "## New Memory",
        "",
        new_memory,
        "",
        "## Similar Existing Memories",
        "",
    ]
    if not similar:
        parts.append("(none)")
    for mem in similar:
        parts.append(f"### Memory [{mem.id}] (similarity: {mem.score:.3f}, area: {MemoryArea(mem.area).value})")
        parts.append("")
        parts.append(mem.text)
        parts.append("")
    return "\n".join(parts)


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_consolidation_response(raw: str) -> ConsolidationDecision:
    """Decode a model reply into a decision. Never raises.

    Anything that is not a JSON object with a known action falls back to
    KEEP_SEPARATE with a reasoning string starting with "fallback".
    """
    fallback = ConsolidationDecision(
        action=ConsolidationAction.KEEP_SEPARATE, reasoning=FALLBACK_REASONING, parsed=False
    )
    if not strip_code_fence(raw or ""):
        return fallback
    data = parse_json_object(raw)
    if data is None:
        return fallback

    raw_action = data.get("action")
    try:
        action = ConsolidationAction(raw_action.strip().upper())
    except (AttributeError, ValueError):
        fallback.reasoning = f'fallback: unknown action "{raw_action}"'
        return fallback

    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        reasoning = NO_REASONING

    target_id = _optional_text(data.get("target_id"))
    return ConsolidationDecision(
        action=action,
        reasoning=reasoning,
        target_id=target_id.strip() if target_id else None,
        new_memory_content=_optional_text(data.get("new_memory_content")),
        updated_content=_optional_text(data.get("updated_content")),
    )
