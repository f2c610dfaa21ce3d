from __future__ import annotations

import asyncio
import json
import logging
import math

import pytest

from mnemos.config import AutoMemorizeConfig, ConsolidationConfig
from mnemos.extraction import (
    AutoMemorizeDeps,
    build_transcript_text,
    clamp_importance,
    parse_extraction_response,
    parse_fragment_item,
    parse_instrument_item,
    parse_solution_item,
    parse_transcript,
    resolve_config,
    run_auto_memorize,
)
from mnemos.types import MemoryArea, TranscriptMessage

OOM_TRANSCRIPT = "\n".join([
    json.dumps({"role": "user", "content": "My container keeps dying with an OOM error"}),
    json.dumps({"role": "assistant", "content": "Raise the memory limit in docker-compose.yml to 2G"}),
])

SOLUTION_REPLY = json.dumps([{
    "problem": "Container killed by OOM",
    "solution": "Raise the memory limit to 2G",
    "importance": 0.8,
}])
FRAGMENT_REPLY = json.dumps([{"fact": "User deploys with docker compose", "category": "fact"}])
INSTRUMENT_REPLY = json.dumps([{"name": "docker compose", "description": "Runs the service stack"}])


def _strategy_of(user_prompt: str) -> str:
    if "problem/solution" in user_prompt:
        return "solutions"
    if "key facts" in user_prompt:
        return "fragments"
    return "instruments"


class _RoutingLLM:
    """Answers by strategy; a strategy mapped to an exception raises it."""

    def __init__(self, replies: dict[str, object], delay: float = 0.0) -> None:
        self.replies = replies
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def call(self, system_prompt: str, user_prompt: str, task_tag: str = "consolidation") -> str:
        strategy = _strategy_of(user_prompt)
        self.calls.append((strategy, task_tag))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.get(strategy, "[]")
        if isinstance(reply, Exception):
            raise reply
        return reply


class _Recorder:
    def __init__(self, transcript: str = OOM_TRANSCRIPT, fail_on: str | None = None) -> None:
        self.transcript = transcript
        self.fail_on = fail_on
        self.transcript_reads = 0
        self.stored: list[tuple[str, MemoryArea, float]] = []

    async def get_transcript(self, session_id: str) -> str:
        self.transcript_reads += 1
        return self.transcript

    async def embed_text(self, text: str) -> list[float]:
        return [float(len(text)), 1.0]

    async def store_chunk(self, text, embedding, area, importance) -> None:
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("disk full")
        self.stored.append((text, area, importance))


def _deps(llm, rec: _Recorder, budget: bool = True) -> AutoMemorizeDeps:
    return AutoMemorizeDeps(
        llm=llm,
        embed_text=rec.embed_text,
        store_chunk=rec.store_chunk,
        check_budget=lambda: budget,
        get_transcript=rec.get_transcript,
    )


ENABLED = AutoMemorizeConfig(enabled=True)


# --- Transcript ---

def test_parse_transcript_keeps_user_and_assistant_text():
    raw = "\n".join([
        json.dumps({"role": "system", "content": "be nice"}),
        json.dumps({"role": "user", "content": "  hello  "}),
        "{not json",
        json.dumps({"role": "assistant", "content": "   "}),
        json.dumps({"role": "assistant", "content": ["block"]}),
        json.dumps(["role", "user"]),
        "",
        json.dumps({"role": "tool", "content": "output"}),
        json.dumps({"role": "assistant", "content": "hi there"}),
    ])
    assert parse_transcript(raw) == [
        TranscriptMessage(role="user", content="hello"),
        TranscriptMessage(role="assistant", content="hi there"),
    ]


def test_build_transcript_text_within_budget():
    msgs = [TranscriptMessage("user", "a"), TranscriptMessage("assistant", "b")]
    assert build_transcript_text(msgs, 1000) == "user: a\nassistant: b"


def test_build_transcript_text_appends_partial_line_with_marker():
    msgs = [TranscriptMessage("user", "a" * 10), TranscriptMessage("assistant", "b" * 50)]
    second = "assistant: " + "b" * 50
    # first line costs 17 chars, leaving 30
    assert build_transcript_text(msgs, 47) == "user: " + "a" * 10 + "\n" + second[:30] + "..."


def test_build_transcript_text_drops_tiny_partial_line():
    msgs = [TranscriptMessage("user", "a" * 10), TranscriptMessage("assistant", "b" * 50)]
    assert build_transcript_text(msgs, 30) == "user: " + "a" * 10


# --- Item validation ---

@pytest.mark.parametrize(
    "value, expected",
    [
        (0.3, 0.3),
        (-1, 0.0),
        (2, 1.0),
        ("0.7", 0.7),
        (None, 0.5),
        ("high", 0.5),
        (math.nan, 0.5),
        (math.inf, 0.5),
        (-math.inf, 0.5),
        (True, 0.5),
        ([1], 0.5),
    ],
)
def test_clamp_importance(value, expected):
    assert clamp_importance(value) == pytest.approx(expected)


@pytest.mark.parametrize("parse", [parse_solution_item, parse_fragment_item, parse_instrument_item])
@pytest.mark.parametrize("raw", [None, "text", 42, [], {}, {"importance": 0.9}])
def test_validators_reject_null_non_object_and_missing_fields(parse, raw):
    assert parse(raw) is None


def test_validators_reject_blank_or_non_string_required_fields():
    assert parse_solution_item({"problem": "   ", "solution": "x"}) is None
    assert parse_solution_item({"problem": "p", "solution": 5}) is None
    assert parse_fragment_item({"fact": ""}) is None
    assert parse_instrument_item({"name": "n"}) is None


def test_items_apply_defaults_and_canonical_text():
    solution = parse_solution_item({"problem": " OOM ", "solution": "more RAM", "context": 3, "importance": 9})
    fragment = parse_fragment_item({"fact": "likes tabs", "category": None})
    instrument = parse_instrument_item({"name": "jq", "description": "JSON filter", "type": ""})

    assert solution.context is None
    assert solution.importance == 1.0
    assert solution.to_text() == "Problem: OOM\nSolution: more RAM"
    assert fragment.to_text() == "[fact] likes tabs"
    assert fragment.importance == 0.5
    assert instrument.to_text() == "[tool] jq: JSON filter"


def test_solution_context_is_appended():
    item = parse_solution_item({"problem": "p", "solution": "s", "context": "prod cluster"})
    assert item.to_text() == "Problem: p\nSolution: s\nContext: prod cluster"


def test_parse_extraction_response_tolerates_fences():
    assert parse_extraction_response('```json\n[{"fact": "a"}]\n```') == [{"fact": "a"}]
    assert parse_extraction_response("Here you go: [1, 2] done") == [1, 2]
    assert parse_extraction_response('{"fact": "a"}') == []
    assert parse_extraction_response("nothing here") == []
    assert parse_extraction_response('[{"fact": "a"}]\nSee [1] for details.') == [{"fact": "a"}]
    assert parse_extraction_response("Items [see below]: [{\"fact\": \"b\"}]") == [{"fact": "b"}]
    assert parse_extraction_response("") == []


def test_resolve_config_defaults_and_mapping():
    cfg = resolve_config(None)
    assert (cfg.enabled, cfg.max_transcript_chars, cfg.extraction_timeout_ms) == (False, 12_000, 30_000)
    cfg = resolve_config({"enabled": True, "max_transcript_chars": 500})
    assert cfg.enabled is True
    assert cfg.max_transcript_chars == 500
    assert cfg.extraction_timeout_ms == 30_000


def test_resolve_config_accepts_camel_case_keys():
    cfg = resolve_config({"enabled": True, "maxTranscriptChars": 500, "extractionTimeoutMs": 10})
    assert (cfg.enabled, cfg.max_transcript_chars, cfg.extraction_timeout_ms) == (True, 500, 10)
    assert AutoMemorizeConfig(max_transcript_chars=42).max_transcript_chars == 42
    assert ConsolidationConfig.model_validate({"similarityThreshold": 0.5}).similarity_threshold == 0.5


# --- Orchestration ---

def test_disabled_returns_none_without_io():
    rec = _Recorder()
    llm = _RoutingLLM({})
    assert asyncio.run(run_auto_memorize("s1", None, _deps(llm, rec))) is None
    assert asyncio.run(run_auto_memorize("s1", {"enabled": False}, _deps(llm, rec))) is None
    assert rec.transcript_reads == 0
    assert llm.calls == []


def test_oom_transcript_stores_a_solution():
    rec = _Recorder()
    llm = _RoutingLLM({"solutions": SOLUTION_REPLY})

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec)))

    assert result.session_id == "s1"
    assert [r.type for r in result.results] == ["solutions", "fragments", "instruments"]
    assert result.total_extracted >= 1
    assert result.total_stored == 1
    text, area, importance = rec.stored[0]
    assert area is MemoryArea.SOLUTIONS
    assert text.startswith("Problem: ")
    assert importance == pytest.approx(0.8)
    assert sorted(c[0] for c in llm.calls) == ["fragments", "instruments", "solutions"]
    assert all(tag == "consolidation" for _, tag in llm.calls)


def test_one_failing_strategy_does_not_sink_the_others(caplog):
    caplog.set_level(logging.INFO, logger="mnemos.extraction.orchestrator")
    rec = _Recorder()
    llm = _RoutingLLM({
        "solutions": SOLUTION_REPLY,
        "fragments": RuntimeError("provider exploded"),
        "instruments": INSTRUMENT_REPLY,
    })

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec)))

    assert len(result.results) == 3
    solutions, fragments, instruments = result.results
    assert len(solutions.items) == 1 and len(instruments.items) == 1
    assert fragments.items == []
    assert fragments.error == "provider exploded"
    assert fragments.area is MemoryArea.FRAGMENTS
    assert result.total_extracted == 2
    assert result.total_stored == 2
    assert "errors=[fragments:RuntimeError]" in caplog.text
    summary = [r for r in caplog.records if r.getMessage().startswith("auto-memorize: complete")]
    assert summary[0].auto_memorize["errors"] == {"fragments": "RuntimeError"}


def test_budget_denied_skips_every_strategy():
    rec = _Recorder()
    llm = _RoutingLLM({"solutions": SOLUTION_REPLY})

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec, budget=False)))

    assert llm.calls == []
    assert all(r.skipped and r.skip_reason == "rate_limit" for r in result.results)
    assert result.total_stored == 0


def test_extraction_timeout_is_reported_per_strategy():
    rec = _Recorder()
    llm = _RoutingLLM({"solutions": SOLUTION_REPLY}, delay=1.0)
    cfg = AutoMemorizeConfig(enabled=True, extraction_timeout_ms=10)

    result = asyncio.run(run_auto_memorize("s1", cfg, _deps(llm, rec)))

    assert [r.error for r in result.results] == ["timeout", "timeout", "timeout"]
    assert result.total_extracted == 0


def test_empty_transcript_returns_empty_result():
    rec = _Recorder(transcript=json.dumps({"role": "system", "content": "only system"}))
    llm = _RoutingLLM({})

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec)))

    assert result.results == []
    assert (result.total_extracted, result.total_stored) == (0, 0)
    assert llm.calls == []


def test_transcript_read_failure_returns_none():
    class _Broken(_Recorder):
        async def get_transcript(self, session_id: str) -> str:
            raise OSError("gone")

    rec = _Broken()
    llm = _RoutingLLM({})
    assert asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec))) is None
    assert llm.calls == []


def test_failed_item_write_is_isolated():
    rec = _Recorder(fail_on="first fact")
    llm = _RoutingLLM({"fragments": json.dumps([{"fact": "first fact"}, {"fact": "second fact"}])})

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec)))

    assert result.total_extracted == 2
    assert result.total_stored == 1
    assert result.results[1].stored == 1
    assert rec.stored[0][0] == "[fact] second fact"


def test_invalid_items_are_dropped_silently():
    rec = _Recorder()
    llm = _RoutingLLM({"instruments": json.dumps([None, "x", {"name": "rg"}, {"name": "rg", "description": "search"}])})

    result = asyncio.run(run_auto_memorize("s1", ENABLED, _deps(llm, rec)))

    instruments = result.results[2]
    assert instruments.error is None
    assert [i.to_text() for i in instruments.items] == ["[tool] rg: search"]
