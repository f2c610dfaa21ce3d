"""Core data types for memory chunks, consolidation and extraction."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mnemos.utils import DEFAULT_IMPORTANCE, clamp_importance, new_id, now_ms


class MemoryArea(str, Enum):
    MAIN = "main"
    FRAGMENTS = "fragments"
    SOLUTIONS = "solutions"
    INSTRUMENTS = "instruments"


class ConsolidationAction(str, Enum):
    MERGE = "MERGE"
    REPLACE = "REPLACE"
    KEEP_SEPARATE = "KEEP_SEPARATE"
    UPDATE = "UPDATE"
    SKIP = "SKIP"


# Actions that mutate an existing row and therefore need a target.
TARGETED_ACTIONS = frozenset(
    {ConsolidationAction.MERGE, ConsolidationAction.REPLACE, ConsolidationAction.UPDATE}
)


# --- Persisted rows ---

class MemoryChunk(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    embedding: list[float] = Field(default_factory=list)
    area: MemoryArea = MemoryArea.MAIN
    importance: float = DEFAULT_IMPORTANCE
    consolidated_from: list[str] | None = None
    path: str = ""
    source: str = "memory"
    model: str = ""
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: Any) -> float:
        return clamp_importance(value)


class ConsolidationLogEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: int = Field(default_factory=now_ms)
    action: ConsolidationAction
    source_ids: list[str] = Field(default_factory=list)
    result_id: str | None = None
    area: MemoryArea = MemoryArea.MAIN
    model: str = ""
    reasoning: str | None = None
    created_at: int = Field(default_factory=now_ms)


# --- Consolidation (transient) ---

@dataclass
class SimilarChunk:
    id: str
    text: str
    score: float
    path: str = ""
    area: MemoryArea = MemoryArea.MAIN


@dataclass
class ConsolidationDecision:
    action: ConsolidationAction
    reasoning: str
    target_id: str | None = None
    new_memory_content: str | None = None
    updated_content: str | None = None
    # False when the reply could not be decoded and the fallback was used.
    parsed: bool = True


@dataclass
class ConsolidationResult:
    action: ConsolidationAction
    reasoning: str
    area: MemoryArea
    model: str
    source_ids: list[str] = field(default_factory=list)
    result_id: str | None = None
    target_id: str | None = None
    new_memory_content: str | None = None
    updated_content: str | None = None
    duration_ms: int = 0
    llm_decided: bool = False


# --- Extraction ---

class BaseExtractionItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, strict=True)

    importance: float = DEFAULT_IMPORTANCE

    @field_validator("importance", mode="before")
    @classmethod
    def _clamp_importance(cls, value: Any) -> float:
        return clamp_importance(value)


class SolutionItem(BaseExtractionItem):
    problem: str = Field(min_length=1)
    solution: str = Field(min_length=1)
    context: str | None = None

    @field_validator("context", mode="before")
    @classmethod
    def _optional_context(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    def to_text(self) -> str:
        text = f"Problem: {self.problem}\nSolution: {self.solution}"
        if self.context:
            text += f"\nContext: {self.context}"
        return text


class FragmentItem(BaseExtractionItem):
    fact: str = Field(min_length=1)
    category: str = "fact"

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "fact"
        return value

    def to_text(self) -> str:
        return f"[{self.category}] {self.fact}"


class InstrumentItem(BaseExtractionItem):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    type: str = "tool"

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "tool"
        return value

    def to_text(self) -> str:
        return f"[{self.type}] {self.name}: {self.description}"


ExtractionItem = Union[SolutionItem, FragmentItem, InstrumentItem]


@dataclass
class ExtractionResult:
    type: str  # solutions | fragments | instruments
    area: MemoryArea
    items: list[ExtractionItem] = field(default_factory=list)
    skipped: bool = False
    skip_reason: str | None = None
    error: str | None = None
    stored: int = 0


@dataclass
class AutoMemorizeResult:
    session_id: str
    results: list[ExtractionResult] = field(default_factory=list)
    total_extracted: int = 0
    total_stored: int = 0
    duration_ms: int = 0


@dataclass
class TranscriptMessage:
    role: str
    content: str
