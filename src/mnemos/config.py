"""mnemos configuration."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _default_data_dir() -> Path:
    return Path(os.environ.get("MNEMOS_DATA_DIR", Path(__file__).resolve().parents[2] / "data"))


class EmbeddingConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("MNEMOS_EMBED_PROVIDER", "hash"))
    model: str = Field(default_factory=lambda: os.environ.get("MNEMOS_EMBED_MODEL", ""))
    dims: int = 384
    base_url: str = ""
    timeout: float = 30.0


class LLMConfig(BaseModel):
    provider: str = Field(default_factory=lambda: os.environ.get("MNEMOS_LLM_PROVIDER", "openai"))
    model: str = Field(default_factory=lambda: os.environ.get("MNEMOS_LLM_MODEL", ""))
    base_url: str = ""
    temperature: float = 0.0
    max_tokens: int = 1024
    timeout: float = 120.0


class ConsolidationConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = True
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_similar_memories: int = Field(default=10, ge=1)
    max_llm_context_memories: int = Field(default=5, ge=1)
    replace_similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    processing_timeout_ms: int = Field(default=60_000, gt=0)
    snippet_max_chars: int = Field(default=700, ge=1)


class AutoMemorizeConfig(BaseModel):
    """Accepts host keys in snake_case or camelCase (``maxTranscriptChars``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    max_transcript_chars: int = Field(default=12_000, ge=1)
    extraction_timeout_ms: int = Field(default=30_000, gt=0)


class Config(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    auto_memorize: AutoMemorizeConfig = Field(default_factory=AutoMemorizeConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db" / "mnemos.db"

    @property
    def faiss_dir(self) -> Path:
        return self.data_dir / "faiss"

    @property
    def transcripts_dir(self) -> Path:
        return self.data_dir / "transcripts"

    def ensure_dirs(self) -> None:
        for d in [
            self.data_dir,
            self.db_path.parent,
            self.faiss_dir,
            self.transcripts_dir,
        ]:
            d.mkdir(parents=True, exist_ok=True)
