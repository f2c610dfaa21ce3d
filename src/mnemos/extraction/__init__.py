"""Auto-memorize: transcript extraction into categorized memories."""

from mnemos.extraction.items import (
    clamp_importance,
    parse_extraction_response,
    parse_fragment_item,
    parse_instrument_item,
    parse_solution_item,
)
from mnemos.extraction.orchestrator import (
    AutoMemorizeDeps,
    AutoMemorizer,
    resolve_config,
    run_auto_memorize,
    run_extraction,
    store_extractions,
)
from mnemos.extraction.prompts import EXTRACTION_STRATEGIES, ExtractionStrategy
from mnemos.extraction.transcript import FileTranscriptSource, build_transcript_text, parse_transcript

__all__ = [
    "AutoMemorizeDeps",
    "AutoMemorizer",
    "EXTRACTION_STRATEGIES",
    "ExtractionStrategy",
    "FileTranscriptSource",
    "build_transcript_text",
    "clamp_importance",
    "parse_extraction_response",
    "parse_fragment_item",
    "parse_instrument_item",
    "parse_solution_item",
    "parse_transcript",
    "resolve_config",
    "run_auto_memorize",
    "run_extraction",
    "store_extractions",
]
