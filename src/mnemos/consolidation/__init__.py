"""Consolidation: arbitrate new memories against similar stored ones."""

from mnemos.consolidation.engine import ConsolidationDeps, ConsolidationEngine
from mnemos.consolidation.prompts import (
    build_consolidation_message_prompt,
    build_consolidation_system_prompt,
    parse_consolidation_response,
)

__all__ = [
    "ConsolidationDeps",
    "ConsolidationEngine",
    "build_consolidation_message_prompt",
    "build_consolidation_system_prompt",
    "parse_consolidation_response",
]
