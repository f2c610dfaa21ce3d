"""Validation of raw extraction items returned by the model."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import ValidationError

from mnemos.types import BaseExtractionItem, FragmentItem, InstrumentItem, SolutionItem
from mnemos.utils import clamp_importance, parse_json_array

ItemT = TypeVar("ItemT", bound=BaseExtractionItem)

__all__ = [
    "clamp_importance",
    "parse_extraction_response",
    "parse_fragment_item",
    "parse_instrument_item",
    "parse_solution_item",
    "validate_item",
]


def parse_extraction_response(raw: str) -> list[Any]:
    """Raw items from a reply; anything but a JSON array yields []."""
    return parse_json_array(raw)


def validate_item(model: type[ItemT], raw: Any) -> ItemT | None:
    """Return a validated item, or None for null, non-object or incomplete input."""
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None


def parse_solution_item(raw: Any) -> SolutionItem | None:
    return validate_item(SolutionItem, raw)


def parse_fragment_item(raw: Any) -> FragmentItem | None:
    return validate_item(FragmentItem, raw)


def parse_instrument_item(raw: Any) -> InstrumentItem | None:
    return validate_item(InstrumentItem, raw)
