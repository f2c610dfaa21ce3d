"""Shared utilities."""

from __future__ import annotations

import hashlib
import json
import math
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any

import orjson

DEFAULT_IMPORTANCE = 0.5

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", flags=re.DOTALL | re.IGNORECASE)
_DECODER = json.JSONDecoder()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_str(dt: datetime) -> str:
    return dt.isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


def json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def clamp_importance(value: Any) -> float:
    """Clamp an importance score to [0.0, 1.0].

    Missing, non-numeric and non-finite values map to 0.5. Numeric strings
    are accepted since models sometimes quote numbers.
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_IMPORTANCE
    try:
        num = float(value)
    except (TypeError, ValueError):
        return DEFAULT_IMPORTANCE
    if not math.isfinite(num):
        return DEFAULT_IMPORTANCE
    return max(0.0, min(1.0, num))


def strip_code_fence(raw: str) -> str:
    text = (raw or "").strip()
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    # Unterminated fence: drop the opening marker only.
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def _decode_first(text: str, opener: str, kind: type) -> Any | None:
    """Decode the first ``kind`` value starting at an ``opener`` character.

    Decoding stops at the end of that value, so braces or brackets in any
    trailing prose are never part of the slice.
    """
    start = text.find(opener)
    while start >= 0:
        try:
            data, _ = _DECODER.raw_decode(text, start)
        except ValueError:
            data = None
        if isinstance(data, kind):
            return data
        start = text.find(opener, start + 1)
    return None


def parse_json_object(raw: str) -> dict[str, Any] | None:
    """Decode the first JSON object in a model response.

    Tolerates markdown fencing and prose before or after the object.
    Returns None when nothing decodable is found.
    """
    text = strip_code_fence(raw)
    if not text:
        return None
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        return _decode_first(text, "{", dict)
    return data if isinstance(data, dict) else None


def parse_json_array(raw: str) -> list[Any]:
    """Decode a JSON array from a model response; anything else yields []."""
    text = strip_code_fence(raw)
    if not text:
        return []
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        data = _decode_first(text, "[", list)
    return data if isinstance(data, list) else []
