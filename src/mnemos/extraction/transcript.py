"""Session transcripts: JSONL parsing, budgeted rendering and a file source."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

import orjson

from mnemos.exceptions import TranscriptError
from mnemos.types import TranscriptMessage

_KEPT_ROLES = {"user", "assistant"}
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]+$")

# A truncated line is only worth keeping when more than this much budget remains.
_MIN_PARTIAL_CHARS = 20


def parse_transcript(raw: str) -> list[TranscriptMessage]:
    """Keep user/assistant messages with non-empty text; skip malformed lines."""
    messages: list[TranscriptMessage] = []
    for line in (raw or "").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = orjson.loads(line)
        except orjson.JSONDecodeError:
            continue
        if not isinstance(obj, dict):
            continue
        role = obj.get("role")
        content = obj.get("content")
        if role not in _KEPT_ROLES or not isinstance(content, str) or not content.strip():
            continue
        messages.append(TranscriptMessage(role=role, content=content.strip()))
    return messages


def build_transcript_text(messages: list[TranscriptMessage], max_chars: int) -> str:
    """Render ``role: content`` lines within a character budget.

    Each kept line costs its length plus one for the newline. The first line
    that does not fit is cut to the remaining budget and marked with "..."
    when more than 20 characters remain; otherwise it is dropped.
    """
    parts: list[str] = []
    used = 0
    for msg in messages:
        line = f"{msg.role}: {msg.content}"
        if used + len(line) > max_chars:
            remaining = max_chars - used
            if remaining > _MIN_PARTIAL_CHARS:
                parts.append(line[:remaining] + "...")
            break
        parts.append(line)
        used += len(line) + 1
    return "\n".join(parts)


class FileTranscriptSource:
    """Reads ``<session_id>.jsonl`` files from a directory."""

    def __init__(self, transcripts_dir: Path | str) -> None:
        self.transcripts_dir = Path(transcripts_dir)

    def path_for(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id or ""):
            raise TranscriptError(f"Invalid session id: {session_id!r}")
        return self.transcripts_dir / f"{session_id}.jsonl"

    async def get_transcript(self, session_id: str) -> str:
        path = self.path_for(session_id)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise TranscriptError(f"Cannot read transcript {path}: {exc}") from exc
