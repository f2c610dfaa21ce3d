"""Extraction prompts and the strategy registry.

Each strategy pairs a system prompt, a user-prompt builder, the item model
that validates the reply and the memory area its items land in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from mnemos.types import BaseExtractionItem, FragmentItem, InstrumentItem, MemoryArea, SolutionItem

_IMPORTANCE_DOC = (
    "importance: number 0.0-1.0 indicating how valuable this item is for future reference. "
    "0.0 = trivial, 0.5 = moderately useful, 1.0 = critical/must-remember."
)

SOLUTION_SYSTEM_PROMPT = f"""You are a knowledge extractor. Identify problem/solution pairs in a
conversation transcript. For each pair, extract the problem description, the
solution steps and any relevant context.

Rules:
- Only extract clear patterns where a problem was stated and resolved.
- Do NOT invent solutions that were not present in the conversation.
- If no problem/solution pairs exist, return an empty array.
- Return valid JSON only, no markdown fences.

Output JSON schema:
[
  {{
    "problem": "string describing the problem",
    "solution": "string describing the solution steps",
    "context": "optional string with extra context",
    "{_IMPORTANCE_DOC}"
  }}
]

Example output:
[
  {{
    "problem": "Docker container fails to start with OOM error",
    "solution": "Increase memory limit in docker-compose.yml to 2G",
    "context": "Node.js application with memory-intensive image processing",
    "importance": 0.8
  }}
]"""

FRAGMENT_SYSTEM_PROMPT = f"""You are a knowledge extractor. Identify key facts, user preferences and
notable information in a conversation transcript.

Rules:
- Extract facts, preferences and decisions stated in the conversation.
- Focus on information useful in future conversations.
- Do NOT extract greetings, filler, or details only relevant to this conversation.
- If nothing notable exists, return an empty array.
- Return valid JSON only, no markdown fences.

Output JSON schema:
[
  {{
    "fact": "string describing the key fact or preference",
    "category": "preference | fact | decision",
    "{_IMPORTANCE_DOC}"
  }}
]

Example output:
[
  {{
    "fact": "User prefers Python type hints on public functions",
    "category": "preference",
    "importance": 0.7
  }}
]"""

INSTRUMENT_SYSTEM_PROMPT = f"""You are a knowledge extractor. Identify tools, techniques and methods that
were discussed or used in a conversation transcript.

Rules:
- Extract tools (software, libraries, APIs), techniques (patterns, approaches)
  and methods (workflows, processes) that were mentioned or used.
- Include usage context or configuration details.
- Do NOT extract generic tools (e.g. "a web browser") without specific usage details.
- If nothing notable exists, return an empty array.
- Return valid JSON only, no markdown fences.

Output JSON schema:
[
  {{
    "name": "string name of the tool, technique, or method",
    "description": "string describing what it does and how it was used",
    "type": "tool | technique | method",
    "{_IMPORTANCE_DOC}"
  }}
]

Example output:
[
  {{
    "name": "faiss",
    "description": "Vector similarity index, used for memory deduplication",
    "type": "tool",
    "importance": 0.6
  }}
]"""

_ARRAY_HINT = "Return a JSON array (empty array if none found).\n\nConversation transcript:\n"


def build_solution_user_prompt(transcript: str) -> str:
    return "Extract all problem/solution pairs from this conversation. " + _ARRAY_HINT + transcript


def build_fragment_user_prompt(transcript: str) -> str:
    return (
        "Extract key facts, preferences, and notable information from this conversation. "
        + _ARRAY_HINT + transcript
    )


def build_instrument_user_prompt(transcript: str) -> str:
    return "Extract tools, techniques, and methods from this conversation. " + _ARRAY_HINT + transcript


@dataclass(frozen=True)
class ExtractionStrategy:
    type: str
    area: MemoryArea
    system_prompt: str
    build_user_prompt: Callable[[str], str]
    item_model: type[BaseExtractionItem]


SOLUTIONS = ExtractionStrategy(
    type="solutions",
    area=MemoryArea.SOLUTIONS,
    system_prompt=SOLUTION_SYSTEM_PROMPT,
    build_user_prompt=build_solution_user_prompt,
    item_model=SolutionItem,
)
FRAGMENTS = ExtractionStrategy(
    type="fragments",
    area=MemoryArea.FRAGMENTS,
    system_prompt=FRAGMENT_SYSTEM_PROMPT,
    build_user_prompt=build_fragment_user_prompt,
    item_model=FragmentItem,
)
INSTRUMENTS = ExtractionStrategy(
    type="instruments",
    area=MemoryArea.INSTRUMENTS,
    system_prompt=INSTRUMENT_SYSTEM_PROMPT,
    build_user_prompt=build_instrument_user_prompt,
    item_model=InstrumentItem,
)

# Fixed order; results are reported in this order.
EXTRACTION_STRATEGIES: tuple[ExtractionStrategy, ...] = (SOLUTIONS, FRAGMENTS, INSTRUMENTS)
STRATEGIES_BY_TYPE = {s.type: s for s in EXTRACTION_STRATEGIES}
