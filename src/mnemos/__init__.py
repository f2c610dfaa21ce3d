"""mnemos: consolidating semantic memory for conversational agents."""

__version__ = "0.1.0"

from mnemos.config import Config
from mnemos.memory_spine import MemorySpine
from mnemos.types import ConsolidationAction, MemoryArea

__all__ = [
    "__version__",
    "Config",
    "ConsolidationAction",
    "MemoryArea",
    "MemorySpine",
]
