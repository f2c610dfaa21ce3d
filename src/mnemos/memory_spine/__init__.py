"""Memory spine facade."""

from mnemos.memory_spine.spine import MemorySpine

__all__ = ["MemorySpine"]
