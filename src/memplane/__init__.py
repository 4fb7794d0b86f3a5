"""memplane: hybrid retrieval and context assembly for persistent agent memory."""

from memplane.engine import MemoryEngine

__version__ = "0.1.0"

__all__ = ["MemoryEngine", "__version__"]
