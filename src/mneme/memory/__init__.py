"""Memory pipeline: extraction, vector storage and context assembly."""

from .buffer import ShortTermBuffer
from .context import ContextAssembler
from .dates import sanitize_dates
from .embeddings import Embedder, build_embedder
from .extractor import FactExtractor
from .manager import MemoryManager
from .models import Fact, FactType, MemoryContext
from .store import VectorMemoryStore

__all__ = [
    "ContextAssembler",
    "Embedder",
    "Fact",
    "FactExtractor",
    "FactType",
    "MemoryContext",
    "MemoryManager",
    "ShortTermBuffer",
    "VectorMemoryStore",
    "build_embedder",
    "sanitize_dates",
]
