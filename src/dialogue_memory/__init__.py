"""
Dialogue Memory - Tiered long-term memory for conversational characters

Per-entity recent, mid and long memory tiers with LLM-driven
consolidation, lazy local or remote embeddings, and context-pool
retrieval.
"""

from .models import MemoryRecord, MemoryTier, MergedMemory, TierTransition, VectorKind
from .config import MemoryConfig
from .consolidation import ConsolidationPipeline
from .context_builder import ContextVectorBuilder
from .embedding import EmbeddingEngine, RemoteEmbeddingClient
from .exceptions import (
    EmbeddingError,
    MemorySystemError,
    QuotaExceededError,
    RemoteEmbeddingError,
    StorageError,
    SummarizerError,
)
from .knowledge import CommonKnowledgeStore
from .memory_service import MemoryService
from .retrieval import RetrievalEngine
from .storage import SemanticCache, VectorStore
from .summarizer import LLMSummarizer
from .tiers import TieredMemoryStore
from .vector_queue import VectorComputeQueue

__all__ = [
    "MemoryRecord",
    "MemoryTier",
    "MergedMemory",
    "TierTransition",
    "VectorKind",
    "MemoryConfig",
    "ConsolidationPipeline",
    "ContextVectorBuilder",
    "EmbeddingEngine",
    "RemoteEmbeddingClient",
    "EmbeddingError",
    "MemorySystemError",
    "QuotaExceededError",
    "RemoteEmbeddingError",
    "StorageError",
    "SummarizerError",
    "CommonKnowledgeStore",
    "MemoryService",
    "RetrievalEngine",
    "SemanticCache",
    "VectorStore",
    "LLMSummarizer",
    "TieredMemoryStore",
    "VectorComputeQueue",
]
