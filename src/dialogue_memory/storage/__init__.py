"""Persistent vector storage for dialogue memory.

Both stores are plain in-memory maps with a versioned binary file format;
a version change invalidates a file as a whole.
"""

from __future__ import annotations

from .semantic_cache import SemanticCache, definition_key, text_key
from .vector_store import VectorStore

__all__ = ["SemanticCache", "VectorStore", "definition_key", "text_key"]
