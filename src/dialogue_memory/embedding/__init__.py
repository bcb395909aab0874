"""Embedding backends: local ONNX inference and a remote API client."""

from __future__ import annotations

from .engine import EmbeddingEngine
from .remote import RemoteEmbeddingClient
from .tokenizer import WordPieceTokenizer
from .vectors import cosine_similarity, l2_normalize

__all__ = [
    "EmbeddingEngine",
    "RemoteEmbeddingClient",
    "WordPieceTokenizer",
    "cosine_similarity",
    "l2_normalize",
]
