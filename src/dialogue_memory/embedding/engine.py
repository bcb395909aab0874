"""Local embedding inference over an ONNX BERT-family model.

The engine never raises on the embedding path: if the model or vocabulary
cannot be loaded it stays disabled and returns zero vectors, so callers on
the host tick keep running.
"""

from __future__ import annotations

import threading
from pathlib import Path

import numpy as np
from loguru import logger

from ..config import EmbeddingConfig
from .tokenizer import WordPieceTokenizer
from .vectors import NORM_EPSILON, zero_vectors

WARMUP_TEXT = "Warmup initialization text."


class EmbeddingEngine:
    """Batched sentence embeddings via onnxruntime.

    Features:
    - Idempotent initialization with a warmup pass
    - Hybrid CJK / WordPiece tokenization
    - Masked mean pooling and L2 normalization
    - Inference serialized behind a lock (one session, many callers)
    """

    def __init__(self, config: EmbeddingConfig | None = None):
        """Initialize the engine without loading anything.

        Args:
            config: Embedding configuration
        """
        self._config = config or EmbeddingConfig()
        self._session = None
        self._tokenizer: WordPieceTokenizer | None = None
        self._input_names: set[str] = set()
        self._dimension = self._config.dimension
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def dimension(self) -> int:
        return self._dimension

    def initialize(
        self,
        model_path: str | None = None,
        vocab_path: str | None = None,
    ) -> bool:
        """Load vocabulary and inference session.

        Args:
            model_path: ONNX model file, defaults to the configured path
            vocab_path: ``vocab.txt`` file, defaults to the configured path

        Returns:
            True when the engine is ready to embed
        """
        if self._initialized:
            return True

        model_path = model_path or self._config.model_path
        vocab_path = vocab_path or self._config.vocab_path

        if not model_path or not Path(model_path).is_file():
            logger.warning(f"Embedding model not found at: {model_path}")
            return False
        if not vocab_path or not Path(vocab_path).is_file():
            logger.warning(f"Embedding vocabulary not found at: {vocab_path}")
            return False

        try:
            self._tokenizer = WordPieceTokenizer.from_file(
                vocab_path, lowercase=self._config.lowercase
            )
            logger.info(f"Loading embedding model from: {model_path}")
            self._session = self._create_session(model_path)
            self._input_names = {i.name for i in self._session.get_inputs()}
            self._initialized = True
        except Exception as e:
            logger.error(f"Embedding engine initialization failed: {e}")
            self._session = None
            self._tokenizer = None
            self._initialized = False
            return False

        self._warmup()
        logger.info(f"Embedding engine ready: dim={self._dimension}")
        return True

    def _create_session(self, model_path: str):
        import onnxruntime as ort

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.intra_op_num_threads = self._config.intra_op_threads
        options.inter_op_num_threads = self._config.inter_op_threads
        return ort.InferenceSession(
            model_path, sess_options=options, providers=["CPUExecutionProvider"]
        )

    def _warmup(self) -> None:
        """Run one inference so the first real caller doesn't pay lazy setup costs."""
        try:
            vector = self.embed(WARMUP_TEXT)
            self._dimension = int(vector.shape[0])
        except Exception as e:
            logger.warning(f"Embedding warmup failed: {e}")

    def unload(self) -> None:
        """Release the inference session; subsequent calls return zero vectors."""
        with self._lock:
            self._session = None
            self._tokenizer = None
            self._input_names = set()
            was_initialized = self._initialized
            self._initialized = False
        if was_initialized:
            logger.info("Embedding engine unloaded")

    def embed(self, text: str, is_query: bool = False) -> np.ndarray:
        """Embed a single text.

        Args:
            text: Text to embed
            is_query: Prepend the retrieval query instruction

        Returns:
            Unit-length float32 vector, or a zero vector when disabled
        """
        if not text or not text.strip():
            return np.zeros(self._dimension, dtype=np.float32)
        return self.embed_batch([text], is_query=is_query)[0]

    def embed_batch(self, texts: list[str], is_query: bool = False) -> list[np.ndarray]:
        """Embed many texts with one forward pass.

        Args:
            texts: Texts to embed
            is_query: Prepend the retrieval query instruction to every text

        Returns:
            One vector per input text, in order
        """
        if not texts:
            return []
        if not self._initialized:
            return zero_vectors(len(texts), self._dimension)

        inputs = [self._config.query_prefix + t if is_query else t for t in texts]
        with self._lock:
            if self._session is None:
                return zero_vectors(len(texts), self._dimension)
            try:
                return self._infer(inputs)
            except Exception as e:
                logger.error(f"Embedding inference error: {e}")
                return zero_vectors(len(texts), self._dimension)

    def _infer(self, texts: list[str]) -> list[np.ndarray]:
        max_len = self._config.max_seq_length
        batch = len(texts)
        pad_id = self._tokenizer.pad_id

        input_ids = np.full((batch, max_len), pad_id, dtype=np.int64)
        attention_mask = np.zeros((batch, max_len), dtype=np.int64)
        for row, text in enumerate(texts):
            ids = self._tokenizer.encode(text, max_len)
            input_ids[row, : len(ids)] = ids
            attention_mask[row, : len(ids)] = 1

        feeds = {"input_ids": input_ids, "attention_mask": attention_mask}
        if "token_type_ids" in self._input_names:
            feeds["token_type_ids"] = np.zeros((batch, max_len), dtype=np.int64)
        feeds = {k: v for k, v in feeds.items() if k in self._input_names}

        outputs = self._session.run(None, feeds)
        hidden = np.asarray(outputs[0], dtype=np.float32)
        return mean_pool(hidden, input_ids != pad_id)


def mean_pool(hidden: np.ndarray, mask: np.ndarray) -> list[np.ndarray]:
    """Average token states over non-padding positions and L2-normalize.

    Args:
        hidden: ``(batch, seq_len, dim)`` token states, or ``(batch, dim)``
            when the model already pools
        mask: ``(batch, seq_len)`` boolean mask of real tokens

    Returns:
        One unit-length vector per batch row
    """
    if hidden.ndim == 2:
        pooled = hidden.astype(np.float32)
    else:
        weights = mask[:, : hidden.shape[1]].astype(np.float32)[..., None]
        counts = weights.sum(axis=1)
        summed = (hidden * weights).sum(axis=1)
        pooled = np.divide(
            summed, counts, out=np.zeros_like(summed), where=counts > 0
        )

    norms = np.linalg.norm(pooled, axis=1, keepdims=True)
    pooled = np.divide(
        pooled, norms, out=pooled.copy(), where=norms > NORM_EPSILON
    )
    return [row.astype(np.float32) for row in pooled]
