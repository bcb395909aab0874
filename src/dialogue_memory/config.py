"""Dialogue memory configuration models."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, model_validator

BGE_QUERY_PREFIX = "为这个句子生成表示以用于检索相关文章："


def _reject_parent_refs(value: str, field_name: str) -> str:
    normalized = os.path.normpath(value)
    parts = normalized.replace("\\", "/").split("/")
    if ".." in parts:
        raise ValueError(
            f"{field_name} must not contain '..' components: {value!r}"
        )
    return normalized


class StorageConfig(BaseModel):
    """Storage paths for the persisted vector blobs."""

    vector_store_path: str = "./memory/vectors.bin"
    semantic_cache_path: str = "./memory/semantic_cache.bin"

    @model_validator(mode="after")
    def _validate_paths(self) -> "StorageConfig":
        self.vector_store_path = _reject_parent_refs(
            self.vector_store_path, "vector_store_path"
        )
        self.semantic_cache_path = _reject_parent_refs(
            self.semantic_cache_path, "semantic_cache_path"
        )
        return self


class EmbeddingConfig(BaseModel):
    """Local ONNX embedding model configuration."""

    model_path: str = "./models/bge-base-zh/model.onnx"
    vocab_path: str = "./models/bge-base-zh/vocab.txt"
    max_seq_length: int = 128
    dimension: int = 768
    query_prefix: str = BGE_QUERY_PREFIX
    lowercase: bool = True
    intra_op_threads: int = 2
    inter_op_threads: int = 2


class RemoteEmbeddingConfig(BaseModel):
    """Remote embedding API configuration."""

    endpoint: str = "https://api.siliconflow.cn/v1/embeddings"
    model: str = "BAAI/bge-m3"
    api_key: str = ""
    dimension: int = 1024
    timeout_seconds: float = 30.0


class VectorQueueConfig(BaseModel):
    """Background vector computation queue configuration."""

    use_remote: bool = False
    batch_window_seconds: float = 2.0
    max_batch_size: int = 32
    max_retries: int = 3
    retry_interval_seconds: float = 5.0
    cooldown_seconds: float = 60.0
    local_poll_seconds: float = 0.05
    remote_poll_seconds: float = 0.1


class TaskConfig(BaseModel):
    """Retryable background task configuration."""

    max_attempts: int = 5
    retry_delay_seconds: float = 30.0


class DecayFloors(BaseModel):
    """Minimum decay multipliers by importance.

    Records at or above ``high_importance`` never decay below ``high_floor``;
    records at exactly ``mid_importance`` never decay below ``mid_floor``.
    """

    high_importance: int = 5
    high_floor: float = 0.5
    mid_importance: int = 4
    mid_floor: float = 0.3

    def floor_for(self, importance: int) -> float:
        if importance >= self.high_importance:
            return self.high_floor
        if importance == self.mid_importance:
            return self.mid_floor
        return 0.0


class ConsolidationConfig(BaseModel):
    """Tier thresholds and long-tier retention scoring."""

    enabled: bool = True
    recent_threshold: int = 30
    mid_threshold: int = 60
    long_cap: int = 40
    trim_buffer: int = 5
    importance_weight: float = 1.0
    access_weight: float = 0.5
    half_life_days: float = 60.0
    grace_days: float = 15.0
    ticks_per_day: int = 60000
    decay_floors: DecayFloors = Field(default_factory=DecayFloors)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "ConsolidationConfig":
        if self.recent_threshold < 1 or self.mid_threshold < 1 or self.long_cap < 1:
            raise ValueError("tier thresholds must be positive")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        return self


class RetrievalConfig(BaseModel):
    """Personal memory retrieval scoring configuration."""

    semantic_weight: float = 1.0
    importance_weight: float = 1.0
    name_weight: float = 1.0
    access_weight: float = 0.3
    similarity_threshold: float = 0.3
    relative_threshold: float = 0.5
    total_limit: int = 8
    recent_limit: int = 3
    long_limit: int = 1
    half_life_days: float = 60.0
    grace_days: float = 15.0
    ticks_per_day: int = 60000
    decay_floors: DecayFloors = Field(default_factory=DecayFloors)


class KnowledgeConfig(BaseModel):
    """Shared knowledge keyword scoring configuration."""

    keyword_weight: float = 2.0
    importance_weight: float = 1.0
    standard_length: float = 5.0
    limit: int = 10


class MemoryConfig(BaseModel):
    """Top-level dialogue memory configuration."""

    enabled: bool = True
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    remote_embedding: RemoteEmbeddingConfig = Field(
        default_factory=RemoteEmbeddingConfig
    )
    vector_queue: VectorQueueConfig = Field(default_factory=VectorQueueConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
