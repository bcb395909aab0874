import pytest
from pydantic import ValidationError

from dialogue_memory.config import (
    ConsolidationConfig,
    DecayFloors,
    KnowledgeConfig,
    MemoryConfig,
    RetrievalConfig,
    StorageConfig,
    TaskConfig,
    VectorQueueConfig,
)


def test_consolidation_defaults():
    cfg = ConsolidationConfig()
    assert cfg.recent_threshold == 30
    assert cfg.mid_threshold == 60
    assert cfg.long_cap == 40
    assert cfg.trim_buffer == 5
    assert cfg.half_life_days == 60
    assert cfg.grace_days == 15
    assert cfg.ticks_per_day == 60000


def test_vector_queue_defaults():
    cfg = VectorQueueConfig()
    assert cfg.use_remote is False
    assert cfg.batch_window_seconds == 2.0
    assert cfg.max_retries == 3
    assert cfg.retry_interval_seconds == 5.0
    assert cfg.cooldown_seconds == 60.0


def test_task_defaults():
    cfg = TaskConfig()
    assert cfg.max_attempts == 5
    assert cfg.retry_delay_seconds == 30.0


def test_retrieval_and_knowledge_defaults():
    r = RetrievalConfig()
    assert (r.total_limit, r.recent_limit, r.long_limit) == (8, 3, 1)
    assert r.similarity_threshold == 0.3
    assert r.relative_threshold == 0.5
    k = KnowledgeConfig()
    assert k.keyword_weight == 2.0
    assert k.standard_length == 5.0
    assert k.limit == 10


def test_decay_floors():
    floors = DecayFloors()
    assert floors.floor_for(5) == 0.5
    assert floors.floor_for(4) == 0.3
    assert floors.floor_for(3) == 0.0
    assert floors.floor_for(1) == 0.0


def test_consolidation_rejects_non_positive_thresholds():
    with pytest.raises(ValidationError):
        ConsolidationConfig(recent_threshold=0)
    with pytest.raises(ValidationError):
        ConsolidationConfig(half_life_days=0)


def test_storage_paths_reject_parent_components():
    with pytest.raises(ValidationError):
        StorageConfig(vector_store_path="../outside/vectors.bin")


def test_storage_paths_are_normalized():
    cfg = StorageConfig(vector_store_path="./memory/./vectors.bin")
    assert ".." not in cfg.vector_store_path
    assert cfg.vector_store_path.endswith("vectors.bin")


def test_memory_config_from_dict():
    cfg = MemoryConfig.model_validate(
        {
            "vector_queue": {"use_remote": True},
            "consolidation": {"recent_threshold": 10},
            "remote_embedding": {"api_key": "sk-test"},
        }
    )
    assert cfg.vector_queue.use_remote is True
    assert cfg.consolidation.recent_threshold == 10
    assert cfg.consolidation.mid_threshold == 60
    assert cfg.remote_embedding.api_key == "sk-test"
    assert isinstance(cfg.retrieval, RetrievalConfig)
