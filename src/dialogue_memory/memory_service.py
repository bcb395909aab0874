"""Memory Service - Facade for the tiered dialogue memory system.

This module provides the MemoryService class that a host application
drives. The host owns a tick thread: it calls ``update()`` once per tick,
and every tier mutation made on behalf of background work happens there.
Summaries and embeddings run on a background asyncio loop.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

import httpx
import numpy as np
from loguru import logger

from .config import MemoryConfig
from .consolidation import ConsolidationPipeline
from .context_builder import ContextVectorBuilder
from .embedding.engine import EmbeddingEngine
from .embedding.remote import RemoteEmbeddingClient
from .formatter import format_knowledge, format_recalled_memories
from .interfaces import Notifier, Summarizer
from .knowledge import CommonKnowledgeStore
from .models import MemoryRecord, MemoryTier, TierTransition
from .retrieval import RetrievalEngine, quotas_for
from .storage.semantic_cache import SemanticCache
from .storage.vector_store import VectorStore
from .tasks import BackgroundLoop, CancellationSource, MainThreadQueue, NoticeBoard
from .tiers import TieredMemoryStore
from .vector_queue import VectorComputeQueue


class MemoryService:
    """Main memory service facade.

    Provides:
    - Per-entity recent / mid / long memory tiers
    - Background consolidation through a summarizer
    - Lazy embedding through a local or remote backend
    - Context-pool retrieval and keyword knowledge lookup
    - Persistence of vectors and context vectors
    """

    def __init__(
        self,
        summarizer: Summarizer,
        clock: Callable[[], int],
        config: MemoryConfig | None = None,
        notifier: Notifier | None = None,
        is_alive: Callable[[], bool] = lambda: True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize memory service.

        Args:
            summarizer: Produces merged memories for consolidation
            clock: Returns the current host tick
            config: Memory configuration (uses defaults if not provided)
            notifier: Receives user-visible notices
            is_alive: Whether the host session still exists
            transport: Optional httpx transport for the remote embedding client
        """
        self.config = config or MemoryConfig()
        self._clock = clock

        self.vector_store = VectorStore()
        self.semantic_cache = SemanticCache()
        self.notices = NoticeBoard(notifier)
        self.engine = EmbeddingEngine(self.config.embedding)
        self.remote_client = RemoteEmbeddingClient(self.config.remote_embedding, transport=transport)
        self.vector_queue = VectorComputeQueue(
            self.vector_store,
            self.semantic_cache,
            self.engine,
            self.remote_client,
            config=self.config.vector_queue,
            notices=self.notices,
        )
        self.store = TieredMemoryStore(
            self.vector_store,
            config=self.config.consolidation,
            vector_queue=self.vector_queue,
        )
        self.knowledge = CommonKnowledgeStore()

        self.dispatcher = MainThreadQueue()
        self.cancellation = CancellationSource()
        self.loop = BackgroundLoop()
        self.pipeline = ConsolidationPipeline(
            store=self.store,
            vector_store=self.vector_store,
            vector_queue=self.vector_queue,
            summarizer=summarizer,
            dispatcher=self.dispatcher,
            scheduler=self.loop.submit,
            cancellation=self.cancellation,
            clock=clock,
            config=self.config.consolidation,
            task_config=self.config.tasks,
            notices=self.notices,
            is_alive=is_alive,
        )
        self.retrieval = RetrievalEngine(
            store=self.store,
            vector_store=self.vector_store,
            vector_queue=self.vector_queue,
            knowledge=self.knowledge,
            clock=clock,
            config=self.config.retrieval,
            knowledge_config=self.config.knowledge,
        )

        logger.debug(f"MemoryService full config: {self.config.model_dump()}")
        logger.info(
            f"MemoryService initialized: enabled={self.config.enabled}, "
            f"remote_embedding={self.config.vector_queue.use_remote}"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, timeout: float | None = 30.0) -> None:
        """Start the background loop and the vector processor.

        In local mode the processor loads the ONNX model before it takes
        its first request.
        """
        self.loop.start()
        self.loop.submit(self.vector_queue.start()).result(timeout)
        logger.info("MemoryService started")

    def update(self) -> int:
        """Run pending background callbacks. Call once per host tick."""
        return self.dispatcher.drain()

    def close(self, timeout: float | None = 10.0) -> None:
        """Cancel in-flight work and stop the background loop."""
        self.cancellation.cancel()
        if self.loop.is_running:
            try:
                self.loop.submit(self.vector_queue.stop()).result(timeout)
            except Exception as e:
                logger.warning(f"Vector queue did not stop cleanly: {e}")
            self.loop.stop()
        self.engine.unload()
        logger.info("MemoryService closed")

    def clear(self, keep_saved_data: bool = False) -> None:
        """Reset session state.

        Cancels the session token so in-flight consolidations are discarded,
        drops queued callbacks and vector requests, and re-arms one-shot
        notices. Unless ``keep_saved_data`` is set, every entity's tiers
        and their vectors are discarded too.
        """
        self.cancellation.reset()
        self.dispatcher.clear()
        self.vector_queue.clear()
        self.notices.reset()
        self.store.reset_consolidation_flags()
        self.pipeline.reset_states()

        if not keep_saved_data:
            self.store.clear()
            self.vector_store.clear()
        logger.info(f"MemoryService cleared (keep_saved_data={keep_saved_data})")

    # ------------------------------------------------------------------
    # Memory operations
    # ------------------------------------------------------------------

    def on_short_memory(
        self,
        entity_id: int | None,
        record: MemoryRecord | None,
        entity_label: str | None = None,
    ) -> bool:
        """Accept a new short-term memory for an entity.

        The record is appended to the recent tier and queued for embedding;
        a recent→mid consolidation is launched once enough records piled up.

        Returns:
            True if the record was stored
        """
        if not self.config.enabled:
            return False
        if entity_id is None or record is None or not record.summary.strip():
            return False

        crossed = self.store.append(entity_id, record)
        self.vector_queue.enqueue_memory(record.id, record.summary)
        if crossed and self.config.consolidation.enabled:
            self.pipeline.maybe_trigger(entity_id, TierTransition.RECENT_TO_MID, entity_label)
        return True

    def edit_memory(
        self,
        entity_id: int,
        record_id: UUID,
        summary: str,
        keywords: list[str],
        importance: int,
    ) -> bool:
        return self.store.edit(entity_id, record_id, summary, keywords, importance)

    def delete_memory(self, entity_id: int, record_id: UUID) -> bool:
        return self.store.delete(entity_id, record_id)

    def get_tier(self, entity_id: int, tier: MemoryTier) -> list[MemoryRecord]:
        return self.store.tier_records(entity_id, tier)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def build_context_vectors(
        self,
        builder: ContextVectorBuilder,
        timeout: float | None = 30.0,
    ) -> list[np.ndarray]:
        """Resolve a builder's facets on the background loop and wait for them."""
        return self.loop.submit(
            builder.resolve(self.semantic_cache, self.vector_queue)
        ).result(timeout)

    def retrieve_memories(
        self,
        context_vectors: list[np.ndarray],
        entity_id: int | None,
        names: Iterable[str] | None = None,
        participant_count: int = 1,
    ) -> list[MemoryRecord]:
        """Select an entity's memories for a context.

        Args:
            context_vectors: One vector per context facet
            entity_id: Entity whose memories are searched
            names: Names of everyone present
            participant_count: Conversation size; larger groups get fewer memories

        Returns:
            Selected records
        """
        return self.retrieval.retrieve_personal(
            context_vectors,
            entity_id,
            context_names=set(names or ()),
            quotas=quotas_for(participant_count),
        )

    def retrieve_knowledge(self, context_text: str) -> list[MemoryRecord]:
        return self.retrieval.retrieve_knowledge(context_text)

    def recall_prompt(self, records: list[MemoryRecord]) -> str:
        """Prompt section listing recalled memories with their age."""
        return format_recalled_memories(records, self._clock())

    def knowledge_prompt(self, records: list[MemoryRecord]) -> str:
        return format_knowledge(records)

    # ------------------------------------------------------------------
    # Embedding backend
    # ------------------------------------------------------------------

    def switch_embedding_mode(self, use_remote: bool, timeout: float | None = 30.0) -> None:
        """Switch between the local ONNX model and the remote API.

        Queued requests survive the switch; the old processor's in-flight
        batch is returned to the queue before the new processor starts.
        """
        if use_remote == self.vector_queue.use_remote and self.vector_queue.is_running:
            return
        self.loop.submit(self.vector_queue.switch_mode(use_remote)).result(timeout)
        self.config.vector_queue.use_remote = use_remote

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> int:
        """Write memory vectors and context vectors to disk.

        Vectors of records no longer held by any entity are left out.

        Returns:
            Number of memory vectors written

        Raises:
            StorageError: A file could not be written
        """
        written = self.vector_store.save(
            self.config.storage.vector_store_path,
            valid_ids=self.store.all_record_ids(),
        )
        self.semantic_cache.save(self.config.storage.semantic_cache_path)
        return written

    def load(self) -> tuple[bool, bool]:
        """Load both vector files; a missing or stale file is simply skipped.

        Returns:
            ``(vectors_loaded, semantic_cache_loaded)``
        """
        vectors = self.vector_store.load(self.config.storage.vector_store_path)
        cache = self.semantic_cache.load(self.config.storage.semantic_cache_path)
        return vectors, cache

    def export_state(self) -> dict[str, Any]:
        """Tier and knowledge state for the host's own save file."""
        return {
            **self.store.export_state(),
            "knowledge": self.knowledge.export_state(),
        }

    def import_state(self, state: dict[str, Any]) -> None:
        """Restore ``export_state`` output; in-progress flags start cleared."""
        self.store.import_state(state)
        self.knowledge.import_state(state.get("knowledge") or [])
        self.pipeline.reset_states()
