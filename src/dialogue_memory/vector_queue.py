"""Background embedding queue.

Vectors are computed lazily: callers enqueue text for a memory id or a
context key and a processor loop fills the VectorStore / SemanticCache.
Exactly one processor runs at a time, chosen by the backend mode:

- Local: one request at a time through the ONNX engine.
- Remote: requests gathered over a short window and sent as one batch,
  retried a few times, then a cooldown during which nothing is sent.

Requests are de-duplicated by ``(kind, key)`` while they sit in the queue.
A processor that is cancelled mid-request or mid-batch puts its work back
in its own ``finally`` block, so switching modes never loses work.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from uuid import UUID

import numpy as np
from loguru import logger

from .config import VectorQueueConfig
from .embedding.engine import EmbeddingEngine
from .embedding.remote import RemoteEmbeddingClient
from .exceptions import QuotaExceededError
from .models import PendingVectorRequest, VectorKind
from .storage.semantic_cache import SemanticCache
from .storage.vector_store import VectorStore
from .tasks import CancellationToken, NoticeBoard

QUOTA_NOTICE_KEY = "remote_embedding_quota"


class VectorComputeQueue:
    """FIFO of pending embedding work plus the processor that drains it."""

    def __init__(
        self,
        vector_store: VectorStore,
        semantic_cache: SemanticCache,
        engine: EmbeddingEngine,
        remote_client: RemoteEmbeddingClient,
        config: VectorQueueConfig | None = None,
        notices: NoticeBoard | None = None,
    ):
        """Initialize the queue. No processor runs until ``start``.

        Args:
            vector_store: Destination for memory vectors
            semantic_cache: Destination for context vectors
            engine: Local embedding backend
            remote_client: Remote embedding backend
            config: Queue timing and retry configuration
            notices: Receives the one-time quota notice
        """
        self._store = vector_store
        self._cache = semantic_cache
        self._engine = engine
        self._remote = remote_client
        self._config = config or VectorQueueConfig()
        self._notices = notices or NoticeBoard()

        self._queue: deque[PendingVectorRequest] = deque()
        self._pending: set[tuple[VectorKind, UUID | int]] = set()
        self._lock = threading.Lock()

        self._use_remote = self._config.use_remote
        self._token = CancellationToken()
        self._processor: asyncio.Task | None = None
        self._cooldown_until = 0.0
        self._switch_lock: asyncio.Lock | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def use_remote(self) -> bool:
        return self._use_remote

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def in_cooldown(self) -> bool:
        return time.monotonic() < self._cooldown_until

    @property
    def is_running(self) -> bool:
        return self._processor is not None and not self._processor.done()

    def is_pending(self, kind: VectorKind, key: UUID | int) -> bool:
        with self._lock:
            return (kind, key) in self._pending

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue_memory(
        self,
        memory_id: UUID,
        text: str,
        copy_targets: list[UUID] | None = None,
    ) -> bool:
        """Schedule a memory vector.

        Args:
            memory_id: Record id the vector belongs to
            text: Record summary
            copy_targets: Extra record ids that share this text

        Returns:
            True if a new request was queued
        """
        return self._enqueue(
            PendingVectorRequest(
                kind=VectorKind.MEMORY,
                target_key=memory_id,
                text=text,
                copy_targets=list(copy_targets or []),
            )
        )

    def enqueue_context(self, kind: VectorKind, key: int, text: str) -> bool:
        """Schedule a context facet vector for the semantic cache."""
        if kind is VectorKind.MEMORY:
            raise ValueError("Use enqueue_memory for memory vectors")
        return self._enqueue(PendingVectorRequest(kind=kind, target_key=key, text=text))

    def _is_stored(self, request: PendingVectorRequest) -> bool:
        if request.kind is VectorKind.MEMORY:
            return self._store.contains(request.target_key)
        return self._cache.has(request.kind, request.target_key)

    def _enqueue(self, request: PendingVectorRequest) -> bool:
        if not request.text or not request.text.strip():
            return False
        if self._is_stored(request):
            return False
        with self._lock:
            if request.dedup_key in self._pending:
                return False
            self._pending.add(request.dedup_key)
            self._queue.append(request)
        return True

    def _dequeue(self) -> PendingVectorRequest | None:
        with self._lock:
            if not self._queue:
                return None
            request = self._queue.popleft()
            self._pending.discard(request.dedup_key)
            return request

    def _requeue(self, requests: list[PendingVectorRequest]) -> int:
        """Put requests back with their dedup markers restored."""
        restored = 0
        with self._lock:
            for request in requests:
                if request.dedup_key in self._pending:
                    continue
                self._pending.add(request.dedup_key)
                self._queue.append(request)
                restored += 1
        return restored

    def clear(self) -> None:
        """Drop all queued requests. A running processor keeps running."""
        with self._lock:
            self._queue.clear()
            self._pending.clear()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _store_result(self, request: PendingVectorRequest, vector: np.ndarray | None) -> bool:
        if vector is None or not np.any(vector):
            logger.debug(f"Discarding empty vector for {request.kind.value}:{request.target_key}")
            return False
        if request.kind is VectorKind.MEMORY:
            self._store.add(request.target_key, vector)
            for copy_id in request.copy_targets:
                self._store.add(copy_id, vector)
        else:
            self._cache.add(request.kind, request.target_key, vector)
        return True

    # ------------------------------------------------------------------
    # Processor lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the processor for the current mode on the running loop."""
        if self.is_running:
            return
        self._token = CancellationToken()
        if self._use_remote:
            self._processor = asyncio.create_task(self._remote_processor(self._token))
        else:
            self._processor = asyncio.create_task(self._local_processor(self._token))
        logger.info(f"Vector queue started in {'remote' if self._use_remote else 'local'} mode")

    async def stop(self) -> None:
        """Cancel the active processor and wait for it to settle."""
        processor = self._processor
        self._token.cancel()
        self._processor = None
        if processor is None or processor.done():
            return
        processor.cancel()
        try:
            await processor
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Vector processor exited with error: {e}")

    async def switch_mode(self, use_remote: bool) -> None:
        """Swap processors.

        The old processor is cancelled and awaited (it requeues its own
        in-flight batch), the local model is unloaded or loaded, and the
        processor for the new mode is started.
        """
        if self._switch_lock is None:
            self._switch_lock = asyncio.Lock()
        async with self._switch_lock:
            await self.stop()
            self._use_remote = use_remote
            if use_remote:
                self._engine.unload()
                logger.info("Vector queue: switched to remote mode")
            else:
                logger.info("Vector queue: switched to local mode")
            await self.start()

    # ------------------------------------------------------------------
    # Local processor
    # ------------------------------------------------------------------

    async def _local_processor(self, token: CancellationToken) -> None:
        if not self._engine.is_initialized:
            ready = await asyncio.to_thread(self._engine.initialize)
            if not ready:
                logger.error("Local embedding model failed to load; local processor stopped")
                return

        while not token.cancelled:
            request = self._dequeue()
            if request is None:
                await asyncio.sleep(self._config.local_poll_seconds)
                continue
            finished = False
            try:
                vector = await asyncio.to_thread(self._engine.embed, request.text)
                finished = True
                self._store_result(request, vector)
            except Exception as e:
                finished = True
                logger.error(f"Local vector processor error: {e}")
            finally:
                if not finished:
                    self._requeue([request])
                    logger.info("Vector queue: in-flight local request returned to queue")

    # ------------------------------------------------------------------
    # Remote processor
    # ------------------------------------------------------------------

    async def _remote_processor(self, token: CancellationToken) -> None:
        batch: list[PendingVectorRequest] = []
        try:
            while not token.cancelled:
                try:
                    if self.in_cooldown:
                        await token.sleep(min(1.0, self._cooldown_until - time.monotonic()))
                        continue

                    batch.clear()
                    loop = asyncio.get_running_loop()
                    deadline = loop.time() + self._config.batch_window_seconds
                    while loop.time() < deadline and not token.cancelled:
                        if len(batch) >= self._config.max_batch_size:
                            break
                        request = self._dequeue()
                        if request is not None:
                            batch.append(request)
                        else:
                            await asyncio.sleep(self._config.remote_poll_seconds)

                    if not batch or token.cancelled:
                        continue

                    vectors = await self._call_remote_with_retry(batch, token)
                    if not vectors and token.cancelled:
                        break
                    for request, vector in zip(batch, vectors):
                        self._store_result(request, vector)
                    if len(vectors) < len(batch):
                        self._requeue(batch[len(vectors):])
                    batch.clear()
                except Exception as e:
                    logger.error(f"Remote vector processor error: {e}")
                    await token.sleep(1.0)
        finally:
            if batch:
                restored = self._requeue(batch)
                logger.info(f"Vector queue: {restored} in-flight requests returned to queue")
                batch.clear()

    async def _call_remote_with_retry(
        self,
        batch: list[PendingVectorRequest],
        token: CancellationToken,
    ) -> list[np.ndarray]:
        """Send one batch, retrying with a fixed interval.

        On exhaustion the batch is requeued, the cooldown starts, and an
        empty list is returned.
        """
        texts = [r.text for r in batch]
        max_retries = self._config.max_retries
        attempt = 0
        while attempt < max_retries and not token.cancelled:
            try:
                result = await self._remote.embed_batch(texts)
                if result:
                    return result
            except QuotaExceededError as e:
                logger.warning(f"Remote embedding failed (attempt {attempt + 1}/{max_retries}): {e}")
                self._notices.notify_once(
                    QUOTA_NOTICE_KEY,
                    "Remote embedding quota exceeded; vectors will be retried later.",
                )
            except Exception as e:
                logger.warning(f"Remote embedding failed (attempt {attempt + 1}/{max_retries}): {e}")

            attempt += 1
            if attempt < max_retries:
                logger.debug(f"Retrying remote embedding in {self._config.retry_interval_seconds}s")
                if not await token.sleep(self._config.retry_interval_seconds):
                    break

        if token.cancelled:
            # The processor's finally block puts the batch back.
            return []

        self._cooldown_until = time.monotonic() + self._config.cooldown_seconds
        logger.warning(
            f"Remote embedding entering cooldown for {self._config.cooldown_seconds}s"
        )
        self._requeue(batch)
        batch.clear()
        return []

    # ------------------------------------------------------------------
    # Immediate computation
    # ------------------------------------------------------------------

    async def compute_now(self, texts: list[str], is_query: bool = False) -> list[np.ndarray]:
        """Embed texts right away through the active backend.

        Raises:
            EmbeddingError: Remote backend failed; callers decide whether to enqueue
        """
        if not texts:
            return []
        if self._use_remote:
            return await self._remote.embed_batch(texts)
        return await asyncio.to_thread(self._engine.embed_batch, texts, is_query)
