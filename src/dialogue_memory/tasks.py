"""Background task infrastructure.

Everything that touches memory tiers runs on the host's tick thread. Work
that has to wait (LLM summaries, remote embeddings) runs on a background
asyncio loop and hands its results back through ``MainThreadQueue``, which
the host drains once per tick. No callback ever runs concurrently with
host-side state mutation.
"""

from __future__ import annotations

import asyncio
import queue
import threading
from collections.abc import Awaitable, Callable, Collection, Coroutine
from concurrent.futures import Future
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

from .interfaces import Notifier

T = TypeVar("T")

SLEEP_POLL_SECONDS = 0.05


class CancellationToken:
    """Thread-safe cancellation flag with a cancellable async sleep."""

    def __init__(self):
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless cancelled first.

        Returns:
            False if the token was cancelled before the delay elapsed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self.cancelled:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return True
            await asyncio.sleep(min(remaining, SLEEP_POLL_SECONDS))
        return False


class CancellationSource:
    """Owns the current session token; ``reset`` cancels it and issues a new one."""

    def __init__(self):
        self._token = CancellationToken()
        self._lock = threading.Lock()

    @property
    def token(self) -> CancellationToken:
        return self._token

    def cancel(self) -> None:
        self._token.cancel()

    def reset(self) -> CancellationToken:
        with self._lock:
            self._token.cancel()
            self._token = CancellationToken()
            return self._token


class MainThreadQueue:
    """Multi-producer, single-consumer callback queue drained on the host tick."""

    def __init__(self):
        self._queue: queue.SimpleQueue[Callable[[], Any]] = queue.SimpleQueue()

    def __len__(self) -> int:
        return self._queue.qsize()

    def post(self, callback: Callable[[], Any]) -> None:
        self._queue.put(callback)

    def drain(self) -> int:
        """Run every queued callback on the calling thread.

        A failing callback is logged and does not stop the drain.

        Returns:
            Number of callbacks run
        """
        executed = 0
        while True:
            try:
                callback = self._queue.get_nowait()
            except queue.Empty:
                break
            executed += 1
            try:
                callback()
            except Exception as e:
                logger.error(f"Main-thread callback failed: {e}")
        return executed

    def clear(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break


class NoticeBoard:
    """Forwards user-visible notices, suppressing repeats of one-shot keys.

    One-shot keys (such as the remote quota notice) are shown at most once
    per session; ``reset`` re-arms them.
    """

    def __init__(self, notifier: Notifier | None = None):
        self._notifier = notifier
        self._shown: set[str] = set()
        self._lock = threading.Lock()

    def notify(self, message: str, level: str = "info") -> None:
        if self._notifier is None:
            logger.info(f"Notice: {message}")
            return
        try:
            self._notifier.notify(message, level)
        except Exception as e:
            logger.warning(f"Notifier failed: {e}")

    def notify_once(self, key: str, message: str, level: str = "warning") -> bool:
        with self._lock:
            if key in self._shown:
                return False
            self._shown.add(key)
        self.notify(message, level)
        return True

    def reset(self) -> None:
        with self._lock:
            self._shown.clear()


class TaskOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


def is_valid_result(result: Any) -> bool:
    """A result counts only if it is not None and not an empty collection."""
    if result is None:
        return False
    if isinstance(result, Collection) and not isinstance(result, (str, bytes)):
        return len(result) > 0
    return True


async def run_retryable(
    task_name: str,
    action: Callable[[], Awaitable[T]],
    on_success: Callable[[T], Any],
    on_failure: Callable[[bool], Any],
    token: CancellationToken,
    dispatcher: MainThreadQueue,
    is_alive: Callable[[], bool] = lambda: True,
    max_attempts: int = 5,
    retry_delay: float = 30.0,
    notices: NoticeBoard | None = None,
) -> TaskOutcome:
    """Run ``action`` until it yields a valid result or attempts run out.

    Callbacks are never invoked directly; they are posted to ``dispatcher``.
    If ``is_alive`` turns False the task exits without posting anything.

    Args:
        task_name: Name used in logs and the give-up notice
        action: Zero-argument coroutine factory
        on_success: Called with the valid result on the host thread
        on_failure: Called with ``cancelled`` on the host thread, exactly once
        token: Session cancellation token
        dispatcher: Host-thread callback queue
        is_alive: Whether the owning session still exists
        max_attempts: Total attempts before giving up
        retry_delay: Seconds between attempts
        notices: Receives the give-up notice

    Returns:
        How the task settled
    """
    attempt = 0
    try:
        while attempt < max_attempts and not token.cancelled:
            if not is_alive():
                return TaskOutcome.ABANDONED

            try:
                result = await action()
                if is_valid_result(result):
                    if not is_alive():
                        return TaskOutcome.ABANDONED
                    dispatcher.post(lambda: on_success(result))
                    return TaskOutcome.SUCCEEDED
                logger.warning(
                    f"Task {task_name} failed (attempt {attempt + 1}/{max_attempts}). Retrying..."
                )
            except Exception as e:
                logger.error(f"Exception in task {task_name}: {e}")

            attempt += 1
            if attempt < max_attempts:
                if not await token.sleep(retry_delay):
                    break
    except asyncio.CancelledError:
        if is_alive():
            dispatcher.post(lambda: on_failure(True))
        raise

    if not is_alive():
        return TaskOutcome.ABANDONED

    cancelled = token.cancelled
    dispatcher.post(lambda: on_failure(cancelled))
    if cancelled:
        return TaskOutcome.CANCELLED

    if notices is not None:
        notices.notify(f"{task_name} gave up after {max_attempts} attempts", "warning")
    return TaskOutcome.FAILED


class BackgroundLoop:
    """An asyncio event loop running on a daemon thread."""

    def __init__(self, name: str = "dialogue-memory-loop"):
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        self._ready.wait()

    def _run(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._ready.set()
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self._loop.close()

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        """Schedule a coroutine on the loop from any thread."""
        if not self.is_running or self._loop is None:
            self.start()
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._thread = None
        self._loop = None
