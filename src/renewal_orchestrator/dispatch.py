from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait

from renewal_orchestrator.errors import DispatchQueueFullError

logger = logging.getLogger(__name__)

Handler = Callable[[str, bool], object]


class TaskDispatcher:
    """Fire-and-forget execution of task runs on a bounded thread pool.

    At most ``max_pending`` runs may be queued or running at once; ``submit``
    waits up to ``enqueue_timeout_s`` for a slot and then raises
    ``DispatchQueueFullError``. Failures are logged here, once, instead of by
    every caller.
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        max_pending: int = 32,
        enqueue_timeout_s: float = 5.0,
        handler: Handler | None = None,
    ) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="task-run")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._enqueue_timeout_s = enqueue_timeout_s
        self._handler = handler
        self._lock = threading.Lock()
        self._futures: set[Future[object]] = set()

    def set_handler(self, handler: Handler) -> None:
        self._handler = handler

    def submit(self, task_id: str, *, rerun: bool = False) -> Future[object]:
        handler = self._handler
        if handler is None:
            raise RuntimeError("TaskDispatcher has no handler bound")
        if not self._slots.acquire(timeout=self._enqueue_timeout_s):
            raise DispatchQueueFullError(f"Too many pending task runs; rejected task {task_id}")
        try:
            future = self._pool.submit(handler, task_id, rerun)
        except Exception:
            self._slots.release()
            raise
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(lambda done: self._on_done(task_id, done))
        logger.info("dispatch event=submitted task_id=%s rerun=%s", task_id, rerun)
        return future

    def drain(self, timeout: float | None = None) -> None:
        """Wait until every submitted run, including ones submitted meanwhile, has finished."""
        while True:
            with self._lock:
                pending = {future for future in self._futures if not future.done()}
            if not pending:
                return
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                raise TimeoutError(f"{len(not_done)} task runs still pending")

    def shutdown(self, *, wait_for_pending: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_pending)

    def _on_done(self, task_id: str, future: Future[object]) -> None:
        with self._lock:
            self._futures.discard(future)
        self._slots.release()
        if future.cancelled():
            logger.warning("dispatch event=cancelled task_id=%s", task_id)
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "dispatch event=failed task_id=%s error_type=%s error=%s",
                task_id,
                type(exc).__name__,
                exc,
                exc_info=exc,
            )
