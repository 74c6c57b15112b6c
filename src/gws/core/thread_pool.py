"""
=============================================================================
THREAD POOL
=============================================================================

Worker threads that serve accepted connections, one connection per task.

    accept loop ──submit(conn)──► bounded queue ──► Worker-0 … Worker-N

    ┌─────────────────────────────────────────────────────────────────────┐
    │  min_workers   started up front, always running                     │
    │  max_workers   ceiling; one more is added whenever every worker     │
    │                is busy and work is waiting                          │
    │  queue_size    bounded backlog; submit() returns False when full    │
    │                so the server can answer 503 instead of piling up    │
    └─────────────────────────────────────────────────────────────────────┘

Shutdown drains the queue, then sends one poison pill (None) per worker.

=============================================================================
"""

import time
import queue
import logging
import threading
from typing import Any, Callable, Optional, Tuple


logger = logging.getLogger(__name__)


Task = Tuple[Callable[..., Any], tuple]

_STOP = None


class Worker(threading.Thread):
    """One pool thread. Runs tasks from the shared queue until it takes the stop marker."""

    def __init__(self, pool: "ThreadPool", number: int):
        super().__init__(name=f"gws-worker-{number}", daemon=True)
        self.pool = pool
        self.number = number
        self.busy = False

    def run(self):
        tasks = self.pool._tasks
        logger.debug(f"{self.name} started")
        while True:
            task = tasks.get()
            if task is _STOP:
                tasks.task_done()
                break
            try:
                self._run_task(*task)
            finally:
                tasks.task_done()
        logger.debug(f"{self.name} stopped")

    def _run_task(self, func: Callable[..., Any], args: tuple):
        self.busy = True
        began = time.monotonic()
        try:
            func(*args)
        except Exception:
            logger.exception(f"{self.name}: task {getattr(func, '__name__', func)!r} failed "
                             f"after {time.monotonic() - began:.3f}s")
            self.pool._record(failed=True)
        else:
            self.pool._record(failed=False)
        finally:
            self.busy = False


class ThreadPool:
    """
    Bounded pool of worker threads.

        pool = ThreadPool(min_workers=4, max_workers=16)
        pool.start()
        if not pool.submit(handle, conn):
            ...                       # saturated
        pool.shutdown()
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 16, queue_size: int = 128):
        if not 0 < min_workers <= max_workers:
            raise ValueError("need 0 < min_workers <= max_workers")
        self.min_workers = min_workers
        self.max_workers = max_workers
        self._tasks: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._spawned = 0
        self._completed = 0
        self._failed = 0
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        with self._lock:
            if self._running:
                return
            for _ in range(self.min_workers):
                self._spawn()
            self._running = True
        logger.info(f"Thread pool started with {self.min_workers} workers (max {self.max_workers})")

    def _spawn(self):
        # caller holds self._lock
        worker = Worker(self, self._spawned)
        self._spawned += 1
        self._workers.append(worker)
        worker.start()

    def _record(self, failed: bool):
        with self._lock:
            if failed:
                self._failed += 1
            else:
                self._completed += 1

    def submit(self, func: Callable[..., Any], *args: Any, block: bool = False) -> bool:
        """
        Queue `func(*args)`. Returns False when the queue is full.

        Raises RuntimeError if the pool is not running.
        """
        if not self._running:
            raise RuntimeError("Thread pool is not running")
        try:
            self._tasks.put((func, args), block=block)
        except queue.Full:
            return False
        self._grow_if_saturated()
        return True

    def _grow_if_saturated(self):
        with self._lock:
            if len(self._workers) >= self.max_workers or self._tasks.empty():
                return
            if all(worker.busy for worker in self._workers):
                logger.debug(f"All {len(self._workers)} workers busy, adding one")
                self._spawn()

    def shutdown(self, wait: bool = True, timeout: float = 10.0):
        """Stop accepting work, let queued tasks finish (up to `timeout`), stop workers."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers, self._workers = self._workers, []
        logger.info("Stopping thread pool")

        if wait:
            deadline = time.monotonic() + timeout
            while self._tasks.unfinished_tasks and time.monotonic() < deadline:
                time.sleep(0.05)
            if self._tasks.unfinished_tasks:
                logger.warning(f"{self._tasks.unfinished_tasks} connections still queued at shutdown")

        for _ in workers:
            try:
                self._tasks.put_nowait(_STOP)
            except queue.Full:
                break
        for worker in workers:
            worker.join(timeout=2.0)
        logger.info("Thread pool stopped")

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "workers": len(self._workers),
                "busy": sum(worker.busy for worker in self._workers),
                "queued": self._tasks.qsize(),
                "completed": self._completed,
                "failed": self._failed,
            }
