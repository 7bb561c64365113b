"""
=============================================================================
THREAD POOL
=============================================================================

Runs connection handlers on a bounded set of worker threads.

=============================================================================
WHY A POOL FOR A DEV SERVER?
=============================================================================

A browser opening a single-page app fires a burst of parallel requests
(HTML, a dozen JS chunks, CSS, fonts, source maps, API calls through the
proxy) over up to six keep-alive connections per origin. Each connection
occupies one worker while it is open:

    accept thread ──submit(conn)──►  ┌────────────── task queue ──────────┐
                                     │ conn3 │ conn4 │                    │
                                     └───┬────────────────────────────────┘
                                         │ get()
                  ┌──────────────┬───────┴──────┬──────────────┐
                  ▼              ▼              ▼              ▼
              Worker-0       Worker-1       Worker-2       Worker-3
              conn1 (busy)   conn2 (busy)   (idle)         (idle)

When every worker is busy and work is queued, the pool grows by one
worker at a time, up to max_workers.

Shutdown sends one poison pill (None) per worker: a worker that pulls
None exits its loop. With wait=True the pool first lets queued tasks
finish (bounded by `timeout`).

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)


class Worker(threading.Thread):
    """
    Worker thread: get() a task, run it, repeat until a poison pill.

    A task that raises is logged; the worker keeps running.
    """

    def __init__(self, task_queue: queue.Queue, worker_id: int, name_prefix: str = "devserve-worker",
                 idle_timeout: float = 60.0):
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

        except Exception as e:
            elapsed = time.time() - start_time
            logger.exception(f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}")

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class ThreadPool:
    """
    Thread pool for connection handling.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16, name="devserve-10001")
        pool.start()
        pool.submit(handle_connection, args=(conn,))
        pool.shutdown(wait=True, timeout=5.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        max_queue_size: int = 100,
        idle_timeout: float = 60.0,
        name: str = "devserve-worker",
    ):
        self.min_workers = max(1, min_workers)
        self.max_workers = max(self.min_workers, max_workers)
        self.max_queue_size = max_queue_size
        self.idle_timeout = idle_timeout
        self.name = name

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=max_queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        """Spawn min_workers threads. Idempotent."""
        if self._started:
            return
        logger.debug(f"Starting thread pool with {self.min_workers} workers")
        self._shutdown = False
        for _ in range(self.min_workers):
            self._add_worker()
        self._started = True

    def _add_worker(self) -> Worker:
        with self._lock:
            if len(self._workers) >= self.max_workers:
                raise RuntimeError("Maximum workers reached")
            worker = Worker(
                task_queue=self._task_queue,
                worker_id=self._next_worker_id,
                name_prefix=self.name,
                idle_timeout=self.idle_timeout,
            )
            self._next_worker_id += 1
            self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        block: bool = True,
    ) -> bool:
        """
        Queue func(*args, **kwargs).

        Returns:
            True if queued, False if the queue stayed full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")
        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})
        try:
            self._task_queue.put(task, block=block)
        except queue.Full:
            return False
        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker when all are busy and work is waiting."""
        with self._lock:
            total = len(self._workers)
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            should_grow = busy == total and total < self.max_workers and self._task_queue.qsize() > 0
        if should_grow:
            logger.debug(f"Scaling up: {total} -> {total + 1} workers")
            try:
                self._add_worker()
            except RuntimeError:
                pass

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop the pool.

        Args:
            wait: Let queued tasks run first.
            timeout: Upper bound on that wait; after it workers are told to
                     stop and joined for up to 2 s each.
        """
        if not self._started:
            return

        self._shutdown = True

        if wait:
            deadline = time.time() + timeout if timeout else None
            while self._task_queue.unfinished_tasks:
                if deadline is not None and time.time() > deadline:
                    logger.warning("Thread pool shutdown timeout, forcing stop")
                    break
                time.sleep(0.05)

        with self._lock:
            workers = list(self._workers)

        for _ in workers:
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                pass

        for worker in workers:
            worker.shutdown()
            if worker is not threading.current_thread():
                worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()
        self._started = False
        logger.debug("Thread pool shutdown complete")
