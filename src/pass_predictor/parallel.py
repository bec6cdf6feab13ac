"""
Parallel processing for pass prediction.

WorkerPool keeps a fixed set of worker processes, each running its own
TaskHandler. Tasks get monotonically increasing ids and go to an idle
worker straight away or wait in an unbounded FIFO queue. A dispatcher
thread collects responses, resolves the callers' futures and notices
workers that died; a dead worker is replaced on its own and the task it
was running fails rather than being retried.

ParallelPassCalculator is the caller-facing layer: it submits pass
requests to a pool and falls back to computing on the caller's thread
whenever the pool is unavailable or a task fails.
"""

import itertools
import logging
import multiprocessing as mp
import os
import queue
import threading
from collections import deque
from concurrent.futures import Future, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from .config import PredictionConfig
from .geometry import GroundStation
from .orbit import SatelliteOrbit
from .passes import Pass, PassSearchResult
from .tasks import (
    ClearCacheRequest,
    ComputePassesElevationRequest,
    ComputePassesSwathRequest,
    PropagateGeodeticRequest,
    PropagatePositionsRequest,
    TaskHandler,
    TaskMessage,
    TaskRequest,
    TaskResponse,
)

logger = logging.getLogger(__name__)

MIN_POOL_SIZE = 2
MAX_POOL_SIZE = 8
POLL_INTERVAL_S = 0.1
JOIN_TIMEOUT_S = 5.0


class WorkerPoolError(Exception):
    """Base class for worker pool failures."""


class TaskFailedError(WorkerPoolError):
    """The task raised inside the worker."""


class WorkerCrashedError(WorkerPoolError):
    """The worker process died while running the task."""


class PoolClosedError(WorkerPoolError):
    """The pool was shut down before the task could complete."""


def get_pool_size(pool_size: Optional[int] = None) -> int:
    """
    Number of workers for a pool.

    Args:
        pool_size: Explicit size (used as given)

    Returns:
        pool_size, or the CPU count clamped to [2, 8]
    """
    if pool_size is not None:
        return pool_size
    cpu_count = os.cpu_count() or 4
    return max(MIN_POOL_SIZE, min(cpu_count, MAX_POOL_SIZE))


def _default_context() -> Any:
    """Use 'fork' where available for faster worker startup."""
    try:
        return mp.get_context("fork")
    except ValueError:
        logger.debug("'fork' context not available, using default")
        return mp.get_context()


def _worker_main(
    worker_id: int,
    inbox: Any,
    outbox: Any,
    handler_factory: Callable[[PredictionConfig], Any],
    config_data: Dict[str, Any],
) -> None:
    """
    Worker process loop.

    Runs until it receives None. Each message produces exactly one
    response tagged with this worker's id.
    """
    handler = handler_factory(PredictionConfig.from_dict(config_data))
    while True:
        message = inbox.get()
        if message is None:
            break
        response = handler.handle(message)
        outbox.put(
            TaskResponse(
                id=response.id,
                task_type=response.task_type,
                success=response.success,
                result=response.result,
                error=response.error,
                worker_id=worker_id,
            )
        )


class _Worker:
    """Parent-side record of one worker process."""

    def __init__(self, slot: int, worker_id: int, process: Any, inbox: Any) -> None:
        self.slot = slot
        self.worker_id = worker_id
        self.process = process
        self.inbox = inbox
        self.task_id: Optional[int] = None

    @property
    def busy(self) -> bool:
        return self.task_id is not None


class WorkerPool:
    """
    Fixed-size pool of worker processes with per-worker fault recovery.

    Example:
        with WorkerPool() as pool:
            future = pool.compute_passes_elevation(tle, station, start, end)
            result = future.result(timeout=60)
    """

    def __init__(
        self,
        pool_size: Optional[int] = None,
        config: Optional[PredictionConfig] = None,
        handler_factory: Callable[[PredictionConfig], Any] = TaskHandler,
        mp_context: Optional[Any] = None,
    ) -> None:
        """
        Args:
            pool_size: Number of workers (default: CPU count clamped to [2, 8])
            config: Settings passed to every worker's handler
            handler_factory: Builds the handler inside each worker; must be
                importable from the worker process
            mp_context: multiprocessing context (default: fork where available)
        """
        self.config = config or PredictionConfig()
        self.pool_size = get_pool_size(pool_size if pool_size is not None else self.config.pool_size)
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}")

        self._ctx = mp_context or _default_context()
        self._handler_factory = handler_factory
        self._config_data = self.config.to_dict()

        self._lock = threading.RLock()
        self._responses = self._ctx.Queue()
        self._queue: Deque[TaskMessage] = deque()
        self._pending: Dict[int, Future] = {}
        self._task_ids = itertools.count()
        self._worker_ids = itertools.count()
        self._closed = False
        self._stopping = threading.Event()
        self.peak_in_flight = 0
        self.completed_tasks = 0
        self.crashed_workers = 0

        self._workers: List[_Worker] = [self._spawn(slot) for slot in range(self.pool_size)]

        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="pass-predictor-dispatcher", daemon=True
        )
        self._dispatcher.start()
        logger.info(f"WorkerPool initialized with {self.pool_size} workers")

    def _spawn(self, slot: int) -> _Worker:
        worker_id = next(self._worker_ids)
        inbox = self._ctx.Queue()
        process = self._ctx.Process(
            target=_worker_main,
            args=(worker_id, inbox, self._responses, self._handler_factory, self._config_data),
            name=f"pass-predictor-worker-{worker_id}",
            daemon=True,
        )
        process.start()
        return _Worker(slot, worker_id, process, inbox)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: TaskRequest) -> "Future[Any]":
        """
        Queue a request.

        Returns:
            Future resolving to the task result, or failing with
            TaskFailedError / WorkerCrashedError / PoolClosedError

        Raises:
            PoolClosedError: If the pool has been shut down
        """
        future: "Future[Any]" = Future()
        with self._lock:
            if self._closed:
                raise PoolClosedError("Worker pool has been shut down")
            message = TaskMessage(id=next(self._task_ids), request=request)
            self._pending[message.id] = future
            self._queue.append(message)
            self._drain_queue()
        return future

    def execute(self, request: TaskRequest, timeout: Optional[float] = None) -> Any:
        """Submit a request and wait for its result."""
        return self.submit(request).result(timeout=timeout if timeout is not None else self.config.task_timeout_s)

    def propagate_positions(self, tle: Sequence[str], timestamps: Sequence[datetime]) -> "Future[Any]":
        return self.submit(PropagatePositionsRequest(tuple(tle), tuple(timestamps)))

    def propagate_geodetic(self, tle: Sequence[str], timestamp: datetime) -> "Future[Any]":
        return self.submit(PropagateGeodeticRequest(tuple(tle), timestamp))

    def compute_passes_elevation(
        self,
        tle: Sequence[str],
        station: GroundStation,
        start: datetime,
        end: datetime,
        min_elevation: float = 5.0,
        max_passes: int = 50,
        collect_stats: bool = False,
    ) -> "Future[Any]":
        return self.submit(
            ComputePassesElevationRequest(
                tuple(tle), station, start, end, min_elevation, max_passes, collect_stats
            )
        )

    def compute_passes_swath(
        self,
        tle: Sequence[str],
        station: GroundStation,
        swath_km: float,
        start: datetime,
        end: datetime,
        max_passes: int = 50,
        collect_stats: bool = False,
    ) -> "Future[Any]":
        return self.submit(
            ComputePassesSwathRequest(tuple(tle), station, swath_km, start, end, max_passes, collect_stats)
        )

    def clear_cache(self) -> List["Future[Any]"]:
        """
        Ask the workers to drop their satellite caches.

        One CLEAR_CACHE task is submitted per pool slot. Tasks go to
        whichever worker is idle, so a worker may receive two and another
        none.
        """
        return [self.submit(ClearCacheRequest()) for _ in range(self.pool_size)]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _drain_queue(self) -> None:
        """Hand queued messages to idle workers. Caller holds the lock."""
        while self._queue:
            worker = next((w for w in self._workers if not w.busy), None)
            if worker is None:
                return
            message = self._queue.popleft()
            worker.task_id = message.id
            worker.inbox.put(message)
            in_flight = sum(1 for w in self._workers if w.busy)
            self.peak_in_flight = max(self.peak_in_flight, in_flight)

    def _dispatch_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                response = self._responses.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                response = None
            except (EOFError, OSError) as e:
                logger.error(f"Worker response channel failed: {e}")
                break
            if response is not None:
                self._handle_response(response)
            self._check_workers()

    def _handle_response(self, response: TaskResponse) -> None:
        with self._lock:
            for worker in self._workers:
                if worker.worker_id == response.worker_id and worker.task_id == response.id:
                    worker.task_id = None
                    break
            future = self._pending.pop(response.id, None)
            self.completed_tasks += 1
            self._drain_queue()

        if future is None or future.done():
            return
        if response.success:
            future.set_result(response.result)
        else:
            future.set_exception(TaskFailedError(response.error or "Task failed"))

    def _check_workers(self) -> None:
        """Replace dead workers and fail the task each one was running."""
        failed: List[Future] = []
        with self._lock:
            if self._closed:
                return
            for index, worker in enumerate(self._workers):
                if worker.process.is_alive():
                    continue
                self.crashed_workers += 1
                logger.error(
                    f"Worker {worker.worker_id} (slot {worker.slot}) exited with code "
                    f"{worker.process.exitcode}; recreating"
                )
                if worker.task_id is not None:
                    future = self._pending.pop(worker.task_id, None)
                    if future is not None:
                        failed.append(future)
                worker.inbox.cancel_join_thread()
                worker.inbox.close()
                self._workers[index] = self._spawn(worker.slot)
                logger.info(f"Worker slot {worker.slot} recreated as worker {self._workers[index].worker_id}")
            if failed:
                self._drain_queue()

        for future in failed:
            if not future.done():
                future.set_exception(WorkerCrashedError("Worker process died while running the task"))

    # ------------------------------------------------------------------
    # Introspection and shutdown
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            busy = sum(1 for w in self._workers if w.busy)
            return {
                "pool_size": self.pool_size,
                "idle_workers": len(self._workers) - busy,
                "busy_workers": busy,
                "queued_tasks": len(self._queue),
                "pending_tasks": len(self._pending),
                "peak_in_flight": self.peak_in_flight,
                "completed_tasks": self.completed_tasks,
                "crashed_workers": self.crashed_workers,
                "worker_ids": [w.worker_id for w in self._workers],
            }

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop the pool.

        Args:
            wait: Let pending tasks finish first (up to timeout)
            timeout: Seconds to wait for pending tasks (default: task timeout)

        Tasks still pending when the workers stop fail with PoolClosedError.
        """
        with self._lock:
            if self._closed:
                return
            pending = list(self._pending.values())

        if wait and pending:
            wait_futures(pending, timeout=timeout if timeout is not None else self.config.task_timeout_s)

        with self._lock:
            self._closed = True
            leftover = list(self._pending.values())
            self._pending.clear()
            self._queue.clear()
            workers = list(self._workers)
            for worker in workers:
                worker.inbox.put(None)

        self._stopping.set()
        self._dispatcher.join(timeout=JOIN_TIMEOUT_S)

        for worker in workers:
            worker.process.join(timeout=JOIN_TIMEOUT_S if wait else 0.1)
            if worker.process.is_alive():
                worker.process.terminate()
                worker.process.join(timeout=JOIN_TIMEOUT_S)

        for future in leftover:
            if not future.done():
                future.set_exception(PoolClosedError("Worker pool shut down before the task completed"))
        logger.info("WorkerPool terminated")

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)


class ParallelPassCalculator:
    """
    Pass computations on a worker pool, with a synchronous fallback.

    The pool is created on first use. If it cannot be created, or a task
    fails, times out or loses its worker, the request is computed on the
    caller's thread instead and a warning is logged.
    """

    def __init__(
        self,
        config: Optional[PredictionConfig] = None,
        pool_size: Optional[int] = None,
        use_pool: bool = True,
    ) -> None:
        self.config = config or PredictionConfig()
        self.pool_size = pool_size
        self.use_pool = use_pool
        self._pool: Optional[WorkerPool] = None
        self._pool_failed = False
        self._local_handler: Optional[TaskHandler] = None

    @property
    def pool(self) -> Optional[WorkerPool]:
        """The worker pool, or None when it is disabled or could not start."""
        if not self.use_pool or self._pool_failed:
            return None
        if self._pool is None:
            try:
                self._pool = WorkerPool(self.pool_size, self.config)
            except (OSError, ValueError) as e:
                logger.warning(f"Worker pool unavailable, computing synchronously: {e}")
                self._pool_failed = True
                return None
        return self._pool

    def _run_sync(self, request: TaskRequest) -> Any:
        if self._local_handler is None:
            self._local_handler = TaskHandler(self.config)
        return self._local_handler.execute(request)

    def run(self, request: TaskRequest) -> Any:
        """Run one request on the pool, falling back to the caller's thread."""
        pool = self.pool
        if pool is not None:
            try:
                return pool.execute(request, timeout=self.config.task_timeout_s)
            except (WorkerPoolError, FutureTimeoutError) as e:
                logger.warning(f"Worker task failed ({e}); computing synchronously")
        return self._run_sync(request)

    def compute_passes_elevation(
        self,
        satellite: SatelliteOrbit,
        station: GroundStation,
        start: datetime,
        end: datetime,
        min_elevation: Optional[float] = None,
        max_passes: Optional[int] = None,
    ) -> List[Pass]:
        request = ComputePassesElevationRequest(
            tuple(satellite.tle_lines),
            station,
            start,
            end,
            self.config.min_elevation_deg if min_elevation is None else min_elevation,
            self.config.max_passes if max_passes is None else max_passes,
        )
        return self._passes(satellite, self.run(request))

    def compute_passes_swath(
        self,
        satellite: SatelliteOrbit,
        station: GroundStation,
        swath_km: float,
        start: datetime,
        end: datetime,
        max_passes: Optional[int] = None,
    ) -> List[Pass]:
        request = ComputePassesSwathRequest(
            tuple(satellite.tle_lines), station, swath_km, start, end,
            self.config.max_passes if max_passes is None else max_passes,
        )
        return self._passes(satellite, self.run(request))

    @staticmethod
    def _passes(satellite: SatelliteOrbit, result: PassSearchResult) -> List[Pass]:
        for warning in result.warnings:
            logger.warning(f"{satellite.satellite_name}: {warning}")
        return result.passes

    def compute_passes_batch(self, requests: Mapping[str, TaskRequest]) -> Dict[str, Any]:
        """
        Run many independent requests and collect results as they complete.

        Args:
            requests: Label -> request

        Returns:
            Label -> result; a request whose task fails is recomputed on the
            caller's thread
        """
        results: Dict[str, Any] = {}
        pool = self.pool
        if pool is None:
            for label, request in requests.items():
                results[label] = self._run_sync(request)
            return results

        future_to_label: Dict[Future, str] = {}
        for label, request in requests.items():
            try:
                future_to_label[pool.submit(request)] = label
            except PoolClosedError as e:
                logger.warning(f"Could not submit {label} ({e}); computing synchronously")
                results[label] = self._run_sync(request)

        completed = 0
        try:
            for future in as_completed(future_to_label, timeout=self.config.task_timeout_s * max(1, len(future_to_label))):
                label = future_to_label[future]
                try:
                    results[label] = future.result()
                except WorkerPoolError as e:
                    logger.warning(f"Task {label} failed ({e}); computing synchronously")
                    results[label] = self._run_sync(requests[label])
                completed += 1
                logger.debug(f"Completed {completed}/{len(future_to_label)}: {label}")
        except FutureTimeoutError:
            for future, label in future_to_label.items():
                if label not in results:
                    logger.warning(f"Task {label} timed out; computing synchronously")
                    results[label] = self._run_sync(requests[label])

        logger.info(f"Batch computation complete: {len(results)} requests")
        return results

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    def __enter__(self) -> "ParallelPassCalculator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
