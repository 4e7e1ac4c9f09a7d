"""Caller-side job orchestration: worker pools, dispatch and supersession.

Design notes
------------
- **Pools are explicit resources.**  A :class:`WorkerPool` wraps a
  ``concurrent.futures`` executor (processes by default, threads on
  request) and is started and shut down by its owner; a
  :class:`WorkerRegistry` holds named pools.  Nothing is created on first
  use.
- **Messages only.**  Jobs receive plain dicts and return plain dicts
  (:mod:`roomfield.jobs`).  Progress events travel back through a queue
  (a ``multiprocessing.Manager`` queue for process pools) that a pump
  thread drains.  Job completions are queued behind them on the same
  FIFO, so a job's result is never delivered before its final progress.
- **Newest wins.**  Every dispatch is stamped with a strictly increasing
  ``jobTs``.  Older jobs are never cancelled; their results are simply
  dropped by the :class:`SupersessionGate` when they arrive late.
- **Ownership transfer.**  numpy buffers in a dispatched message are
  made read-only on the sending side.
"""

from __future__ import annotations

import itertools
import logging
import multiprocessing
import queue
import threading
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import numpy as np

from .config import EXECUTORS, EngineConfig
from .errors import ConfigurationError, WorkerError
from .jobs import run_job

logger = logging.getLogger(__name__)

ResultCallback = Callable[[dict], None]
ProgressCallback = Callable[[int, int, float], None]
ErrorCallback = Callable[[int, BaseException], None]

_STOP = None


# ---------------------------------------------------------------------------
# Job generations
# ---------------------------------------------------------------------------

class JobCounter:
    """Thread-safe, strictly increasing job stamps starting at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


class SupersessionGate:
    """Decides which job results are still worth consuming.

    A result is accepted only if its ``jobTs`` is the newest one
    dispatched so far *and* newer than the last accepted result.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest = 0
        self._accepted = 0
        self._result: Optional[Any] = None

    def register(self, job_ts: int) -> None:
        with self._lock:
            if job_ts > self._latest:
                self._latest = job_ts

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    @property
    def accepted(self) -> int:
        with self._lock:
            return self._accepted

    @property
    def result(self) -> Optional[Any]:
        """Last accepted result, or ``None``."""
        with self._lock:
            return self._result

    def is_current(self, job_ts: Optional[int]) -> bool:
        with self._lock:
            return job_ts is not None and job_ts == self._latest

    def offer(self, job_ts: int, result: Any) -> bool:
        """Accept *result* if *job_ts* is still current; return whether it was."""
        with self._lock:
            if job_ts == self._latest and job_ts > self._accepted:
                self._accepted = job_ts
                self._result = result
                return True
            latest = self._latest
        logger.debug("Dropping stale result of job %d (latest %d)", job_ts, latest)
        return False


# ---------------------------------------------------------------------------
# Worker pools
# ---------------------------------------------------------------------------

class WorkerPool:
    """A started-or-stopped ``concurrent.futures`` executor.

    Usage::

        with WorkerPool("classifier") as pool:
            future = pool.submit(fn, *args)
    """

    def __init__(self, name: str = "default", executor: str = "process", max_workers: Optional[int] = None) -> None:
        if executor not in EXECUTORS:
            raise ConfigurationError(f"executor must be one of {EXECUTORS}, got {executor!r}")
        self.name = name
        self.kind = executor
        self.max_workers = max_workers
        self._executor = None
        self._manager = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: EngineConfig, name: str = "default") -> WorkerPool:
        return cls(name, executor=config.executor, max_workers=config.max_workers)

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> WorkerPool:
        with self._lock:
            if self._executor is not None:
                return self
            if self.kind == "process":
                self._manager = multiprocessing.Manager()
                self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix=f"roomfield-{self.name}"
                )
        logger.info("Worker pool '%s' started (%s, max_workers=%s)", self.name, self.kind, self.max_workers)
        return self

    def submit(self, fn: Callable, *args: Any) -> Future:
        with self._lock:
            if self._executor is None:
                raise WorkerError(f"worker pool '{self.name}' is not running")
            return self._executor.submit(fn, *args)

    def make_queue(self):
        """A progress queue the pool's jobs can put events on."""
        with self._lock:
            if self._executor is None:
                raise WorkerError(f"worker pool '{self.name}' is not running")
            if self._manager is not None:
                return self._manager.Queue()
        return queue.Queue()

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        with self._lock:
            executor, manager = self._executor, self._manager
            self._executor = None
            self._manager = None
        if executor is None:
            return
        executor.shutdown(wait=wait, cancel_futures=cancel_futures)
        if manager is not None:
            manager.shutdown()
        logger.info("Worker pool '%s' shut down", self.name)

    def __enter__(self) -> WorkerPool:
        return self.start()

    def __exit__(self, *exc) -> None:
        self.shutdown()


class WorkerRegistry:
    """Named :class:`WorkerPool` instances owned by one application."""

    def __init__(self) -> None:
        self._pools: Dict[str, WorkerPool] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        executor: str = "process",
        max_workers: Optional[int] = None,
        start: bool = True,
    ) -> WorkerPool:
        with self._lock:
            if name in self._pools:
                raise ConfigurationError(f"worker pool '{name}' is already registered")
            pool = WorkerPool(name, executor=executor, max_workers=max_workers)
            self._pools[name] = pool
        return pool.start() if start else pool

    def get(self, name: str) -> WorkerPool:
        with self._lock:
            try:
                return self._pools[name]
            except KeyError:
                raise ConfigurationError(f"no worker pool named '{name}'") from None

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._pools

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._pools)

    def close_all(self) -> None:
        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            pool.shutdown()

    def __enter__(self) -> WorkerRegistry:
        return self

    def __exit__(self, *exc) -> None:
        self.close_all()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _transfer(obj: Any) -> None:
    """Make every numpy array reachable through dicts/lists in *obj* read-only."""
    if isinstance(obj, np.ndarray):
        obj.flags.writeable = False
    elif isinstance(obj, dict):
        for v in obj.values():
            _transfer(v)
    elif isinstance(obj, (list, tuple)):
        for v in obj:
            _transfer(v)


class JobHandle:
    """Caller-side view of one dispatched job."""

    def __init__(self, job_ts: int, kind: str, gate: SupersessionGate) -> None:
        self.job_ts = job_ts
        self.kind = kind
        self.future: Future = Future()
        self._gate = gate

    @property
    def superseded(self) -> bool:
        """True once a newer job has been dispatched."""
        return self._gate.latest > self.job_ts

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> dict:
        """Block for the job's result; raises :class:`WorkerError` on failure."""
        return self.future.result(timeout)

    def __repr__(self) -> str:
        return f"JobHandle(job_ts={self.job_ts}, kind={self.kind!r}, done={self.done()})"


class JobOrchestrator:
    """Dispatch jobs to a :class:`WorkerPool` and route what comes back.

    Parameters
    ----------
    pool:
        A started pool.  The orchestrator does not own it.
    on_result:
        Called with each result that survives supersession.
    on_progress:
        Called with ``(processed, total, percentage)`` for the current job.
    on_error:
        Called with ``(job_ts, WorkerError)`` for any failed job.

    Callbacks run on the pump thread while the orchestrator is started.
    A submit failure reports through *on_error* on the dispatching thread.
    """

    def __init__(
        self,
        pool: WorkerPool,
        on_result: Optional[ResultCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.pool = pool
        self.on_result = on_result
        self.on_progress = on_progress
        self.on_error = on_error
        self.gate = SupersessionGate()
        self._counter = JobCounter()
        self._pump: Optional[threading.Thread] = None
        self._pump_queue = None
        self._lock = threading.Lock()
        self._pending: Dict[int, tuple] = {}
        self._closing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> JobOrchestrator:
        if not self.pool.running:
            raise WorkerError(f"worker pool '{self.pool.name}' is not running")
        if self._pump is None:
            self._closing = False
            self._pump_queue = self.pool.make_queue()
            self._pump = threading.Thread(
                target=self._pump_loop, daemon=True, name=f"roomfield-progress-{self.pool.name}"
            )
            self._pump.start()
        return self

    def stop(self) -> None:
        if self._pump is None:
            return
        with self._lock:
            self._closing = True
        try:
            self._pump_queue.put(_STOP)
        except (EOFError, OSError) as exc:
            logger.debug("Progress queue already closed: %s", exc)
        self._pump.join(timeout=5.0)
        # completions queued behind the stop marker, or lost with the queue
        with self._lock:
            leftover = list(self._pending.values())
            self._pending.clear()
        for handle, future in leftover:
            self._settle_logged(handle, future)
        self._pump = None
        self._pump_queue = None

    def __enter__(self) -> JobOrchestrator:
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()

    @property
    def latest_result(self) -> Optional[dict]:
        return self.gate.result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, message: dict) -> JobHandle:
        """Stamp *message* with a new ``jobTs`` and submit it; returns at once."""
        if self._pump is None:
            raise WorkerError("orchestrator is not started")
        job_ts = self._counter.next()
        kind = message.get("type", "?")
        payload = dict(message)
        payload["jobTs"] = job_ts
        _transfer(payload)
        self.gate.register(job_ts)
        handle = JobHandle(job_ts, kind, self.gate)
        logger.debug("Dispatching %s job %d to pool '%s'", kind, job_ts, self.pool.name)

        try:
            future = self.pool.submit(run_job, payload, self._pump_queue)
        except Exception as exc:
            self._fail(handle, exc)
            return handle
        future.add_done_callback(lambda f: self._on_done(handle, f))
        return handle

    def _fail(self, handle: JobHandle, exc: BaseException) -> None:
        if isinstance(exc, WorkerError):
            err = exc
            if err.job_ts is None:
                err.job_ts = handle.job_ts
        else:
            err = WorkerError(f"{handle.kind} job {handle.job_ts} failed: {exc!r}", job_ts=handle.job_ts)
            err.__cause__ = exc
        logger.warning("%s job %d failed: %s", handle.kind, handle.job_ts, exc)
        try:
            if self.on_error is not None:
                self.on_error(handle.job_ts, err)
        finally:
            handle.future.set_exception(err)

    def _on_done(self, handle: JobHandle, future: Future) -> None:
        # Completion joins the progress FIFO so the job's last progress
        # event is always delivered before its result.
        with self._lock:
            q = None if self._closing else self._pump_queue
            if q is not None:
                self._pending[handle.job_ts] = (handle, future)
                try:
                    q.put({"type": "done", "jobTs": handle.job_ts})
                    return
                except (EOFError, OSError) as exc:
                    self._pending.pop(handle.job_ts, None)
                    logger.debug("Progress queue closed, settling job %d directly: %s", handle.job_ts, exc)
        self._settle(handle, future)

    def _settle(self, handle: JobHandle, future: Future) -> None:
        try:
            result = future.result()
        except Exception as exc:  # includes CancelledError
            self._fail(handle, exc)
            return
        try:
            if self.gate.offer(handle.job_ts, result) and self.on_result is not None:
                self.on_result(result)
        finally:
            handle.future.set_result(result)

    def _settle_logged(self, handle: JobHandle, future: Future) -> None:
        try:
            self._settle(handle, future)
        except Exception:
            logger.exception("Result callback raised for job %d", handle.job_ts)

    # ------------------------------------------------------------------
    # Progress pump
    # ------------------------------------------------------------------

    def _pump_loop(self) -> None:
        q = self._pump_queue
        while True:
            try:
                event = q.get()
            except (EOFError, OSError):
                # manager process gone with its pool
                return
            if event is _STOP:
                return
            if event.get("type") == "done":
                with self._lock:
                    entry = self._pending.pop(event["jobTs"], None)
                if entry is not None:
                    self._settle_logged(*entry)
                continue
            if self.on_progress is None or not self.gate.is_current(event.get("jobTs")):
                continue
            try:
                self.on_progress(event["processed"], event["total"], event["percentage"])
            except Exception:
                logger.exception("Progress callback raised")
