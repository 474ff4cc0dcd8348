"""
Worker Pool.

One OS process per chain, alive for the whole run:
- WorkerPool: spawn/close workers, dispatch one task per worker per round
- worker_pool: Context manager guaranteeing the pool is closed on every exit path

Workers are started with the 'spawn' method (forking a process that has
already initialized JAX can deadlock). Each worker owns a private duplex
Pipe and a SessionDriver. Messages:

    parent -> worker : task (InitialTask or ExtensionTask), or None to stop
    worker -> parent : ('ready', index, pid)
                       ('ok', index, Chain)
                       ('error', index, error_kind, message, traceback_text)

dispatch() is a barrier: it returns only when every worker has answered,
and results are ordered by worker index regardless of completion order.
"""

import multiprocessing as mp
import os
import time
import traceback
from contextlib import contextmanager
from typing import List, Sequence

from ..error_handling import ModelConstructionError, WorkerError
from .session import SessionDriver
from .types import Chain

import logging
logger = logging.getLogger('chainrun')

# Seconds a worker gets to exit after the stop message
STOP_TIMEOUT = 5.0


def _worker_main(index: int, conn) -> None:
    """Worker loop: execute tasks until the stop message or a closed pipe."""
    driver = SessionDriver(index)
    conn.send(('ready', index, os.getpid()))
    while True:
        try:
            task = conn.recv()
        except EOFError:
            break
        if task is None:
            break
        try:
            result = driver.run(task)
        except Exception as e:
            conn.send(('error', index, type(e).__name__, str(e), traceback.format_exc()))
        else:
            conn.send(('ok', index, result))
    conn.close()


class WorkerPool:
    """
    Fixed-size pool of chain workers.

    Worker i keeps the same logical index, identity and session for the
    pool's lifetime, so chain i of every round comes from the same sampler.
    """

    def __init__(self, n_workers: int, start_method: str = 'spawn'):
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self.n_workers = n_workers
        self.start_method = start_method
        self._processes = []
        self._conns = []
        self._identities = []
        self._closed = False

    @property
    def identities(self) -> List[int]:
        """Worker identity tokens (pids), in worker-index order."""
        return list(self._identities)

    def start(self) -> 'WorkerPool':
        """Spawn all workers and block until each reports ready."""
        ctx = mp.get_context(self.start_method)
        start = time.perf_counter()
        for i in range(self.n_workers):
            parent_conn, child_conn = ctx.Pipe(duplex=True)
            proc = ctx.Process(target=_worker_main, args=(i, child_conn),
                               name=f'chainrun-worker-{i}', daemon=True)
            proc.start()
            child_conn.close()
            self._processes.append(proc)
            self._conns.append(parent_conn)

        for i in range(self.n_workers):
            _, _, pid = self._receive(i)
            self._identities.append(pid)

        logger.info(f"Started {self.n_workers} workers in {time.perf_counter() - start:.2f}s")
        return self

    def _receive(self, i: int):
        try:
            reply = self._conns[i].recv()
        except EOFError:
            exitcode = self._processes[i].exitcode
            raise WorkerError(f"Worker {i} exited unexpectedly (exitcode={exitcode})") from None

        if reply[0] == 'error':
            _, index, kind, message, tb = reply
            logger.error(f"Worker {index} failed:\n{tb}")
            if kind == ModelConstructionError.__name__:
                raise ModelConstructionError(f"Chain {index}: {message}")
            raise WorkerError(f"Chain {index}: {kind}: {message}")
        return reply

    def dispatch(self, tasks: Sequence) -> List[Chain]:
        """
        Send tasks[i] to worker i and wait for every result.

        Raises:
            ModelConstructionError: If a worker could not build its session
            WorkerError: If a worker failed or died
        """
        if self._closed:
            raise WorkerError("Worker pool is closed")
        if len(tasks) != self.n_workers:
            raise ValueError(f"Expected {self.n_workers} tasks, got {len(tasks)}")

        for conn, task in zip(self._conns, tasks):
            conn.send(task)
        return [self._receive(i)[2] for i in range(self.n_workers)]

    def close(self) -> None:
        """Stop, then terminate and join every worker. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for i, conn in enumerate(self._conns):
            try:
                conn.send(None)
            except (BrokenPipeError, OSError):
                logger.debug(f"Worker {i} pipe already closed")
            conn.close()
        for proc in self._processes:
            proc.join(STOP_TIMEOUT)
            if proc.is_alive():
                proc.terminate()
                proc.join()
        logger.info(f"Stopped {len(self._processes)} workers")

    def __enter__(self):
        try:
            return self.start()
        except BaseException:
            self.close()
            raise

    def __exit__(self, exc_type, exc, tb):
        self.close()


@contextmanager
def worker_pool(n_workers: int, start_method: str = 'spawn'):
    """Acquire a started WorkerPool; it is closed however the block exits."""
    pool = WorkerPool(n_workers, start_method=start_method)
    try:
        pool.start()
        yield pool
    finally:
        pool.close()
