"""
Runs K workers in true parallel and collects one result per worker.

Results travel through fixed slots, one per worker. Slot ``i`` is written
exactly once, by worker ``i``, and the harness reads the slots only after
every worker has been joined (or given up on at the deadline). There is no
way for a consumer to observe a partially filled run.

Workers are OS processes by default. Thread mode is available for stores
that only exist inside the current process (in-memory fakes in tests);
store calls release the GIL, so threads still interleave preemptively at
the store.
"""

from __future__ import annotations

import multiprocessing
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Literal, MutableSequence

from .exceptions import ErrorKind, WorkerSpawnError
from .logging import get_logger
from .models import WorkerFailure

logger = get_logger(__name__)

Mode = Literal["process", "thread"]

Task = Callable[[int], Any]


@dataclass(frozen=True)
class HarnessRun:
    """Everything the workers produced, in worker index order."""

    results: tuple[Any, ...]
    elapsed_ms: float

    @property
    def failures(self) -> tuple[WorkerFailure, ...]:
        return tuple(r for r in self.results if isinstance(r, WorkerFailure))


def _run_slot(task: Task, index: int, slots: MutableSequence[Any]) -> None:
    """Worker entry point: run the task and write its slot once."""
    try:
        result = task(index)
    except Exception as e:
        logger.warning("worker.crashed", index=index, error=repr(e))
        result = WorkerFailure(
            index=index,
            kind=ErrorKind.WORKER_CRASHED,
            message=f"{type(e).__name__}: {e}\n{traceback.format_exc()}",
        )
    slots[index] = result


def run_workers(
    count: int,
    task: Task,
    *,
    mode: Mode = "process",
    timeout: float | None = 60.0,
    start_method: str | None = None,
) -> HarnessRun:
    """
    Start ``count`` workers running ``task(index)`` and wait for all of them.

    Parameters
    ----------
    task : Callable[[int], Any]
        Receives the worker index. In process mode it must be picklable,
        e.g. ``functools.partial`` over a module-level function.

    timeout : float | None, default=60.0
        Seconds to wait for the whole run. Workers still running at the
        deadline are terminated (processes) or abandoned (threads) and
        reported as ``worker_timeout``.

    Raises
    ------
    WorkerSpawnError
        If any worker fails to start. Workers already running are stopped
        first; the run is never continued with fewer workers.
    """
    if count < 1:
        raise ValueError("locklab: worker count must be at least 1")

    if mode == "process":
        return _run_processes(count, task, timeout, start_method)
    if mode == "thread":
        return _run_threads(count, task, timeout)
    raise ValueError(f"locklab: unknown worker mode {mode!r}")


def _deadline(timeout: float | None) -> float | None:
    return None if timeout is None else time.monotonic() + timeout


def _remaining(deadline: float | None) -> float | None:
    return None if deadline is None else max(0.0, deadline - time.monotonic())


def _run_processes(
    count: int, task: Task, timeout: float | None, start_method: str | None
) -> HarnessRun:
    ctx = multiprocessing.get_context(start_method)

    with ctx.Manager() as manager:
        slots = manager.list([None] * count)
        processes: list[multiprocessing.process.BaseProcess] = []

        start = time.perf_counter()
        for index in range(count):
            proc = ctx.Process(
                target=_run_slot, args=(task, index, slots), name=f"locklab-worker-{index}"
            )
            try:
                proc.start()
            except Exception as e:
                for started in processes:
                    started.terminate()
                for started in processes:
                    started.join()
                raise WorkerSpawnError(f"Failed to start worker {index} of {count}: {e}") from e
            processes.append(proc)

        deadline = _deadline(timeout)
        for proc in processes:
            proc.join(_remaining(deadline))

        elapsed_ms = (time.perf_counter() - start) * 1000

        timed_out: set[int] = set()
        for index, proc in enumerate(processes):
            if proc.is_alive():
                logger.warning("worker.timeout", index=index, pid=proc.pid)
                proc.terminate()
                proc.join()
                timed_out.add(index)

        collected = list(slots)

    results = []
    for index, (proc, result) in enumerate(zip(processes, collected)):
        if index in timed_out:
            result = WorkerFailure(
                index=index,
                kind=ErrorKind.WORKER_TIMEOUT,
                message=f"Worker still running after {timeout}s",
            )
        elif result is None:
            result = WorkerFailure(
                index=index,
                kind=ErrorKind.WORKER_CRASHED,
                message=f"Worker exited with code {proc.exitcode} without a result",
            )
        results.append(result)

    return HarnessRun(results=tuple(results), elapsed_ms=elapsed_ms)


def _run_threads(count: int, task: Task, timeout: float | None) -> HarnessRun:
    slots: list[Any] = [None] * count
    threads: list[threading.Thread] = []

    start = time.perf_counter()
    for index in range(count):
        thread = threading.Thread(
            target=_run_slot,
            args=(task, index, slots),
            name=f"locklab-worker-{index}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            # Threads cannot be killed; wait for the ones already running.
            for started in threads:
                started.join(timeout)
            raise WorkerSpawnError(f"Failed to start worker {index} of {count}: {e}") from e
        threads.append(thread)

    deadline = _deadline(timeout)
    for thread in threads:
        thread.join(_remaining(deadline))

    elapsed_ms = (time.perf_counter() - start) * 1000

    results = []
    for index, thread in enumerate(threads):
        if thread.is_alive():
            logger.warning("worker.timeout", index=index, thread=thread.name)
            results.append(
                WorkerFailure(
                    index=index,
                    kind=ErrorKind.WORKER_TIMEOUT,
                    message=f"Worker still running after {timeout}s",
                )
            )
        elif slots[index] is None:
            results.append(
                WorkerFailure(
                    index=index,
                    kind=ErrorKind.WORKER_CRASHED,
                    message="Worker exited without a result",
                )
            )
        else:
            results.append(slots[index])

    return HarnessRun(results=tuple(results), elapsed_ms=elapsed_ms)
