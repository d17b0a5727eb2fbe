"""Worker threads available to model evaluation.

The number of worker threads is a process-wide fact: it is read once from the
`GENMODEL_NUM_THREADS` environment variable when this module is imported and
never re-measured. Thread 0 is the thread driving an evaluation (the main
thread, or any thread inside `owner()`); a fixed pool supplies threads
`1 .. nthreads() - 1`, each tagged with its integer identity so per-thread
accumulators (see `genmodel.trace.ThreadSafeTrace`) can be indexed by it.
"""

import itertools as it
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager

from genmodel.core import Any, Callable, Iterable

logger = logging.getLogger(__name__)

NUM_THREADS_ENV = "GENMODEL_NUM_THREADS"


class UnregisteredThreadError(RuntimeError):
    pass


def _read_nthreads() -> int:
    raw = os.environ.get(NUM_THREADS_ENV, "1")
    try:
        n = int(raw)
    except ValueError:
        raise ValueError(
            f"{NUM_THREADS_ENV} must be a positive integer, got {raw!r}"
        ) from None
    if n < 1:
        raise ValueError(f"{NUM_THREADS_ENV} must be a positive integer, got {n}")
    return n


# Fixed at import.
_nthreads = _read_nthreads()

_local = threading.local()
_pools: dict[int, ThreadPoolExecutor] = {}
_pools_lock = threading.Lock()


def nthreads() -> int:
    """Number of worker threads available to this process."""
    return _nthreads


def _current() -> int | None:
    tid = getattr(_local, "tid", None)
    if tid is not None:
        return tid
    if threading.current_thread() is threading.main_thread():
        return 0
    return None


def threadid() -> int:
    """Identity of the calling worker thread, in `range(nthreads())`.

    The main thread is 0, as is any thread for the duration of an
    `owner()` block.
    """
    tid = _current()
    if tid is None:
        raise UnregisteredThreadError(
            f"thread {threading.current_thread().name!r} is not a genmodel "
            "worker thread"
        )
    return tid


@contextmanager
def owner():
    """Give the calling thread slot 0 while it drives an evaluation.

    Threads that already have an identity keep it. Any other thread (a user
    thread, a thread from another executor) is treated as thread 0 inside
    the block, so it can accumulate into a `ThreadSafeTrace` and fan work out
    with `foreach`.
    """
    claimed = getattr(_local, "tid", None) is None
    if claimed:
        _local.tid = 0
    try:
        yield _local.tid
    finally:
        if claimed:
            del _local.tid


def _register(ids, lock):
    with lock:
        _local.tid = next(ids)
    logger.debug(
        "registered worker %s as thread %d", threading.current_thread().name, _local.tid
    )


def _get_pool(n: int) -> ThreadPoolExecutor:
    with _pools_lock:
        pool = _pools.get(n)
        if pool is None:
            logger.debug("starting worker pool with %d threads", n - 1)
            pool = ThreadPoolExecutor(
                max_workers=n - 1,
                thread_name_prefix="genmodel-worker",
                initializer=_register,
                initargs=(it.count(1), threading.Lock()),
            )
            _pools[n] = pool
        return pool


def _partition(items: list[Any], n: int) -> list[list[Any]]:
    size, extra = divmod(len(items), n)
    chunks, start = [], 0
    for i in range(n):
        stop = start + size + (1 if i < extra else 0)
        chunks.append(items[start:stop])
        start = stop
    return chunks


def _run_chunk(fn: Callable[[Any], Any], chunk: list[Any]) -> list[Any]:
    return [fn(item) for item in chunk]


def foreach(fn: Callable[[Any], Any], items: Iterable[Any]) -> list[Any]:
    """Apply `fn` to every item, spreading the items over the worker threads.

    Items are split into `nthreads()` contiguous chunks. The first chunk runs on
    the calling thread, the rest on the worker pool. Results come back in input
    order. If any call raises, the remaining chunks are still awaited and the
    first exception (in chunk order) is re-raised.

    Calls made from a pool thread, or from a thread outside the pool that is
    not inside an `owner()` block, run serially on that thread.
    """
    items = list(items)
    n = min(nthreads(), len(items))
    if n <= 1 or _current() != 0:
        return _run_chunk(fn, items)

    chunks = _partition(items, n)
    futures = [_get_pool(nthreads()).submit(_run_chunk, fn, c) for c in chunks[1:]]
    try:
        head = _run_chunk(fn, chunks[0])
    finally:
        wait(futures)
    results = list(head)
    for future in futures:
        results.extend(future.result())
    return results
