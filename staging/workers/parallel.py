"""
Parallel Processor
==================

Bounded thread pool for the stash and select passes. Hashing and the zstd
child processes release the GIL, so threads are enough; the pool size caps
how many compressors run at once.
"""

import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


class ParallelProcessor:
    """Runs per-item callbacks sequentially or on a bounded thread pool"""

    def __init__(self, num_workers: Optional[int] = None):
        self.num_workers = min(num_workers or os.cpu_count() or 1, 32)  # Cap at reasonable limit
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.num_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_workers,
                thread_name_prefix='stash-worker'
            )
        logger.debug(f"ParallelProcessor using {self.num_workers} worker(s)")

    @property
    def executor(self) -> Optional[Executor]:
        """The thread pool, or None when running sequentially"""
        return self._executor

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """
        Apply ``fn`` to every item, preserving order.

        The first exception raised by ``fn`` propagates after pending work
        is cancelled.
        """
        if self._executor is None:
            return [fn(item) for item in items]
        try:
            return list(self._executor.map(fn, items))
        except BaseException:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None
            raise

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure cleanup"""
        self.shutdown()
        return False

    def shutdown(self):
        """Shutdown the executor"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
