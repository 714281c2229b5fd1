"""
Fire-and-forget background work.

Submitted tasks run at most once on a thread pool and are never retried;
the submitting request does not wait for them. Failures are logged.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


class TaskRunner:
    """Thread pool for index feeds and other work the caller does not await."""

    def __init__(self, max_workers: int = 4, synchronous: bool = False):
        """
        Args:
            max_workers: Pool size
            synchronous: Run tasks inline instead (one-shot CLI processes)
        """
        self.synchronous = synchronous
        self._executor: Optional[ThreadPoolExecutor] = None
        if not synchronous:
            self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="readshelf")

    @staticmethod
    def _guarded(description: str, func: Callable, *args, **kwargs) -> None:
        try:
            func(*args, **kwargs)
            logger.debug(f"Background task finished: {description}")
        except Exception as e:
            logger.error(f"Background task failed: {description}: {e}", exc_info=True)

    def submit(self, description: str, func: Callable, *args, **kwargs) -> Optional[Future]:
        """
        Schedule func(*args, **kwargs).

        Returns:
            The Future, or None when the task already ran inline
        """
        if self._executor is None:
            self._guarded(description, func, *args, **kwargs)
            return None
        logger.debug(f"Submitting background task: {description}")
        return self._executor.submit(self._guarded, description, func, *args, **kwargs)

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting work; optionally wait for running tasks."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
