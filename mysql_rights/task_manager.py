"""
Thread pool running reconciliations in the background
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class TaskManager:
    """
    Central pool of worker threads
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.max_workers = max_workers
        self.thread_pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="mysql-rights"
        )
        self._pending: set = set()

    def run_async(self,
                  task: Callable,
                  on_success: Optional[Callable] = None,
                  on_error: Optional[Callable] = None,
                  on_finished: Optional[Callable] = None,
                  *args, **kwargs) -> Future:
        """
        Run task in the background

        Args:
            task: callable to run
            on_success: called with the result
            on_error: called with the exception
            on_finished: always called
        """
        name = getattr(task, "__name__", repr(task))

        def _run():
            logger.debug("Starting task: %s", name)
            return task(*args, **kwargs)

        future = self.thread_pool.submit(_run)
        self._pending.add(future)

        def _done(fut: Future) -> None:
            self._pending.discard(fut)
            exc = fut.exception()
            if exc is not None:
                logger.error("Task %s failed: %s", name, exc)
                if on_error:
                    on_error(exc)
            else:
                logger.debug("Task finished: %s", name)
                if on_success:
                    on_success(fut.result())
            if on_finished:
                on_finished()

        future.add_done_callback(_done)
        return future

    def wait_for_done(self, futures: Iterable[Future] | None = None,
                      timeout: float | None = None) -> bool:
        """Wait for the given (or all pending) tasks; True when all finished"""
        pending = list(futures) if futures is not None else list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self.thread_pool.shutdown(wait=wait_for_tasks)


# Singleton instance
_task_manager_instance = None


def get_task_manager(max_workers: int | None = None) -> TaskManager:
    """Return the shared task manager, creating it on first use"""
    global _task_manager_instance
    if _task_manager_instance is None:
        _task_manager_instance = TaskManager(max_workers or DEFAULT_MAX_WORKERS)
    return _task_manager_instance
