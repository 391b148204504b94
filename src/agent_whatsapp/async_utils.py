"""Async utilities and task management."""

import asyncio
import logging
from typing import Optional, Set, Any, Awaitable, Coroutine

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Manages background tasks for SessionClient.

    Tracks all created tasks, handles cancellation, and ensures clean shutdown.
    Prevents task leaks by maintaining a registry of active tasks.

    Example:
        >>> manager = TaskManager()
        >>> task = await manager.create_task(my_coro())
        >>> await manager.cancel_all()
    """

    def __init__(self) -> None:
        """Initialize task manager."""
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._is_shutting_down = False

    async def create_task(
        self,
        coro: Coroutine,
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Create and track a background task.

        Args:
            coro: Coroutine to run
            name: Optional task name for debugging

        Returns:
            Created task object

        Raises:
            RuntimeError: If manager is shutting down
        """
        if self._is_shutting_down:
            coro.close()
            raise RuntimeError("Task manager is shutting down")

        async with self._lock:
            task = asyncio.create_task(coro, name=name)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(_log_task_exception)

            logger.debug(f"Created task: {name or task.get_name()}")
            return task

    async def cancel_all(self) -> None:
        """
        Cancel all tracked tasks gracefully.

        Waits for all tasks to complete cancellation.
        """
        self._is_shutting_down = True

        async with self._lock:
            if not self._tasks:
                logger.debug("No tasks to cancel")
                return

            logger.info(f"Cancelling {len(self._tasks)} task(s)")

            for task in self._tasks:
                if not task.done():
                    task.cancel()

            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
            logger.info("All tasks cancelled")

    def is_shutting_down(self) -> bool:
        """Check if manager is shutting down."""
        return self._is_shutting_down


def _log_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error(f"Background task error ({task.get_name()}): {exc}")


async def run_with_timeout(awaitable: Awaitable[Any], timeout: Optional[float]) -> Any:
    """
    Await with a timeout, cancelling the awaitable when it expires.

    Args:
        awaitable: Awaitable to run
        timeout: Timeout in seconds (None waits forever)

    Raises:
        asyncio.TimeoutError: If timeout exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Operation timed out after {timeout}s")
        raise
