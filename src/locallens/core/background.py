"""Best-effort background side effects.

Cache writes, job-record writes and invalidations run as detached asyncio
tasks. Their failures are logged and never propagate to the request that
scheduled them, and they are not cancelled when that request is aborted.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, Protocol

from loguru import logger


class SideEffectRunner(Protocol):
    """Protocol for scheduling fire-and-forget work."""

    def submit(self, coro: Coroutine[Any, Any, Any], *, label: str = "side-effect") -> asyncio.Task[Any]:
        """Schedule a coroutine without awaiting it.

        Args:
            coro: The coroutine to execute.
            label: Short description used in log messages.

        Returns:
            The scheduled task.
        """
        ...

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding side effects to finish."""
        ...


class BestEffortRunner:
    """In-process runner for fire-and-forget coroutines.

    Holds a strong reference to every task until it finishes so tasks are
    not garbage collected mid-flight.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of side effects still running."""
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], *, label: str = "side-effect") -> asyncio.Task[Any]:
        """Schedule a coroutine as a detached best-effort task.

        Args:
            coro: The coroutine to execute.
            label: Short description used in log messages.

        Returns:
            The scheduled task.
        """

        async def _run() -> Any:
            try:
                return await coro
            except asyncio.CancelledError:
                logger.debug(f"Best-effort task cancelled: {label}")
                raise
            except Exception as e:
                logger.warning(f"Best-effort task failed ({label}): {e}")
                return None

        task = asyncio.create_task(_run(), name=label)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding side effects to finish.

        Args:
            timeout: Maximum seconds to wait; remaining tasks are left running.
        """
        if not self._tasks:
            return
        _done, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_pending:
            logger.warning(f"{len(still_pending)} best-effort task(s) still running after drain timeout")
