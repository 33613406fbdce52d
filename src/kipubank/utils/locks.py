"""Concurrency control for ledger operations.

Provides a per-ledger lock that serializes mutating operations across tasks
while letting the task that holds it re-enter (a transfer callback awaited
inside a withdrawal runs in the same task).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class LedgerLock:
    """Task-reentrant asyncio lock with an optional acquisition timeout.

    Example:
        lock = LedgerLock("bank", timeout=5.0)
        async with lock.hold("withdraw"):
            # check-then-effect sequence here
            ...
    """

    def __init__(self, name: str = "ledger", timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT):
        """Initialize the lock.

        Args:
            name: Label used in log messages
            timeout: Maximum time to wait for the lock (None = wait forever)
        """
        self.name = name
        self.timeout = timeout
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._depth = 0

    @property
    def depth(self) -> int:
        """Nesting depth of the current holder (0 when free)."""
        return self._depth

    def locked(self) -> bool:
        return self._lock.locked()

    def held_by_current_task(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    async def acquire(self, operation: str = "ledger_operation") -> None:
        """Acquire the lock, re-entering if the current task already holds it."""
        if self.held_by_current_task():
            self._depth += 1
            logger.debug(f"Lock {self.name} re-entered (depth {self._depth}): {operation}")
            return

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for {self.name} after {self.timeout}s: {operation}")
            raise LockTimeoutError(
                f"Could not acquire lock {self.name} within {self.timeout}s"
            )

        self._owner = asyncio.current_task()
        self._depth = 1
        logger.debug(f"Lock acquired for {self.name}: {operation}")

    def release(self, operation: str = "ledger_operation") -> None:
        """Release one level of the lock."""
        if not self.held_by_current_task():
            raise RuntimeError(f"Lock {self.name} released by a task that does not hold it")

        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()
            logger.debug(f"Lock released for {self.name}: {operation}")

    @asynccontextmanager
    async def hold(self, operation: str = "ledger_operation"):
        """Context manager form of acquire/release."""
        await self.acquire(operation)
        try:
            yield self
        finally:
            self.release(operation)
