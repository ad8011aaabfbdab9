"""
Single-flight coordination of access token refreshes.
"""

import asyncio
import functools
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from medikariyer_access.logging import get_logger


class RefreshState(Enum):
    """Refresh coordinator states."""
    IDLE = "idle"              # No refresh in flight
    REFRESHING = "refreshing"  # One refresh in flight, callers queue


@dataclass
class _Waiter:
    future: "asyncio.Future[bool]"
    sequence: int
    enqueued_at: float


class RefreshCoordinator:
    """Owns the refresh state and the queue of callers waiting on it.

    At most one refresh operation runs at a time. ``try_begin`` is the only
    way into ``REFRESHING`` and contains no suspension point, so two
    callers can never both own a refresh. Waiters are single-resolution
    futures released in enqueue order with the outcome of the attempt.
    """

    def __init__(self, timeout: float, name: str = "session"):
        self.timeout = timeout
        self.name = name
        self.logger = get_logger(f"medikariyer.refresh.{name}")

        self._state = RefreshState.IDLE
        self._waiters: Deque[_Waiter] = deque()
        self._sequence = 0
        self._task: Optional[asyncio.Task] = None

        self._refresh_count = 0
        self._failure_count = 0
        self._last_outcome: Optional[bool] = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state == RefreshState.REFRESHING

    @property
    def pending_count(self) -> int:
        return len(self._waiters)

    def try_begin(self) -> bool:
        """Claim the refresh if none is in flight."""
        if self._state != RefreshState.IDLE:
            return False
        self._state = RefreshState.REFRESHING
        self._refresh_count += 1
        self.logger.debug("Refresh claimed", attempt=self._refresh_count)
        return True

    def wait(self) -> "asyncio.Future[bool]":
        """Enqueue a waiter for the in-flight refresh.

        The waiter is registered synchronously; the returned future resolves
        to True on refresh success and False on failure. If nothing is in
        flight the future is already resolved with the last outcome.
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[bool]" = loop.create_future()
        if self._state == RefreshState.IDLE:
            future.set_result(bool(self._last_outcome) if self._last_outcome is not None else True)
            return future

        self._sequence += 1
        self._waiters.append(_Waiter(future, self._sequence, time.monotonic()))
        return future

    async def execute(self, operation: Callable[[], Awaitable[Any]],
                      on_failure: Optional[Callable[[], Awaitable[Any]]] = None) -> bool:
        """Run a claimed refresh and release every waiter.

        Must only be called after a successful ``try_begin``. Failures,
        timeouts included, are reported as False. ``on_failure`` runs before
        waiters are released, so they observe its effects. The queue is
        released in all cases, cancellation included.
        """
        success = False
        started = time.monotonic()
        try:
            try:
                await asyncio.wait_for(operation(), timeout=self.timeout)
                success = True
            except asyncio.TimeoutError:
                self.logger.warning("Token refresh timed out", timeout=self.timeout)
            except Exception as e:
                self.logger.warning("Token refresh failed", error=str(e), error_type=type(e).__name__)

            if not success and on_failure is not None:
                await self._run_failure_hook(on_failure)
        finally:
            self._complete(success, time.monotonic() - started)
        return success

    async def _run_failure_hook(self, on_failure: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.wait_for(on_failure(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.logger.error("Refresh failure handler timed out", timeout=self.timeout)
        except Exception as e:
            self.logger.error("Refresh failure handler error", error=str(e), error_type=type(e).__name__)

    def start(self, operation: Callable[[], Awaitable[Any]],
              on_failure: Optional[Callable[[], Awaitable[Any]]] = None) -> Optional[asyncio.Task]:
        """Claim and run a refresh in the background, if none is in flight."""
        if not self.try_begin():
            return None
        attempt = self._refresh_count
        self._task = asyncio.create_task(self.execute(operation, on_failure))
        self._task.add_done_callback(functools.partial(self._release_if_never_ran, attempt))
        return self._task

    def _release_if_never_ran(self, attempt: int, task: asyncio.Task) -> None:
        # A task cancelled before its first step never enters execute()
        if not task.cancelled():
            return
        if self._state != RefreshState.REFRESHING or self._refresh_count != attempt:
            return
        self.logger.warning("Token refresh cancelled before it started", attempt=attempt)
        self._complete(False, 0.0)

    async def refresh(self, operation: Callable[[], Awaitable[Any]],
                      on_failure: Optional[Callable[[], Awaitable[Any]]] = None) -> bool:
        """Drive a refresh for this caller, or join the one in flight."""
        if self.try_begin():
            return await self.execute(operation, on_failure)
        return await self.wait()

    def _complete(self, success: bool, duration: float) -> None:
        self._state = RefreshState.IDLE
        self._last_outcome = success
        if not success:
            self._failure_count += 1

        released = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.future.done():
                continue
            waiter.future.set_result(success)
            released += 1

        self.logger.info(
            "Token refresh completed",
            outcome="success" if success else "failure",
            released=released,
            duration=round(duration, 4)
        )

    async def aclose(self) -> None:
        """Wait for a background refresh to settle."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def get_state(self) -> Dict[str, Any]:
        """Get current coordinator state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "pending": len(self._waiters),
            "refresh_count": self._refresh_count,
            "failure_count": self._failure_count,
            "last_outcome": self._last_outcome,
            "timeout": self.timeout
        }
