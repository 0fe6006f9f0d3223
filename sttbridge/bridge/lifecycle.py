from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

from sttbridge.internal_core.contracts import CloseCause
from sttbridge.internal_core.errors import IdleTimeout, SessionStopped

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LifecycleController:
    """Shared stop signal and teardown coordination for one session.

    The first stop request wins and fixes the close cause. Forwarders wrap
    every blocking call in ``guard`` so a stop request unblocks them without
    cancelling the forwarder task itself.
    """

    def __init__(
        self,
        *,
        idle_timeout_sec: float,
        shutdown_grace_sec: float,
        session_id: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._idle_timeout_sec = float(idle_timeout_sec)
        self._shutdown_grace_sec = max(0.0, float(shutdown_grace_sec))
        self._session_id = session_id
        self._clock = clock
        self._stop = asyncio.Event()
        self._last_activity = clock()
        self.cause: Optional[CloseCause] = None
        self.error: Optional[BaseException] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def touch(self) -> None:
        self._last_activity = self._clock()

    def idle_for(self) -> float:
        return self._clock() - self._last_activity

    def request_stop(self, cause: CloseCause, error: Optional[BaseException] = None) -> bool:
        if self._stop.is_set():
            return False
        self.cause = cause
        self.error = error
        self._stop.set()
        logger.info("session_stop_requested session_id=%s cause=%s", self._session_id, cause)
        return True

    async def wait_stopped(self) -> None:
        await self._stop.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        if self._stop.is_set():
            close = getattr(awaitable, "close", None)
            if callable(close):
                close()
            raise SessionStopped()

        operation = asyncio.ensure_future(awaitable)
        stop_wait = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({operation, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_wait.cancel()
            if not operation.done():
                operation.cancel()
                await asyncio.gather(operation, return_exceptions=True)

        if operation.cancelled():
            raise SessionStopped()
        return operation.result()

    async def watch_idle(self) -> None:
        if self._idle_timeout_sec <= 0:
            await self._stop.wait()
            return
        while not self._stop.is_set():
            remaining = self._idle_timeout_sec - self.idle_for()
            if remaining <= 0:
                self.request_stop(
                    "timeout",
                    IdleTimeout(f"no audio received for {self._idle_timeout_sec:g}s"),
                )
                return
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

    async def supervise(
        self,
        directions: dict[str, Coroutine[Any, Any, None]],
        *,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> CloseCause:
        """Run every direction plus the idle watcher until the session stops.

        Returns once all directions have exited. A direction still running
        ``shutdown_grace_sec`` after the stop signal is cancelled.
        """
        self.touch()
        tasks = [
            asyncio.create_task(coro, name=f"{name}-{self._session_id}")
            for name, coro in directions.items()
        ]
        for task in tasks:
            task.add_done_callback(self._on_direction_done)
        watcher = asyncio.create_task(self.watch_idle(), name=f"idle-{self._session_id}")

        try:
            await self._stop.wait()
            if on_stop is not None:
                on_stop()
            _, pending = await asyncio.wait(tasks, timeout=self._shutdown_grace_sec)
            if pending:
                logger.warning(
                    "session_direction_stuck session_id=%s directions=%s grace_sec=%s",
                    self._session_id,
                    sorted(task.get_name() for task in pending),
                    self._shutdown_grace_sec,
                )
        finally:
            watcher.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(watcher, *tasks, return_exceptions=True)

        return self.cause or "shutdown"

    def _on_direction_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            self.request_stop("shutdown")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "session_direction_crashed session_id=%s direction=%s error=%r",
                self._session_id,
                task.get_name(),
                exc,
            )
            self.request_stop("stream_error", exc)
            return
        self.request_stop("shutdown")
