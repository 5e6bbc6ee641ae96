"""
Cancellable Scheduling Primitives

Debounced calls and repeating timers on the running asyncio loop. Both hand
back something with cancel() so owners can release them on teardown.
"""

import asyncio
from typing import Any, Callable, Optional

import structlog

# Configure structured logger
logger = structlog.get_logger(__name__)


def schedule(callback: Callable[..., Any], delay: float, *args: Any) -> asyncio.TimerHandle:
    """Run callback(*args) after delay seconds; the returned handle has cancel()"""
    loop = asyncio.get_running_loop()
    return loop.call_later(delay, callback, *args)


class Debouncer:
    """Coalesce rapid calls so only the most recent one runs after the delay"""

    def __init__(self, callback: Callable[..., Any], delay: float):
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()

    def __call__(self, *args: Any) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._handle = schedule(self._fire, self.delay)

    def _fire(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        self.callback(*args)

    def flush(self) -> None:
        """Run the pending call now, if there is one"""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._args = ()


class RepeatingTimer:
    """Invoke a callback every interval seconds until cancelled"""

    def __init__(self, callback: Callable[[], Any], interval: float, name: str = "repeating_timer"):
        self.callback = callback
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        # Never more than one live loop per timer
        self.cancel()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.callback()
            except Exception as e:
                logger.error("Timer callback failed", timer=self.name, error=str(e))

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
