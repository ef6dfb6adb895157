"""
Streaming Protocol - Heartbeat Monitor

Supervises liveness of an open stream. The read loop records the time of every
frame with touch(); a watchdog task wakes every `check_interval` seconds and,
once nothing has arrived for longer than `timeout`, marks the stream dead and
cancels the pending read. The read loop then raises ConnectionLost instead of a
plain cancellation, because the backend job may still be running.

Shared state is one writer per field: the read loop writes `last_frame_at`,
the watchdog writes `dead`.
"""

import asyncio
import logging
import time
from typing import AsyncIterable, AsyncIterator, Callable, Optional, TypeVar

from .config import HEARTBEAT_TIMEOUT, HEARTBEAT_CHECK_INTERVAL
from .errors import ConnectionLost

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


async def _pull(iterator):
    """One pull from an async iterator: a value, or the _END marker."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class HeartbeatMonitor:
    """
    Liveness watchdog for a single stream.

    Usage:
        monitor = HeartbeatMonitor(timeout=45, check_interval=5)
        async for chunk in monitor.guard(chunks):
            for frame in decoder.feed(chunk):
                monitor.touch()
                ...
    """

    def __init__(
        self,
        timeout: float = HEARTBEAT_TIMEOUT,
        check_interval: float = HEARTBEAT_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize heartbeat monitor.

        Args:
            timeout: Seconds without a frame before the stream is declared dead
            check_interval: Seconds between watchdog checks (shorter than timeout)
            clock: Monotonic time source
        """
        if check_interval <= 0 or timeout <= 0:
            raise ValueError("timeout and check_interval must be positive")
        if check_interval >= timeout:
            raise ValueError(f"check_interval ({check_interval}) must be shorter than timeout ({timeout})")
        self.timeout = timeout
        self.check_interval = check_interval
        self._clock = clock
        self.last_frame_at = clock()
        self.dead = False
        self._reader: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None

    @property
    def idle_seconds(self) -> float:
        return self._clock() - self.last_frame_at

    @property
    def running(self) -> bool:
        return self._watchdog is not None and not self._watchdog.done()

    def touch(self) -> None:
        """Record that a frame just arrived."""
        self.last_frame_at = self._clock()

    def start(self) -> None:
        if self.running:
            return
        self.dead = False
        self.touch()
        self._watchdog = asyncio.create_task(self._watch())

    async def stop(self) -> None:
        """Cancel and await the watchdog. Safe to call more than once."""
        watchdog, self._watchdog = self._watchdog, None
        if watchdog is None:
            return
        watchdog.cancel()
        try:
            await watchdog
        except asyncio.CancelledError:
            pass

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            idle = self.idle_seconds
            if idle > self.timeout:
                self.dead = True
                logger.warning(
                    f"💔 No frame for {idle:.1f}s (timeout {self.timeout:.1f}s), cancelling stream read"
                )
                reader = self._reader
                if reader is not None and not reader.done():
                    reader.cancel()
                return

    async def read(self, iterator) -> object:
        """
        Pull the next item, cancellable by the watchdog.

        Returns:
            The next item, or the module-level end marker when exhausted

        Raises:
            ConnectionLost: the watchdog cancelled this read
        """
        if self.dead:
            raise ConnectionLost(self.idle_seconds, self.timeout)
        self._reader = asyncio.create_task(_pull(iterator))
        try:
            return await self._reader
        except asyncio.CancelledError:
            if self.dead:
                raise ConnectionLost(self.idle_seconds, self.timeout) from None
            raise
        finally:
            self._reader = None

    async def guard(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """
        Iterate `source` under supervision.

        The watchdog starts with the first pull and is always torn down when
        iteration ends, whether by exhaustion, error or timeout.
        """
        iterator = source.__aiter__()
        self.start()
        try:
            while True:
                item = await self.read(iterator)
                if item is _END:
                    return
                yield item
        finally:
            await self.stop()
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing stream source: {e}")
