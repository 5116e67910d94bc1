"""
MODULE OVERVIEW:
Socket.IO keepalive.

WHAT IS HAPPENING HERE:
The handshake tells us how often the server expects to hear from us. If it gave an
interval, we run a background task that sends `2::` a little before each deadline
(interval minus `margin_s`). If it gave none, no task exists and the router answers
each server heartbeat with one of ours. Which strategy applies is fixed when the
manager is created.
"""
import asyncio
from typing import Awaitable, Callable

from loguru import logger

from mtgox_stream.shared.models import HEARTBEAT_FRAME

# Lower bound for the timer period when the interval is not larger than the margin
MIN_PERIOD_S = 0.5


class HeartbeatManager:
    def __init__(
        self,
        interval: int,
        send: Callable[[str], Awaitable[None]],
        margin_s: float = 2.0,
        on_failure: Callable[[Exception], Awaitable[None]] | None = None,
        stats: dict | None = None,
    ):
        self.interval = interval
        self.margin_s = margin_s
        self.stats = stats if stats is not None else {}
        self._send = send
        self._on_failure = on_failure
        self._task: asyncio.Task | None = None

    @property
    def timed(self) -> bool:
        """True when the server negotiated an interval and we drive heartbeats ourselves."""
        return self.interval > 0

    @property
    def period(self) -> float:
        return max(self.interval - self.margin_s, MIN_PERIOD_S)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.timed or self._task is not None:
            return
        logger.debug(f"event=heartbeat reason=timer period={self.period:.1f}s")
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        if self._task is None:
            return
        if not self._task.done() and self._task is not _current_task():
            self._task.cancel()
        self._task = None

    async def beat(self) -> None:
        logger.debug("Sending heartbeat")
        self.stats["heartbeats_sent"] = self.stats.get("heartbeats_sent", 0) + 1
        await self._send(HEARTBEAT_FRAME)

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.period)
                await self.beat()
        except asyncio.CancelledError:
            pass
        except OSError as e:
            if self._on_failure is None:
                raise
            await self._on_failure(e)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
