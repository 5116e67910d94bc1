import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from loguru import logger

from mtgox_stream.shared.client_utils import (
    Callback,
    default_on_disconnect,
    default_on_error,
    invoke_callback,
    make_stream_stats,
    utc_now,
)
from mtgox_stream.shared.errors import describe_error


class BaseStreamClient(ABC):
    """
    Owns the caller's three callbacks and guarantees that at most one terminal event
    (error or disconnect) is ever delivered per connection. Subclasses implement the
    transport in `connect` and the teardown in `disconnect`.
    """

    protocol_name: str = "unknown"

    def __init__(
        self,
        on_message: Callback | None = None,
        on_error: Callback | None = None,
        on_disconnect: Callback | None = None,
    ):
        self.on_message_callback = on_message
        self.on_error_callback = on_error or default_on_error
        self.on_disconnect_callback = on_disconnect or default_on_disconnect
        self.on_status_change_callback: Callable[[str], Awaitable[None] | None] | None = None

        self.stats = make_stream_stats()
        self.status = "INITIALIZING"
        self._finished = False
        self._terminal_task: asyncio.Task | None = None

    @property
    def messages_delivered(self): return self.stats["messages_delivered"]

    @property
    def heartbeats_sent(self): return self.stats["heartbeats_sent"]

    def set_callbacks(self, on_message=None, on_error=None, on_disconnect=None, on_status_change=None):
        if on_message is not None:
            self.on_message_callback = on_message
        if on_error is not None:
            self.on_error_callback = on_error
        if on_disconnect is not None:
            self.on_disconnect_callback = on_disconnect
        if on_status_change is not None:
            self.on_status_change_callback = on_status_change

    async def _emit_status(self, status: str):
        self.status = status
        try:
            await invoke_callback(self.on_status_change_callback, status)
        except Exception as e:
            logger.warning(f"protocol={self.protocol_name} event=status_hook_failed reason='{e}'")

    async def handle_message(self, payload: Any) -> None:
        if self._finished:
            return
        self.stats["messages_delivered"] += 1
        self.stats["last_message_at"] = utc_now()
        try:
            await invoke_callback(self.on_message_callback, payload)
        except Exception as e:
            logger.exception(f"protocol={self.protocol_name} event=callback_failed callback=on_message")
            await self.handle_error(describe_error(e))

    async def handle_error(self, message: str) -> None:
        if self._finished:
            return
        self._finished = True
        self._terminal_task = asyncio.current_task()
        logger.info(f"protocol={self.protocol_name} event=error reason='{message}'")
        await self.disconnect()
        await self._emit_status("ERROR")
        await self._terminal(self.on_error_callback, message)

    async def handle_disconnect(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._terminal_task = asyncio.current_task()
        logger.info(f"protocol={self.protocol_name} event=disconnect reason=peer")
        await self.disconnect()
        await self._emit_status("DISCONNECTED")
        await self._terminal(self.on_disconnect_callback)

    async def _terminal(self, callback: Callback, *args: Any) -> None:
        try:
            await invoke_callback(callback, *args)
        except Exception:
            logger.exception(f"protocol={self.protocol_name} event=callback_failed callback={callback!r}")

    @abstractmethod
    async def connect(self) -> None:
        """The actual protocol implementation runs here."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass
