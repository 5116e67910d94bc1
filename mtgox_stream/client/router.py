"""
MODULE OVERVIEW:
Dispatches decoded frame payloads by Socket.IO message type.

WHAT IS HAPPENING HERE:
For each payload the first matching rule wins:

    4 on the configured endpoint  -> JSON decoded and handed to the message callback
    2 when no interval was agreed -> answered with our own heartbeat
    exactly `1::`                 -> answered with `1::/mtgox` (endpoint connect)
    0                             -> disconnect callback, stop the batch
    7                             -> error callback with the data field, stop the batch

Everything else (3 message, 5 event, 6 ack, 8 noop, unknown types) is ignored.
A JSON payload that fails to decode is dropped without telling the caller.
"""
import json
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from mtgox_stream.client.heartbeat import HeartbeatManager
from mtgox_stream.shared.errors import EnvelopeError
from mtgox_stream.shared.frames import FrameBuffer
from mtgox_stream.shared.models import CONNECT_FRAME, MessageType, connect_frame, parse_envelope


class StreamHandler(Protocol):
    async def handle_message(self, payload: Any) -> None: ...

    async def handle_error(self, message: str) -> None: ...

    async def handle_disconnect(self) -> None: ...


class MessageRouter:
    def __init__(
        self,
        handler: StreamHandler,
        heartbeat: HeartbeatManager,
        send: Callable[[str], Awaitable[None]],
        endpoint: str = "/mtgox",
        stats: dict | None = None,
    ):
        self.handler = handler
        self.heartbeat = heartbeat
        self.endpoint = endpoint
        self.stats = stats if stats is not None else {}
        self._send = send

    async def route(self, frames: FrameBuffer) -> bool:
        """
        Drain every complete frame currently buffered, in arrival order.
        Returns False as soon as a disconnect or error envelope ends the connection.
        """
        while (payload := frames.next()) is not None:
            if not await self.dispatch(payload):
                return False
        return True

    async def dispatch(self, payload: str) -> bool:
        self._count("frames_received")
        try:
            envelope = parse_envelope(payload)
        except EnvelopeError as e:
            logger.debug(f"event=ignored reason='{e}'")
            return True

        if envelope.type is MessageType.JSON and envelope.endpoint == self.endpoint:
            try:
                message = json.loads(envelope.data)
            except ValueError:
                self._count("json_errors")
                logger.debug(f"event=dropped reason=invalid_json data={envelope.data[:60]!r}")
                return True
            await self.handler.handle_message(message)

        # Respond to heartbeats only if a heartbeat interval wasn't given in the handshake.
        elif envelope.type is MessageType.HEARTBEAT and not self.heartbeat.timed:
            await self.heartbeat.beat()

        elif payload == CONNECT_FRAME:
            await self._send(connect_frame(self.endpoint))

        elif envelope.type is MessageType.DISCONNECT:
            await self.handler.handle_disconnect()
            return False

        elif envelope.type is MessageType.ERROR:
            await self.handler.handle_error(envelope.data)
            return False

        return True

    def _count(self, key: str) -> None:
        self.stats[key] = self.stats.get(key, 0) + 1
