"""
MODULE OVERVIEW:
The MtGox streaming client: connection lifecycle and the handle the caller holds.

WHAT IS HAPPENING HERE:
`MtGoxStream.start()` spawns one asyncio task that walks the whole lifecycle:

    HTTP handshake -> TCP (+TLS) connect -> WebSocket upgrade -> heartbeat -> frame loop

Every failure along the way ends up in `_on_failure`, which maps "the peer went away"
(EOF, broken pipe, reset) to the disconnect callback and everything else to the error
callback. Either way the transport is destroyed and the heartbeat cancelled exactly once.

The returned `StreamHandle` is the caller's ownership token. Releasing it closes the
transport synchronously; releasing it twice is harmless. Once released, no callback
fires, even if an HTTP request or a read was still pending.
"""
import asyncio
import ssl
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from mtgox_stream.client.base_client import BaseStreamClient
from mtgox_stream.client.handshake import WebSocketHandshake, negotiate_session, websocket_url
from mtgox_stream.client.heartbeat import HeartbeatManager
from mtgox_stream.client.router import MessageRouter
from mtgox_stream.shared.client_utils import Callback, utc_now
from mtgox_stream.shared.config import Settings, settings as default_settings
from mtgox_stream.shared.errors import (
    DISCONNECT_ERRORS,
    ConnectionClosed,
    StreamError,
    describe_error,
)
from mtgox_stream.shared.frames import FrameBuffer
from mtgox_stream.shared.models import Session

OpenConnection = Callable[..., Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]

# Streams whose handle was discarded stay alive through this set until they finish.
background_tasks: set[asyncio.Task] = set()


class MtGoxStream(BaseStreamClient):
    protocol_name: str = "socket.io"

    def __init__(
        self,
        on_message: Callback | None = None,
        on_error: Callback | None = None,
        on_disconnect: Callback | None = None,
        *,
        secure: bool | None = None,
        host: str | None = None,
        port: int | None = None,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        open_connection: OpenConnection | None = None,
    ):
        super().__init__(on_message, on_error, on_disconnect)
        self.settings = settings or default_settings
        self.secure = self.settings.SECURE if secure is None else secure
        self.host = host or self.settings.HOST
        self.port = port or self.settings.PORT
        self.session: Session | None = None

        self._http_client = http_client
        self._open_connection = open_connection or asyncio.open_connection
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._frames: FrameBuffer | None = None
        self._heartbeat: HeartbeatManager | None = None
        self._router: MessageRouter | None = None
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transport_port(self) -> int:
        return self.port or (443 if self.secure else 80)

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> "StreamHandle":
        """
        Schedule the connection and return its handle.
        Uses the running event loop unless another one is passed explicitly.
        """
        if self._task is not None:
            raise RuntimeError("stream already started")
        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(self.run())
        background_tasks.add(self._task)
        self._task.add_done_callback(background_tasks.discard)
        return StreamHandle(self)

    async def run(self) -> None:
        try:
            await self.connect()
        except asyncio.CancelledError:
            pass
        finally:
            self.close()
            await self._emit_status("CLOSED")

    async def connect(self) -> None:
        try:
            await self._emit_status("NEGOTIATING")
            self.session = await negotiate_session(
                self.host,
                self.secure,
                port=self.port,
                http_client=self._http_client,
                timeout=self.settings.HANDSHAKE_TIMEOUT_S,
            )
            await self._open_transport()
            await asyncio.wait_for(self._upgrade(), timeout=self.settings.HANDSHAKE_TIMEOUT_S)
            self._start_session()
            await self._emit_status("ACTIVE")
            await self._read_frames()
        except (StreamError, OSError, asyncio.TimeoutError) as e:
            await self._on_failure(e)

    async def disconnect(self) -> None:
        self.close()

    def close(self) -> None:
        """Destroy the transport and cancel timers. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        self._finished = True
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        if self._writer is not None:
            self._writer.close()
            logger.info(f"session_id={self.session_id} protocol={self.protocol_name} event=close reason=teardown")
        if self._task is not None and not self._task.done() and self._task is not _current_task():
            self._task.cancel()

    @property
    def session_id(self) -> str | None:
        return self.session.session_id if self.session else None

    async def send(self, payload: str) -> None:
        if self._closed or self._writer is None or self._frames is None:
            return
        logger.debug(f"session_id={self.session_id} event=send payload={payload!r}")
        self._writer.write(self._frames.send(payload))
        await self._writer.drain()

    async def _open_transport(self) -> None:
        tls = ssl.create_default_context() if self.secure else None
        logger.debug(f"event=connect host={self.host} port={self.transport_port} tls={bool(tls)}")
        self._reader, self._writer = await asyncio.wait_for(
            self._open_connection(self.host, self.transport_port, ssl=tls),
            timeout=self.settings.CONNECT_TIMEOUT_S,
        )
        self.stats["connected_at"] = utc_now()

    async def _upgrade(self) -> None:
        await self._emit_status("UPGRADING")
        url = websocket_url(self.session, self.host, self.port)
        logger.debug(f"Making WebSocket handshake to {url}")
        handshake = WebSocketHandshake(url, max_size=self.settings.MAX_FRAME_SIZE)
        self._writer.write(handshake.to_bytes())
        await self._writer.drain()

        done = False
        while not done:
            data = await self._read_chunk()
            done = handshake.feed(data) if data else handshake.feed_eof()
        logger.debug("WebSocket handshake succeeded")
        self._frames = handshake.frame_buffer()

    def _start_session(self) -> None:
        self._heartbeat = HeartbeatManager(
            self.session.heartbeat_interval,
            self.send,
            margin_s=self.settings.HEARTBEAT_MARGIN_S,
            on_failure=self._on_failure,
            stats=self.stats,
        )
        self._heartbeat.start()
        self._router = MessageRouter(self, self._heartbeat, self.send, self.settings.ENDPOINT, self.stats)

    async def _read_frames(self) -> None:
        while not self._closed:
            if not await self._router.route(self._frames):
                return
            await self._flush()
            if self._frames.closed:
                raise ConnectionClosed("server sent a close frame")
            data = await self._read_chunk()
            if not data:
                raise ConnectionClosed("connection closed by peer")
            self._frames.append(data)

    async def _read_chunk(self) -> bytes:
        data = await self._reader.read(self.settings.READ_CHUNK_SIZE)
        self.stats["bytes_received"] += len(data)
        return data

    async def _flush(self) -> None:
        """Write whatever the protocol queued on its own, such as PONG and CLOSE replies."""
        data = self._frames.data_to_send()
        if data and not self._closed:
            self._writer.write(data)
            await self._writer.drain()

    async def _on_failure(self, exc: Exception) -> None:
        if isinstance(exc, DISCONNECT_ERRORS):
            await self.handle_disconnect()
        elif isinstance(exc, asyncio.TimeoutError):
            await self.handle_error("connection timed out")
        else:
            await self.handle_error(describe_error(exc))


class StreamHandle:
    """Ownership token for a running stream. Releasing it tears the connection down."""

    def __init__(self, stream: MtGoxStream):
        self._stream = stream

    @property
    def stream(self) -> MtGoxStream:
        return self._stream

    @property
    def session(self) -> Session | None:
        return self._stream.session

    @property
    def done(self) -> bool:
        return all(task.done() for task in self._tasks())

    def close(self) -> None:
        self._stream.close()

    release = close

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for the stream to finish. Returns False if `timeout` elapsed first."""
        tasks = set(self._tasks())
        if _current_task() in tasks:
            # called from one of our own callbacks; a task cannot wait for itself
            return False
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    def _tasks(self) -> list[asyncio.Task]:
        # the lifecycle task, plus a heartbeat task still delivering the terminal callback
        return [t for t in (self._stream._task, self._stream._terminal_task) if t is not None]

    async def aclose(self) -> None:
        self.close()
        await self.wait()

    async def __aenter__(self) -> "StreamHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def connect(
    on_message: Callback | None = None,
    on_error: Callback | None = None,
    on_disconnect: Callback | None = None,
    **kwargs: Any,
) -> StreamHandle:
    """Create an `MtGoxStream` and start it. Must be called with an event loop running."""
    return MtGoxStream(on_message, on_error, on_disconnect, **kwargs).start()


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
