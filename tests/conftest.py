"""Shared fixtures: a local fake Socket.IO/WebSocket server and callback recorders."""

import asyncio

import httpx
import pytest
import pytest_asyncio
from websockets.frames import Frame, Opcode
from websockets.protocol import State
from websockets.server import ServerProtocol
from websockets.utils import accept_key

from mtgox_stream.client.stream_client import MtGoxStream
from mtgox_stream.shared.config import Settings
from mtgox_stream.shared.frames import FrameBuffer


def server_frame(payload: str) -> bytes:
    return Frame(Opcode.TEXT, payload.encode("utf-8")).serialize(mask=False)


class FakeSocketIOServer:
    """
    Answers the WebSocket upgrade, then writes `frames_to_send` in the same packet as
    the 101 response and records every text frame the client sends back.
    `raw_response` replaces the whole reply, and `silent` makes the server never answer.
    """

    def __init__(self):
        self.frames_to_send: list[str | bytes] = []
        self.status_line = "HTTP/1.1 101 Switching Protocols"
        self.extra_headers = ""
        self.close_after_send = False
        self.raw_response: bytes | None = None
        self.silent = False
        self.request_path: str | None = None
        self.received: list[str] = []
        self.connections = 0
        self.client_gone = asyncio.Event()
        self.port: int | None = None
        self._server: asyncio.AbstractServer | None = None
        self._writers: list[asyncio.StreamWriter] = []

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    async def push(self, payload: str) -> None:
        for writer in self._writers:
            writer.write(server_frame(payload))
            await writer.drain()

    async def wait_for_received(self, payload: str, timeout: float = 5.0) -> None:
        async def poll():
            while payload not in self.received:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(poll(), timeout)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        self._writers.append(writer)
        try:
            request = await reader.readuntil(b"\r\n\r\n")
            lines = request.decode().split("\r\n")
            self.request_path = lines[0].split(" ")[1]
            if self.silent:
                await reader.read()
                return
            if self.raw_response is not None:
                writer.write(self.raw_response)
                await writer.drain()
                return
            headers = {}
            for line in lines[1:]:
                if line:
                    name, value = line.split(":", 1)
                    headers[name.strip().lower()] = value.strip()

            response = (
                f"{self.status_line}\r\n"
                "Upgrade: websocket\r\n"
                "Connection: Upgrade\r\n"
                f"Sec-WebSocket-Accept: {accept_key(headers['sec-websocket-key'])}\r\n"
                f"{self.extra_headers}"
                "\r\n"
            ).encode()
            payload = b"".join(
                f if isinstance(f, bytes) else server_frame(f) for f in self.frames_to_send
            )
            writer.write(response + payload)
            await writer.drain()
            if self.close_after_send:
                return

            frames = FrameBuffer(ServerProtocol(state=State.OPEN))
            while data := await reader.read(65536):
                frames.append(data)
                while (text := frames.next()) is not None:
                    self.received.append(text)
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()
            self.client_gone.set()


class Recorder:
    """Collects callback invocations from a stream."""

    def __init__(self):
        self.messages: list = []
        self.errors: list[str] = []
        self.disconnects = 0
        self.terminal = asyncio.Event()
        self.got_message = asyncio.Event()

    def on_message(self, payload):
        self.messages.append(payload)
        self.got_message.set()

    def on_error(self, message: str):
        self.errors.append(message)
        self.terminal.set()

    def on_disconnect(self):
        self.disconnects += 1
        self.terminal.set()

    async def wait_terminal(self, timeout: float = 5.0):
        await asyncio.wait_for(self.terminal.wait(), timeout)

    async def wait_message(self, timeout: float = 5.0):
        await asyncio.wait_for(self.got_message.wait(), timeout)


def handshake_transport(body: str = "abc123:0:60:websocket", status: int = 200, requests: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, text=body)
    return httpx.MockTransport(handler)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def test_settings():
    return Settings(HOST="127.0.0.1", SECURE=False, CONNECT_TIMEOUT_S=5.0, HANDSHAKE_TIMEOUT_S=5.0)


@pytest_asyncio.fixture
async def fake_server():
    server = FakeSocketIOServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def make_stream(fake_server, recorder, test_settings):
    """Builds an MtGoxStream pointed at the fake server, with a mocked HTTP handshake."""
    clients = []

    def factory(body: str = "abc123:0:60:websocket", status: int = 200, **kwargs) -> MtGoxStream:
        http_client = httpx.AsyncClient(transport=handshake_transport(body, status))
        clients.append(http_client)
        kwargs.setdefault("port", fake_server.port)
        kwargs.setdefault("settings", test_settings)
        return MtGoxStream(
            recorder.on_message,
            recorder.on_error,
            recorder.on_disconnect,
            host="127.0.0.1",
            http_client=http_client,
            **kwargs,
        )

    yield factory
    for client in clients:
        await client.aclose()
