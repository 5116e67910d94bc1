"""
MODULE OVERVIEW:
The two-step Socket.IO handshake.

WHAT IS HAPPENING HERE:
1. `negotiate_session` POSTs to `/socket.io/1` with HTTPX. The body of a 200 reply looks
   like `sid:heartbeat:timeout:transports`, e.g. `abc123:20:60:websocket`.
2. `WebSocketHandshake` builds the HTTP Upgrade request for
   `/socket.io/1/websocket/<sid>` and parses the server's reply incrementally.
   It is fed raw transport bytes as they arrive. Frames the server sends in the same
   packet as the `101 Switching Protocols` response are kept and handed to the
   connection's `FrameBuffer`, so nothing is lost. A non-101 status line fails at once,
   without waiting for a response body that may only end at EOF.
"""
import httpx
from loguru import logger
from websockets.client import ClientProtocol
from websockets.headers import build_host
from websockets.http11 import Response
from websockets.protocol import State
from websockets.uri import parse_uri

from mtgox_stream.shared.errors import HandshakeError, WebSocketHandshakeError, describe_error
from mtgox_stream.shared.frames import FrameBuffer
from mtgox_stream.shared.models import Session

SOCKET_IO_PATH = "/socket.io/1"


def _authority(host: str, port: int | None) -> str:
    return f"{host}:{port}" if port else host


def handshake_url(host: str, secure: bool = False, port: int | None = None) -> str:
    scheme = "https" if secure else "http"
    return f"{scheme}://{_authority(host, port)}{SOCKET_IO_PATH}"


def websocket_url(session: Session, host: str, port: int | None = None) -> str:
    scheme = "wss" if session.secure else "ws"
    return f"{scheme}://{_authority(host, port)}{SOCKET_IO_PATH}/websocket/{session.session_id}"


def parse_handshake_body(body: str, secure: bool = False) -> Session:
    """
    Parse `sid:heartbeat[:timeout[:transports]]`.
    Only the sid is mandatory; an empty heartbeat field means 0.
    """
    parts = body.strip().split(":", 3)
    sid = parts[0]
    if not sid:
        raise HandshakeError("Socket.IO handshake failed: empty session id")

    try:
        heartbeat = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        raise HandshakeError(f"Socket.IO handshake failed: bad heartbeat {parts[1]!r}") from None

    close_timeout = None
    if len(parts) > 2 and parts[2].isdigit():
        close_timeout = int(parts[2])
    transports = parts[3].split(",") if len(parts) > 3 and parts[3] else []

    return Session(
        session_id=sid,
        heartbeat_interval=max(heartbeat, 0),
        close_timeout=close_timeout,
        transports=transports,
        secure=secure,
    )


async def negotiate_session(
    host: str,
    secure: bool = False,
    *,
    port: int | None = None,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> Session:
    url = handshake_url(host, secure, port)
    logger.debug(f"Making Socket.IO handshake to {url}")

    try:
        if http_client is not None:
            response = await http_client.post(url)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url)
    except httpx.HTTPError as e:
        raise HandshakeError(f"Socket.IO handshake failed: {e}") from e

    if response.status_code != 200 or not response.text:
        raise HandshakeError("Socket.IO handshake failed")

    session = parse_handshake_body(response.text, secure)
    logger.debug(f"Socket.IO handshake succeeded: {session.session_id}")
    return session




class WebSocketHandshake:
    """
    Client side of the RFC 6455 opening handshake, without any I/O of its own.
    Request building and response validation are done by `websockets.client.ClientProtocol`.
    """

    def __init__(self, url: str, origin: str | None = None, max_size: int | None = 2**20):
        self.url = url
        self.uri = parse_uri(url)
        host = build_host(self.uri.host, self.uri.port, self.uri.secure)
        self.origin = origin or f"{'https' if self.uri.secure else 'http'}://{host}"

        self.protocol = ClientProtocol(self.uri, origin=self.origin, max_size=max_size)
        self.request = self.protocol.connect()
        self.key = self.request.headers["Sec-WebSocket-Key"]
        self.protocol.send_request(self.request)
        self._request_bytes = b"".join(self.protocol.data_to_send())

        self.response: Response | None = None
        self.error: str | None = None
        self._status_line = b""
        self._status_checked = False
        self._early_frames: list = []

    @property
    def is_done(self) -> bool:
        return self.response is not None and self.protocol.state is State.OPEN

    def to_bytes(self) -> bytes:
        return self._request_bytes

    def feed(self, data: bytes) -> bool:
        """Feed response bytes; returns True once the handshake has completed."""
        if self.error:
            raise WebSocketHandshakeError(self.error)
        if self.is_done:
            raise WebSocketHandshakeError("handshake already completed")
        self._check_status_line(data)
        self.protocol.receive_data(data)
        return self._collect()

    def feed_eof(self) -> bool:
        """The transport reached EOF. Only a completed handshake survives this."""
        if self.error:
            raise WebSocketHandshakeError(self.error)
        if not self.is_done:
            self.protocol.receive_eof()
            if not self._collect():
                self._fail("connection closed during WebSocket handshake")
        return True

    def frame_buffer(self) -> FrameBuffer:
        """The frame codec for this connection, starting with any frames that arrived with the response."""
        frames, self._early_frames = self._early_frames, []
        return FrameBuffer(self.protocol, events=frames)

    def _check_status_line(self, data: bytes) -> None:
        # A rejection may carry a body delimited only by EOF; fail on the status line.
        if self._status_checked:
            return
        self._status_line += data
        line, found, _ = self._status_line.partition(b"\r\n")
        if not found:
            return
        self._status_checked = True
        self._status_line = b""
        parts = line.split(b" ", 2)
        if len(parts) > 1 and parts[1].isdigit() and int(parts[1]) != 101:
            self._fail(f"server rejected WebSocket connection: HTTP {int(parts[1])}")

    def _collect(self) -> bool:
        for event in self.protocol.events_received():
            if isinstance(event, Response):
                self.response = event
            else:
                self._early_frames.append(event)
        if self.protocol.handshake_exc is not None:
            self._fail(describe_error(self.protocol.handshake_exc))
        return self.is_done

    def _fail(self, reason: str):
        self.error = reason
        raise WebSocketHandshakeError(reason)
