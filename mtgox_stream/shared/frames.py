"""
MODULE OVERVIEW:
The WebSocket frame codec.

WHAT IS HAPPENING HERE:
We don't run the asyncio connection machinery of `websockets`. We drive its sans-I/O
`Protocol` instead: raw transport bytes go in through `receive_data()`, parsed frames
come out of `events_received()`, and anything the protocol wants to write (PONG replies,
the CLOSE reply, our own text frames) is collected from `data_to_send()`.

`FrameBuffer` is a thin adapter over that protocol with an `append` / `next` interface,
so the router can drain every complete text payload of a read in a loop and never sees
a control frame. The protocol answers PINGs and CLOSEs on its own; we only remember that
a CLOSE arrived and join the fragments of a split message.
"""
from collections import deque
from typing import Iterable

from websockets.client import ClientProtocol
from websockets.frames import Frame, Opcode
from websockets.protocol import Protocol, State
from websockets.uri import parse_uri

from mtgox_stream.shared.errors import FrameError, describe_error


def encode_frame(payload: str, mask: bool = True) -> bytes:
    """One complete text frame, ready for a direct write to the transport."""
    return Frame(Opcode.TEXT, payload.encode("utf-8")).serialize(mask=mask)


def open_client_protocol(max_size: int | None = 2**20) -> ClientProtocol:
    """A client protocol already past the opening handshake."""
    return ClientProtocol(parse_uri("ws://localhost/"), state=State.OPEN, max_size=max_size)


class FrameBuffer:
    """
    Accumulates inbound bytes and yields complete text payloads in arrival order.

    A parse failure leaves the buffer unusable; once the payloads received before the
    bad frame are drained, every call to `next` raises `FrameError`.
    """

    def __init__(
        self,
        protocol: Protocol | None = None,
        *,
        max_size: int | None = 2**20,
        events: Iterable = (),
    ):
        self.protocol = protocol or open_client_protocol(max_size)
        self.closed = False
        self._payloads: deque[str] = deque()
        self._partial: list[bytes] = []
        self._failed: str | None = None
        self._absorb(events)
        self._check_parser()

    def append(self, data: bytes) -> None:
        if not data or self._failed:
            return
        self.protocol.receive_data(data)
        self._absorb(self.protocol.events_received())
        self._check_parser()

    def next(self) -> str | None:
        """Next complete payload, or None when no complete frame is buffered yet."""
        if self._payloads:
            return self._payloads.popleft()
        if self._failed:
            raise FrameError(self._failed)
        return None

    def send(self, payload: str) -> bytes:
        """Frame an outgoing text message; returns every byte now due on the wire."""
        if self.closed or self.protocol.state is not State.OPEN:
            return b""
        self.protocol.send_text(payload.encode("utf-8"))
        return self.data_to_send()

    def data_to_send(self) -> bytes:
        return b"".join(self.protocol.data_to_send())

    def __len__(self) -> int:
        return len(self._payloads)

    def _check_parser(self) -> None:
        if self.protocol.parser_exc is not None and not self._failed:
            self._failed = f"invalid WebSocket frame: {describe_error(self.protocol.parser_exc)}"

    def _absorb(self, events: Iterable) -> None:
        for frame in events:
            if self._failed:
                return
            if frame.opcode is Opcode.CLOSE:
                self.closed = True
            elif frame.opcode in (Opcode.TEXT, Opcode.BINARY, Opcode.CONT):
                self._collect(frame)

    def _collect(self, frame: Frame) -> None:
        self._partial.append(bytes(frame.data))
        if not frame.fin:
            return
        data = b"".join(self._partial)
        self._partial = []
        try:
            self._payloads.append(data.decode("utf-8"))
        except UnicodeDecodeError as exc:
            self._failed = f"invalid WebSocket frame: invalid UTF-8 payload: {exc}"
