"""
MODULE OVERVIEW:
Typed data structures shared by every part of the stream client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Socket.IO (protocol revision 1) wraps every message in a colon separated envelope:

    type:id:endpoint:data

`parse_envelope` turns a raw frame payload into a typed `Envelope` and rejects anything
whose type field is not one of the nine known message types. The `Session` model is
what the HTTP handshake negotiates before the WebSocket upgrade.
"""
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from mtgox_stream.shared.errors import EnvelopeError

HEARTBEAT_FRAME = "2::"
CONNECT_FRAME = "1::"


class MessageType(IntEnum):
    DISCONNECT = 0
    CONNECT = 1
    HEARTBEAT = 2
    MESSAGE = 3
    JSON = 4
    EVENT = 5
    ACK = 6
    ERROR = 7
    NOOP = 8


class Session(BaseModel):
    """The result of a successful Socket.IO handshake. Immutable once negotiated."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    # Seconds between required heartbeats; 0 means the server drives them
    heartbeat_interval: int = 0
    close_timeout: int | None = None
    transports: list[str] = Field(default_factory=list)
    secure: bool = False


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: MessageType
    id: str = ""
    endpoint: str = ""
    data: str = ""
    raw: str


def parse_envelope(raw: str) -> Envelope:
    """
    Split a frame payload into at most four fields.

    The data field keeps any colons it contains. Missing trailing fields are empty.
    Raises `EnvelopeError` when the type is not a single digit between 0 and 8.
    """
    parts = raw.split(":", 3)
    type_field = parts[0]
    if len(type_field) != 1 or not "0" <= type_field <= "8":
        raise EnvelopeError(f"invalid envelope type {type_field!r} in {raw[:40]!r}")
    parts += [""] * (4 - len(parts))
    return Envelope(
        type=MessageType(int(type_field)),
        id=parts[1],
        endpoint=parts[2],
        data=parts[3],
        raw=raw,
    )


def connect_frame(endpoint: str) -> str:
    """Endpoint-connect frame, e.g. `1::/mtgox`."""
    return f"{CONNECT_FRAME}{endpoint}"
