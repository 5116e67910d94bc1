"""asyncio client for the MtGox streaming API (Socket.IO over WebSocket)."""
from mtgox_stream.client.handshake import negotiate_session, parse_handshake_body
from mtgox_stream.client.stream_client import MtGoxStream, StreamHandle, connect
from mtgox_stream.shared.config import Settings, settings
from mtgox_stream.shared.errors import (
    EnvelopeError,
    FrameError,
    HandshakeError,
    StreamError,
    WebSocketHandshakeError,
)
from mtgox_stream.shared.models import Envelope, MessageType, Session, parse_envelope

__version__ = "0.2.0"

__all__ = [
    "Envelope",
    "EnvelopeError",
    "FrameError",
    "HandshakeError",
    "MessageType",
    "MtGoxStream",
    "Session",
    "Settings",
    "StreamError",
    "StreamHandle",
    "WebSocketHandshakeError",
    "connect",
    "negotiate_session",
    "parse_envelope",
    "parse_handshake_body",
    "settings",
]
