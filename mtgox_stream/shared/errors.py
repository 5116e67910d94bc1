"""
MODULE OVERVIEW:
Exception types raised by the stream client.

WHAT IS HAPPENING HERE:
Every failure inside a connection is raised as one of these, then caught once by the
connection lifecycle and turned into exactly one caller callback (error or disconnect).
Nothing here ever escapes the event loop.
"""


class StreamError(Exception):
    """Base class for everything the stream client raises internally."""


class HandshakeError(StreamError):
    """The Socket.IO HTTP handshake did not produce a usable session."""


class WebSocketHandshakeError(StreamError):
    """The server's reply to the WebSocket upgrade request was rejected."""


class FrameError(StreamError):
    """Inbound bytes could not be parsed as WebSocket frames."""


class EnvelopeError(StreamError):
    """A frame payload is not a valid Socket.IO envelope."""


class ConnectionClosed(StreamError):
    """The peer closed its end of the transport."""


# Conditions reported through the disconnect callback instead of the error callback.
DISCONNECT_ERRORS = (ConnectionClosed, BrokenPipeError, ConnectionResetError)


def describe_error(exc: BaseException) -> str:
    """Human readable message for an exception, falling back to its class name."""
    message = str(exc)
    return message if message else exc.__class__.__name__
