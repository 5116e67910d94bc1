import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from loguru import logger

Callback = Callable[..., Awaitable[None] | None]


def make_stream_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every client calls this once in __init__.
    Keys: frames_received, messages_delivered, heartbeats_sent, json_errors,
          bytes_received, last_message_at, connected_at.
    """
    return {
        "frames_received": 0,
        "messages_delivered": 0,
        "heartbeats_sent": 0,
        "json_errors": 0,
        "bytes_received": 0,
        "last_message_at": None,
        "connected_at": None,
    }


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def invoke_callback(callback: Callback | None, *args: Any) -> None:
    """
    Calls a caller-supplied hook. Plain functions and coroutine functions are both
    accepted; an awaitable result is awaited before returning.
    """
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def default_on_error(message: str) -> None:
    logger.error(f"event=error reason='{message}'")


def default_on_disconnect() -> None:
    logger.warning("event=disconnect reason=peer")
