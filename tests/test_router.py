import pytest
from websockets.frames import Frame, Opcode

from mtgox_stream.client.heartbeat import HeartbeatManager
from mtgox_stream.client.router import MessageRouter
from mtgox_stream.shared.frames import FrameBuffer


class FakeHandler:
    def __init__(self):
        self.events = []

    async def handle_message(self, payload):
        self.events.append(("message", payload))

    async def handle_error(self, message):
        self.events.append(("error", message))

    async def handle_disconnect(self):
        self.events.append(("disconnect",))


class Sent(list):
    async def __call__(self, payload: str) -> None:
        self.append(payload)


def make_router(heartbeat_interval: int = 0):
    handler = FakeHandler()
    sent = Sent()
    stats = {}
    heartbeat = HeartbeatManager(heartbeat_interval, sent, stats=stats)
    return MessageRouter(handler, heartbeat, sent, "/mtgox", stats), handler, sent


def buffer_of(*payloads: str) -> FrameBuffer:
    frames = FrameBuffer()
    frames.append(b"".join(Frame(Opcode.TEXT, p.encode()).serialize(mask=False) for p in payloads))
    return frames


@pytest.mark.asyncio
class TestDispatch:
    async def test_json_on_mtgox_endpoint_is_delivered(self):
        router, handler, sent = make_router()
        assert await router.dispatch('4:1:/mtgox:{"op":"private"}') is True
        assert handler.events == [("message", {"op": "private"})]
        assert sent == []

    async def test_any_json_value_is_delivered(self):
        router, handler, _ = make_router()
        await router.dispatch("4::/mtgox:[1,2,3]")
        await router.dispatch("4::/mtgox:0")
        assert handler.events == [("message", [1, 2, 3]), ("message", 0)]

    async def test_json_on_other_endpoint_is_ignored(self):
        router, handler, sent = make_router()
        assert await router.dispatch('4::/other:{"op":"x"}') is True
        assert handler.events == []
        assert sent == []

    async def test_invalid_json_is_dropped_silently(self):
        router, handler, sent = make_router()
        assert await router.dispatch("4::/mtgox:{oops") is True
        assert handler.events == []
        assert router.stats["json_errors"] == 1

    async def test_heartbeat_is_echoed_without_negotiated_interval(self):
        router, handler, sent = make_router(heartbeat_interval=0)
        assert await router.dispatch("2::") is True
        assert sent == ["2::"]
        assert router.stats["heartbeats_sent"] == 1
        assert handler.events == []

    async def test_heartbeat_is_not_echoed_with_negotiated_interval(self):
        router, handler, sent = make_router(heartbeat_interval=30)
        assert await router.dispatch("2::") is True
        assert sent == []

    async def test_connect_is_acknowledged_with_endpoint(self):
        router, handler, sent = make_router()
        assert await router.dispatch("1::") is True
        assert sent == ["1::/mtgox"]

    async def test_connect_for_an_endpoint_is_not_acknowledged(self):
        router, handler, sent = make_router()
        await router.dispatch("1::/mtgox")
        assert sent == []

    async def test_disconnect_stops(self):
        router, handler, sent = make_router()
        assert await router.dispatch("0::") is False
        assert handler.events == [("disconnect",)]

    async def test_error_stops_with_server_message(self):
        router, handler, sent = make_router()
        assert await router.dispatch("7:::Invalid endpoint") is False
        assert handler.events == [("error", "Invalid endpoint")]

    @pytest.mark.parametrize("payload", ["3:::hello", '5:::{"name":"x"}', "6:::1", "8::", "9::", "x", ""])
    async def test_other_types_are_ignored(self, payload):
        router, handler, sent = make_router()
        assert await router.dispatch(payload) is True
        assert handler.events == []
        assert sent == []


@pytest.mark.asyncio
class TestRoute:
    async def test_every_frame_in_a_batch_is_dispatched_in_order(self):
        router, handler, sent = make_router()
        frames = buffer_of('4::/mtgox:{"n":1}', "1::", '4::/mtgox:{"n":2}', "2::")

        assert await router.route(frames) is True

        assert handler.events == [("message", {"n": 1}), ("message", {"n": 2})]
        assert sent == ["1::/mtgox", "2::"]
        assert router.stats["frames_received"] == 4

    async def test_disconnect_halts_remaining_frames(self):
        router, handler, sent = make_router()
        frames = buffer_of('4::/mtgox:{"n":1}', "0::", '4::/mtgox:{"n":2}', "1::")

        assert await router.route(frames) is False

        assert handler.events == [("message", {"n": 1}), ("disconnect",)]
        assert sent == []

    async def test_error_halts_remaining_frames(self):
        router, handler, sent = make_router()
        frames = buffer_of("7:::boom", "0::")

        assert await router.route(frames) is False
        assert handler.events == [("error", "boom")]

    async def test_empty_buffer(self):
        router, handler, sent = make_router()
        assert await router.route(FrameBuffer()) is True
        assert handler.events == []
