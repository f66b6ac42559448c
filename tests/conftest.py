import asyncio
import time

import pytest
from loadtester.platforms.loopback import LoopbackPlatform, LoopbackRoom, LoopbackServer
from loadtester.provider import SAMPLE_HEADER, stamp_send_time
from loadtester.sdk import MediaSample, RoomCallbacks, RTPPacket
from loadtester.types import LoadTestParams, TesterParams


class RecordingPlatform(LoopbackPlatform):
    """Loopback platform remembering when each room was created."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.created_at: list[float] = []

    def create_room(self, callbacks: RoomCallbacks) -> LoopbackRoom:
        self.created_at.append(time.monotonic())
        return super().create_room(callbacks)


def make_sample(size: int = 64, send_time_ns: int | None = None, dropped: int = 0) -> MediaSample:
    """A load test sample of ``size`` bytes stamped with ``send_time_ns``."""
    data = bytearray(SAMPLE_HEADER + bytes(size - len(SAMPLE_HEADER)))
    stamp_send_time(data, time.monotonic_ns() if send_time_ns is None else send_time_ns)
    return MediaSample(data=bytes(data), duration=0.02, prev_dropped_packets=dropped)


def make_packet(sequence: int, head: bool = True, marker: bool = True, body: bytes = b"data") -> RTPPacket:
    payload = (SAMPLE_HEADER if head else b"") + body
    return RTPPacket(sequence_number=sequence, timestamp=sequence * 960, payload=payload, marker=marker)


@pytest.fixture
def server():
    return LoopbackServer()


@pytest.fixture
def platform(server):
    return RecordingPlatform(server=server, speaker_update_interval=0.05)


@pytest.fixture
def tester_params():
    """Factory of tester parameters pointing at the loopback room."""

    def factory(sequence: int = 0, publisher: bool = False, **kwargs) -> TesterParams:
        values = {
            "url": "ws://loopback.local",
            "room": "testroom",
            "identity_prefix": "lt_pub" if publisher else "lt",
            "sequence": sequence,
            "name": f"Pub {sequence}" if publisher else f"Sub {sequence}",
            "subscribe": not publisher,
            "connect_retry_delay": 0.0,
        }
        values.update(kwargs)
        return TesterParams(**values)

    return factory


@pytest.fixture
def load_params():
    """Factory of short scenarios on the loopback platform."""

    def factory(**kwargs) -> LoadTestParams:
        values = {
            "url": "ws://loopback.local",
            "api_key": "devkey",
            "api_secret": "secret",
            "room": "testroom",
            "identity_prefix": "lt",
            "duration": 0.5,
            "num_per_second": 10,
            "connect_retry_delay": 0.0,
            "speaker_pause": 0.05,
        }
        values.update(kwargs)
        return LoadTestParams(**values)

    return factory


async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class SlowJoinRoom(LoopbackRoom):
    """Joins the room, then keeps the handshake pending for ``join_delay`` seconds."""

    join_delay = 2.0

    async def connect(self, info, auto_subscribe):
        await super().connect(info, auto_subscribe)
        await asyncio.sleep(self.join_delay)


class SlowJoinPlatform(LoopbackPlatform):
    def __init__(self, join_delay: float = 2.0, **kwargs):
        super().__init__(**kwargs)
        self.join_delay = join_delay

    def create_room(self, callbacks: RoomCallbacks) -> LoopbackRoom:
        room = SlowJoinRoom(self.server, callbacks, self.speaker_update_interval)
        room.join_delay = self.join_delay
        self.rooms_created.append(room)
        return room
