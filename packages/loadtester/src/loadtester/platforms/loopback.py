"""
In-process loopback platform.

A tiny selective forwarding server living in the current event loop. Published
sample providers are paced by their sample duration, split into RTP-like
packets and forwarded to every subscriber of the room. Useful to exercise the
load tester without a media server, and to assert what the testers asked for.
"""

import asyncio
import itertools
import random
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from ..errors import TrackReadError
from ..sdk import (
    ConnectInfo,
    MediaSample,
    RemoteParticipant,
    RemoteTrack,
    RemoteTrackPublication,
    Room,
    RoomCallbacks,
    RTCPlatform,
    RTPPacket,
    SampleProvider,
    TrackPublishOptions,
    VideoLayer,
)
from ..types import TrackKind, VideoQuality

DEFAULT_MTU = 1200
DEFAULT_QUEUE_SIZE = 1024
# matches the LiveKit SDK's simulated speaker update
SPEAKER_UPDATE_INTERVAL = 5.0
CLOCK_RATES = {TrackKind.AUDIO: 48_000, TrackKind.VIDEO: 90_000}

_ids = itertools.count(1)


def packetize(
    sample: MediaSample,
    sequence_start: int,
    timestamp: int,
    ssrc: int,
    mtu: int = DEFAULT_MTU,
) -> list[RTPPacket]:
    """Split a sample into packets of at most ``mtu`` bytes, marker set on the last one."""
    chunks = [sample.data[i : i + mtu] for i in range(0, len(sample.data), mtu)] or [b""]
    return [
        RTPPacket(
            sequence_number=(sequence_start + i) % (1 << 16),
            timestamp=timestamp,
            payload=chunk,
            marker=i == len(chunks) - 1,
            ssrc=ssrc,
        )
        for i, chunk in enumerate(chunks)
    ]


class LoopbackRemoteTrack(RemoteTrack):
    def __init__(self, sid: str, kind: TrackKind, queue_size: int) -> None:
        self.sid = sid
        self.kind = kind
        self.ssrc = random.getrandbits(32)
        self.sequence = random.getrandbits(16)
        self.closed = False
        self._queue: asyncio.Queue[RTPPacket | None] = asyncio.Queue(maxsize=queue_size)

    def deliver(self, packet: RTPPacket) -> bool:
        """Queue a packet; False when the subscriber is too slow and it was lost."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(packet)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def read_rtp(self) -> RTPPacket:
        packet = await self._queue.get()
        if packet is None:
            raise TrackReadError(f"track {self.sid} closed")
        return packet


class LoopbackPublication(RemoteTrackPublication):
    def __init__(self, sid: str, kind: TrackKind, name: str, layers: Sequence[VideoLayer]) -> None:
        self.sid = sid
        self.kind = kind
        self.name = name
        self.layers = list(layers)
        self.enabled = True
        self.requested_dimensions: tuple[int, int] | None = None
        self.quality = max((layer.quality for layer in layers), default=VideoQuality.HIGH)

    def set_video_dimensions(self, width: int, height: int) -> None:
        self.requested_dimensions = (width, height)
        # smallest layer covering the request, otherwise the largest one
        fitting = [layer for layer in self.layers if layer.width >= width and layer.height >= height]
        if fitting:
            self.quality = min(fitting, key=lambda layer: layer.width).quality
        elif self.layers:
            self.quality = max(self.layers, key=lambda layer: layer.width).quality

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled


class LoopbackParticipant(RemoteParticipant):
    def __init__(self, sid: str, identity: str) -> None:
        self.sid = sid
        self.identity = identity
        self.plis: dict[int, int] = {}

    def write_pli(self, ssrc: int) -> None:
        self.plis[ssrc] = self.plis.get(ssrc, 0) + 1


@dataclass
class Subscription:
    subscriber: "LoopbackRoom"
    track: LoopbackRemoteTrack
    publication: LoopbackPublication
    participant: LoopbackParticipant


@dataclass
class PublishedTrack:
    sid: str
    kind: TrackKind
    name: str
    publisher: "LoopbackRoom"
    layers: list[tuple[VideoLayer | None, SampleProvider]]
    subscriptions: list[Subscription] = field(default_factory=list)
    pumps: list[asyncio.Task[None]] = field(default_factory=list)


@dataclass
class RoomState:
    name: str
    participants: dict[str, "LoopbackRoom"] = field(default_factory=dict)
    tracks: dict[str, PublishedTrack] = field(default_factory=dict)


class LoopbackServer:
    """State shared by all loopback rooms of a platform."""

    def __init__(
        self,
        loss_rate: float = 0.0,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        mtu: int = DEFAULT_MTU,
    ) -> None:
        self.loss_rate = loss_rate
        self.queue_size = queue_size
        self.mtu = mtu
        self.rooms: dict[str, RoomState] = {}
        # identities whose joins are refused
        self.rejected_identities: set[str] = set()
        self.connect_attempts = 0
        self.speaker_updates: list[str] = []

    def room(self, name: str) -> RoomState:
        if name not in self.rooms:
            self.rooms[name] = RoomState(name=name)
        return self.rooms[name]

    def subscribe(self, subscriber: "LoopbackRoom", published: PublishedTrack) -> None:
        layers = [layer for layer, _ in published.layers if layer is not None]
        subscription = Subscription(
            subscriber=subscriber,
            track=LoopbackRemoteTrack(published.sid, published.kind, self.queue_size),
            publication=LoopbackPublication(published.sid, published.kind, published.name, layers),
            participant=published.publisher.as_remote(),
        )
        published.subscriptions.append(subscription)
        subscriber.subscriptions.append(subscription)
        subscriber.callbacks.on_track_subscribed(
            subscription.track, subscription.publication, subscription.participant
        )

    def forward(self, published: PublishedTrack, quality: VideoQuality | None, packets: list[RTPPacket]) -> None:
        for subscription in published.subscriptions:
            publication = subscription.publication
            if not publication.enabled:
                continue
            if quality is not None and publication.quality is not quality:
                continue
            track = subscription.track
            for packet in packets:
                sequence = track.sequence
                track.sequence = (track.sequence + 1) % (1 << 16)
                if self.loss_rate and random.random() < self.loss_rate:
                    continue
                track.deliver(
                    RTPPacket(
                        sequence_number=sequence,
                        timestamp=packet.timestamp,
                        payload=packet.payload,
                        marker=packet.marker,
                        ssrc=track.ssrc,
                    )
                )


class LoopbackRoom(Room):
    def __init__(self, server: LoopbackServer, callbacks: RoomCallbacks, update_interval: float) -> None:
        self.server = server
        self.callbacks = callbacks
        self.update_interval = update_interval
        self.sid = f"PA_{next(_ids)}"
        self.identity = ""
        self.state: RoomState | None = None
        self.auto_subscribe = False
        self.published: list[PublishedTrack] = []
        self.subscriptions: list[Subscription] = []
        self._remote: LoopbackParticipant | None = None

    @property
    def local_identity(self) -> str:
        return self.identity

    @property
    def connected(self) -> bool:
        return self.state is not None

    def as_remote(self) -> LoopbackParticipant:
        if self._remote is None:
            self._remote = LoopbackParticipant(self.sid, self.identity)
        return self._remote

    async def connect(self, info: ConnectInfo, auto_subscribe: bool) -> None:
        self.server.connect_attempts += 1
        if info.participant_identity in self.server.rejected_identities:
            raise ConnectionError(f"join refused for {info.participant_identity}")

        await asyncio.sleep(0)
        # joining and subscribing to existing tracks happen without yielding
        self.identity = info.participant_identity
        self.auto_subscribe = auto_subscribe
        self.state = self.server.room(info.room_name)
        self.state.participants[self.identity] = self

        if auto_subscribe:
            for published in list(self.state.tracks.values()):
                self.server.subscribe(self, published)

    async def disconnect(self) -> None:
        state, self.state = self.state, None
        if state is None:
            return
        state.participants.pop(self.identity, None)

        for published in self.published:
            state.tracks.pop(published.sid, None)
            for pump in published.pumps:
                pump.cancel()
            await asyncio.gather(*published.pumps, return_exceptions=True)
            for subscription in published.subscriptions:
                subscription.track.close()
        for published in state.tracks.values():
            published.subscriptions = [s for s in published.subscriptions if s.subscriber is not self]
        for subscription in self.subscriptions:
            subscription.track.close()

    async def publish_track(self, provider: SampleProvider, options: TrackPublishOptions) -> str:
        return self._publish([(None, provider)], options)

    async def publish_simulcast_track(
        self,
        layers: Sequence[tuple[VideoLayer, SampleProvider]],
        options: TrackPublishOptions,
    ) -> str:
        return self._publish(list(layers), options)

    def _publish(
        self,
        layers: list[tuple[VideoLayer | None, SampleProvider]],
        options: TrackPublishOptions,
    ) -> str:
        if self.state is None:
            raise ConnectionError("not connected")

        published = PublishedTrack(
            sid=f"TR_{next(_ids)}",
            kind=options.kind,
            name=options.name,
            publisher=self,
            layers=layers,
        )
        for layer, provider in layers:
            quality = layer.quality if layer is not None else None
            published.pumps.append(asyncio.create_task(self._pump(published, quality, provider)))
        self.published.append(published)
        self.state.tracks[published.sid] = published
        logger.debug(f"[loopback] {self.identity} published {published.kind.value} {published.sid}")

        for participant in list(self.state.participants.values()):
            if participant is not self and participant.auto_subscribe:
                self.server.subscribe(participant, published)
        return published.sid

    async def _pump(
        self,
        published: PublishedTrack,
        quality: VideoQuality | None,
        provider: SampleProvider,
    ) -> None:
        clock_rate = CLOCK_RATES[published.kind]
        timestamp = random.getrandbits(32)
        while True:
            sample = provider.next_sample()
            packets = packetize(sample, 0, timestamp, 0, self.server.mtu)
            self.server.forward(published, quality, packets)
            timestamp = (timestamp + int(sample.duration * clock_rate)) % (1 << 32)
            await asyncio.sleep(sample.duration)

    def simulate_speaker_update(self) -> None:
        self.server.speaker_updates.append(self.identity)
        providers = [
            provider
            for published in self.published
            if published.kind is TrackKind.AUDIO
            for _, provider in published.layers
        ]
        for provider in providers:
            provider.speaking = True

        def quiet() -> None:
            for provider in providers:
                provider.speaking = False

        asyncio.get_running_loop().call_later(self.update_interval, quiet)


class LoopbackPlatform(RTCPlatform):
    name = "loopback"

    def __init__(
        self,
        server: LoopbackServer | None = None,
        speaker_update_interval: float = SPEAKER_UPDATE_INTERVAL,
    ) -> None:
        self.server = server or LoopbackServer()
        self._speaker_update_interval = speaker_update_interval
        self.rooms_created: list[LoopbackRoom] = []

    @property
    def speaker_update_interval(self) -> float:
        return self._speaker_update_interval

    def create_room(self, callbacks: RoomCallbacks) -> LoopbackRoom:
        room = LoopbackRoom(self.server, callbacks, self._speaker_update_interval)
        self.rooms_created.append(room)
        return room
