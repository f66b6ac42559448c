"""
A single simulated participant.

A tester joins the room, optionally publishes audio and/or video, and when it
is a subscriber consumes every remote track it is given, counting samples,
bytes, losses and end-to-end latency per track.
"""

import asyncio
import threading
from collections import Counter
from enum import Enum
from types import TracebackType

from loguru import logger

from .errors import ConnectionFailedError, TrackReadError
from .provider import create_audio_provider, create_video_providers
from .samplebuilder import DEFAULT_MAX_LATE, SampleBuilder
from .sdk import (
    ConnectInfo,
    RemoteParticipant,
    RemoteTrack,
    RemoteTrackPublication,
    Room,
    RoomCallbacks,
    RTCPlatform,
    TrackPublishOptions,
)
from .stats import TesterStats, TrackStats
from .types import Layout, TesterParams, TrackKind, VideoCodec, VideoQuality, VideoResolution

QUALITY_DIMENSIONS = {
    VideoQuality.HIGH: (1280, 720),
    VideoQuality.MEDIUM: (640, 360),
    VideoQuality.LOW: (320, 180),
}

# how long a stopping tester waits for its consumers to notice the disconnect
CONSUMER_SHUTDOWN_TIMEOUT = 1.0


class TesterState(str, Enum):
    CREATED = "created"
    CONNECTING = "connecting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"


def select_quality(layout: Layout, counts: Counter[VideoQuality]) -> VideoQuality:
    """
    Quality for the next remote video under ``layout``.

    ``counts`` tallies the qualities already handed out; once a layout's slots
    are taken the remaining videos are turned off.
    """
    if layout is Layout.SPEAKER:
        if counts[VideoQuality.HIGH] == 0:
            return VideoQuality.HIGH
        if counts[VideoQuality.LOW] < 5:
            return VideoQuality.LOW
    elif layout is Layout.GRID_3X3:
        if counts[VideoQuality.MEDIUM] < 9:
            return VideoQuality.MEDIUM
    elif layout is Layout.GRID_4X4:
        if counts[VideoQuality.LOW] < 16:
            return VideoQuality.LOW
    elif layout is Layout.GRID_5X5:
        if counts[VideoQuality.LOW] < 25:
            return VideoQuality.LOW
    return VideoQuality.OFF


class LoadTester:
    """One publisher, subscriber, or both, connected through an RTC platform."""

    def __init__(self, params: TesterParams, platform: RTCPlatform) -> None:
        self.params = params
        self.platform = platform
        self.state = TesterState.CREATED
        self.room: Room | None = None

        # remote participant sid -> requested quality
        self.track_qualities: dict[str, VideoQuality] = {}
        self._quality_lock = threading.Lock()

        self._stats: dict[str, TrackStats] = {}
        self._consumers: set[asyncio.Task[None]] = set()
        self._stop_requested = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def name(self) -> str:
        return self.params.name

    @property
    def identity(self) -> str:
        return self.params.identity

    @property
    def running(self) -> bool:
        return self.state is TesterState.RUNNING

    async def __aenter__(self) -> "LoadTester":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def start(self) -> None:
        """
        Join the room, retrying up to ``connect_attempts`` times.

        Does nothing while already connecting or running, or once stopped.

        Raises:
            ConnectionFailedError: when every attempt failed
        """
        if self.state in (TesterState.CONNECTING, TesterState.RUNNING, TesterState.STOPPED):
            return

        self.state = TesterState.CONNECTING
        self._loop = asyncio.get_running_loop()
        info = ConnectInfo(
            url=self.params.url,
            api_key=self.params.api_key,
            api_secret=self.params.api_secret,
            room_name=self.params.room,
            participant_identity=self.identity,
        )
        callbacks = RoomCallbacks(
            on_track_subscribed=self._on_track_subscribed,
            on_track_subscription_failed=self._on_track_subscription_failed,
        )

        attempts = 0
        last_error: Exception | None = None
        while attempts < self.params.connect_attempts and self.state is TesterState.CONNECTING:
            attempts += 1
            room = self.platform.create_room(callbacks)
            self.room = room
            try:
                await room.connect(info, auto_subscribe=self.params.subscribe)
            except Exception as e:
                last_error = e
                logger.warning(f"{self.identity}: join attempt {attempts} failed: {e}")
                if attempts < self.params.connect_attempts:
                    await self._sleep_unless_stopped(self.params.connect_retry_delay)
                continue
            except BaseException:
                # cancelled mid-join: the room may already be joined
                self.room = None
                if self.state is not TesterState.STOPPED:
                    self.state = TesterState.FAILED
                await self._leave(room)
                raise

            if self.state is TesterState.STOPPED:
                # stopped while the join was in flight
                await self._leave(room)
                return

            self.state = TesterState.RUNNING
            logger.info(f"✅ {self.name} connected as {self.identity}")
            return

        self.room = None
        if self.state is TesterState.STOPPED:
            return
        self.state = TesterState.FAILED
        raise ConnectionFailedError(self.identity, attempts, last_error)

    async def _leave(self, room: Room) -> None:
        try:
            await room.disconnect()
        except Exception as e:
            logger.warning(f"{self.identity}: disconnect failed: {e}")

    async def _sleep_unless_stopped(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
        except TimeoutError:
            pass

    async def stop(self) -> None:
        """Leave the room and wait for all consumers to finish. Safe to call repeatedly."""
        if self.state is TesterState.STOPPED:
            return

        was_running = self.running
        self.state = TesterState.STOPPED
        self._stop_requested.set()

        room, self.room = self.room, None
        if was_running and room is not None:
            await self._leave(room)

        consumers = list(self._consumers)
        if consumers:
            _, pending = await asyncio.wait(consumers, timeout=CONSUMER_SHUTDOWN_TIMEOUT)
            for task in pending:
                task.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
        logger.debug(f"{self.name} stopped")

    async def publish_audio_track(self, name: str) -> str:
        """Publish a timestamped audio track; returns its track id ("" when not running)."""
        if not self.running or self.room is None:
            return ""

        logger.info(f"publishing audio track - {self.identity}")
        return await self.room.publish_track(
            create_audio_provider(), TrackPublishOptions(name=name, kind=TrackKind.AUDIO, codec="opus")
        )

    async def publish_video_track(
        self,
        name: str,
        resolution: VideoResolution | str,
        codec: VideoCodec | str | None,
    ) -> str:
        if not self.running or self.room is None:
            return ""

        logger.info(f"publishing video track - {self.identity}")
        (layer,) = create_video_providers(resolution, codec, simulcast=False)
        return await self.room.publish_track(
            layer.provider,
            TrackPublishOptions(
                name=name,
                kind=TrackKind.VIDEO,
                codec=layer.provider.mime_type.removeprefix("video/"),
                video_layer=layer.layer,
            ),
        )

    async def publish_simulcast_track(
        self,
        name: str,
        resolution: VideoResolution | str,
        codec: VideoCodec | str | None,
    ) -> str:
        """Publish three simulcast layers (LOW, MEDIUM, HIGH), each with its own provider."""
        if not self.running or self.room is None:
            return ""

        logger.info(f"publishing simulcast video track - {self.identity}")
        layers = create_video_providers(resolution, codec, simulcast=True)
        return await self.room.publish_simulcast_track(
            [(lp.layer, lp.provider) for lp in layers],
            TrackPublishOptions(
                name=name,
                kind=TrackKind.VIDEO,
                codec=layers[0].provider.mime_type.removeprefix("video/"),
            ),
        )

    def simulate_speaker_update(self) -> None:
        if self.running and self.room is not None:
            self.room.simulate_speaker_update()

    def get_stats(self) -> TesterStats:
        return TesterStats(
            name=self.name,
            expected_tracks=self.params.expected_tracks,
            track_stats=dict(self._stats),
            subscriber=self.params.subscribe,
        )

    def _on_track_subscription_failed(self, track_sid: str, participant: RemoteParticipant) -> None:
        logger.warning(
            f"track subscription failed, lp:{self.identity}, sid:{track_sid}, "
            f"rp:{participant.identity}/{participant.sid}"
        )

    def _on_track_subscribed(
        self,
        track: RemoteTrack,
        publication: RemoteTrackPublication,
        participant: RemoteParticipant,
    ) -> None:
        if self.state is TesterState.STOPPED or self._loop is None:
            return

        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False
        if not on_loop:
            # SDK thread: hand the subscription over to the tester's loop
            self._loop.call_soon_threadsafe(self._on_track_subscribed, track, publication, participant)
            return

        stats = self._stats.get(track.sid)
        if stats is None:
            stats = TrackStats(track.sid, publication.kind)
            self._stats[track.sid] = stats
        logger.debug(
            f"subscribed to track {self.identity} {publication.sid} {publication.kind.value} "
            f"{len(self._stats)}/{self.params.expected_tracks}"
        )

        participant.write_pli(track.ssrc)

        task = self._loop.create_task(self._consume_track(track, participant, stats))
        self._consumers.add(task)
        task.add_done_callback(self._consumers.discard)

        if publication.kind is not TrackKind.VIDEO:
            return

        with self._quality_lock:
            quality = select_quality(self.params.layout, Counter(self.track_qualities.values()))
            self.track_qualities[participant.sid] = quality

        if quality is VideoQuality.OFF:
            publication.set_enabled(False)
        else:
            publication.set_video_dimensions(*QUALITY_DIMENSIONS[quality])

    async def _consume_track(
        self,
        track: RemoteTrack,
        participant: RemoteParticipant,
        stats: TrackStats,
    ) -> None:
        builder = SampleBuilder(max_late=DEFAULT_MAX_LATE)
        try:
            while True:
                packet = await track.read_rtp()
                builder.push(packet)
                for sample in builder.pop_samples():
                    stats.record_sample(sample)
                    if sample.prev_dropped_packets:
                        participant.write_pli(track.ssrc)
        except TrackReadError as e:
            logger.debug(f"{self.identity}: stopped reading {track.sid}: {e}")
        except Exception:
            logger.exception(f"{self.identity}: error consuming track {track.sid}")
