"""
LiveKit platform implementation.

Drives a LiveKit server through the ``livekit`` Python SDK. The SDK encodes
and decodes media itself, so sample providers feed raw audio and video
sources, and every decoded frame of a subscribed track is handed to the sample
builder as one single-packet sample. Byte counts are therefore decoded sizes,
and send timestamps do not survive the codec (latency stays blank).
"""

import asyncio
import itertools
import time
from collections.abc import Coroutine, Sequence
from datetime import timedelta
from typing import Any

from livekit import api as livekit_api
from livekit import rtc
from loguru import logger

from ..errors import TrackReadError
from ..provider import SAMPLE_HEADER
from ..sdk import (
    ConnectInfo,
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
from ..types import TrackKind

AUDIO_SAMPLE_RATE = 48_000
AUDIO_CHANNELS = 1
# lksdk.SimulateSpeakerUpdateInterval
SPEAKER_UPDATE_INTERVAL = 5.0
TOKEN_TTL_SECONDS = 6 * 3600

VIDEO_CODECS = {
    "h264": rtc.VideoCodec.H264,
    "vp8": rtc.VideoCodec.VP8,
}


def create_token(info: ConnectInfo) -> str:
    """Generate a LiveKit access token to join ``info.room_name``."""
    token = livekit_api.AccessToken(info.api_key, info.api_secret)
    token.with_identity(info.participant_identity)
    token.with_name(info.participant_identity)
    token.with_grants(
        livekit_api.VideoGrants(
            room_join=True,
            room=info.room_name,
        )
    )
    token.with_ttl(timedelta(seconds=TOKEN_TTL_SECONDS))
    return token.to_jwt()


def _track_kind(kind: int) -> TrackKind:
    return TrackKind.VIDEO if kind == rtc.TrackKind.KIND_VIDEO else TrackKind.AUDIO


class LiveKitRemoteTrack(RemoteTrack):
    """Frames of a subscribed track, surfaced as single-packet samples."""

    def __init__(self, track: rtc.Track, kind: TrackKind) -> None:
        self.sid = track.sid
        self.kind = kind
        self.ssrc = 0
        if kind is TrackKind.VIDEO:
            self._stream: rtc.AudioStream | rtc.VideoStream = rtc.VideoStream(track)
        else:
            self._stream = rtc.AudioStream(track)
        self._frames = aiter(self._stream)
        self._sequence = itertools.count()

    async def read_rtp(self) -> RTPPacket:
        try:
            event = await anext(self._frames)
        except StopAsyncIteration:
            raise TrackReadError(f"track {self.sid} ended") from None
        return RTPPacket(
            sequence_number=next(self._sequence) % (1 << 16),
            timestamp=int(time.monotonic() * 90_000) % (1 << 32),
            payload=SAMPLE_HEADER + bytes(event.frame.data),
            marker=True,
            ssrc=self.ssrc,
        )

    async def aclose(self) -> None:
        await self._stream.aclose()


class LiveKitPublication(RemoteTrackPublication):
    def __init__(self, publication: rtc.RemoteTrackPublication) -> None:
        self._publication = publication
        self.sid = publication.sid
        self.kind = _track_kind(publication.kind)
        self.name = publication.name

    def set_video_dimensions(self, width: int, height: int) -> None:
        # only recent SDK releases expose layer selection
        set_dimensions = getattr(self._publication, "set_video_dimensions", None)
        if set_dimensions is None:
            logger.debug(f"SDK cannot request {width}x{height} for {self.sid}")
            return
        set_dimensions(width, height)

    def set_enabled(self, enabled: bool) -> None:
        set_enabled = getattr(self._publication, "set_enabled", None)
        if set_enabled is not None:
            set_enabled(enabled)
        else:
            self._publication.set_subscribed(enabled)


class LiveKitParticipant(RemoteParticipant):
    def __init__(self, participant: rtc.RemoteParticipant) -> None:
        self.sid = participant.sid
        self.identity = participant.identity

    def write_pli(self, ssrc: int) -> None:
        # key frame requests are handled inside the SDK
        logger.trace(f"PLI for {self.identity} ssrc {ssrc}")


class LiveKitRoom(Room):
    """A LiveKit room connection as one tester participant."""

    def __init__(self, callbacks: RoomCallbacks, update_interval: float) -> None:
        self.callbacks = callbacks
        self.update_interval = update_interval
        self.room = rtc.Room()
        self.identity = ""
        self._remote_tracks: list[LiveKitRemoteTrack] = []
        self._feeders: set[asyncio.Task[None]] = set()
        self._audio_providers: list[SampleProvider] = []

        @self.room.on("track_subscribed")
        def on_track_subscribed(
            track: rtc.Track,
            publication: rtc.RemoteTrackPublication,
            participant: rtc.RemoteParticipant,
        ) -> None:
            remote = LiveKitRemoteTrack(track, _track_kind(track.kind))
            self._remote_tracks.append(remote)
            self.callbacks.on_track_subscribed(
                remote, LiveKitPublication(publication), LiveKitParticipant(participant)
            )

        @self.room.on("track_subscription_failed")
        def on_track_subscription_failed(
            participant: rtc.RemoteParticipant, track_sid: str, error: str
        ) -> None:
            logger.debug(f"subscription to {track_sid} failed: {error}")
            self.callbacks.on_track_subscription_failed(track_sid, LiveKitParticipant(participant))

    @property
    def local_identity(self) -> str:
        return self.identity

    async def connect(self, info: ConnectInfo, auto_subscribe: bool) -> None:
        self.identity = info.participant_identity
        logger.debug(f"📞 Connecting {self.identity} to LiveKit room {info.room_name}...")
        await self.room.connect(
            info.url,
            create_token(info),
            options=rtc.RoomOptions(auto_subscribe=auto_subscribe),
        )

    async def disconnect(self) -> None:
        for task in self._feeders:
            task.cancel()
        await asyncio.gather(*self._feeders, return_exceptions=True)
        self._feeders.clear()
        await asyncio.gather(
            *(track.aclose() for track in self._remote_tracks), return_exceptions=True
        )
        self._remote_tracks.clear()
        await self.room.disconnect()
        logger.debug(f"👋 {self.identity} disconnected from LiveKit room")

    async def publish_track(self, provider: SampleProvider, options: TrackPublishOptions) -> str:
        if options.kind is TrackKind.AUDIO:
            source = rtc.AudioSource(AUDIO_SAMPLE_RATE, AUDIO_CHANNELS)
            track = rtc.LocalAudioTrack.create_audio_track(options.name, source)
            publish_options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
            publication = await self.room.local_participant.publish_track(track, publish_options)
            self._audio_providers.append(provider)
            self._start_feeder(self._feed_audio(source, provider))
            return publication.sid

        if options.video_layer is None:
            raise ValueError("video tracks need a layer")
        return await self._publish_video(options.video_layer, provider, options, simulcast=False)

    async def publish_simulcast_track(
        self,
        layers: Sequence[tuple[VideoLayer, SampleProvider]],
        options: TrackPublishOptions,
    ) -> str:
        # the SDK encodes the lower layers itself from the top one
        layer, provider = max(layers, key=lambda item: item[0].width)
        return await self._publish_video(layer, provider, options, simulcast=True)

    async def _publish_video(
        self,
        layer: VideoLayer,
        provider: SampleProvider,
        options: TrackPublishOptions,
        simulcast: bool,
    ) -> str:
        source = rtc.VideoSource(layer.width, layer.height)
        track = rtc.LocalVideoTrack.create_video_track(options.name, source)
        publish_options = rtc.TrackPublishOptions(
            source=rtc.TrackSource.SOURCE_CAMERA,
            simulcast=simulcast,
            video_encoding=rtc.VideoEncoding(max_framerate=layer.fps, max_bitrate=layer.bitrate),
        )
        if options.codec in VIDEO_CODECS:
            publish_options.video_codec = VIDEO_CODECS[options.codec]
        publication = await self.room.local_participant.publish_track(track, publish_options)
        self._start_feeder(self._feed_video(source, layer, provider))
        return publication.sid

    def _start_feeder(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._feeders.add(task)
        task.add_done_callback(self._feeders.discard)

    async def _feed_audio(self, source: rtc.AudioSource, provider: SampleProvider) -> None:
        next_time = time.monotonic()
        while True:
            sample = provider.next_sample()
            samples_per_channel = int(AUDIO_SAMPLE_RATE * sample.duration)
            size = samples_per_channel * AUDIO_CHANNELS * 2
            if provider.speaking:
                pcm = (sample.data * (size // len(sample.data) + 1))[:size]
            else:
                pcm = bytes(size)
            frame = rtc.AudioFrame(pcm, AUDIO_SAMPLE_RATE, AUDIO_CHANNELS, samples_per_channel)
            await source.capture_frame(frame)
            next_time += sample.duration
            await asyncio.sleep(max(0.0, next_time - time.monotonic()))

    async def _feed_video(
        self, source: rtc.VideoSource, layer: VideoLayer, provider: SampleProvider
    ) -> None:
        luma = layer.width * layer.height
        chroma = bytes(2 * ((layer.width + 1) // 2) * ((layer.height + 1) // 2))
        next_time = time.monotonic()
        for brightness in itertools.cycle(range(16, 236)):
            sample = provider.next_sample()
            data = bytes([brightness]) * luma + chroma
            source.capture_frame(
                rtc.VideoFrame(layer.width, layer.height, rtc.VideoBufferType.I420, data)
            )
            next_time += sample.duration
            await asyncio.sleep(max(0.0, next_time - time.monotonic()))

    def simulate_speaker_update(self) -> None:
        if not self._audio_providers:
            logger.debug(f"{self.identity} has no audio track to speak with")
            return
        providers = list(self._audio_providers)
        for provider in providers:
            provider.speaking = True

        def quiet() -> None:
            for provider in providers:
                provider.speaking = False

        asyncio.get_running_loop().call_later(self.update_interval, quiet)


class LiveKitPlatform(RTCPlatform):
    name = "livekit"

    @property
    def speaker_update_interval(self) -> float:
        return SPEAKER_UPDATE_INTERVAL

    def create_room(self, callbacks: RoomCallbacks) -> LiveKitRoom:
        return LiveKitRoom(callbacks, SPEAKER_UPDATE_INTERVAL)
