"""
Synthetic sample providers for published tracks.

Every sample carries a four byte ``0xFA`` partition marker at the front and the
publisher's send time at the back, so subscribers can reassemble samples and
measure end-to-end latency without decoding media.

Sample layout::

    FA FA FA FA | filler ... | send time (uint64 little-endian, monotonic ns)
"""

import itertools
import os
import struct
import time
from dataclasses import dataclass

from .errors import ProviderError
from .sdk import MediaSample, SampleProvider, VideoLayer
from .types import VideoCodec, VideoQuality, VideoResolution

SAMPLE_HEADER = b"\xfa\xfa\xfa\xfa"
TIMESTAMP_SIZE = 8
MIN_SAMPLE_SIZE = len(SAMPLE_HEADER) + TIMESTAMP_SIZE

AUDIO_BITRATE = 32_000
AUDIO_SAMPLE_DURATION = 0.02

_send_time = struct.Struct("<Q")


def stamp_send_time(payload: bytearray, send_time_ns: int) -> None:
    """Write ``send_time_ns`` into the last eight bytes of ``payload``."""
    _send_time.pack_into(payload, len(payload) - TIMESTAMP_SIZE, send_time_ns)


def read_send_time(payload: bytes) -> int | None:
    """Return the send time embedded in ``payload``, or None if it is too short."""
    if len(payload) < TIMESTAMP_SIZE:
        return None
    return _send_time.unpack_from(payload, len(payload) - TIMESTAMP_SIZE)[0]


class LoadTestProvider(SampleProvider):
    """Fixed-size timestamped samples at a constant bitrate."""

    def __init__(
        self,
        bitrate: int,
        sample_duration: float = 1 / 30,
        mime_type: str = "application/x-loadtest",
    ) -> None:
        bytes_per_sample = int(bitrate * sample_duration / 8)
        if bytes_per_sample < MIN_SAMPLE_SIZE:
            minimum = int(MIN_SAMPLE_SIZE * 8 / sample_duration)
            raise ProviderError(f"bitrate {bitrate} lower than minimum of {minimum}")

        self.bitrate = bitrate
        self.bytes_per_sample = bytes_per_sample
        self.sample_duration = sample_duration
        self._mime_type = mime_type

    @property
    def mime_type(self) -> str:
        return self._mime_type

    def next_sample(self) -> MediaSample:
        filler_size = self.bytes_per_sample - MIN_SAMPLE_SIZE
        # noise instead of silence while speaking
        filler = os.urandom(filler_size) if self.speaking else bytes(filler_size)
        data = bytearray(SAMPLE_HEADER + filler + bytes(TIMESTAMP_SIZE))
        stamp_send_time(data, time.monotonic_ns())
        return MediaSample(data=bytes(data), duration=self.sample_duration)


def create_audio_provider() -> LoadTestProvider:
    return LoadTestProvider(AUDIO_BITRATE, AUDIO_SAMPLE_DURATION, mime_type="audio/opus")


@dataclass(frozen=True)
class VideoSpec:
    """A reference clip family and its top-quality encoding at one resolution."""

    prefix: str
    codec: VideoCodec
    width: int
    height: int
    kbps: int
    fps: int

    @property
    def mime_type(self) -> str:
        return f"video/{self.codec.value}"

    def to_layer(self, quality: VideoQuality, scale: int = 1) -> VideoLayer:
        """Layer of this clip downscaled by ``scale``, bitrate divided by ``scale**2``."""
        return VideoLayer(
            quality=quality,
            width=self.width // scale,
            height=self.height // scale,
            bitrate=self.kbps * 1000 // (scale * scale),
            fps=self.fps,
        )


def create_specs(prefix: str, codec: VideoCodec, *bitrates: int) -> dict[VideoResolution, VideoSpec]:
    """Specs of one clip family at low, medium and high resolution (16:9)."""
    specs = {}
    frame_rates = (15, 20, 30)
    resolutions = (VideoResolution.LOW, VideoResolution.MEDIUM, VideoResolution.HIGH)
    for i, (resolution, kbps) in enumerate(zip(resolutions, bitrates, strict=True)):
        height = 180 * 2**i
        specs[resolution] = VideoSpec(
            prefix=prefix,
            codec=codec,
            width=height * 16 // 9,
            height=height,
            kbps=kbps,
            fps=frame_rates[i],
        )
    return specs


VIDEO_SPECS = [
    create_specs("butterfly", VideoCodec.H264, 150, 400, 2000),
    create_specs("cartoon", VideoCodec.H264, 120, 400, 1500),
    create_specs("crescent", VideoCodec.VP8, 150, 600, 2000),
    create_specs("neon", VideoCodec.VP8, 150, 600, 2000),
    create_specs("tunnel", VideoCodec.VP8, 150, 600, 2000),
]

# simulcast layers, lowest first: (quality, downscale factor)
SIMULCAST_LAYERS = ((VideoQuality.LOW, 4), (VideoQuality.MEDIUM, 2), (VideoQuality.HIGH, 1))

_video_index = itertools.count()


def next_video_specs(codec: VideoCodec | str | None) -> dict[VideoResolution, VideoSpec]:
    """Round-robin over the clip families matching ``codec`` (all of them when unset)."""
    if codec:
        try:
            codec = VideoCodec(codec)
        except ValueError:
            raise ProviderError(f"unsupported video codec: {codec}") from None
    families = [specs for specs in VIDEO_SPECS if not codec or specs[VideoResolution.LOW].codec == codec]
    return families[next(_video_index) % len(families)]


@dataclass
class VideoLayerProvider:
    layer: VideoLayer
    provider: LoadTestProvider


def create_video_providers(
    resolution: VideoResolution | str,
    codec: VideoCodec | str | None,
    simulcast: bool,
) -> list[VideoLayerProvider]:
    """
    Create the sample providers of a published video track.

    With simulcast, three independent providers are returned (LOW, MEDIUM,
    HIGH) derived from the clip at ``resolution``; otherwise a single HIGH
    layer at ``resolution``.
    """
    try:
        resolution = VideoResolution(resolution)
    except ValueError:
        resolution = VideoResolution.HIGH

    spec = next_video_specs(codec)[resolution]
    layers = SIMULCAST_LAYERS if simulcast else ((VideoQuality.HIGH, 1),)

    providers = []
    for quality, scale in layers:
        layer = spec.to_layer(quality, scale)
        provider = LoadTestProvider(layer.bitrate, 1 / layer.fps, mime_type=spec.mime_type)
        providers.append(VideoLayerProvider(layer=layer, provider=provider))
    return providers
