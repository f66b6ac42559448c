"""
Type definitions for the load tester.

Scenario parameters, per-tester parameters and the report models produced by
a load test run.
"""

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_NUM_PER_SECOND = 5.0
MAX_NUM_PER_SECOND = 10.0


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class VideoQuality(IntEnum):
    """Simulcast layer, numbered like the LiveKit protocol enum."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    OFF = 3


class Layout(str, Enum):
    """Subscriber screen layout; decides which video quality each remote gets."""

    # one user at 1280x720, 5 at 320x180
    SPEAKER = "speaker"
    # 9 participants at 640x360
    GRID_3X3 = "3x3"
    # 16 participants at 320x180
    GRID_4X4 = "4x4"
    # 25 participants at 320x180
    GRID_5X5 = "5x5"

    @classmethod
    def from_string(cls, value: "str | Layout | None") -> "Layout":
        """Parse a layout name, falling back to the speaker layout."""
        if isinstance(value, Layout):
            return value
        for layout in cls:
            if layout.value == value:
                return layout
        return cls.SPEAKER


class VideoResolution(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class VideoCodec(str, Enum):
    H264 = "h264"
    VP8 = "vp8"


class ConnectionParams(BaseModel):
    """Server, room and retry settings shared by the scenario and every tester."""

    url: str = ""
    api_key: str = ""
    api_secret: str = Field(default="", exclude=True, repr=False)
    room: str = ""
    identity_prefix: str = ""
    layout: Layout = Layout.SPEAKER

    connect_attempts: int = Field(default=10, ge=1)
    connect_retry_delay: float = Field(default=1.0, ge=0)

    @field_validator("layout", mode="before")
    @classmethod
    def _parse_layout(cls, value: Any) -> Layout:
        return Layout.from_string(value)


class TesterParams(ConnectionParams):
    """Parameters for a single simulated participant."""

    # true to subscribe to all published tracks
    subscribe: bool = False

    name: str = ""
    sequence: int = Field(default=0, ge=0)
    expected_tracks: int = Field(default=0, ge=0)

    @property
    def identity(self) -> str:
        return f"{self.identity_prefix}_{self.sequence}"


class LoadTestParams(ConnectionParams):
    """
    Scenario parameters, immutable for the duration of a run.

    Validation normalises the start rate into (0, 10] (default 5) and falls back
    to one video publisher plus one subscriber when every role count is zero.
    """

    video_publishers: int = Field(default=0, ge=0)
    audio_publishers: int = Field(default=0, ge=0)
    subscribers: int = Field(default=0, ge=0)
    video_resolution: VideoResolution = VideoResolution.HIGH
    # None publishes both codecs
    video_codec: VideoCodec | None = None
    # seconds; 0 runs until cancelled
    duration: float = Field(default=0.0, ge=0)
    # number of testers to spin up per second
    num_per_second: float = DEFAULT_NUM_PER_SECOND
    simulcast: bool = True
    simulate_speakers: bool = False
    # seconds between simulated speaker changes
    speaker_pause: float = Field(default=1.0, ge=0)

    @field_validator("num_per_second", mode="before")
    @classmethod
    def _clamp_rate(cls, value: Any) -> float:
        if value is None or float(value) <= 0:
            return DEFAULT_NUM_PER_SECOND
        return min(float(value), MAX_NUM_PER_SECOND)

    @field_validator("video_resolution", mode="before")
    @classmethod
    def _parse_resolution(cls, value: Any) -> VideoResolution:
        try:
            return VideoResolution(value)
        except ValueError:
            return VideoResolution.HIGH

    @field_validator("video_codec", mode="before")
    @classmethod
    def _parse_codec(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @model_validator(mode="after")
    def _default_roles(self) -> "LoadTestParams":
        if self.video_publishers == 0 and self.audio_publishers == 0 and self.subscribers == 0:
            self.video_publishers = 1
            self.subscribers = 1
        return self

    @property
    def max_publishers(self) -> int:
        return max(self.video_publishers, self.audio_publishers)

    @property
    def num_testers(self) -> int:
        return self.max_publishers + self.subscribers

    @property
    def expected_tracks(self) -> int:
        return self.video_publishers + self.audio_publishers

    def tester_params(self, sequence: int) -> tuple[TesterParams, bool, bool]:
        """
        Derive the parameters of the tester at ``sequence``.

        Returns the tester parameters plus whether it publishes video and audio.
        Publishers and subscribers form a strict partition of the sequence range.
        """
        is_video_publisher = sequence < self.video_publishers
        is_audio_publisher = sequence < self.audio_publishers
        shared = {name: getattr(self, name) for name in ConnectionParams.model_fields}
        if is_video_publisher or is_audio_publisher:
            # publishers do not receive their own tracks
            params = TesterParams(
                **{**shared, "identity_prefix": f"{self.identity_prefix}_pub"},
                sequence=sequence,
                name=f"Pub {sequence}",
                expected_tracks=0,
            )
        else:
            params = TesterParams(
                **shared,
                sequence=sequence,
                name=f"Sub {sequence - self.video_publishers}",
                expected_tracks=self.expected_tracks,
                subscribe=True,
            )
        return params, is_video_publisher, is_audio_publisher


# Report models


class TrackReport(BaseModel):
    """Counters of one subscribed track, as seen by one tester."""

    tester: str
    track_id: str
    track_name: str | None = None
    kind: TrackKind
    packets: int
    bytes: int
    dropped: int
    latency_total_ns: int
    latency_count: int
    elapsed: float = Field(description="Seconds since the track was subscribed")

    @property
    def bitrate(self) -> float:
        return self.bytes * 8 / self.elapsed if self.elapsed > 0 else 0.0


class Summary(BaseModel):
    """Counters reduced over the tracks of a tester, or over all testers."""

    name: str = ""
    tracks: int = 0
    expected: int = 0
    packets: int = 0
    bytes: int = 0
    dropped: int = 0
    latency_total_ns: int = 0
    latency_count: int = 0
    elapsed: float = 0.0
    error: str | None = None
    error_count: int = 0


class LoadTestReport(BaseModel):
    """Complete result of a single load test run."""

    params: LoadTestParams
    tracks: list[TrackReport]
    # subscriber summaries; publishers are reported separately
    testers: list[Summary]
    publishers: list[Summary] = Field(default_factory=list)
    total: Summary
    cancelled: bool = False


class SuiteCase(BaseModel):
    """One row of the fixed load test matrix."""

    publishers: int
    subscribers: int
    video: bool


class SuiteCaseResult(BaseModel):
    case: SuiteCase
    tracks: int
    packets: int
    dropped: int
    error_count: int


class SuiteReport(BaseModel):
    results: list[SuiteCaseResult]
    cancelled: bool = False
