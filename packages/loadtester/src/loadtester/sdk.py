"""
RTC platform contract.

The load tester drives a real-time media platform through these abstract
classes. Implementations live in ``loadtester.platforms``; the tester and the
orchestrator never import a platform SDK directly.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from .types import TrackKind, VideoQuality


@dataclass(slots=True)
class RTPPacket:
    """The parts of an RTP packet the sample builder needs."""

    sequence_number: int
    timestamp: int
    payload: bytes
    marker: bool = False
    ssrc: int = 0


@dataclass(slots=True)
class MediaSample:
    data: bytes
    # seconds of media this sample covers
    duration: float
    # packets lost before this sample, as reported by the sample builder
    prev_dropped_packets: int = 0


class VideoLayer(BaseModel):
    """One simulcast layer of a published video track."""

    quality: VideoQuality
    width: int
    height: int
    bitrate: int = Field(description="Target bitrate in bits per second")
    fps: int = 30


class ConnectInfo(BaseModel):
    url: str
    api_key: str
    api_secret: str
    room_name: str
    participant_identity: str


class TrackPublishOptions(BaseModel):
    name: str
    kind: TrackKind
    codec: str | None = None
    # dimensions of a single-layer video track
    video_layer: VideoLayer | None = None


class SampleProvider(ABC):
    """Produces the media samples of a local track."""

    # set while the publisher is the simulated active speaker
    speaking: bool = False

    @abstractmethod
    def next_sample(self) -> MediaSample:
        pass

    @property
    @abstractmethod
    def mime_type(self) -> str:
        pass


class RemoteTrack(ABC):
    """A subscribed remote media track."""

    sid: str
    kind: TrackKind
    ssrc: int

    @abstractmethod
    async def read_rtp(self) -> RTPPacket:
        """
        Wait for the next packet of the track.

        Raises:
            TrackReadError: when the track ended or the room disconnected
        """
        pass


class RemoteTrackPublication(ABC):
    sid: str
    kind: TrackKind
    name: str

    @abstractmethod
    def set_video_dimensions(self, width: int, height: int) -> None:
        """Ask the server for the layer that best fits the given dimensions."""
        pass

    @abstractmethod
    def set_enabled(self, enabled: bool) -> None:
        """Pause or resume forwarding of the track without unsubscribing."""
        pass


class RemoteParticipant(ABC):
    sid: str
    identity: str

    @abstractmethod
    def write_pli(self, ssrc: int) -> None:
        """Send a picture loss indication for ``ssrc``, requesting a key frame."""
        pass


TrackSubscribedCallback = Callable[[RemoteTrack, RemoteTrackPublication, RemoteParticipant], None]
TrackSubscriptionFailedCallback = Callable[[str, RemoteParticipant], None]


def _ignore_subscription_failure(track_sid: str, participant: RemoteParticipant) -> None:
    pass


@dataclass
class RoomCallbacks:
    on_track_subscribed: TrackSubscribedCallback
    on_track_subscription_failed: TrackSubscriptionFailedCallback = field(
        default=_ignore_subscription_failure
    )


class Room(ABC):
    """A connection to one room as one participant."""

    @property
    @abstractmethod
    def local_identity(self) -> str:
        pass

    @abstractmethod
    async def connect(self, info: ConnectInfo, auto_subscribe: bool) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Leave the room. Safe to call more than once."""
        pass

    @abstractmethod
    async def publish_track(self, provider: SampleProvider, options: TrackPublishOptions) -> str:
        """Publish a track fed by ``provider`` and return its track id."""
        pass

    @abstractmethod
    async def publish_simulcast_track(
        self,
        layers: Sequence[tuple[VideoLayer, SampleProvider]],
        options: TrackPublishOptions,
    ) -> str:
        """Publish one video track made of several simulcast layers."""
        pass

    @abstractmethod
    def simulate_speaker_update(self) -> None:
        """Make the server treat this participant as the active speaker for a while."""
        pass


class RTCPlatform(ABC):
    """Entry point of a platform implementation."""

    name: str

    @property
    @abstractmethod
    def speaker_update_interval(self) -> float:
        """Seconds a simulated speaker update lasts."""
        pass

    @abstractmethod
    def create_room(self, callbacks: RoomCallbacks) -> Room:
        pass
