"""
Per-track counters and their reduction to tester and test summaries.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from .provider import read_send_time
from .sdk import MediaSample
from .types import Summary, TrackKind, TrackReport

# latencies outside [0, 100ms) come from clock skew or a looped clip, not the network
MAX_LATENCY_NS = 100_000_000


class TrackStats:
    """
    Counters of one subscribed remote track.

    Written only by the track's consume task, read by the orchestrator after
    the testers stop. Every counter only grows.
    """

    __slots__ = (
        "track_id",
        "kind",
        "started_at",
        "packets",
        "bytes",
        "dropped",
        "latency_total_ns",
        "latency_count",
    )

    def __init__(self, track_id: str, kind: TrackKind, started_at: float | None = None) -> None:
        self.track_id = track_id
        self.kind = kind
        # monotonic seconds
        self.started_at = time.monotonic() if started_at is None else started_at
        self.packets = 0
        self.bytes = 0
        self.dropped = 0
        self.latency_total_ns = 0
        self.latency_count = 0

    def record_sample(self, sample: MediaSample, received_at_ns: int | None = None) -> None:
        """Account for one sample emitted by the sample builder."""
        if received_at_ns is None:
            received_at_ns = time.monotonic_ns()

        self.packets += 1
        self.bytes += len(sample.data)
        self.dropped += sample.prev_dropped_packets

        send_time = read_send_time(sample.data)
        if send_time is None:
            return
        latency = received_at_ns - send_time
        if 0 <= latency < MAX_LATENCY_NS:
            self.latency_total_ns += latency
            self.latency_count += 1

    def elapsed(self, now: float | None = None) -> float:
        if now is None:
            now = time.monotonic()
        return max(0.0, now - self.started_at)


@dataclass
class TesterStats:
    name: str
    expected_tracks: int
    track_stats: dict[str, TrackStats] = field(default_factory=dict)
    error: str | None = None
    subscriber: bool = False


def tester_summary(stats: TesterStats, now: float | None = None) -> Summary:
    """Sum the track counters of one tester."""
    if now is None:
        now = time.monotonic()

    s = Summary(name=stats.name, expected=stats.expected_tracks)
    for track in stats.track_stats.values():
        s.tracks += 1
        s.packets += track.packets
        s.bytes += track.bytes
        s.dropped += track.dropped
        s.latency_total_ns += track.latency_total_ns
        s.latency_count += track.latency_count
        s.elapsed = max(s.elapsed, track.elapsed(now))
    if stats.error is not None:
        s.error = stats.error
        s.error_count = 1
    return s


def total_summary(summaries: Iterable[Summary]) -> Summary:
    """Sum tester summaries into the totals row."""
    s = Summary(name="Total")
    for tester in summaries:
        s.tracks += tester.tracks
        s.expected += tester.expected
        s.packets += tester.packets
        s.bytes += tester.bytes
        s.dropped += tester.dropped
        s.latency_total_ns += tester.latency_total_ns
        s.latency_count += tester.latency_count
        s.elapsed = max(s.elapsed, tester.elapsed)
        s.error_count += tester.error_count
    return s


def track_report(
    tester: str,
    track: TrackStats,
    track_name: str | None = None,
    now: float | None = None,
) -> TrackReport:
    return TrackReport(
        tester=tester,
        track_id=track.track_id,
        track_name=track_name,
        kind=track.kind,
        packets=track.packets,
        bytes=track.bytes,
        dropped=track.dropped,
        latency_total_ns=track.latency_total_ns,
        latency_count=track.latency_count,
        elapsed=track.elapsed(now),
    )
