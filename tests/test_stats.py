import time

from conftest import make_sample
from loadtester.stats import MAX_LATENCY_NS, TesterStats, TrackStats, tester_summary, total_summary, track_report
from loadtester.types import TrackKind


def test_record_sample_counts_bytes_and_drops():
    stats = TrackStats("TR_1", TrackKind.AUDIO)
    stats.record_sample(make_sample(80))
    stats.record_sample(make_sample(80, dropped=3))

    assert stats.packets == 2
    assert stats.bytes == 160
    assert stats.dropped == 3


def test_latency_only_within_window():
    now = time.monotonic_ns()
    stats = TrackStats("TR_1", TrackKind.VIDEO)

    stats.record_sample(make_sample(send_time_ns=now - 5_000_000), received_at_ns=now)
    # sent "in the future"
    stats.record_sample(make_sample(send_time_ns=now + 1_000_000), received_at_ns=now)
    # too old to be network latency
    stats.record_sample(make_sample(send_time_ns=now - MAX_LATENCY_NS), received_at_ns=now)

    assert stats.packets == 3
    assert stats.latency_count == 1
    assert stats.latency_total_ns == 5_000_000


def test_elapsed_never_negative():
    stats = TrackStats("TR_1", TrackKind.AUDIO, started_at=100.0)
    assert stats.elapsed(110.0) == 10.0
    assert stats.elapsed(90.0) == 0.0


def make_tester_stats(name, error=None):
    audio = TrackStats("TR_A", TrackKind.AUDIO, started_at=0.0)
    audio.packets, audio.bytes, audio.dropped = 10, 800, 1
    video = TrackStats("TR_V", TrackKind.VIDEO, started_at=5.0)
    video.packets, video.bytes, video.dropped = 20, 2000, 0
    video.latency_total_ns, video.latency_count = 4_000_000, 2
    return TesterStats(
        name=name,
        expected_tracks=2,
        track_stats={"TR_A": audio, "TR_V": video},
        error=error,
        subscriber=True,
    )


def test_tester_summary():
    summary = tester_summary(make_tester_stats("Sub 0"), now=10.0)

    assert summary.name == "Sub 0"
    assert summary.tracks == 2
    assert summary.expected == 2
    assert summary.packets == 30
    assert summary.bytes == 2800
    assert summary.dropped == 1
    assert summary.latency_count == 2
    # longest running track
    assert summary.elapsed == 10.0
    assert summary.error is None
    assert summary.error_count == 0


def test_total_summary():
    summaries = [
        tester_summary(make_tester_stats("Sub 0"), now=10.0),
        tester_summary(make_tester_stats("Sub 1", error="join refused"), now=10.0),
    ]
    total = total_summary(summaries)

    assert total.name == "Total"
    assert total.tracks == 4
    assert total.expected == 4
    assert total.packets == 60
    assert total.dropped == 2
    assert total.error_count == 1


def test_total_summary_empty():
    total = total_summary([])
    assert total.tracks == 0
    assert total.elapsed == 0.0


def test_track_report():
    stats = make_tester_stats("Sub 0")
    report = track_report("Sub 0", stats.track_stats["TR_V"], "0V", now=7.0)

    assert report.track_name == "0V"
    assert report.kind is TrackKind.VIDEO
    assert report.elapsed == 2.0
    assert report.bitrate == 8000.0
