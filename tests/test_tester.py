import asyncio
import threading
from collections import Counter

import pytest
from conftest import SlowJoinPlatform, wait_for_condition
from loadtester.errors import ConnectionFailedError
from loadtester.tester import LoadTester, TesterState, select_quality
from loadtester.types import Layout, TrackKind, VideoQuality


def test_select_quality_speaker():
    counts = Counter()
    picked = []
    for _ in range(8):
        quality = select_quality(Layout.SPEAKER, counts)
        counts[quality] += 1
        picked.append(quality)

    assert picked == [VideoQuality.HIGH] + [VideoQuality.LOW] * 5 + [VideoQuality.OFF] * 2


@pytest.mark.parametrize(
    "layout,quality,slots",
    [
        (Layout.GRID_3X3, VideoQuality.MEDIUM, 9),
        (Layout.GRID_4X4, VideoQuality.LOW, 16),
        (Layout.GRID_5X5, VideoQuality.LOW, 25),
    ],
)
def test_select_quality_grids(layout, quality, slots):
    assert select_quality(layout, Counter({quality: slots - 1})) is quality
    assert select_quality(layout, Counter({quality: slots})) is VideoQuality.OFF


@pytest.mark.asyncio
async def test_start_is_idempotent(platform, server, tester_params):
    tester = LoadTester(tester_params(), platform)
    await tester.start()
    await tester.start()

    assert tester.running
    assert server.connect_attempts == 1

    await tester.stop()
    await tester.stop()
    assert tester.state is TesterState.STOPPED
    assert not tester.running


@pytest.mark.asyncio
async def test_start_after_stop_is_noop(platform, server, tester_params):
    tester = LoadTester(tester_params(), platform)
    await tester.stop()
    await tester.start()

    assert tester.state is TesterState.STOPPED
    assert server.connect_attempts == 0


@pytest.mark.asyncio
async def test_connect_retries_then_fails(platform, server, tester_params):
    params = tester_params(connect_attempts=3)
    server.rejected_identities.add(params.identity)
    tester = LoadTester(params, platform)

    with pytest.raises(ConnectionFailedError) as excinfo:
        await tester.start()

    assert excinfo.value.attempts == 3
    assert server.connect_attempts == 3
    assert tester.state is TesterState.FAILED
    await tester.stop()


@pytest.mark.asyncio
async def test_stop_aborts_retry_wait(platform, server, tester_params):
    params = tester_params(connect_attempts=10, connect_retry_delay=30.0)
    server.rejected_identities.add(params.identity)
    tester = LoadTester(params, platform)

    start = asyncio.create_task(tester.start())
    await wait_for_condition(lambda: server.connect_attempts == 1)
    await tester.stop()
    await asyncio.wait_for(start, timeout=1.0)

    assert tester.state is TesterState.STOPPED
    assert server.connect_attempts == 1


@pytest.mark.asyncio
async def test_publish_requires_running(platform, tester_params):
    tester = LoadTester(tester_params(publisher=True), platform)

    assert await tester.publish_audio_track("audio") == ""
    assert await tester.publish_video_track("video", "high", "vp8") == ""
    assert await tester.publish_simulcast_track("video", "high", None) == ""


@pytest.mark.asyncio
async def test_subscriber_counts_audio(platform, tester_params):
    async with LoadTester(tester_params(publisher=True), platform) as publisher:
        track_id = await publisher.publish_audio_track("audio")
        assert track_id

        subscriber = LoadTester(tester_params(sequence=1, expected_tracks=1), platform)
        async with subscriber:
            await asyncio.sleep(0.3)

    stats = subscriber.get_stats()
    assert stats.subscriber
    assert list(stats.track_stats) == [track_id]
    track = stats.track_stats[track_id]
    assert track.kind is TrackKind.AUDIO
    assert track.packets > 5
    assert track.bytes == track.packets * 80
    assert track.dropped == 0
    assert track.latency_count > 0


@pytest.mark.asyncio
async def test_layout_selects_qualities(platform, tester_params):
    publishers = [LoadTester(tester_params(sequence=i, publisher=True), platform) for i in range(3)]
    for publisher in publishers:
        await publisher.start()
        await publisher.publish_simulcast_track("video", "high", "h264")

    subscriber = LoadTester(tester_params(sequence=3, layout="speaker"), platform)
    await subscriber.start()
    room = subscriber.room
    await asyncio.sleep(0.2)

    await subscriber.stop()
    for publisher in publishers:
        await publisher.stop()

    assert sorted(subscriber.track_qualities.values()) == [
        VideoQuality.LOW,
        VideoQuality.LOW,
        VideoQuality.HIGH,
    ]
    requested = sorted(s.publication.requested_dimensions for s in room.subscriptions)
    assert requested == [(320, 180), (320, 180), (1280, 720)]
    for subscription in room.subscriptions:
        # every subscribed track asked for a key frame
        assert subscription.participant.plis[subscription.track.ssrc] >= 1
    assert all(track.packets > 0 for track in subscriber.get_stats().track_stats.values())


@pytest.mark.asyncio
async def test_over_capacity_video_is_disabled(platform, tester_params):
    publishers = [LoadTester(tester_params(sequence=i, publisher=True), platform) for i in range(2)]
    for publisher in publishers:
        await publisher.start()
        await publisher.publish_video_track("video", "medium", "vp8")

    subscriber = LoadTester(tester_params(sequence=2, layout="3x3"), platform)
    subscriber.track_qualities = {f"other{i}": VideoQuality.MEDIUM for i in range(8)}
    await subscriber.start()
    room = subscriber.room

    await subscriber.stop()
    for publisher in publishers:
        await publisher.stop()

    enabled = sorted(s.publication.enabled for s in room.subscriptions)
    assert enabled == [False, True]
    assert Counter(subscriber.track_qualities.values())[VideoQuality.OFF] == 1


@pytest.mark.asyncio
async def test_lost_packets_counted_and_pli_sent(platform, server, tester_params):
    server.loss_rate = 0.3
    async with LoadTester(tester_params(publisher=True), platform) as publisher:
        track_id = await publisher.publish_audio_track("audio")
        subscriber = LoadTester(tester_params(sequence=1), platform)
        async with subscriber:
            room = subscriber.room
            await asyncio.sleep(1.0)

    track = subscriber.get_stats().track_stats[track_id]
    assert track.dropped > 0
    assert track.packets > 0
    (subscription,) = room.subscriptions
    # one on subscribe plus one per sample reporting losses
    assert subscription.participant.plis[subscription.track.ssrc] >= 2


@pytest.mark.asyncio
async def test_cancelled_join_leaves_room(tester_params):
    platform = SlowJoinPlatform(join_delay=5.0)
    tester = LoadTester(tester_params(), platform)

    start = asyncio.create_task(tester.start())
    await wait_for_condition(lambda: platform.rooms_created and platform.rooms_created[0].connected)
    start.cancel()
    with pytest.raises(asyncio.CancelledError):
        await start

    (room,) = platform.rooms_created
    assert not room.connected
    assert tester.room is None
    assert tester.state is TesterState.FAILED
    await tester.stop()
    assert tester.state is TesterState.STOPPED


@pytest.mark.asyncio
async def test_subscription_from_sdk_thread(platform, server, tester_params):
    async with LoadTester(tester_params(publisher=True), platform) as publisher:
        await publisher.publish_audio_track("audio")
        (published,) = publisher.room.published

        subscriber = LoadTester(tester_params(sequence=1, subscribe=False), platform)
        async with subscriber:
            room = subscriber.room
            original = room.callbacks.on_track_subscribed
            # deliver the subscription callback from a foreign thread
            room.callbacks.on_track_subscribed = lambda *args: threading.Thread(
                target=original, args=args
            ).start()
            server.subscribe(room, published)

            await wait_for_condition(lambda: published.sid in subscriber.get_stats().track_stats)
            await wait_for_condition(
                lambda: subscriber.get_stats().track_stats[published.sid].packets > 0
            )

    assert subscriber.get_stats().track_stats[published.sid].packets > 0


@pytest.mark.asyncio
async def test_departed_subscriber_pruned(platform, tester_params):
    async with LoadTester(tester_params(publisher=True), platform) as publisher:
        await publisher.publish_audio_track("audio")
        (published,) = publisher.room.published

        async with LoadTester(tester_params(sequence=1), platform):
            assert len(published.subscriptions) == 1
        async with LoadTester(tester_params(sequence=2), platform):
            assert len(published.subscriptions) == 1

        assert published.subscriptions == []
