from loadtester.types import Layout, LoadTestParams, VideoResolution


def test_all_zero_roles_default_to_one_pair():
    params = LoadTestParams(url="ws://localhost")

    assert params.video_publishers == 1
    assert params.subscribers == 1
    assert params.num_testers == 2


def test_start_rate_normalised():
    assert LoadTestParams(url="ws://localhost", num_per_second=0).num_per_second == 5
    assert LoadTestParams(url="ws://localhost", num_per_second=-1).num_per_second == 5
    assert LoadTestParams(url="ws://localhost", num_per_second=50).num_per_second == 10
    assert LoadTestParams(url="ws://localhost", num_per_second=3).num_per_second == 3


def test_lenient_enums():
    params = LoadTestParams(url="ws://localhost", layout="bogus", video_resolution="ultra", video_codec="")

    assert params.layout is Layout.SPEAKER
    assert params.video_resolution is VideoResolution.HIGH
    assert params.video_codec is None
    assert LoadTestParams(url="ws://localhost", layout="4x4").layout is Layout.GRID_4X4


def test_tester_partition():
    params = LoadTestParams(
        url="ws://localhost",
        identity_prefix="x",
        room="r",
        video_publishers=2,
        audio_publishers=1,
        subscribers=2,
    )
    assert params.num_testers == 4
    assert params.expected_tracks == 3

    pub0, video, audio = params.tester_params(0)
    assert (video, audio) == (True, True)
    assert pub0.identity == "x_pub_0"
    assert pub0.name == "Pub 0"
    assert not pub0.subscribe
    assert pub0.expected_tracks == 0
    assert pub0.room == "r"

    pub1, video, audio = params.tester_params(1)
    assert (video, audio) == (True, False)

    sub, video, audio = params.tester_params(2)
    assert (video, audio) == (False, False)
    assert sub.subscribe
    assert sub.name == "Sub 0"
    assert sub.identity == "x_2"
    assert sub.expected_tracks == 3


def test_secret_not_serialised():
    params = LoadTestParams(url="ws://localhost", api_key="key", api_secret="topsecret")

    assert "topsecret" not in params.model_dump_json()
    assert "topsecret" not in repr(params)
    assert params.tester_params(0)[0].api_secret == "topsecret"
