from conftest import make_packet
from loadtester.samplebuilder import SampleBuilder, sequence_distance


def push_all(builder: SampleBuilder, packets):
    samples = []
    for packet in packets:
        builder.push(packet)
        samples.extend(builder.pop_samples())
    return samples


def test_sequence_distance_wraps():
    assert sequence_distance(10, 15) == 5
    assert sequence_distance(65535, 0) == 1
    assert sequence_distance(5, 4) == 65535


def test_in_order_samples():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(seq) for seq in range(5)])

    assert len(samples) == 5
    assert all(s.prev_dropped_packets == 0 for s in samples)
    assert samples[0].data.endswith(b"data")


def test_reordered_packets_are_waited_for():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(0), make_packet(2), make_packet(1)])

    assert len(samples) == 3
    assert sum(s.prev_dropped_packets for s in samples) == 0


def test_lost_packet_reported_on_next_sample():
    builder = SampleBuilder(max_late=10)
    packets = [make_packet(0)] + [make_packet(seq) for seq in range(2, 12)]
    samples = push_all(builder, packets)

    assert len(samples) == 11
    assert samples[0].prev_dropped_packets == 0
    assert samples[1].prev_dropped_packets == 1
    assert sum(s.prev_dropped_packets for s in samples) == 1


def test_late_and_duplicate_packets_ignored():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(0), make_packet(1), make_packet(0), make_packet(1)])

    assert len(samples) == 2


def test_sequence_wrap_around():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(65534), make_packet(65535), make_packet(0)])

    assert len(samples) == 3


def test_multi_packet_sample():
    builder = SampleBuilder()
    samples = push_all(
        builder,
        [
            make_packet(7, head=True, marker=False, body=b"one"),
            make_packet(8, head=False, marker=False, body=b"two"),
            make_packet(9, head=False, marker=True, body=b"three"),
        ],
    )

    assert len(samples) == 1
    assert samples[0].data.endswith(b"onetwothree")


def test_continuation_without_head_counts_as_dropped():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(5, head=False), make_packet(6)])

    assert len(samples) == 1
    assert samples[0].prev_dropped_packets == 1


def test_partial_sample_discarded_by_new_head():
    builder = SampleBuilder()
    samples = push_all(builder, [make_packet(0, marker=False), make_packet(1)])

    assert len(samples) == 1
    assert samples[0].prev_dropped_packets == 1
