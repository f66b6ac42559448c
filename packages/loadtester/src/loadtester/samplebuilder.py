"""
Reassembles RTP packets into media samples.

The builder keeps a small reorder buffer keyed by 16-bit sequence number. A
missing packet is waited for until ``max_late`` newer packets are buffered;
after that it is declared lost, together with any partially assembled sample,
and the count is reported on the next sample that completes.
"""

from .provider import SAMPLE_HEADER
from .sdk import MediaSample, RTPPacket

SEQUENCE_MODULUS = 1 << 16
DEFAULT_MAX_LATE = 10


def sequence_distance(start: int, end: int) -> int:
    """Forward distance from ``start`` to ``end`` with wrap-around."""
    return (end - start) % SEQUENCE_MODULUS


class LoadTestDepacketizer:
    """Sample boundaries of the load test payload format."""

    def is_partition_head(self, payload: bytes) -> bool:
        return payload[: len(SAMPLE_HEADER)] == SAMPLE_HEADER

    def is_partition_tail(self, marker: bool, payload: bytes) -> bool:
        return marker


class SampleBuilder:
    def __init__(
        self,
        max_late: int = DEFAULT_MAX_LATE,
        depacketizer: LoadTestDepacketizer | None = None,
    ) -> None:
        if max_late < 1:
            raise ValueError("max_late must be at least 1")
        self.max_late = max_late
        self.depacketizer = depacketizer or LoadTestDepacketizer()

        self._buffer: dict[int, RTPPacket] = {}
        self._next_sequence: int | None = None
        self._partial: list[RTPPacket] = []
        self._dropped = 0
        self._ready: list[MediaSample] = []

    def push(self, packet: RTPPacket) -> None:
        sequence = packet.sequence_number % SEQUENCE_MODULUS
        if self._next_sequence is None:
            self._next_sequence = sequence
        elif sequence_distance(self._next_sequence, sequence) >= SEQUENCE_MODULUS // 2:
            # behind the cursor: a late or duplicate packet
            return
        self._buffer[sequence] = packet
        self._drain()

    def pop_samples(self) -> list[MediaSample]:
        """Return the samples completed since the last call."""
        ready, self._ready = self._ready, []
        return ready

    def _drain(self) -> None:
        while True:
            while self._next_sequence in self._buffer:
                packet = self._buffer.pop(self._next_sequence)
                self._next_sequence = (self._next_sequence + 1) % SEQUENCE_MODULUS
                self._append(packet)

            if len(self._buffer) < self.max_late:
                return

            # waited long enough, skip ahead to the oldest buffered packet
            cursor = self._next_sequence
            oldest = min(self._buffer, key=lambda seq: sequence_distance(cursor, seq))
            self._discard_partial()
            self._dropped += sequence_distance(cursor, oldest)
            self._next_sequence = oldest

    def _append(self, packet: RTPPacket) -> None:
        is_head = self.depacketizer.is_partition_head(packet.payload)
        if self._partial and is_head:
            self._discard_partial()
        if not self._partial and not is_head:
            # continuation of a sample whose head was lost
            self._dropped += 1
            return

        self._partial.append(packet)
        if self.depacketizer.is_partition_tail(packet.marker, packet.payload):
            self._ready.append(
                MediaSample(
                    data=b"".join(p.payload for p in self._partial),
                    duration=0.0,
                    prev_dropped_packets=self._dropped,
                )
            )
            self._partial = []
            self._dropped = 0

    def _discard_partial(self) -> None:
        self._dropped += len(self._partial)
        self._partial = []
