import asyncio

import pytest
from loadtester.speaker import DEFAULT_PAUSE, SpeakerSimulator


class FakeTester:
    def __init__(self, identity):
        self.identity = identity
        self.updates = 0

    def simulate_speaker_update(self):
        self.updates += 1


@pytest.mark.asyncio
async def test_fires_updates_until_stopped():
    testers = [FakeTester("a"), FakeTester("b")]
    simulator = SpeakerSimulator(testers, update_interval=0.01, pause=0.01)
    simulator.start()
    assert simulator.running

    await asyncio.sleep(0.2)
    await simulator.stop()

    assert not simulator.running
    assert simulator.updates >= 2
    assert sum(t.updates for t in testers) == simulator.updates


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    simulator = SpeakerSimulator([FakeTester("a")], update_interval=1.0, pause=1.0)
    await simulator.stop()

    simulator.start()
    worker = simulator._worker
    simulator.start()
    assert simulator._worker is worker

    await simulator.stop()
    await simulator.stop()
    assert simulator.updates == 0


@pytest.mark.asyncio
async def test_no_testers_never_starts():
    simulator = SpeakerSimulator([], update_interval=0.01, pause=0.01)
    simulator.start()

    assert not simulator.running
    await simulator.stop()


def test_default_pause():
    assert SpeakerSimulator([], update_interval=5.0).pause == DEFAULT_PAUSE
