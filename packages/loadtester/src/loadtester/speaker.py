"""
Speaker simulation: periodically makes a random publisher the active speaker.
"""

import asyncio
import random
from collections.abc import Sequence

from loguru import logger

from .tester import LoadTester

DEFAULT_PAUSE = 1.0


class SpeakerSimulator:
    """
    Background worker firing speaker updates on random publishers.

    The first update fires after ``pause`` seconds; later ones are spaced by
    ``pause + update_interval`` so at most one update is active at a time.
    """

    def __init__(
        self,
        testers: Sequence[LoadTester],
        update_interval: float,
        pause: float = 0.0,
    ) -> None:
        self.testers = list(testers)
        self.update_interval = update_interval
        self.pause = pause if pause > 0 else DEFAULT_PAUSE
        self.updates = 0
        self._stop_event: asyncio.Event | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self._worker is not None or not self.testers:
            return
        self._stop_event = asyncio.Event()
        self._worker = asyncio.get_running_loop().create_task(self._run(self._stop_event))

    async def stop(self) -> None:
        if self._worker is None or self._stop_event is None:
            return
        worker, self._worker = self._worker, None
        self._stop_event.set()
        await worker

    async def _run(self, stop_event: asyncio.Event) -> None:
        delay = self.pause
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                return
            except TimeoutError:
                pass

            speaker = random.choice(self.testers)
            try:
                speaker.simulate_speaker_update()
                self.updates += 1
                logger.debug(f"🗣️ simulated speaker update on {speaker.identity}")
            except Exception:
                logger.exception(f"speaker update on {speaker.identity} failed")
            delay = self.pause + self.update_interval
