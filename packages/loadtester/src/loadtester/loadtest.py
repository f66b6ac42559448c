"""
Load test orchestration.

Plans a scenario, starts every tester under a start-rate limiter, keeps the
room loaded for the test window, then stops everything and reports per-track
and per-tester results.
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlparse

from loguru import logger
from rich.console import Console

from shared.utils import random_string

from .errors import CloudLimitExceededError, InvalidURLError
from .ratelimit import TokenBucket
from .render import render_report, render_suite
from .sdk import RTCPlatform
from .speaker import SpeakerSimulator
from .stats import TesterStats, tester_summary, total_summary, track_report
from .tester import LoadTester
from .types import LoadTestParams, LoadTestReport, SuiteCase, SuiteCaseResult, SuiteReport

CLOUD_HOST_SUFFIX = ".livekit.cloud"
CLOUD_PARTICIPANT_LIMIT = 50

# stands in for "until cancelled"
UNBOUNDED_DURATION = 1000 * 3600.0
DEFAULT_SUITE_DURATION = 15.0

SUITE_CASES = [
    SuiteCase(publishers=10, subscribers=10, video=False),
    SuiteCase(publishers=10, subscribers=100, video=False),
    SuiteCase(publishers=10, subscribers=500, video=False),
    SuiteCase(publishers=10, subscribers=1000, video=False),
    SuiteCase(publishers=50, subscribers=50, video=False),
    SuiteCase(publishers=100, subscribers=50, video=False),
    SuiteCase(publishers=10, subscribers=10, video=True),
    SuiteCase(publishers=10, subscribers=100, video=True),
    SuiteCase(publishers=10, subscribers=500, video=True),
    SuiteCase(publishers=1, subscribers=100, video=True),
    SuiteCase(publishers=1, subscribers=1000, video=True),
]


def preflight(params: LoadTestParams) -> None:
    """
    Reject scenarios that must not reach the server.

    Raises:
        InvalidURLError: if the server URL cannot be parsed
        CloudLimitExceededError: if a cloud host would get more than 50 of any role
    """
    try:
        parsed = urlparse(params.url)
        host = parsed.hostname
    except ValueError as e:
        raise InvalidURLError(params.url, str(e)) from e
    if not parsed.scheme or not host:
        raise InvalidURLError(params.url, "expected scheme://host")

    if host.endswith(CLOUD_HOST_SUFFIX) and max(
        params.video_publishers, params.audio_publishers, params.subscribers
    ) > CLOUD_PARTICIPANT_LIMIT:
        raise CloudLimitExceededError(host, CLOUD_PARTICIPANT_LIMIT)


@dataclass
class StartResult:
    """Outcome of one tester's start task."""

    name: str
    error: str | None = None


async def _first_of(task: asyncio.Future, cancel: asyncio.Event) -> bool:
    """Wait for ``task`` or ``cancel``; True if the task finished first."""
    cancelled = asyncio.ensure_future(cancel.wait())
    done, pending = await asyncio.wait(
        {task, cancelled}, return_when=asyncio.FIRST_COMPLETED
    )
    for other in pending:
        other.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    return task in done and not cancel.is_set()


class LoadTest:
    """Runs a load test scenario, or the fixed suite of scenarios, on one platform."""

    def __init__(
        self,
        params: LoadTestParams,
        platform: RTCPlatform,
        console: Console | None = None,
    ) -> None:
        self.params = params
        self.platform = platform
        self.console = console or Console()

        # published track id -> short label such as "0V"
        self.track_names: dict[str, str] = {}
        self._track_names_lock = threading.Lock()

        # testers and speaker simulator of the most recent run
        self.testers: list[LoadTester] = []
        self.speaker_simulator: SpeakerSimulator | None = None

    async def run(self, cancel: asyncio.Event | None = None) -> LoadTestReport:
        preflight(self.params)
        cancel = cancel or asyncio.Event()

        params = self._prepare(self.params)
        stats = await self._run(params, cancel)
        report = self._build_report(params, stats, cancelled=cancel.is_set())

        for title, table in render_report(report):
            self.console.print(f"\n{title}")
            self.console.print(table)
        return report

    async def run_suite(self, cancel: asyncio.Event | None = None) -> SuiteReport:
        cancel = cancel or asyncio.Event()
        cases = [(case, self._case_params(case)) for case in SUITE_CASES]
        for _, params in cases:
            preflight(params)

        report = SuiteReport(results=[])
        for case, params in cases:
            video = "Yes" if case.video else "No"
            self.console.print(
                f"\nRunning test: {case.publishers} pub, {case.subscribers} sub, video: {video}"
            )
            stats = await self._run(self._prepare(params), cancel)
            if cancel.is_set():
                report.cancelled = True
                break

            result = SuiteCaseResult(case=case, tracks=0, packets=0, dropped=0, error_count=0)
            for tester_stats in stats.values():
                for track in tester_stats.track_stats.values():
                    result.tracks += 1
                    result.packets += track.packets
                    result.dropped += track.dropped
                if tester_stats.error is not None:
                    result.error_count += 1
            report.results.append(result)

        table = render_suite(report)
        if table is not None:
            self.console.print("\nSuite results:")
            self.console.print(table)
        return report

    def _case_params(self, case: SuiteCase) -> LoadTestParams:
        return self.params.model_copy(
            update={
                "video_publishers": case.publishers if case.video else 0,
                "audio_publishers": 0 if case.video else case.publishers,
                "subscribers": case.subscribers,
                "simulcast": True,
                "duration": self.params.duration or DEFAULT_SUITE_DURATION,
            }
        )

    @staticmethod
    def _prepare(params: LoadTestParams) -> LoadTestParams:
        update = {}
        if not params.room:
            update["room"] = f"testroom{random.randrange(1000)}"
        if not params.identity_prefix:
            update["identity_prefix"] = random_string(5)
        return params.model_copy(update=update)

    def _name_track(self, track_id: str, name: str) -> None:
        if not track_id:
            return
        with self._track_names_lock:
            self.track_names[track_id] = name

    async def _run(self, params: LoadTestParams, cancel: asyncio.Event) -> dict[str, TesterStats]:
        self.testers = []
        self.speaker_simulator = None

        participants = []
        if params.video_publishers > 0:
            participants.append(f"{params.video_publishers} video publishers")
        if params.audio_publishers > 0:
            participants.append(f"{params.audio_publishers} audio publishers")
        if params.subscribers > 0:
            participants.append(f"{params.subscribers} subscribers")
        logger.info(f"Starting load test with {', '.join(participants)}, room: {params.room}")

        publishers: list[LoadTester] = []
        start_tasks: list[asyncio.Task[None]] = []
        results: asyncio.Queue[StartResult] = asyncio.Queue()
        errors: dict[str, str] = {}

        # throttle pace of join events
        limiter = TokenBucket(params.num_per_second, burst=1)
        try:
            for sequence in range(params.num_testers):
                if not await _first_of(asyncio.ensure_future(limiter.acquire()), cancel):
                    logger.warning("load test cancelled during start-up")
                    break

                tester_params, publish_video, publish_audio = params.tester_params(sequence)
                tester = LoadTester(tester_params, self.platform)
                self.testers.append(tester)
                if publish_video or publish_audio:
                    publishers.append(tester)

                start_tasks.append(
                    asyncio.create_task(
                        self._start_tester(tester, params, publish_video, publish_audio, results)
                    )
                )

            if start_tasks:
                await _first_of(asyncio.ensure_future(asyncio.gather(*start_tasks)), cancel)
            while not results.empty():
                result = results.get_nowait()
                if result.error is not None:
                    errors[result.name] = result.error

            if publishers and params.simulate_speakers and not cancel.is_set():
                self.speaker_simulator = SpeakerSimulator(
                    publishers,
                    update_interval=self.platform.speaker_update_interval,
                    pause=params.speaker_pause,
                )
                self.speaker_simulator.start()

            duration = params.duration or UNBOUNDED_DURATION
            if not cancel.is_set():
                logger.info(f"Finished connecting to room, waiting {duration:g}s")
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=duration)
                except TimeoutError:
                    pass
        finally:
            if self.speaker_simulator is not None:
                await self.speaker_simulator.stop()
            for task in start_tasks:
                task.cancel()
            await asyncio.gather(*start_tasks, return_exceptions=True)
            await asyncio.gather(*(tester.stop() for tester in self.testers))

        stats = {}
        for tester in self.testers:
            tester_stats = tester.get_stats()
            tester_stats.error = errors.get(tester.name)
            stats[tester.name] = tester_stats
        return stats

    async def _start_tester(
        self,
        tester: LoadTester,
        params: LoadTestParams,
        publish_video: bool,
        publish_audio: bool,
        results: asyncio.Queue[StartResult],
    ) -> None:
        try:
            await tester.start()
        except Exception as e:
            logger.error(f"could not connect {tester.name}: {e}")
            results.put_nowait(StartResult(tester.name, str(e)))
            return

        sequence = tester.params.sequence
        try:
            if publish_audio:
                audio = await tester.publish_audio_track("audio")
                self._name_track(audio, f"{sequence}A")
            if publish_video:
                if params.simulcast:
                    video = await tester.publish_simulcast_track(
                        "video-simulcast", params.video_resolution, params.video_codec
                    )
                else:
                    video = await tester.publish_video_track(
                        "video", params.video_resolution, params.video_codec
                    )
                self._name_track(video, f"{sequence}V")
        except Exception as e:
            logger.error(f"{tester.name} could not publish: {e}")
            results.put_nowait(StartResult(tester.name, str(e)))
            return

        results.put_nowait(StartResult(tester.name))

    def _build_report(
        self,
        params: LoadTestParams,
        stats: dict[str, TesterStats],
        cancelled: bool,
    ) -> LoadTestReport:
        now = time.monotonic()
        tracks = []
        subscribers = []
        publishers = []
        for name, tester_stats in stats.items():
            summary = tester_summary(tester_stats, now)
            if not tester_stats.subscriber:
                publishers.append(summary)
                continue
            subscribers.append(summary)
            for track_id, track in tester_stats.track_stats.items():
                tracks.append(track_report(name, track, self.track_names.get(track_id), now))

        return LoadTestReport(
            params=params,
            tracks=tracks,
            testers=subscribers,
            publishers=publishers,
            total=total_summary(subscribers),
            cancelled=cancelled,
        )
