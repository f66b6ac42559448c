"""
CLI interface for the load tester.
"""

import asyncio
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console

from shared.settings import LoadTestSettings
from shared.utils import parse_duration, setup_logging

from .errors import LoadTestError, PreflightError
from .loadtest import LoadTest
from .platforms import get_platform
from .types import LoadTestParams

EXIT_INTERRUPTED = 130
LOOPBACK_URL = "ws://loopback.local"

# Load settings from environment
settings = LoadTestSettings()

app = typer.Typer(
    name="rtc-loadtest",
    help="Load test an RTC server with simulated publishers and subscribers",
    add_completion=False,
)
console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = "DEBUG" if verbose else settings.log_level
    setup_logging(level=level, use_rich=True)


@app.callback()
def main_callback() -> None:
    """RTC load testing tools."""


@app.command("load-test")
def load_test(
    url: str = typer.Option(None, "--url", help="Server URL (default: LIVEKIT_URL)"),
    api_key: str = typer.Option(None, "--api-key", help="API key (default: LIVEKIT_API_KEY)"),
    api_secret: str = typer.Option(
        None, "--api-secret", help="API secret (default: LIVEKIT_API_SECRET)"
    ),
    room: str = typer.Option(None, "--room", "-r", help="Room name (default: random)"),
    duration: str = typer.Option(
        None, "--duration", "-d", help="Test length such as 30s or 1m; runs until Ctrl-C if unset"
    ),
    video_publishers: int = typer.Option(
        0, "--video-publishers", "--publishers", help="Number of video publishers"
    ),
    audio_publishers: int = typer.Option(
        0, "--audio-publishers", help="Number of audio publishers"
    ),
    subscribers: int = typer.Option(0, "--subscribers", "-s", help="Number of subscribers"),
    identity_prefix: str = typer.Option(
        None, "--identity-prefix", help="Identity prefix of testers (default: random)"
    ),
    video_resolution: str = typer.Option(
        None, "--video-resolution", help="Published resolution: high, medium or low"
    ),
    video_codec: str = typer.Option(
        None, "--video-codec", help="h264 or vp8 (default: both, alternating)"
    ),
    num_per_second: float = typer.Option(
        None, "--num-per-second", help="Testers to start every second (max 10)"
    ),
    layout: str = typer.Option(
        None, "--layout", help="Subscriber layout: speaker, 3x3, 4x4 or 5x5"
    ),
    no_simulcast: bool = typer.Option(False, "--no-simulcast", help="Publish a single layer"),
    simulate_speakers: bool = typer.Option(
        False, "--simulate-speakers", help="Rotate the active speaker among publishers"
    ),
    platform: str = typer.Option(
        "livekit", "--platform", "-p", help="Platform to test: livekit or loopback"
    ),
    output: Path = typer.Option(None, "--output", "-o", help="Save the report to a JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    run_all: bool = typer.Option(False, "--run-all", hidden=True, help="Run the fixed suite"),
) -> None:
    """Run a load test against a room."""
    configure_logging(verbose)

    if platform not in ("livekit", "loopback"):
        console.print(f"❌ Unknown platform: {platform}")
        sys.exit(1)

    credentials = settings.livekit
    url = url or credentials.livekit_url
    api_key = api_key or credentials.livekit_api_key
    api_secret = api_secret or credentials.livekit_api_secret
    if platform == "loopback":
        url = url or LOOPBACK_URL
    elif not (url and api_key and api_secret):
        console.print("❌ --url, --api-key and --api-secret are required (or LIVEKIT_* variables)")
        sys.exit(1)

    try:
        params = LoadTestParams(
            url=url,
            api_key=api_key or "",
            api_secret=api_secret or "",
            room=room or "",
            identity_prefix=identity_prefix or "",
            layout=layout or settings.layout,
            connect_attempts=settings.connect_attempts,
            connect_retry_delay=settings.connect_retry_delay,
            video_publishers=video_publishers,
            audio_publishers=audio_publishers,
            subscribers=subscribers,
            video_resolution=video_resolution or settings.video_resolution,
            video_codec=video_codec or None,
            duration=parse_duration(duration),
            num_per_second=num_per_second or settings.num_per_second,
            simulcast=not no_simulcast,
            simulate_speakers=simulate_speakers,
            speaker_pause=settings.speaker_pause,
        )
    except (ValidationError, ValueError) as e:
        console.print(f"❌ Invalid arguments: {e}")
        sys.exit(1)

    async def run() -> bool:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, cancel.set)

        try:
            test = LoadTest(params, get_platform(platform), console=console)
            if run_all:
                report = await test.run_suite(cancel)
            else:
                report = await test.run(cancel)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

        if output:
            output.write_text(report.model_dump_json(indent=2))
            console.print(f"\n💾 Results saved to: {output}")
        return report.cancelled

    try:
        cancelled = asyncio.run(run())
    except PreflightError as e:
        console.print(f"❌ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n\n🛑 Load test interrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except LoadTestError as e:
        console.print(f"\n\n❌ Error: {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    if cancelled:
        logger.info("load test cancelled")
        sys.exit(EXIT_INTERRUPTED)


def main() -> None:
    """Entry point for the rtc-loadtest console script."""
    app()


if __name__ == "__main__":
    main()
