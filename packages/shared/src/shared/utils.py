"""
Common utilities for rtc-loadtest packages.

Logging setup with loguru plus a few small helpers used by the CLI and the
load test orchestrator.
"""

import random
import re
import string
import sys

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")


def setup_logging(
    level: str = "INFO",
    format_string: str | None = None,
    use_rich: bool = False,
) -> None:
    """
    Configure logging using loguru.

    Args:
        level: Logging level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (default: timestamp, level, location, message)
        use_rich: Route records through a rich handler instead of plain stderr
    """
    logger.remove()

    if use_rich:
        # stderr keeps the rendered result tables on stdout clean
        console = Console(stderr=True, force_terminal=True, width=120)
        logger.add(
            RichHandler(
                console=console,
                rich_tracebacks=True,
                markup=False,
                show_time=False,
                show_path=False,
            ),
            format="{message}",
            level=level.upper(),
        )
        return

    logger.add(
        sys.stderr,
        format=format_string or DEFAULT_LOG_FORMAT,
        level=level.upper(),
        colorize=True,
    )


def random_string(length: int) -> str:
    """Random lowercase ASCII string, used for identity prefixes."""
    return "".join(random.choice(string.ascii_lowercase) for _ in range(length))


def parse_duration(value: str | float | int | None) -> float:
    """
    Parse a duration such as ``"30s"``, ``"1m"``, ``"1h30m"`` or ``"250ms"``.

    Plain numbers are taken as seconds. ``None`` and empty strings mean 0.

    Raises:
        ValueError: if the value is negative or not a recognised duration
    """
    if value is None:
        return 0.0
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip().lower()
        if not text:
            return 0.0
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            pos = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    raise ValueError(f"invalid duration: {value!r}") from None
                amount, unit = float(match.group(1)), match.group(2)
                seconds += amount * {"h": 3600, "m": 60, "s": 1, "ms": 0.001}[unit]
                pos = match.end()
            if pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds
