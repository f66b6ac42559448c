"""
Load tester for RTC servers.
"""

from .errors import LoadTestError, PreflightError
from .loadtest import LoadTest, preflight
from .tester import LoadTester
from .types import LoadTestParams, LoadTestReport, SuiteReport

__all__ = [
    "LoadTest",
    "LoadTestError",
    "LoadTestParams",
    "LoadTestReport",
    "LoadTester",
    "PreflightError",
    "SuiteReport",
    "preflight",
]
