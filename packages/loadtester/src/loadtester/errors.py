"""
Exceptions raised by the load tester.
"""


class LoadTestError(Exception):
    """Base exception for all load tester errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class PreflightError(LoadTestError):
    """A scenario was rejected before any tester connected."""


class InvalidURLError(PreflightError):
    """The signaling URL could not be parsed."""

    def __init__(self, url: str, detail: str):
        self.url = url
        self.detail = detail
        super().__init__(f"invalid server URL {url!r}: {detail}")


class CloudLimitExceededError(PreflightError):
    """A scenario exceeds the participant cap enforced for cloud hosts."""

    def __init__(self, host: str, limit: int):
        self.host = host
        self.limit = limit
        super().__init__(
            f"Unable to perform load test on {host}: more than {limit} participants per role. "
            "Load testing is prohibited by the acceptable use policy: "
            "https://livekit.io/legal/acceptable-use-policy"
        )


class ConnectionFailedError(LoadTestError):
    """A tester could not join its room."""

    def __init__(self, identity: str, attempts: int, cause: BaseException | None = None):
        self.identity = identity
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"could not connect {identity} after {attempts} attempt(s){detail}")


class ProviderError(LoadTestError):
    """A sample provider could not be created."""


class TrackReadError(LoadTestError):
    """Reading from a remote track failed; the track has ended or the room disconnected."""
