"""
RTC platform implementations.

The LiveKit platform pulls in the ``livekit`` SDK and is imported lazily:
    from loadtester.platforms.livekit_platform import LiveKitPlatform
    from loadtester.platforms.loopback import LoopbackPlatform
"""

from ..sdk import RTCPlatform


def get_platform(name: str) -> RTCPlatform:
    """Create the platform registered under ``name``."""
    if name == "livekit":
        from .livekit_platform import LiveKitPlatform

        return LiveKitPlatform()
    if name == "loopback":
        from .loopback import LoopbackPlatform

        return LoopbackPlatform()
    raise ValueError(f"Unknown platform: {name}")
